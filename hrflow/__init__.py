"""hrflow: template-driven employee lifecycle workflow orchestration."""

from .config import HrflowConfig, load_config
from .contracts import (
    EmployeeWorkflow,
    StepDefinition,
    WorkflowDetails,
    WorkflowException,
    WorkflowFilter,
    WorkflowIntegration,
    WorkflowStep,
    WorkflowTemplate,
)
from .dispatch import IntegrationDispatcher
from .engine import WorkflowEngine, build_engine
from .exception_manager import ExceptionManager
from .persistence import get_repository
from .progress import ProgressReporter
from .templates import TemplateStore

__version__ = "0.1.0"
__all__ = [
    "EmployeeWorkflow",
    "ExceptionManager",
    "HrflowConfig",
    "IntegrationDispatcher",
    "ProgressReporter",
    "StepDefinition",
    "TemplateStore",
    "WorkflowDetails",
    "WorkflowEngine",
    "WorkflowException",
    "WorkflowFilter",
    "WorkflowIntegration",
    "WorkflowStep",
    "WorkflowTemplate",
    "build_engine",
    "get_repository",
    "load_config",
]
