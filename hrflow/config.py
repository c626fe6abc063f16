from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .contracts import IntegrationType
from .utils.retry import RetryPolicy


def default_retry_policies() -> Dict[IntegrationType, RetryPolicy]:
    return {
        IntegrationType.DOCUSIGN: RetryPolicy(),
        IntegrationType.BACKGROUND_CHECK: RetryPolicy(base_delay=30.0, timeout=20.0),
        IntegrationType.DOC_SEARCH: RetryPolicy(base_delay=5.0, max_delay=60.0, timeout=4.0),
    }


class HrflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    default_expected_days: int = Field(default=30, ge=1)
    dispatch_on_start: bool = True
    retry: Dict[IntegrationType, RetryPolicy] = Field(
        default_factory=default_retry_policies
    )

    def retry_policy(self, integration_type: IntegrationType) -> RetryPolicy:
        return self.retry.get(IntegrationType(integration_type), RetryPolicy())


def load_config(path: Optional[str] = None) -> HrflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to HRFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("HRFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        retry_overrides = data.pop("retry", None) or {}
        config = HrflowConfig(**data)
        for name, values in retry_overrides.items():
            integration_type = IntegrationType(name)
            base = config.retry_policy(integration_type)
            config.retry[integration_type] = RetryPolicy(
                **{**base.model_dump(), **(values or {})}
            )
    else:
        config = HrflowConfig()

    env_db_url = os.getenv("HRFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
