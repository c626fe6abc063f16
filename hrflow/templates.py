"""Template store: reusable workflow definitions and their validation."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import yaml
from pydantic import ValidationError as PydanticValidationError

from .contracts import (
    OPEN_WORKFLOW_STATUSES,
    StepDefinition,
    StepType,
    TemplateStatus,
    WorkflowTemplate,
    WorkflowType,
    utcnow,
)
from .errors import (
    CyclicDependencyError,
    TemplateInUseError,
    TemplateNotFoundError,
    ValidationError,
)
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


def topological_order(steps: Sequence[StepDefinition]) -> List[str]:
    """Return step keys in dependency order (Kahn's algorithm).

    Raises:
        CyclicDependencyError: If any step is left unvisited after a full pass.
    """
    by_order = sorted(steps, key=lambda s: s.order or 0)
    indegree: Dict[str, int] = {s.key: len(s.dependencies) for s in by_order}
    dependents: Dict[str, List[str]] = {s.key: [] for s in by_order}
    for step in by_order:
        for dep in step.dependencies:
            dependents.setdefault(dep, []).append(step.key)

    ready = deque(key for key, count in indegree.items() if count == 0)
    visited: List[str] = []
    while ready:
        key = ready.popleft()
        visited.append(key)
        for child in dependents.get(key, []):
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)

    if len(visited) != len(by_order):
        stuck = sorted(set(indegree) - set(visited))
        raise CyclicDependencyError(
            f"Dependency cycle detected among steps: {', '.join(stuck)}"
        )
    return visited


def validate_steps(steps: Sequence[StepDefinition]) -> List[StepDefinition]:
    """Validate step definitions and return normalized copies.

    Missing ``order`` values are filled from list position.
    """
    if not steps:
        raise ValidationError("At least one step is required")

    normalized: List[StepDefinition] = []
    for index, step in enumerate(steps):
        copy = step.model_copy(deep=True)
        if copy.order is None:
            copy.order = index + 1
        normalized.append(copy)

    orders = [s.order for s in normalized]
    duplicates = sorted({o for o in orders if orders.count(o) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate step order values: {duplicates}")

    keys = [s.key for s in normalized]
    duplicate_keys = sorted({k for k in keys if keys.count(k) > 1})
    if duplicate_keys:
        raise ValidationError(f"Duplicate step keys: {duplicate_keys}")

    known = set(keys)
    for step in normalized:
        if not step.name.strip():
            raise ValidationError(f"Step {step.key} requires a name")
        if step.step_type == StepType.INTEGRATION and step.integration_type is None:
            raise ValidationError(
                f"Integration step {step.key} requires an integration_type"
            )
        if step.step_type != StepType.INTEGRATION and step.integration_type is not None:
            raise ValidationError(
                f"Step {step.key} is not an integration step but declares one"
            )
        for dep in step.dependencies:
            if dep == step.key:
                raise CyclicDependencyError(f"Step {step.key} depends on itself")
            if dep not in known:
                raise ValidationError(
                    f"Step {step.key} depends on unknown step {dep}"
                )

    topological_order(normalized)
    return sorted(normalized, key=lambda s: s.order)


class TemplateStore:
    """CRUD for ``WorkflowTemplate`` records.

    Reads are lock-free; writes are serialized through a single lock. Running
    instances hold copies of the structure they were created from, so no
    write here reaches them.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        now: Callable[[], Any] = utcnow,
    ) -> None:
        self._repository = repository
        self._now = now
        self._lock = asyncio.Lock()

    async def create_template(
        self,
        name: str,
        workflow_type: WorkflowType | str,
        steps: Sequence[StepDefinition],
        *,
        description: str = "",
        status: TemplateStatus | str = TemplateStatus.ACTIVE,
        created_by: Optional[str] = None,
    ) -> WorkflowTemplate:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Template name is required")
        try:
            workflow_type = WorkflowType(workflow_type)
            status = TemplateStatus(status)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        validated = validate_steps(steps)

        async with self._lock:
            if await self._repository.find_template_by_name(name) is not None:
                raise ValidationError(f"Template named '{name}' already exists")
            now = self._now()
            template = WorkflowTemplate(
                name=name,
                description=description,
                workflow_type=workflow_type,
                status=status,
                steps=validated,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            await self._repository.save_template(template)

        logger.info(f"Created template {template.name} ({template.id})")
        return template

    async def get_template(self, template_id: str) -> WorkflowTemplate:
        template = await self._repository.get_template(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        return template

    async def resolve(self, name_or_id: str) -> WorkflowTemplate:
        """Look a template up by id first, then by name."""
        template = await self._repository.get_template(name_or_id)
        if template is None:
            template = await self._repository.find_template_by_name(name_or_id)
        if template is None:
            raise TemplateNotFoundError(f"Template '{name_or_id}' not found")
        return template

    async def list_templates(
        self,
        active_only: bool = False,
        workflow_type: WorkflowType | str | None = None,
    ) -> List[WorkflowTemplate]:
        templates = await self._repository.list_templates()
        if active_only:
            templates = [t for t in templates if t.status == TemplateStatus.ACTIVE]
        if workflow_type is not None:
            try:
                workflow_type = WorkflowType(workflow_type)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            templates = [t for t in templates if t.workflow_type == workflow_type]
        return templates

    async def update_template(
        self,
        template_id: str,
        steps: Sequence[StepDefinition],
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> WorkflowTemplate:
        validated = validate_steps(steps)
        async with self._lock:
            template = await self.get_template(template_id)
            if name is not None and name != template.name:
                name = name.strip()
                if not name:
                    raise ValidationError("Template name is required")
                if await self._repository.find_template_by_name(name) is not None:
                    raise ValidationError(f"Template named '{name}' already exists")
                template.name = name
            if description is not None:
                template.description = description
            template.steps = validated
            template.version += 1
            template.updated_at = self._now()
            await self._repository.save_template(template)

        logger.info(f"Updated template {template.name} to version {template.version}")
        return template

    async def delete_template(self, template_id: str) -> None:
        async with self._lock:
            template = await self.get_template(template_id)
            in_use = [
                wf.id
                for wf in await self._repository.list_workflows()
                if wf.template_id == template.id and wf.status in OPEN_WORKFLOW_STATUSES
            ]
            if in_use:
                raise TemplateInUseError(
                    f"Template {template.name} is used by {len(in_use)} active workflow(s)"
                )
            await self._repository.delete_template(template.id)
        logger.info(f"Deleted template {template.name} ({template.id})")

    async def duplicate_template(
        self, template_id: str, new_name: str, created_by: Optional[str] = None
    ) -> WorkflowTemplate:
        source = await self.get_template(template_id)
        return await self.create_template(
            new_name,
            source.workflow_type,
            source.steps,
            description=f"{source.description} (Copy)".strip(),
            status=TemplateStatus.DRAFT,
            created_by=created_by,
        )

    async def toggle_template(self, template_id: str) -> WorkflowTemplate:
        async with self._lock:
            template = await self.get_template(template_id)
            template.status = (
                TemplateStatus.INACTIVE
                if template.status == TemplateStatus.ACTIVE
                else TemplateStatus.ACTIVE
            )
            template.updated_at = self._now()
            await self._repository.save_template(template)
        return template

    async def load_definitions(
        self, definitions: Iterable[Dict[str, Any]], created_by: Optional[str] = None
    ) -> List[WorkflowTemplate]:
        """Create templates from plain mappings, skipping names already present."""
        created: List[WorkflowTemplate] = []
        for definition in definitions:
            data = dict(definition)
            name = data.get("name", "")
            if await self._repository.find_template_by_name(name) is not None:
                logger.info(f"Template {name} already exists; skipping")
                continue
            try:
                steps = [StepDefinition(**s) for s in data.get("steps", [])]
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid step in template '{name}': {exc}") from exc
            created.append(
                await self.create_template(
                    name,
                    data.get("workflow_type", WorkflowType.ONBOARDING),
                    steps,
                    description=data.get("description", ""),
                    status=data.get("status", TemplateStatus.ACTIVE),
                    created_by=created_by,
                )
            )
        return created


def read_template_file(path: str | Path) -> List[Dict[str, Any]]:
    """Read template definitions from a YAML file.

    The file holds either a single mapping or a ``templates`` list.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if isinstance(data, list):
        return data
    if "templates" in data:
        return list(data["templates"] or [])
    return [data]
