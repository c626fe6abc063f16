"""Command line interface for hrflow workflows."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from pydantic import ValidationError as PydanticValidationError

from .contracts import WorkflowFilter
from .defaults import BUILTIN_TEMPLATES
from .engine import WorkflowEngine, build_engine
from .errors import ValidationError, WorkflowError
from .templates import read_template_file

T = TypeVar("T")

app = typer.Typer(help="CLI for hrflow employee lifecycle workflows")

# Command groups
template_app = typer.Typer(help="Commands for managing templates")
workflow_app = typer.Typer(help="Commands for managing workflow instances")
step_app = typer.Typer(help="Commands for driving individual steps")
exception_app = typer.Typer(help="Commands for workflow exceptions")

app.add_typer(template_app, name="template")
app.add_typer(workflow_app, name="workflow")
app.add_typer(step_app, name="step")
app.add_typer(exception_app, name="exception")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Root logging level"),
) -> None:
    """hrflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(action: Callable[[WorkflowEngine], Awaitable[T]]) -> T:
    """Run ``action`` against a fresh engine and wait for background dispatches."""

    async def runner() -> T:
        engine = build_engine()
        try:
            return await action(engine)
        finally:
            await engine.drain()

    try:
        return asyncio.run(runner())
    except WorkflowError as exc:
        typer.secho(f"Error ({exc.kind}): {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# Templates


@template_app.command("list")
def template_list(
    active_only: bool = typer.Option(False, help="Only show active templates"),
    workflow_type: Optional[str] = typer.Option(None, "--type", help="Filter by type"),
) -> None:
    """List templates with their status and step count."""
    templates = _run(
        lambda engine: engine.templates.list_templates(active_only, workflow_type)
    )
    if not templates:
        typer.echo("No templates found")
        return
    for t in templates:
        typer.echo(
            f"{t.id}\t{t.name}\t{t.workflow_type.value}\t{t.status.value}\t"
            f"v{t.version}\t{len(t.steps)} steps"
        )


@template_app.command("show")
def template_show(name_or_id: str) -> None:
    """Show a template's steps and dependencies."""
    template = _run(lambda engine: engine.templates.resolve(name_or_id))
    typer.echo(
        f"Template {template.name} ({template.workflow_type.value}, "
        f"{template.status.value}, v{template.version})"
    )
    for step in template.ordered_steps():
        deps = f" after {', '.join(step.dependencies)}" if step.dependencies else ""
        typer.echo(
            f"{step.order}. [{step.stage}] {step.name} ({step.step_type.value}, "
            f"{step.assigned_role.value}){deps}"
        )


@template_app.command("load")
def template_load(
    path: Path,
    created_by: Optional[str] = typer.Option(None, help="Author recorded on templates"),
) -> None:
    """Create templates from a YAML file."""
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    definitions = read_template_file(path)
    created = _run(
        lambda engine: engine.templates.load_definitions(definitions, created_by)
    )
    typer.echo(f"Loaded {len(created)} template(s)")
    for t in created:
        typer.echo(f"{t.id}\t{t.name}")


@template_app.command("seed")
def template_seed() -> None:
    """Create the built-in onboarding and offboarding templates."""
    created = _run(
        lambda engine: engine.templates.load_definitions(BUILTIN_TEMPLATES, "system")
    )
    typer.echo(f"Seeded {len(created)} template(s)")


@template_app.command("toggle")
def template_toggle(template_id: str) -> None:
    """Switch a template between active and inactive."""
    template = _run(lambda engine: engine.templates.toggle_template(template_id))
    typer.echo(f"Template {template.name} is now {template.status.value}")


@template_app.command("delete")
def template_delete(template_id: str) -> None:
    """Delete a template that no running workflow uses."""
    _run(lambda engine: engine.templates.delete_template(template_id))
    typer.echo(f"Template {template_id} deleted")


# ----------------------------------------------------------------------
# Workflows


@workflow_app.command("initiate")
def workflow_initiate(
    employee_id: str,
    template: str,
    initiator: Optional[str] = typer.Option(None, help="Who started the workflow"),
) -> None:
    """
    Start a workflow for an employee from a template name or id.

    Example:
        hrflow workflow initiate emp-42 standard-onboarding --initiator hr-1
    """
    details = _run(
        lambda engine: engine.initiate_workflow(employee_id, template, initiator)
    )
    wf = details.workflow
    typer.echo(f"Workflow {wf.id} initiated for {wf.employee_id}")
    typer.echo(f"Stage: {wf.current_stage}\tSteps: {len(details.steps)}")


@workflow_app.command("list")
def workflow_list(
    status: Optional[str] = typer.Option(None, help="Filter by status"),
    employee: Optional[str] = typer.Option(None, help="Filter by employee id"),
    workflow_type: Optional[str] = typer.Option(None, "--type", help="Filter by type"),
    template: Optional[str] = typer.Option(None, help="Filter by template id"),
) -> None:
    """List workflows with their status and progress."""

    async def action(engine: WorkflowEngine):
        try:
            filters = WorkflowFilter(
                status=status,
                employee_id=employee,
                workflow_type=workflow_type,
                template_id=template,
            )
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid filter: {exc.errors()[0]['msg']}") from exc
        return await engine.list_workflows(filters)

    workflows = _run(action)
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(
            f"{wf.id}\t{wf.employee_id}\t{wf.status.value}\t{wf.progress_percentage}%"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show a workflow with its steps, integrations and exceptions."""
    details = _run(lambda engine: engine.get_workflow(workflow_id))
    wf = details.workflow
    typer.echo(
        f"Workflow {wf.id}: {wf.status.value} ({wf.progress_percentage}%, "
        f"stage {wf.current_stage})"
    )
    for step in details.steps:
        typer.echo(
            f"- {step.order}. {step.name}: {step.status.value}"
            + (f" (due {step.due_date:%Y-%m-%d})" if step.due_date else "")
            + f"\t{step.id}"
        )
    for integration in details.integrations:
        typer.echo(
            f"  integration {integration.integration_type.value}: "
            f"{integration.status.value} after {integration.retry_count} failure(s)"
        )
    for exception in details.exceptions:
        typer.echo(
            f"  exception [{exception.severity.value}] {exception.title}: "
            f"{exception.resolution_status.value}"
        )


@workflow_app.command("cancel")
def workflow_cancel(
    workflow_id: str,
    actor: Optional[str] = typer.Option(None, help="Who cancelled the workflow"),
) -> None:
    """Cancel a workflow. Step history is preserved."""
    wf = _run(lambda engine: engine.cancel_workflow(workflow_id, actor))
    typer.echo(f"Workflow {wf.id} cancelled")


@workflow_app.command("hold")
def workflow_hold(workflow_id: str) -> None:
    """Put a workflow on hold."""
    wf = _run(lambda engine: engine.hold_workflow(workflow_id))
    typer.echo(f"Workflow {wf.id} is {wf.status.value}")


@workflow_app.command("resume")
def workflow_resume(workflow_id: str) -> None:
    """Resume a workflow that is on hold."""
    wf = _run(lambda engine: engine.resume_workflow(workflow_id))
    typer.echo(f"Workflow {wf.id} is {wf.status.value}")


@workflow_app.command("progress")
def workflow_progress(workflow_id: str) -> None:
    """Recompute and show progress for a workflow."""

    async def action(engine: WorkflowEngine):
        progress = await engine.check_workflow_progress(workflow_id)
        return progress, await engine.stage_breakdown(workflow_id)

    progress, stages = _run(action)
    typer.echo(
        f"{progress.progress_percentage}% complete "
        f"({progress.completed_steps + progress.skipped_steps}/{progress.total_steps}), "
        f"status {progress.status.value}"
    )
    track = "on track" if progress.is_on_track else "behind schedule"
    typer.echo(f"Day {progress.days_elapsed} of {progress.expected_days}: {track}")
    for stage in stages:
        marker = "*" if stage.is_current else " "
        typer.echo(f"{marker} {stage.stage}: {stage.total - stage.remaining}/{stage.total}")
    if progress.overdue_steps:
        typer.echo(f"Overdue steps: {len(progress.overdue_steps)}")


@workflow_app.command("advance")
def workflow_advance(workflow_id: str) -> None:
    """Advance to the next stage once the current one is finished."""
    wf = _run(lambda engine: engine.advance_stage(workflow_id))
    typer.echo(f"Workflow {wf.id} is at stage {wf.current_stage}")


# ----------------------------------------------------------------------
# Steps


@step_app.command("start")
def step_start(
    step_id: str, actor: Optional[str] = typer.Option(None, help="Acting user")
) -> None:
    """Start a step whose dependencies are satisfied."""
    step = _run(lambda engine: engine.start_step(step_id, actor))
    typer.echo(f"Step {step.name}: {step.status.value}")


@step_app.command("complete")
def step_complete(
    step_id: str,
    actor: Optional[str] = typer.Option(None, help="Acting user"),
    notes: Optional[str] = typer.Option(None, help="Completion notes"),
) -> None:
    """Complete a step."""
    step = _run(lambda engine: engine.complete_step(step_id, actor, notes))
    typer.echo(f"Step {step.name}: {step.status.value}")


@step_app.command("skip")
def step_skip(
    step_id: str,
    reason: str = typer.Option(..., help="Why the step is skipped"),
    actor: Optional[str] = typer.Option(None, help="Acting user"),
) -> None:
    """Skip a step with a reason."""
    step = _run(lambda engine: engine.skip_step(step_id, actor, reason))
    typer.echo(f"Step {step.name}: {step.status.value}")


@step_app.command("fail")
def step_fail(
    step_id: str,
    reason: str = typer.Option(..., help="Why the step failed"),
    actor: Optional[str] = typer.Option(None, help="Acting user"),
) -> None:
    """Mark an in-progress step as failed."""
    step = _run(lambda engine: engine.fail_step(step_id, actor, reason))
    typer.echo(f"Step {step.name}: {step.status.value}")


# ----------------------------------------------------------------------
# Exceptions


@exception_app.command("list")
def exception_list(
    workflow: Optional[str] = typer.Option(None, help="Filter by workflow id"),
    status: Optional[str] = typer.Option(None, help="open or resolved"),
) -> None:
    """List exceptions."""
    exceptions = _run(lambda engine: engine.exceptions.list_exceptions(workflow, status))
    if not exceptions:
        typer.echo("No exceptions found")
        return
    for e in exceptions:
        typer.echo(
            f"{e.id}\t{e.severity.value}\t{e.resolution_status.value}\t{e.title}"
        )


@exception_app.command("raise")
def exception_raise(
    workflow_id: str,
    title: str = typer.Option(..., help="Short summary"),
    severity: str = typer.Option("medium", help="low, medium, high or critical"),
    exception_type: str = typer.Option("manual", "--type", help="Exception type"),
    step: Optional[str] = typer.Option(None, help="Step id the exception concerns"),
    description: str = typer.Option("", help="Details"),
    assignee: Optional[str] = typer.Option(None, help="Who should resolve it"),
) -> None:
    """Raise an exception against a workflow."""
    exception = _run(
        lambda engine: engine.raise_exception(
            workflow_id, step, exception_type, severity, title, description, assignee
        )
    )
    typer.echo(f"Exception {exception.id} raised")


@exception_app.command("resolve")
def exception_resolve(
    exception_id: str,
    resolver: str = typer.Option(..., help="Who resolved it"),
    notes: str = typer.Option("", help="Resolution notes"),
    override: bool = typer.Option(False, help="Unblock the tied step"),
) -> None:
    """Resolve an open exception."""
    exception = _run(
        lambda engine: engine.resolve_exception(exception_id, resolver, notes, override)
    )
    typer.echo(f"Exception {exception.id} resolved by {exception.resolved_by}")


# ----------------------------------------------------------------------
# Dashboard


@app.command("dashboard")
def dashboard() -> None:
    """Show workflow counts and the open exception backlog."""
    stats = _run(lambda engine: engine.reporter.dashboard())
    typer.echo(f"Active workflows: {stats.active_workflows}")
    typer.echo(f"On hold: {stats.on_hold_workflows}")
    typer.echo(f"Completed: {stats.completed_workflows}")
    typer.echo(f"Cancelled: {stats.cancelled_workflows}")
    typer.echo(f"Overdue: {stats.overdue_workflows}")
    typer.echo(f"Active templates: {stats.active_templates}")
    typer.echo(
        f"Completed this month: {stats.completed_this_month} "
        f"(avg {stats.avg_completion_days} days)"
    )
    backlog = ", ".join(f"{k}={v}" for k, v in stats.open_exceptions.items())
    typer.echo(f"Open exceptions: {backlog}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
