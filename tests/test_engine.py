"""Instance engine state machine tests."""

from datetime import timedelta

import pytest

from hrflow.contracts import (
    ExceptionType,
    Severity,
    StepDefinition,
    StepStatus,
    WorkflowFilter,
    WorkflowStatus,
)
from hrflow.errors import (
    DependencyNotSatisfiedError,
    InvalidStatusError,
    TemplateInUseError,
    TemplateNotFoundError,
    ValidationError,
    WorkflowCancelledError,
)


async def _initiate(engine, steps, employee_id="emp-1"):
    if await engine.repository.find_template_by_name("standard-onboarding") is None:
        await engine.templates.create_template("standard-onboarding", "onboarding", steps)
    details = await engine.initiate_workflow(employee_id, "standard-onboarding", "hr-1")
    return details.workflow, {s.definition_key: s for s in details.steps}


async def _step(engine, step):
    return await engine.repository.get_step(step.id)


@pytest.mark.asyncio
async def test_initiate_materializes_steps_with_remapped_dependencies(
    engine, onboarding_steps, clock
):
    workflow, steps = await _initiate(engine, onboarding_steps)

    assert workflow.status == WorkflowStatus.ACTIVE
    assert workflow.current_stage == "pre-boarding"
    assert workflow.progress_percentage == 0
    assert workflow.started_at == clock()
    assert workflow.expected_completion == clock() + timedelta(days=10)
    assert len(steps) == 3
    assert all(s.status == StepStatus.PENDING for s in steps.values())
    assert [s.order for s in sorted(steps.values(), key=lambda s: s.order)] == [1, 2, 3]

    assert steps["sign-offer"].dependencies == [steps["send-offer"].id]
    assert steps["background-check"].dependencies == [steps["sign-offer"].id]
    assert steps["send-offer"].id != "send-offer"
    assert steps["send-offer"].due_date == clock() + timedelta(days=2)


@pytest.mark.asyncio
async def test_scenario_a_dependency_chain(engine, onboarding_steps, clock):
    _, steps = await _initiate(engine, onboarding_steps)
    send, sign, check = steps["send-offer"], steps["sign-offer"], steps["background-check"]

    with pytest.raises(DependencyNotSatisfiedError):
        await engine.start_step(sign.id, "hr-1")

    started = await engine.start_step(send.id, "hr-1")
    assert started.status == StepStatus.IN_PROGRESS
    assert started.started_at == clock()

    clock.advance(hours=1)
    done = await engine.complete_step(send.id, "hr-1")
    assert done.status == StepStatus.COMPLETED
    assert done.completed_by == "hr-1"
    assert done.completed_at == clock()

    with pytest.raises(DependencyNotSatisfiedError):
        await engine.start_step(check.id, "hr-1")
    assert (await _step(engine, check)).status == StepStatus.PENDING

    assert (await engine.start_step(sign.id, "hr-1")).status == StepStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_start_step_is_idempotent(engine, onboarding_steps, clock):
    _, steps = await _initiate(engine, onboarding_steps)
    first = await engine.start_step(steps["send-offer"].id)
    clock.advance(minutes=5)
    second = await engine.start_step(steps["send-offer"].id)

    assert second.status == StepStatus.IN_PROGRESS
    assert second.started_at == first.started_at


@pytest.mark.asyncio
async def test_complete_step_twice_does_not_double_count(engine, onboarding_steps, clock):
    workflow, steps = await _initiate(engine, onboarding_steps)
    await engine.start_step(steps["send-offer"].id)
    first = await engine.complete_step(steps["send-offer"].id, "hr-1")
    clock.advance(hours=2)
    second = await engine.complete_step(steps["send-offer"].id, "hr-2")

    assert second.status == StepStatus.COMPLETED
    assert second.completed_at == first.completed_at
    assert second.completed_by == "hr-1"
    progress = await engine.check_workflow_progress(workflow.id)
    assert progress.completed_steps == 1
    assert progress.progress_percentage == 33


@pytest.mark.asyncio
async def test_manual_step_can_complete_from_pending(engine, onboarding_steps):
    _, steps = await _initiate(engine, onboarding_steps)
    done = await engine.complete_step(steps["send-offer"].id, "hr-1")
    assert done.status == StepStatus.COMPLETED
    assert done.started_at == done.completed_at

    with pytest.raises(DependencyNotSatisfiedError):
        await engine.complete_step(steps["background-check"].id, "hr-1")


@pytest.mark.asyncio
async def test_integration_step_cannot_complete_from_pending(engine, onboarding_steps):
    _, steps = await _initiate(engine, onboarding_steps)
    await engine.complete_step(steps["send-offer"].id, "hr-1")
    await engine.complete_step(steps["sign-offer"].id, "hr-1")

    with pytest.raises(InvalidStatusError):
        await engine.complete_step(steps["background-check"].id, "hr-1")


@pytest.mark.asyncio
async def test_scenario_c_all_steps_done_completes_workflow(
    engine, onboarding_steps, clock
):
    workflow, steps = await _initiate(engine, onboarding_steps)
    await engine.complete_step(steps["send-offer"].id, "hr-1")
    await engine.complete_step(steps["sign-offer"].id, "hr-1")
    clock.advance(days=3)
    await engine.start_step(steps["background-check"].id, "hr-1")
    await engine.drain()

    check = await _step(engine, steps["background-check"])
    assert check.status == StepStatus.COMPLETED
    assert check.completed_by == "system"

    progress = await engine.check_workflow_progress(workflow.id)
    assert progress.progress_percentage == 100
    assert progress.status == WorkflowStatus.COMPLETED

    details = await engine.get_workflow(workflow.id)
    assert details.workflow.status == WorkflowStatus.COMPLETED
    assert details.workflow.actual_completion == clock()
    assert details.workflow.current_stage == "day-1"
    assert len(details.integrations) == 1


@pytest.mark.asyncio
async def test_scenario_d_cancel_freezes_workflow(engine, onboarding_steps):
    workflow, steps = await _initiate(engine, onboarding_steps)
    await engine.complete_step(steps["send-offer"].id, "hr-1")
    await engine.complete_step(steps["sign-offer"].id, "hr-1")

    cancelled = await engine.cancel_workflow(workflow.id, "hr-1")
    assert cancelled.status == WorkflowStatus.CANCELLED

    with pytest.raises(WorkflowCancelledError):
        await engine.complete_step(steps["background-check"].id, "hr-1")
    with pytest.raises(WorkflowCancelledError):
        await engine.start_step(steps["background-check"].id, "hr-1")
    with pytest.raises(WorkflowCancelledError):
        await engine.cancel_workflow(workflow.id)

    details = await engine.get_workflow(workflow.id)
    statuses = {s.definition_key: s.status for s in details.steps}
    assert statuses == {
        "send-offer": StepStatus.COMPLETED,
        "sign-offer": StepStatus.COMPLETED,
        "background-check": StepStatus.PENDING,
    }


@pytest.mark.asyncio
async def test_skip_counts_as_satisfied_dependency(engine, onboarding_steps):
    workflow, steps = await _initiate(engine, onboarding_steps)
    await engine.complete_step(steps["send-offer"].id, "hr-1")

    with pytest.raises(ValidationError):
        await engine.skip_step(steps["sign-offer"].id, "hr-1", "  ")

    skipped = await engine.skip_step(steps["sign-offer"].id, "hr-1", "signed on paper")
    assert skipped.status == StepStatus.SKIPPED
    assert skipped.metadata["skip_reason"] == "signed on paper"

    started = await engine.start_step(steps["background-check"].id, "hr-1")
    assert started.status == StepStatus.IN_PROGRESS
    await engine.drain()

    progress = await engine.check_workflow_progress(workflow.id)
    assert progress.skipped_steps == 1
    assert progress.progress_percentage == 100


@pytest.mark.asyncio
async def test_skip_completed_step_is_rejected(engine, onboarding_steps):
    _, steps = await _initiate(engine, onboarding_steps)
    await engine.complete_step(steps["send-offer"].id, "hr-1")
    with pytest.raises(InvalidStatusError):
        await engine.skip_step(steps["send-offer"].id, "hr-1", "too late")


@pytest.mark.asyncio
async def test_fail_step_blocks_dependents_and_raises_exception(engine, onboarding_steps):
    workflow, steps = await _initiate(engine, onboarding_steps)
    await engine.start_step(steps["send-offer"].id, "hr-1")
    failed = await engine.fail_step(steps["send-offer"].id, "hr-1", "candidate declined")

    assert failed.status == StepStatus.FAILED
    assert (await _step(engine, steps["sign-offer"])).status == StepStatus.BLOCKED
    assert (await _step(engine, steps["background-check"])).status == StepStatus.BLOCKED

    exceptions = await engine.exceptions.list_exceptions(workflow.id)
    assert len(exceptions) == 1
    assert exceptions[0].exception_type == ExceptionType.STEP_FAILURE
    assert exceptions[0].severity == Severity.MEDIUM
    assert exceptions[0].step_id == steps["send-offer"].id

    # restarting the failed step and completing it clears the direct block
    await engine.start_step(steps["send-offer"].id, "hr-2")
    await engine.complete_step(steps["send-offer"].id, "hr-2")
    assert (await _step(engine, steps["sign-offer"])).status == StepStatus.PENDING

    await engine.complete_step(steps["sign-offer"].id, "hr-2")
    assert (await _step(engine, steps["background-check"])).status == StepStatus.PENDING


@pytest.mark.asyncio
async def test_fail_step_requires_in_progress(engine, onboarding_steps):
    _, steps = await _initiate(engine, onboarding_steps)
    with pytest.raises(InvalidStatusError):
        await engine.fail_step(steps["send-offer"].id, "hr-1", "nope")


@pytest.mark.asyncio
async def test_resolve_with_override_unblocks_but_keeps_gating(engine, onboarding_steps):
    workflow, steps = await _initiate(engine, onboarding_steps)
    await engine.start_step(steps["send-offer"].id, "hr-1")
    await engine.fail_step(steps["send-offer"].id, "hr-1", "declined")

    manual = await engine.raise_exception(
        workflow.id,
        steps["sign-offer"].id,
        ExceptionType.DEPENDENCY_FAILURE,
        Severity.LOW,
        "Offer blocked",
    )
    await engine.resolve_exception(manual.id, "hr-lead", "renegotiating", override=True)
    assert (await _step(engine, steps["sign-offer"])).status == StepStatus.PENDING

    with pytest.raises(DependencyNotSatisfiedError):
        await engine.start_step(steps["sign-offer"].id, "hr-1")


@pytest.mark.asyncio
async def test_override_on_failure_releases_blocked_dependents(engine, onboarding_steps):
    workflow, steps = await _initiate(engine, onboarding_steps)
    await engine.start_step(steps["send-offer"].id, "hr-1")
    await engine.fail_step(steps["send-offer"].id, "hr-1", "declined")
    (exception,) = await engine.exceptions.list_exceptions(workflow.id)

    await engine.resolve_exception(exception.id, "hr-lead", "acknowledged", override=True)

    # the failed step itself is never changed by resolution
    assert (await _step(engine, steps["send-offer"])).status == StepStatus.FAILED
    sign = await _step(engine, steps["sign-offer"])
    assert sign.status == StepStatus.PENDING
    assert sign.metadata["unblocked_by"] == "hr-lead"
    assert (await _step(engine, steps["background-check"])).status == StepStatus.PENDING

    with pytest.raises(DependencyNotSatisfiedError):
        await engine.start_step(steps["sign-offer"].id, "hr-1")

    # a second failure blocks the released steps again
    await engine.start_step(steps["send-offer"].id, "hr-1")
    await engine.fail_step(steps["send-offer"].id, "hr-1", "declined again")
    assert (await _step(engine, steps["sign-offer"])).status == StepStatus.BLOCKED


@pytest.mark.asyncio
async def test_resolve_without_override_keeps_dependents_blocked(engine, onboarding_steps):
    workflow, steps = await _initiate(engine, onboarding_steps)
    await engine.start_step(steps["send-offer"].id, "hr-1")
    await engine.fail_step(steps["send-offer"].id, "hr-1", "declined")
    (exception,) = await engine.exceptions.list_exceptions(workflow.id)

    await engine.resolve_exception(exception.id, "hr-lead", "noted")

    assert (await _step(engine, steps["send-offer"])).status == StepStatus.FAILED
    assert (await _step(engine, steps["sign-offer"])).status == StepStatus.BLOCKED


@pytest.mark.asyncio
async def test_stage_advances_when_stage_finishes(engine, onboarding_steps):
    workflow, steps = await _initiate(engine, onboarding_steps)

    unchanged = await engine.advance_stage(workflow.id)
    assert unchanged.current_stage == "pre-boarding"

    await engine.complete_step(steps["send-offer"].id, "hr-1")
    await engine.complete_step(steps["sign-offer"].id, "hr-1")
    details = await engine.get_workflow(workflow.id)
    assert details.workflow.current_stage == "day-1"

    # already at the final stage
    final = await engine.advance_stage(workflow.id)
    assert final.current_stage == "day-1"


@pytest.mark.asyncio
async def test_hold_rejects_step_changes_until_resumed(engine, onboarding_steps):
    workflow, steps = await _initiate(engine, onboarding_steps)
    held = await engine.hold_workflow(workflow.id)
    assert held.status == WorkflowStatus.ON_HOLD

    with pytest.raises(InvalidStatusError):
        await engine.start_step(steps["send-offer"].id, "hr-1")

    resumed = await engine.resume_workflow(workflow.id)
    assert resumed.status == WorkflowStatus.ACTIVE
    assert (await engine.start_step(steps["send-offer"].id)).status == StepStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_auto_trigger_steps_start_when_dependencies_clear(make_engine):
    engine = make_engine()
    await engine.templates.create_template(
        "auto",
        "onboarding",
        [
            StepDefinition(key="intro", name="Intro", auto_trigger=True),
            StepDefinition(key="paperwork", name="Paperwork", dependencies=["intro"]),
            StepDefinition(
                key="laptop", name="Laptop", auto_trigger=True, dependencies=["paperwork"]
            ),
        ],
    )
    details = await engine.initiate_workflow("emp-9", "auto", "hr-1")
    steps = {s.definition_key: s for s in details.steps}
    assert steps["intro"].status == StepStatus.IN_PROGRESS
    assert steps["paperwork"].status == StepStatus.PENDING

    await engine.complete_step(steps["intro"].id, "hr-1")
    # paperwork is not auto-triggered, so it only becomes eligible
    assert (await engine.repository.get_step(steps["paperwork"].id)).status == StepStatus.PENDING

    await engine.complete_step(steps["paperwork"].id, "hr-1")
    laptop = await engine.repository.get_step(steps["laptop"].id)
    assert laptop.status == StepStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_initiate_rejects_unknown_and_inactive_templates(engine, onboarding_steps):
    with pytest.raises(TemplateNotFoundError):
        await engine.initiate_workflow("emp-1", "missing", "hr-1")

    template = await engine.templates.create_template(
        "draft-flow", "onboarding", onboarding_steps, status="draft"
    )
    with pytest.raises(InvalidStatusError):
        await engine.initiate_workflow("emp-1", template.id, "hr-1")


@pytest.mark.asyncio
async def test_template_changes_do_not_reach_running_instances(engine, onboarding_steps):
    workflow, _ = await _initiate(engine, onboarding_steps)
    template = await engine.templates.resolve("standard-onboarding")
    await engine.templates.update_template(
        template.id, [StepDefinition(key="only", name="Only step")]
    )

    details = await engine.get_workflow(workflow.id)
    assert len(details.steps) == 3
    assert details.workflow.template_version == 1


@pytest.mark.asyncio
async def test_delete_template_in_use(engine, onboarding_steps):
    workflow, _ = await _initiate(engine, onboarding_steps)
    template = await engine.templates.resolve("standard-onboarding")

    with pytest.raises(TemplateInUseError):
        await engine.templates.delete_template(template.id)

    await engine.cancel_workflow(workflow.id)
    await engine.templates.delete_template(template.id)
    with pytest.raises(TemplateNotFoundError):
        await engine.templates.get_template(template.id)


@pytest.mark.asyncio
async def test_list_workflows_filters(engine, onboarding_steps):
    first, _ = await _initiate(engine, onboarding_steps, employee_id="emp-1")
    second, _ = await _initiate(engine, onboarding_steps, employee_id="emp-2")
    await engine.cancel_workflow(second.id)

    assert len(await engine.list_workflows()) == 2
    active = await engine.list_workflows(WorkflowFilter(status="active"))
    assert [w.id for w in active] == [first.id]
    by_employee = await engine.list_workflows(WorkflowFilter(employee_id="emp-2"))
    assert [w.id for w in by_employee] == [second.id]
    assert await engine.list_workflows(WorkflowFilter(workflow_type="leave")) == []


@pytest.mark.asyncio
async def test_progress_never_decreases(engine, onboarding_steps):
    workflow, steps = await _initiate(engine, onboarding_steps)
    seen = [(await engine.check_workflow_progress(workflow.id)).progress_percentage]

    await engine.start_step(steps["send-offer"].id)
    seen.append((await engine.check_workflow_progress(workflow.id)).progress_percentage)
    await engine.complete_step(steps["send-offer"].id, "hr-1")
    seen.append((await engine.check_workflow_progress(workflow.id)).progress_percentage)
    await engine.complete_step(steps["send-offer"].id, "hr-1")
    seen.append((await engine.check_workflow_progress(workflow.id)).progress_percentage)
    await engine.skip_step(steps["sign-offer"].id, "hr-1", "not needed")
    seen.append((await engine.check_workflow_progress(workflow.id)).progress_percentage)

    assert seen == sorted(seen)
    assert seen[-1] == 67


@pytest.mark.asyncio
async def test_locks_are_released_for_closed_workflows(engine, onboarding_steps):
    done, done_steps = await _initiate(engine, onboarding_steps, "emp-1")
    cancelled, _ = await _initiate(engine, onboarding_steps, "emp-2")
    running, running_steps = await _initiate(engine, onboarding_steps, "emp-3")

    await engine.complete_step(running_steps["send-offer"].id, "hr-1")
    assert running.id in engine._locks

    for key in ("send-offer", "sign-offer", "background-check"):
        await engine.skip_step(done_steps[key].id, "hr-1", "rehire")
    await engine.cancel_workflow(cancelled.id)
    assert done.id not in engine._locks
    assert cancelled.id not in engine._locks

    # rejected calls on a closed workflow do not leave a lock behind
    with pytest.raises(WorkflowCancelledError):
        await engine.cancel_workflow(cancelled.id)
    assert cancelled.id not in engine._locks
