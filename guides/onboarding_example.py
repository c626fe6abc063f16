"""Walk a new hire through the built-in onboarding template."""

import asyncio

from hrflow import WorkflowEngine
from hrflow.defaults import BUILTIN_TEMPLATES
from hrflow.persistence import InMemoryWorkflowRepository


async def main():
    """Seed templates, start an onboarding and drive its first steps."""
    engine = WorkflowEngine(InMemoryWorkflowRepository())
    await engine.templates.load_definitions(BUILTIN_TEMPLATES, created_by="admin")

    details = await engine.initiate_workflow("emp-1001", "standard-onboarding", "hr-42")
    steps = {s.definition_key: s for s in details.steps}
    print(f"Workflow {details.workflow.id} started at stage {details.workflow.current_stage}")

    # Integration steps are dispatched to the mock e-signature provider
    await engine.start_step(steps["send-offer"].id, "hr-42")
    await engine.drain()
    await engine.start_step(steps["sign-offer"].id, "emp-1001")
    await engine.complete_step(steps["sign-offer"].id, "emp-1001")

    progress = await engine.check_workflow_progress(details.workflow.id)
    print(f"Progress: {progress.progress_percentage}% ({progress.current_stage})")
    for stage in await engine.stage_breakdown(details.workflow.id):
        print(f"  {stage.stage}: {stage.total - stage.remaining}/{stage.total}")


if __name__ == "__main__":
    asyncio.run(main())
