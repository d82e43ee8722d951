#!/usr/bin/env python3
"""Run the example pipelines in memory and print what each finished build
triggers."""

import asyncio
from pathlib import Path

from orchestrator.core.dependencies import get_dispatcher
from orchestrator.core.factories import StateBuildFactory, StateEventFactory
from orchestrator.core.state_manager import state_manager
from orchestrator.utils.pipeline_parser import load_pipelines_file
from shared.enums import BuildStatus
from shared.models import BuildSpec, EventSpec


async def finish(build, status: BuildStatus):
    """Mark a build finished and print the dispatch result."""
    build.status = status
    await state_manager().save_build(build)
    result = await get_dispatcher().dispatch(build)

    print(f"\n{build.job_name}@{build.pipeline_id} finished {status.value}")
    for outcome in result.outcomes:
        print(f"  {outcome.source_job}@{outcome.source_pipeline_id} -> "
              f"{outcome.dest_job}@{outcome.dest_pipeline_id}: {outcome.result}"
              + (f" ({outcome.reason})" if outcome.reason else ""))
    for error in result.errors:
        print(f"  ✗ {error}")
    return result.builds


async def main():
    state = state_manager()
    for definition in load_pipelines_file(
            str(Path(__file__).parent / "pipelines.yaml")):
        state.add_pipeline(definition.pipeline, definition.jobs)

    # A commit starts build and test in pipeline 1
    event = await StateEventFactory(state).create(
        EventSpec(pipeline_id=1, sha="3f2a9c1", ref="main"))
    builds = StateBuildFactory(state)
    started = []
    for name in ("build", "test"):
        job = state.find_job(1, name)
        started.append(await builds.create(
            BuildSpec(pipeline_id=1,
                      job_id=job.id,
                      job_name=name,
                      event_id=event.id)))

    build, test = started
    await finish(build, BuildStatus.SUCCESS)
    downstream = await finish(test, BuildStatus.SUCCESS)

    # deploy was started in a new event of pipeline 2
    for build in downstream:
        if build.job_name == "deploy":
            await finish(build, BuildStatus.FAILURE)

    print("\nEvents:")
    for event in state.events.values():
        print(f"  {event.id}: pipeline {event.pipeline_id}, "
              f"group {event.group_event_id}, parent {event.parent_event_id}")


if __name__ == "__main__":
    asyncio.run(main())
