from __future__ import annotations

from functools import lru_cache

from stepkit.step_registry import StepRegistry


@lru_cache(maxsize=1)
def get_step_registry() -> StepRegistry:
    # Step modules define `STEP` symbols collected in `imagebuild.steps`.
    from imagebuild import steps  # noqa: PLC0415

    return StepRegistry.from_refs(steps.__all_steps__)


def list_steps() -> None:
    for row in get_step_registry().describe():
        print(f"{row['step_type']}: {row['doc'] or ''}".rstrip())
