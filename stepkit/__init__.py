"""Reusable step-runner kernel (engine primitives + step authoring kit).

This package is intentionally independent of `imagebuild.*`. Well-known state
keys, concrete steps and their collaborators live in the consuming application.
"""

from stepkit.config_namespace import ConfigNamespace
from stepkit.engine.runner import (
    DefaultStepRecorder,
    NullStepRecorder,
    Runner,
    RunResult,
    StepRecorder,
)
from stepkit.engine.state import StateBag, StateContractError
from stepkit.engine.step import CancelToken, Step, StepAction
from stepkit.step_registry import StepBuilder, StepRef, StepRegistry

__all__ = [
    "CancelToken",
    "ConfigNamespace",
    "DefaultStepRecorder",
    "NullStepRecorder",
    "RunResult",
    "Runner",
    "StateBag",
    "StateContractError",
    "Step",
    "StepAction",
    "StepBuilder",
    "StepRecorder",
    "StepRef",
    "StepRegistry",
]
