"""Engine primitives for running Step pipelines."""

from stepkit.engine.runner import (
    DefaultStepRecorder,
    NullStepRecorder,
    PauseFn,
    Runner,
    RunResult,
    StepRecorder,
)
from stepkit.engine.state import (
    STATE_CANCELLED,
    STATE_CLEANUP_ERRORS,
    STATE_ERROR,
    STATE_HALTED,
    StateBag,
    StateContractError,
    get_error,
    put_error,
    put_error_if_absent,
)
from stepkit.engine.step import CancelToken, Step, StepAction

__all__ = [
    "CancelToken",
    "DefaultStepRecorder",
    "NullStepRecorder",
    "PauseFn",
    "RunResult",
    "Runner",
    "STATE_CANCELLED",
    "STATE_CLEANUP_ERRORS",
    "STATE_ERROR",
    "STATE_HALTED",
    "StateBag",
    "StateContractError",
    "Step",
    "StepAction",
    "StepRecorder",
    "get_error",
    "put_error",
    "put_error_if_absent",
]
