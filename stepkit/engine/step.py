"""Step contract shared by the runner and every concrete step."""

from __future__ import annotations

import enum
import threading
from typing import Protocol, runtime_checkable

from .state import StateBag


class StepAction(enum.Enum):
    CONTINUE = "continue"
    HALT = "halt"


class CancelToken:
    """Cooperative cancellation signal passed to every `Step.run` call.

    Nothing is interrupted when it fires; steps that perform several nested
    acquisitions poll `is_cancelled()` between them.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@runtime_checkable
class Step(Protocol):
    """A unit of pipeline work with a forward action and a teardown action.

    `run` is called at most once per pipeline invocation. On failure it records
    an exception in the state's error slot, tells the user, and returns HALT.

    `cleanup` must cope with `run` never having executed (or having acquired
    nothing), must be safe to call twice, and must not raise: its own failures
    go to the UI and the error slot so they never mask the forward error.
    """

    def run(self, ctx: CancelToken, state: StateBag) -> StepAction:
        ...

    def cleanup(self, state: StateBag) -> None:
        ...


def step_name(step: object, *, index: int) -> str:
    name = getattr(step, "name", None)
    if isinstance(name, str) and name.strip():
        return name.strip()
    return f"{type(step).__name__}_{index + 1:02d}"
