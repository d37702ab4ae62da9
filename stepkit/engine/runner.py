"""Sequential step runner with reverse-order teardown.

This module is intentionally app-agnostic and must not import `imagebuild.*`.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Literal, Protocol, Sequence, TypeAlias

from .state import (
    StateBag,
    append_cleanup_error,
    get_error,
    put_error_if_absent,
)
from .step import CancelToken, Step, StepAction, step_name

PauseLocation: TypeAlias = Literal["run", "cleanup"]
PauseFn: TypeAlias = Callable[[PauseLocation, str, StateBag], None]

_WATCH_INTERVAL_SECONDS = 0.05


@dataclass(frozen=True)
class RunResult:
    completed: tuple[str, ...]
    cancelled: bool
    halted: bool
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return not self.cancelled and not self.halted and self.error is None


class StepRecorder(Protocol):
    def on_step_start(self, state: StateBag, name: str, *, index: int) -> None:
        ...

    def on_step_end(
        self, state: StateBag, name: str, action: StepAction, *, index: int
    ) -> None:
        ...

    def on_step_error(self, state: StateBag, name: str, exc: Exception) -> None:
        ...

    def on_cleanup(self, state: StateBag, name: str) -> None:
        ...

    def on_cleanup_error(self, state: StateBag, name: str, exc: Exception) -> None:
        ...


class DefaultStepRecorder:
    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)

    def on_step_start(self, state: StateBag, name: str, *, index: int) -> None:
        self._logger.info("Step: %s (index=%d)", name, index)

    def on_step_end(
        self, state: StateBag, name: str, action: StepAction, *, index: int
    ) -> None:
        if action is StepAction.HALT:
            error, present = get_error(state)
            if present:
                self._logger.info("Step %s halted the pipeline (%s)", name, error)
            else:
                self._logger.info("Step %s halted the pipeline", name)
            return
        self._logger.debug("Completed step %s", name)

    def on_step_error(self, state: StateBag, name: str, exc: Exception) -> None:
        self._logger.error("Step failed: %s (%s)", name, exc)

    def on_cleanup(self, state: StateBag, name: str) -> None:
        self._logger.debug("Cleaning up step %s", name)

    def on_cleanup_error(self, state: StateBag, name: str, exc: Exception) -> None:
        self._logger.error("Cleanup failed for step %s (%s)", name, exc)


class NullStepRecorder:
    def on_step_start(self, state: StateBag, name: str, *, index: int) -> None:
        return

    def on_step_end(
        self, state: StateBag, name: str, action: StepAction, *, index: int
    ) -> None:
        return

    def on_step_error(self, state: StateBag, name: str, exc: Exception) -> None:
        return

    def on_cleanup(self, state: StateBag, name: str) -> None:
        return

    def on_cleanup_error(self, state: StateBag, name: str, exc: Exception) -> None:
        return


class Runner:
    """Runs steps in order, then cleans up every started step in reverse.

    A HALT action or an observed cancellation stops forward progress; cleanup
    still runs for every step whose `run` was entered. Step failures are
    ordinary control flow here. Only an exception escaping `run` (a step bug)
    propagates, and only after the unwind has finished.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        *,
        recorder: StepRecorder | None = None,
        logger: logging.Logger | None = None,
        pause_fn: PauseFn | None = None,
    ):
        self._steps: list[Step] = list(steps)
        for index, step in enumerate(self._steps):
            self._validate_step(step, index=index)
        self._names = [step_name(step, index=i) for i, step in enumerate(self._steps)]
        self._validate_unique_names(self._names)
        self._logger = logger or logging.getLogger(__name__)
        self._recorder = recorder or DefaultStepRecorder(self._logger)
        self._validate_recorder(self._recorder)
        if pause_fn is not None and not callable(pause_fn):
            raise TypeError(f"pause_fn must be callable (type={type(pause_fn).__name__})")
        self._pause_fn = pause_fn

    @property
    def step_names(self) -> tuple[str, ...]:
        return tuple(self._names)

    def run(self, state: StateBag, ctx: CancelToken | None = None) -> RunResult:
        token = ctx or CancelToken()
        completed: list[tuple[str, Step]] = []
        finished = threading.Event()
        watcher = threading.Thread(
            target=self._watch_cancellation,
            args=(token, state, finished),
            name="stepkit-cancel-watcher",
            daemon=True,
        )
        watcher.start()
        try:
            try:
                for index, (step, name) in enumerate(zip(self._steps, self._names)):
                    if self._observe_cancellation(token, state):
                        self._logger.info("Cancelled before step %s; skipping remaining steps", name)
                        break

                    self._pause("run", name, state)
                    completed.append((name, step))
                    self._recorder.on_step_start(state, name, index=index)

                    action = self._run_step(step, token, state, name=name, index=index)
                    self._recorder.on_step_end(state, name, action, index=index)

                    if action is StepAction.HALT:
                        state.mark_halted()
                        break
                self._observe_cancellation(token, state)
            finally:
                self._unwind(state, completed)
        finally:
            finished.set()
            watcher.join()

        error, _present = get_error(state)
        return RunResult(
            completed=tuple(name for name, _step in completed),
            cancelled=state.is_cancelled(),
            halted=state.is_halted(),
            error=error,
        )

    def _run_step(
        self, step: Step, token: CancelToken, state: StateBag, *, name: str, index: int
    ) -> StepAction:
        try:
            action = step.run(token, state)
            if not isinstance(action, StepAction):
                raise TypeError(
                    f"Step {name} returned non-StepAction (type={type(action).__name__})"
                )
            return action
        except Exception as exc:
            try:
                self._recorder.on_step_error(state, name, exc)
            except Exception:
                self._logger.exception("Step recorder failed during error handling for %s", name)
            self._attach_pipeline_error(exc, step_name=name, index=index)
            state.mark_halted()
            raise

    def _unwind(self, state: StateBag, completed: list[tuple[str, Step]]) -> None:
        for name, step in reversed(completed):
            try:
                self._pause("cleanup", name, state)
            except Exception:
                self._logger.exception("Pause hook failed before cleanup of %s", name)
            try:
                self._recorder.on_cleanup(state, name)
            except Exception:
                self._logger.exception("Step recorder failed before cleanup of %s", name)
            try:
                step.cleanup(state)
            except Exception as exc:
                try:
                    self._recorder.on_cleanup_error(state, name, exc)
                except Exception:
                    self._logger.exception("Step recorder failed during cleanup of %s", name)
                append_cleanup_error(state, name, exc)
                put_error_if_absent(state, exc)

    def _pause(self, location: PauseLocation, name: str, state: StateBag) -> None:
        if self._pause_fn is None:
            return
        self._pause_fn(location, name, state)

    def _observe_cancellation(self, token: CancelToken, state: StateBag) -> bool:
        if token.is_cancelled():
            state.mark_cancelled()
        return state.is_cancelled()

    def _watch_cancellation(
        self, token: CancelToken, state: StateBag, finished: threading.Event
    ) -> None:
        while not finished.is_set():
            if token.wait(_WATCH_INTERVAL_SECONDS):
                state.mark_cancelled()
                return

    def _validate_step(self, step: Any, *, index: int) -> None:
        for method in ("run", "cleanup"):
            candidate = getattr(step, method, None)
            if candidate is None or not callable(candidate):
                raise TypeError(
                    f"Step {index + 1} ({type(step).__name__}) missing required method: {method}"
                )

    def _validate_unique_names(self, names: list[str]) -> None:
        seen: set[str] = set()
        duplicates: set[str] = set()
        for name in names:
            if name in seen:
                duplicates.add(name)
            seen.add(name)
        if duplicates:
            raise ValueError(f"Duplicate step name(s): {', '.join(sorted(duplicates))}")

    def _validate_recorder(self, recorder: StepRecorder) -> None:
        required = (
            "on_step_start",
            "on_step_end",
            "on_step_error",
            "on_cleanup",
            "on_cleanup_error",
        )
        for name in required:
            method = getattr(recorder, name, None)
            if method is None or not callable(method):
                raise TypeError(f"Step recorder missing required method: {name}")

    def _attach_pipeline_error(self, exc: Exception, *, step_name: str, index: int) -> None:
        if not hasattr(exc, "pipeline_step"):
            try:
                setattr(exc, "pipeline_step", step_name)
            except Exception:
                pass
        if not hasattr(exc, "pipeline_index"):
            try:
                setattr(exc, "pipeline_index", index)
            except Exception:
                pass
