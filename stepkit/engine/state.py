"""Shared execution state for one pipeline run.

This module is intentionally app-agnostic and must not import `imagebuild.*`.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

STATE_CANCELLED = "cancelled"
STATE_HALTED = "halted"
STATE_ERROR = "error"
STATE_CLEANUP_ERRORS = "cleanup_errors"

_RESERVED_FLAGS: tuple[str, ...] = (STATE_CANCELLED, STATE_HALTED)


class StateContractError(LookupError):
    """A required state key is absent or holds the wrong type.

    This indicates a step-authoring or engine bug, not a runtime condition.
    """

    def __init__(self, key: str, message: str):
        super().__init__(message)
        self.key = key


class StateBag:
    """Thread-safe key/value store passed to every step of a pipeline.

    The cancelled/halted flags are the only values written from two threads
    (the cancellation watcher and the run loop), so they sit behind their own
    lock. Once set they stay set.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._lock = threading.RLock()
        self._flag_lock = threading.Lock()
        self._values: dict[str, Any] = {}
        self._flags: dict[str, bool] = {name: False for name in _RESERVED_FLAGS}
        if initial:
            for key, value in initial.items():
                self.put(key, value)

    def put(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key.strip():
            raise TypeError("State key must be a non-empty string")
        if key in _RESERVED_FLAGS:
            self._set_flag(key, value)
            return
        with self._lock:
            self._values[key] = value

    def get(self, key: str, expected_type: type | tuple[type, ...] = object) -> Any:
        value, present = self.get_ok(key)
        if not present:
            raise StateContractError(key, f"Required state key is missing: {key}")
        if not isinstance(value, expected_type):
            expected = (
                ", ".join(t.__name__ for t in expected_type)
                if isinstance(expected_type, tuple)
                else expected_type.__name__
            )
            raise StateContractError(
                key,
                f"State key {key} has type {type(value).__name__} (expected {expected})",
            )
        return value

    def get_ok(self, key: str) -> tuple[Any, bool]:
        if key in _RESERVED_FLAGS:
            with self._flag_lock:
                flag = self._flags[key]
            return (True, True) if flag else (None, False)
        with self._lock:
            if key in self._values:
                return self._values[key], True
        return None, False

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return self.get_ok(key)[1]

    def keys(self) -> tuple[str, ...]:
        with self._lock:
            names = list(self._values.keys())
        with self._flag_lock:
            names.extend(name for name, flag in self._flags.items() if flag)
        return tuple(sorted(names))

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            out = dict(self._values)
        with self._flag_lock:
            out.update({name: True for name, flag in self._flags.items() if flag})
        return out

    def mark_cancelled(self) -> None:
        self._set_flag(STATE_CANCELLED, True)

    def mark_halted(self) -> None:
        self._set_flag(STATE_HALTED, True)

    def is_cancelled(self) -> bool:
        with self._flag_lock:
            return self._flags[STATE_CANCELLED]

    def is_halted(self) -> bool:
        with self._flag_lock:
            return self._flags[STATE_HALTED]

    def _set_flag(self, name: str, value: Any) -> None:
        if not isinstance(value, bool):
            raise TypeError(f"State flag {name} must be a boolean (type={type(value).__name__})")
        with self._flag_lock:
            if not value:
                if self._flags[name]:
                    raise ValueError(f"State flag {name} cannot be cleared once set")
                return
            self._flags[name] = True


def put_error(state: StateBag, exc: BaseException) -> None:
    state.put(STATE_ERROR, exc)


def put_error_if_absent(state: StateBag, exc: BaseException) -> bool:
    """Record `exc` unless an earlier error already owns the slot."""

    # Check-and-set under the bag's lock so a cleanup error never replaces
    # the forward error.
    with state._lock:
        existing, present = state.get_ok(STATE_ERROR)
        if present and existing is not None:
            return False
        state.put(STATE_ERROR, exc)
        return True


def get_error(state: StateBag) -> tuple[BaseException | None, bool]:
    value, present = state.get_ok(STATE_ERROR)
    if not present or value is None:
        return None, False
    if not isinstance(value, BaseException):
        raise StateContractError(
            STATE_ERROR,
            f"State key {STATE_ERROR} has type {type(value).__name__} (expected BaseException)",
        )
    return value, True


def append_cleanup_error(state: StateBag, step_name: str, exc: BaseException) -> None:
    with state._lock:
        existing, present = state.get_ok(STATE_CLEANUP_ERRORS)
        errors = list(existing) if present and isinstance(existing, list) else []
        errors.append({"step": step_name, "error": exc})
        state.put(STATE_CLEANUP_ERRORS, errors)
