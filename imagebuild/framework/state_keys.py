"""Typed accessors for the well-known keys of a build's StateBag.

Steps never read these keys with raw `state.get(...)`; they go through the
functions here so the key name and the expected type live in one place.
"""

from __future__ import annotations

from typing import Any

from stepkit.engine.state import StateBag, StateContractError, put_error

from imagebuild.foundation.commands import CommandWrapper
from imagebuild.foundation.ui import Ui

KEY_UI = "ui"
KEY_WRAPPED_COMMAND = "wrapped_command"
KEY_MOUNT_PATH = "mount_path"
KEY_MOUNT_EXTRA_CLEANUP = "mount_extra_cleanup"


def put_ui(state: StateBag, ui: Ui) -> None:
    state.put(KEY_UI, ui)


def get_ui(state: StateBag) -> Ui:
    ui = state.get(KEY_UI)
    for method in ("say", "message", "error"):
        if not callable(getattr(ui, method, None)):
            raise StateContractError(
                KEY_UI, f"State key {KEY_UI} has no {method}() (type={type(ui).__name__})"
            )
    return ui


def put_wrapped_command(state: StateBag, wrapper: CommandWrapper) -> None:
    if not callable(wrapper):
        raise TypeError(f"Command wrapper must be callable (type={type(wrapper).__name__})")
    state.put(KEY_WRAPPED_COMMAND, wrapper)


def get_wrapped_command(state: StateBag) -> CommandWrapper:
    wrapper = state.get(KEY_WRAPPED_COMMAND)
    if not callable(wrapper):
        raise StateContractError(
            KEY_WRAPPED_COMMAND,
            f"State key {KEY_WRAPPED_COMMAND} is not callable (type={type(wrapper).__name__})",
        )
    return wrapper


def put_mount_path(state: StateBag, mount_path: str) -> None:
    if not isinstance(mount_path, str) or not mount_path.strip():
        raise ValueError("mount_path must be a non-empty string")
    state.put(KEY_MOUNT_PATH, mount_path)


def get_mount_path(state: StateBag) -> str:
    return state.get(KEY_MOUNT_PATH, str)


def put_mount_extra_cleanup(state: StateBag, step: Any) -> None:
    state.put(KEY_MOUNT_EXTRA_CLEANUP, step)


def get_mount_extra_cleanup(state: StateBag) -> tuple[Any | None, bool]:
    step, present = state.get_ok(KEY_MOUNT_EXTRA_CLEANUP)
    if not present:
        return None, False
    return step, True


def report_error(state: StateBag, ui: Ui, exc: BaseException) -> None:
    """Record a step failure in the error slot and tell the user."""

    put_error(state, exc)
    ui.error(str(exc))
