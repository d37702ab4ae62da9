"""Mount additional filesystems inside the build root.

Produces:
  mount_extra_cleanup -- the step itself, so a controller can release the
  mounts before the normal unwind reaches this step.
"""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass
from typing import Callable, Sequence

from stepkit.config_namespace import ConfigNamespace
from stepkit.engine.state import StateBag, put_error_if_absent
from stepkit.engine.step import CancelToken, StepAction
from stepkit.step_registry import StepRef

from imagebuild.foundation.commands import CommandResult, CommandWrapperError, run_shell
from imagebuild.framework.state_keys import (
    get_mount_path,
    get_ui,
    get_wrapped_command,
    put_mount_extra_cleanup,
    report_error,
)

logger = logging.getLogger(__name__)

KIND_ID = "mount_extra"

DEFAULT_CHROOT_MOUNTS: tuple[tuple[str, str, str], ...] = (
    ("proc", "proc", "/proc"),
    ("sysfs", "sysfs", "/sys"),
    ("bind", "/dev", "/dev"),
    ("devpts", "devpts", "/dev/pts"),
    ("binfmt_misc", "binfmt_misc", "/proc/sys/fs/binfmt_misc"),
)

# `grep` exits 1 when nothing matched: the path is no longer in the mount table.
_PROBE_NOT_FOUND = 1

CommandRunner = Callable[[str], CommandResult]


class MountError(RuntimeError):
    pass


@dataclass(frozen=True)
class MountSpec:
    kind: str
    source: str
    destination: str

    @classmethod
    def from_row(cls, row: Sequence[str]) -> "MountSpec":
        if isinstance(row, MountSpec):
            return row
        if not isinstance(row, (list, tuple)) or len(row) != 3:
            raise ValueError(f"Mount specification must be [kind, source, destination] (got {row!r})")
        kind, source, destination = (str(item).strip() for item in row)
        if not kind or not source or not destination:
            raise ValueError(f"Mount specification entries cannot be empty (got {row!r})")
        return cls(kind=kind, source=source, destination=destination)

    def flags(self) -> str:
        if self.kind == "bind":
            return "--bind"
        return f"-t {shlex.quote(self.kind)}"

    def inner_path(self, mount_path: str) -> str:
        return os.path.join(mount_path, self.destination.lstrip("/"))


class StepMountExtra:
    """Mounts each configured path in order and unmounts them in reverse.

    `_mounts` is the resource stack: it holds exactly the paths mounted by this
    step and not yet released. `None` means nothing was ever acquired.
    """

    def __init__(
        self,
        chroot_mounts: Sequence[Sequence[str] | MountSpec] = DEFAULT_CHROOT_MOUNTS,
        *,
        name: str = KIND_ID,
        run_command: CommandRunner = run_shell,
    ):
        self.name = name
        self.chroot_mounts: tuple[MountSpec, ...] = tuple(
            MountSpec.from_row(row) for row in chroot_mounts
        )
        self._run_command = run_command
        self._mounts: list[str] | None = None

    @property
    def mounts(self) -> tuple[str, ...]:
        return tuple(self._mounts or ())

    def run(self, ctx: CancelToken, state: StateBag) -> StepAction:
        mount_path = get_mount_path(state)
        ui = get_ui(state)
        wrapped_command = get_wrapped_command(state)

        self._mounts = []

        ui.say("Mounting additional paths within the chroot...")
        for spec in self.chroot_mounts:
            if ctx.is_cancelled() or state.is_cancelled():
                ui.say("Cancelled; not mounting remaining paths")
                return StepAction.HALT

            inner_path = spec.inner_path(mount_path)
            try:
                os.makedirs(inner_path, mode=0o755, exist_ok=True)
            except OSError as exc:
                report_error(state, ui, MountError(f"Error creating mount directory: {exc}"))
                return StepAction.HALT

            ui.message(f"Mounting: {spec.destination}")
            try:
                mount_command = wrapped_command(
                    f"mount {spec.flags()} {shlex.quote(spec.source)} {shlex.quote(inner_path)}"
                )
            except CommandWrapperError as exc:
                report_error(state, ui, MountError(f"Error creating mount command: {exc}"))
                return StepAction.HALT

            try:
                result = self._run_command(mount_command)
            except OSError as exc:
                report_error(state, ui, MountError(f"Error mounting: {exc}"))
                return StepAction.HALT
            if not result.ok:
                report_error(
                    state,
                    ui,
                    MountError(
                        f"Error mounting: exit status {result.returncode}\nStderr: {result.stderr}"
                    ),
                )
                return StepAction.HALT

            self._mounts.append(inner_path)
            put_mount_extra_cleanup(state, self)
            logger.debug("Mounted %s (%s)", inner_path, spec.kind)

        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        try:
            self.cleanup_func(state)
        except MountError as exc:
            get_ui(state).error(str(exc))
            put_error_if_absent(state, exc)

    def cleanup_func(self, state: StateBag) -> None:
        """Unmount everything still on the stack, newest first.

        Raises `MountError` on the first hard failure and leaves that path and
        everything mounted before it on the stack.
        """

        if self._mounts is None:
            return

        wrapped_command = get_wrapped_command(state)
        while self._mounts:
            path = self._mounts[-1]

            try:
                probe_command = wrapped_command(f"grep {shlex.quote(path)} /proc/mounts")
            except CommandWrapperError as exc:
                raise MountError(f"Error creating grep command: {exc}") from exc

            probe = self._execute(probe_command)
            if probe is not None and probe.returncode == _PROBE_NOT_FOUND:
                logger.debug("%s already unmounted; skipping", path)
                self._mounts.pop()
                continue

            try:
                unmount_command = wrapped_command(f"umount {shlex.quote(path)}")
            except CommandWrapperError as exc:
                raise MountError(f"Error creating unmount command: {exc}") from exc

            result = self._execute(unmount_command)
            if result is None or not result.ok:
                stderr = result.stderr if result is not None else ""
                status = result.returncode if result is not None else "unknown"
                raise MountError(f"Error unmounting device: exit status {status}\nStderr: {stderr}")

            self._mounts.pop()
            logger.debug("Unmounted %s", path)

        self._mounts = None

    def _execute(self, command: str) -> CommandResult | None:
        try:
            return self._run_command(command)
        except OSError:
            logger.exception("Failed to execute command: %s", command)
            return None


def _build(cfg: ConfigNamespace, *, name: str) -> StepMountExtra:
    rows = cfg.get_str_rows(
        "chroot_mounts",
        width=3,
        default=[list(row) for row in DEFAULT_CHROOT_MOUNTS],
    )
    return StepMountExtra(rows, name=name)


STEP = StepRef(
    id=KIND_ID,
    builder=_build,
    doc="Mount extra filesystems (proc, sysfs, /dev, ...) under the build root; unmount in reverse.",
)
