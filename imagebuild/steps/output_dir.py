"""Create the build output directory and remove it again if the build fails.

Consumes:
  ui -- progress and error messages.
"""

from __future__ import annotations

import logging
import os
import shutil
import time

from stepkit.config_namespace import ConfigNamespace
from stepkit.engine.state import StateBag
from stepkit.engine.step import CancelToken, StepAction
from stepkit.step_registry import StepRef

from imagebuild.framework.state_keys import get_ui, report_error

logger = logging.getLogger(__name__)

KIND_ID = "output_dir"

_PERM_CHECK_NAME = "_imagebuild_perm_check"


class OutputDirExistsError(FileExistsError):
    pass


class StepOutputDir:
    """Creates the build output directory.

    On cleanup the directory is removed only when the build was cancelled or
    halted, and only if this step created it; a successful build keeps it.
    """

    def __init__(
        self,
        path: str,
        *,
        force: bool = False,
        name: str = KIND_ID,
        remove_attempts: int = 5,
        remove_retry_delay: float = 2.0,
    ):
        if not isinstance(path, str) or not path.strip():
            raise ValueError("Output directory path must be a non-empty string")
        if remove_attempts < 1:
            raise ValueError("remove_attempts must be >= 1")
        self.name = name
        self.path = path
        self.force = bool(force)
        self.remove_attempts = int(remove_attempts)
        self.remove_retry_delay = float(remove_retry_delay)
        self._success = False

    def run(self, ctx: CancelToken, state: StateBag) -> StepAction:
        ui = get_ui(state)

        ui.say("Creating output directory...")
        if os.path.exists(self.path):
            if not self.force:
                report_error(
                    state,
                    ui,
                    OutputDirExistsError(
                        f"Output directory exists: {self.path}\n\n"
                        "Use the force flag to delete it prior to building."
                    ),
                )
                return StepAction.HALT

            ui.say("Deleting previous output directory...")
            try:
                if os.path.isdir(self.path) and not os.path.islink(self.path):
                    shutil.rmtree(self.path)
                else:
                    os.remove(self.path)
            except OSError as exc:
                report_error(state, ui, exc)
                return StepAction.HALT

        try:
            os.makedirs(self.path, mode=0o755, exist_ok=True)
            # Make sure the directory is writable before later steps rely on it.
            check_path = os.path.join(self.path, _PERM_CHECK_NAME)
            with open(check_path, "w", encoding="utf-8"):
                pass
            os.remove(check_path)
        except OSError as exc:
            report_error(state, ui, exc)
            return StepAction.HALT

        self._success = True
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if not self._success:
            return
        if not (state.is_cancelled() or state.is_halted()):
            return

        ui = get_ui(state)
        ui.say("Deleting output directory...")
        for attempt in range(1, self.remove_attempts + 1):
            try:
                shutil.rmtree(self.path)
                break
            except FileNotFoundError:
                break
            except OSError as exc:
                logger.warning(
                    "Error removing output dir %s (attempt %d/%d): %s",
                    self.path,
                    attempt,
                    self.remove_attempts,
                    exc,
                )
                if attempt < self.remove_attempts:
                    time.sleep(self.remove_retry_delay)
        else:
            ui.error(f"Could not remove output directory: {self.path}")
        self._success = False


def _build(cfg: ConfigNamespace, *, name: str) -> StepOutputDir:
    path = cfg.get_str("path")
    force = cfg.get_bool("force", default=False)
    return StepOutputDir(path, force=force, name=name)


STEP = StepRef(
    id=KIND_ID,
    builder=_build,
    doc="Create the output directory; remove it again if the build is cancelled or halted.",
)
