"""Build front end: config file to steps, steps to runner, result to exit code.

Produces (before the first step runs):
  ui -- where steps report progress and errors.
  wrapped_command -- the configured `command_wrapper` template.
  mount_path -- only when configured.
"""

from __future__ import annotations

import logging
import signal
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping

from stepkit.config_namespace import ConfigNamespace
from stepkit.engine.runner import Runner, RunResult
from stepkit.engine.state import StateBag
from stepkit.engine.step import CancelToken, Step
from stepkit.step_registry import StepRegistry

from imagebuild.foundation.commands import DEFAULT_COMMAND_TEMPLATE, template_wrapper
from imagebuild.foundation.config_io import load_config
from imagebuild.foundation.logging_utils import close_logger, setup_operational_logger
from imagebuild.foundation.ui import LoggerUi, Ui
from imagebuild.framework.state_keys import put_mount_path, put_ui, put_wrapped_command
from imagebuild.steps.registry import get_step_registry

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


@dataclass(frozen=True)
class BuildConfig:
    command_wrapper: str = DEFAULT_COMMAND_TEMPLATE
    mount_path: str | None = None
    log_dir: str = "logs"
    steps: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BuildConfig":
        cfg = ConfigNamespace(data, path="")
        parsed = cls(
            command_wrapper=cfg.get_str("command_wrapper", default=DEFAULT_COMMAND_TEMPLATE),
            mount_path=cfg.get_str("mount_path", default=None),
            log_dir=cfg.get_str("log_dir", default="logs"),
            steps=tuple(cfg.get_list_mapping("steps")),
        )
        cfg.assert_consumed()
        if not parsed.mount_path and any(s.get("type") == "mount_extra" for s in parsed.steps):
            raise ValueError("mount_path is required when a mount_extra step is configured")
        return parsed


def build_steps(step_cfgs: tuple[dict[str, Any], ...], registry: StepRegistry) -> list[Step]:
    steps: list[Step] = []
    for index, raw in enumerate(step_cfgs):
        path = f"steps[{index}]"
        header = ConfigNamespace(
            {k: v for k, v in raw.items() if k in ("type", "name")}, path=path
        )
        step_type = header.get_str("type")
        name = header.get_str("name", default=step_type)
        body = ConfigNamespace({k: v for k, v in raw.items() if k not in ("type", "name")}, path=path)
        steps.append(registry.build(step_type, body, name=name))
    return steps


@contextmanager
def cancel_on_signals(token: CancelToken, logger: logging.Logger) -> Iterator[None]:
    """Translate SIGINT/SIGTERM into a cooperative cancel for the duration of a build."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, _frame: Any) -> None:
        logger.warning("Received %s; cancelling build", signal.Signals(signum).name)
        token.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def run_build(
    cfg: BuildConfig,
    *,
    logger: logging.Logger,
    ui: Ui | None = None,
    registry: StepRegistry | None = None,
    ctx: CancelToken | None = None,
    install_signal_handlers: bool = True,
) -> tuple[int, RunResult]:
    ui = ui or LoggerUi(logger)
    steps = build_steps(cfg.steps, registry or get_step_registry())
    token = ctx or CancelToken()

    state = StateBag()
    put_ui(state, ui)
    put_wrapped_command(state, template_wrapper(cfg.command_wrapper))
    if cfg.mount_path:
        put_mount_path(state, cfg.mount_path)

    runner = Runner(steps, logger=logger)
    logger.info("Running %d step(s): %s", len(steps), ", ".join(runner.step_names) or "<none>")

    if install_signal_handlers:
        with cancel_on_signals(token, logger):
            result = runner.run(state, token)
    else:
        result = runner.run(state, token)

    if result.cancelled:
        ui.error("Build was cancelled.")
        return EXIT_CANCELLED, result
    if result.error is not None:
        ui.error(f"Build errored: {result.error}")
        return EXIT_ERROR, result
    if result.halted:
        ui.error("Build halted.")
        return EXIT_ERROR, result

    ui.say("Build finished.")
    return EXIT_OK, result


def main(config_path: str | None = None) -> int:
    raw_cfg, cfg_meta = load_config(config_path)
    cfg = BuildConfig.from_dict(raw_cfg)

    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    build_id = f"{stamp}_{uuid.uuid4().hex[:8]}"
    logger, _log_file = setup_operational_logger(cfg.log_dir, build_id)
    try:
        logger.info("Loaded config (%s): %s", cfg_meta["mode"], ", ".join(cfg_meta["paths"]))
        exit_code, _result = run_build(cfg, logger=logger)
        return exit_code
    finally:
        close_logger(logger)
