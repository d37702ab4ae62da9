"""Shell command wrapping and execution.

Every host command a step issues (mount, umount, mount-table probes) goes
through a `CommandWrapper` first so privilege elevation such as
`sudo {{.Command}}` can be injected without the step knowing about it.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import Callable, TypeAlias

logger = logging.getLogger(__name__)

CommandWrapper: TypeAlias = Callable[[str], str]

DEFAULT_COMMAND_TEMPLATE = "{{.Command}}"

_PLACEHOLDER_RE = re.compile(r"\{\{\s*\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
_KNOWN_PLACEHOLDERS = ("Command",)


class CommandWrapperError(ValueError):
    """The wrapped command string could not be constructed."""


@dataclass(frozen=True)
class CommandResult:
    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def identity_wrapper(command: str) -> str:
    return command


def render_command_template(template: str, command: str) -> str:
    if not isinstance(template, str) or not template.strip():
        raise CommandWrapperError("Command template must be a non-empty string")

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in _KNOWN_PLACEHOLDERS:
            raise CommandWrapperError(
                f"Unknown placeholder {{{{.{name}}}}} in command template: {template!r}"
            )
        return command

    rendered = _PLACEHOLDER_RE.sub(_replace, template)
    # Anything still looking like a placeholder is malformed.
    leftover = _PLACEHOLDER_RE.sub("", template)
    if "{{" in leftover or "}}" in leftover:
        raise CommandWrapperError(f"Malformed placeholder in command template: {template!r}")
    return rendered


def template_wrapper(template: str = DEFAULT_COMMAND_TEMPLATE) -> CommandWrapper:
    """Build a wrapper from a template such as `"sudo {{.Command}}"`.

    The template is checked once up front so configuration mistakes surface
    before any step runs.
    """

    render_command_template(template, "true")

    def _wrap(command: str) -> str:
        return render_command_template(template, command)

    return _wrap


def shell_command(command: str) -> list[str]:
    return ["/bin/sh", "-c", command]


def run_shell(command: str) -> CommandResult:
    """Run `command` through `/bin/sh -c`, capturing stdout and stderr."""

    logger.debug("Executing command: %s", command)
    completed = subprocess.run(
        shell_command(command),
        capture_output=True,
        text=True,
        check=False,
    )
    result = CommandResult(
        command=command,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if not result.ok:
        logger.debug("Command exited with status %d: %s", result.returncode, command)
    return result
