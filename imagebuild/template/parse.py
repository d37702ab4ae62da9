"""Decode a JSON build template into typed configuration objects.

Steps never see the raw document: they receive the `Builder`/`Provisioner`
configuration mappings produced here.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import IO, Any

ROOT_KEYS: tuple[str, ...] = (
    "builders",
    "description",
    "min_packer_version",
    "post-processors",
    "provisioners",
    "push",
    "variables",
)

_PROVISIONER_META_KEYS = ("except", "only", "override", "pause_before", "type")

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class TemplateError(ValueError):
    """One or more problems found while decoding a template."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        count = len(self.errors)
        header = "1 error occurred:" if count == 1 else f"{count} errors occurred:"
        super().__init__("\n".join([header, *(f"* {err}" for err in self.errors)]))


@dataclass
class Builder:
    name: str
    type: str
    config: dict[str, Any] | None = None


@dataclass
class Provisioner:
    type: str
    except_builders: list[str] = field(default_factory=list)
    only: list[str] = field(default_factory=list)
    override: dict[str, Any] = field(default_factory=dict)
    pause_before: timedelta | None = None
    config: dict[str, Any] | None = None


@dataclass
class Template:
    description: str | None = None
    min_version: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    builders: dict[str, Builder] = field(default_factory=dict)
    provisioners: list[Provisioner] = field(default_factory=list)
    post_processors: list[Any] = field(default_factory=list)
    push: dict[str, Any] = field(default_factory=dict)


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration such as `"1m30s"`, `"500ms"` or `"-2h"`."""

    if not isinstance(value, str):
        raise ValueError(f"invalid duration {value!r}")
    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    seconds = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART_RE.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return timedelta(seconds=sign * seconds)


def _weak_str(value: Any) -> str | None:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _str_list(value: Any, *, label: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"'{label}' must be a list of strings")
    return list(value)


def _decode_builder(index: int, raw: Any, errors: list[str]) -> Builder | None:
    label = f"builder {index + 1}"
    if not isinstance(raw, Mapping):
        errors.append(f"{label}: expected a mapping, got {type(raw).__name__}")
        return None

    name = _weak_str(raw.get("name"))
    builder_type = _weak_str(raw.get("type"))
    if name is None or builder_type is None:
        errors.append(f"{label}: 'name' and 'type' must be strings")
        return None
    if not builder_type:
        errors.append(f"{label}: missing 'type'")
        return None

    config = {k: v for k, v in raw.items() if k not in ("name", "type")}
    return Builder(name=name or builder_type, type=builder_type, config=config or None)


def _decode_provisioner(index: int, raw: Any, errors: list[str]) -> Provisioner | None:
    label = f"provisioner {index + 1}"
    if not isinstance(raw, Mapping):
        errors.append(f"{label}: expected a mapping, got {type(raw).__name__}")
        return None

    try:
        provisioner_type = raw.get("type") or ""
        if not isinstance(provisioner_type, str):
            raise ValueError("'type' must be a string")
        except_builders = _str_list(raw.get("except"), label="except")
        only = _str_list(raw.get("only"), label="only")
        override = raw.get("override") or {}
        if not isinstance(override, Mapping):
            raise ValueError("'override' must be a mapping")
        pause_raw = raw.get("pause_before")
        pause_before = parse_duration(pause_raw) if pause_raw not in (None, "") else None
    except ValueError as exc:
        errors.append(f"{label}: {exc}")
        return None

    if not provisioner_type:
        errors.append(f"{label}: missing 'type'")
        return None

    config = {k: v for k, v in raw.items() if k not in _PROVISIONER_META_KEYS}
    return Provisioner(
        type=provisioner_type,
        except_builders=except_builders,
        only=only,
        override=dict(override),
        pause_before=pause_before,
        config=config or None,
    )


def _expect(raw: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise TemplateError(
            [f"'{key}' expected type '{kind.__name__}', got '{type(value).__name__}'"]
        )
    return value


def decode_template(raw: Any) -> Template:
    if not isinstance(raw, Mapping):
        raise TemplateError([f"template must be a JSON object, got {type(raw).__name__}"])

    normalized: dict[str, Any] = {}
    unused: list[str] = []
    for key, value in raw.items():
        lowered = str(key).lower()
        if lowered in ROOT_KEYS:
            normalized[lowered] = value
        else:
            unused.append(str(key))
    if unused:
        raise TemplateError(
            [f"Unknown root level key in template: '{key}'" for key in sorted(unused)]
        )

    template = Template(
        description=_expect(normalized, "description", str, None),
        min_version=_expect(normalized, "min_packer_version", str, None),
        variables=dict(_expect(normalized, "variables", Mapping, {})),
        post_processors=list(_expect(normalized, "post-processors", list, [])),
        push=dict(_expect(normalized, "push", Mapping, {})),
    )
    raw_builders = _expect(normalized, "builders", list, [])
    raw_provisioners = _expect(normalized, "provisioners", list, [])

    errors: list[str] = []
    for index, raw_builder in enumerate(raw_builders):
        builder = _decode_builder(index, raw_builder, errors)
        if builder is None:
            continue
        if builder.name in template.builders:
            errors.append(
                f"builder {index + 1}: builder with name '{builder.name}' already exists"
            )
            continue
        template.builders[builder.name] = builder

    for index, raw_provisioner in enumerate(raw_provisioners):
        provisioner = _decode_provisioner(index, raw_provisioner, errors)
        if provisioner is not None:
            template.provisioners.append(provisioner)

    if errors:
        raise TemplateError(errors)
    return template


def parse(stream: IO[str]) -> Template:
    try:
        raw = json.load(stream)
    except json.JSONDecodeError as exc:
        raise TemplateError([f"invalid JSON: {exc}"]) from exc
    return decode_template(raw)


def parse_file(path: str) -> Template:
    with open(path, "r", encoding="utf-8") as handle:
        return parse(handle)
