"""Strict, step-owned configuration namespace helper for `stepkit`."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_MISSING = object()


def _join_path(parent: str, key: str) -> str:
    if not parent:
        return key
    return f"{parent}.{key}"


@dataclass
class ConfigNamespace:
    """Typed access to one configuration mapping with unknown-key enforcement.

    Every accessor marks its key as consumed; `assert_consumed()` then rejects
    anything the step did not ask for, so typos in build configs fail loudly
    instead of being ignored.
    """

    data: Mapping[str, Any]
    path: str
    _consumed: set[str] = field(default_factory=set, init=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.data, Mapping):
            raise TypeError(
                f"{self.path or '<root>'} must be a mapping (type={type(self.data).__name__})"
            )

    def assert_consumed(self) -> None:
        unknown = sorted(str(k) for k in self.data.keys() if k not in self._consumed)
        if unknown:
            path = self.path or "<root>"
            consumed = ", ".join(sorted(self._consumed)) or "<none>"
            raise ValueError(
                f"Unknown config keys under {path}: {', '.join(unknown)} (consumed: {consumed})"
            )

    def _key_path(self, key: str) -> str:
        return _join_path(self.path, key.strip())

    def _get_raw(self, key: str, *, default: Any) -> Any:
        if not isinstance(key, str) or not key.strip():
            raise TypeError("ConfigNamespace key must be a non-empty string")
        normalized = key.strip()
        self._consumed.add(normalized)
        if normalized not in self.data:
            if default is _MISSING:
                raise ValueError(f"Missing required config key: {self._key_path(normalized)}")
            return default
        return self.data.get(normalized)

    def get_bool(self, key: str, *, default: bool | object = _MISSING) -> bool:
        if default is not _MISSING and not isinstance(default, bool):
            raise TypeError(f"{self._key_path(key)} default must be a boolean")

        value = self._get_raw(key, default=default)
        if not isinstance(value, bool):
            raise TypeError(f"{self._key_path(key)} must be a boolean (type={type(value).__name__})")
        return value

    def get_str(
        self,
        key: str,
        *,
        default: str | None | object = _MISSING,
        allow_empty: bool = False,
    ) -> str | None:
        if default is not _MISSING and default is not None and not isinstance(default, str):
            raise TypeError(f"{self._key_path(key)} default must be a string or None")

        raw = self._get_raw(key, default=default)
        if raw is None:
            return None
        if not isinstance(raw, str):
            raise TypeError(f"{self._key_path(key)} must be a string (type={type(raw).__name__})")

        value = raw.strip()
        if not value and not allow_empty:
            raise ValueError(f"{self._key_path(key)} cannot be empty")
        return value

    def get_str_rows(
        self,
        key: str,
        *,
        width: int,
        default: list[list[str]] | object = _MISSING,
        allow_empty: bool = True,
    ) -> list[list[str]]:
        """Parse a list of fixed-width string rows, e.g. `[[kind, source, dest], ...]`."""

        raw = self._get_raw(key, default=default)
        if not isinstance(raw, (list, tuple)):
            raise TypeError(
                f"{self._key_path(key)} must be a list of lists (type={type(raw).__name__})"
            )

        rows: list[list[str]] = []
        for idx, row in enumerate(raw):
            row_path = f"{self._key_path(key)}[{idx}]"
            if not isinstance(row, (list, tuple)):
                raise TypeError(f"{row_path} must be a list (type={type(row).__name__})")
            if len(row) != width:
                raise ValueError(f"{row_path} must have exactly {width} entries (got {len(row)})")
            cells: list[str] = []
            for cell in row:
                if not isinstance(cell, str) or not cell.strip():
                    raise TypeError(f"{row_path} entries must be non-empty strings")
                cells.append(cell.strip())
            rows.append(cells)

        if not rows and not allow_empty:
            raise ValueError(f"{self._key_path(key)} cannot be empty")
        return rows

    def get_list_mapping(
        self,
        key: str,
        *,
        default: list[Mapping[str, Any]] | object = _MISSING,
        allow_empty: bool = False,
    ) -> list[dict[str, Any]]:
        raw = self._get_raw(key, default=default)
        if not isinstance(raw, (list, tuple)):
            raise TypeError(
                f"{self._key_path(key)} must be a list[dict] (type={type(raw).__name__})"
            )

        items: list[dict[str, Any]] = []
        for idx, item in enumerate(raw):
            if not isinstance(item, Mapping):
                raise TypeError(
                    f"{self._key_path(key)}[{idx}] must be a mapping (type={type(item).__name__})"
                )
            items.append(dict(item))

        if not items and not allow_empty:
            raise ValueError(f"{self._key_path(key)} cannot be empty")
        return items
