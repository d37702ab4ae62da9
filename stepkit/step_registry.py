from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from stepkit.config_namespace import ConfigNamespace
from stepkit.engine.step import Step


class StepBuilder(Protocol):
    def __call__(self, cfg: ConfigNamespace, *, name: str) -> Step:
        ...


@dataclass(frozen=True)
class StepRef:
    id: str
    builder: StepBuilder
    doc: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise TypeError("StepRef.id must be a non-empty string")
        object.__setattr__(self, "id", self.id.strip())
        if not callable(self.builder):
            raise TypeError(f"StepRef.builder must be callable (step={self.id})")
        if self.doc is not None and (not isinstance(self.doc, str) or not self.doc.strip()):
            raise TypeError("StepRef.doc must be a non-empty string or None")

    def build(self, cfg: ConfigNamespace, *, name: str) -> Step:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("name must be a non-empty string")

        step = self.builder(cfg, name=name.strip())
        for method in ("run", "cleanup"):
            if not callable(getattr(step, method, None)):
                raise TypeError(
                    f"Step builder returned object without {method}() (step={self.id}, type={type(step).__name__})"
                )
        cfg.assert_consumed()
        return step


@dataclass(frozen=True)
class StepRegistry:
    _by_id: dict[str, StepRef]

    @classmethod
    def from_refs(cls, refs: Iterable[StepRef]) -> "StepRegistry":
        entries: dict[str, StepRef] = {}
        for ref in refs:
            if ref.id in entries:
                raise ValueError(f"Duplicate step type id: {ref.id}")
            entries[ref.id] = ref
        return cls(_by_id=entries)

    def available(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_id.keys()))

    def describe(self) -> tuple[dict[str, Any], ...]:
        return tuple(
            {"step_type": ref.id, "doc": ref.doc}
            for ref in sorted(self._by_id.values(), key=lambda r: r.id)
        )

    def get(self, step_type: str) -> StepRef:
        key = (step_type or "").strip()
        ref = self._by_id.get(key)
        if ref is None:
            available = ", ".join(self.available()) or "<none>"
            suggestions = self.suggest(key)
            hint = f"; did you mean: {', '.join(suggestions)}" if suggestions else ""
            raise ValueError(f"Unknown step type: {step_type} (available: {available}{hint})")
        return ref

    def suggest(self, step_type: str, *, limit: int = 3) -> tuple[str, ...]:
        key = (step_type or "").strip()
        if not key:
            return ()
        return tuple(difflib.get_close_matches(key, list(self.available()), n=limit))

    def build(self, step_type: str, cfg: ConfigNamespace, *, name: str) -> Step:
        return self.get(step_type).build(cfg, name=name)
