from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Protocol

if TYPE_CHECKING:
    from buildkit.dispatch import ActionContext


class ActionHandler(Protocol):
    def __call__(self, ctx: "ActionContext") -> Any:
        ...


@dataclass(frozen=True)
class ActionRef:
    name: str
    handler: ActionHandler
    doc: str | None = None
    source: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise TypeError("ActionRef.name must be a non-empty string")
        name = self.name.strip()
        if not name.replace("_", "").isalnum():
            raise ValueError(f"ActionRef.name must be a word (got {self.name!r})")
        object.__setattr__(self, "name", name)

        if not callable(self.handler):
            raise TypeError(f"Action handler must be callable (type={type(self.handler).__name__})")

        if self.doc is not None:
            if not isinstance(self.doc, str):
                raise TypeError("ActionRef.doc must be a string or None")
            object.__setattr__(self, "doc", self.doc.strip() or None)

        if self.source is None:
            module = getattr(self.handler, "__module__", None) or "<unknown_module>"
            qualname = (
                getattr(self.handler, "__qualname__", None)
                or getattr(self.handler, "__name__", None)
                or "<callable>"
            )
            object.__setattr__(self, "source", f"{module}.{qualname}")

    @property
    def summary(self) -> str | None:
        if not self.doc:
            return None
        return self.doc.splitlines()[0].strip() or None


@dataclass(frozen=True)
class ActionRegistry:
    _by_name: dict[str, ActionRef]

    @classmethod
    def from_refs(cls, refs: Iterable[ActionRef]) -> "ActionRegistry":
        entries: dict[str, ActionRef] = {}
        for ref in refs:
            if ref.name in entries:
                raise ValueError(f"Duplicate action name: {ref.name}")
            entries[ref.name] = ref
        return cls(_by_name=entries)

    @classmethod
    def layered(cls, layers: Iterable[Iterable[ActionRef]]) -> "ActionRegistry":
        """Merge registration layers, most general first; later layers override."""

        entries: dict[str, ActionRef] = {}
        for layer in layers:
            entries.update(cls.from_refs(layer)._by_name)
        return cls(_by_name=entries)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)

    def available(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_name.keys()))

    def describe(self) -> tuple[dict[str, Any], ...]:
        rows: list[dict[str, Any]] = []
        for ref in sorted(self._by_name.values(), key=lambda r: r.name):
            rows.append({"action": ref.name, "doc": ref.doc, "source": ref.source})
        return tuple(rows)

    def find(self, name: str) -> ActionRef | None:
        return self._by_name.get((name or "").strip())

    def get(self, name: str) -> ActionRef:
        ref = self.find(name)
        if ref is None:
            raise ValueError(f"Unknown action: {name}")
        return ref

    def suggest(self, name: str, *, limit: int = 3) -> tuple[str, ...]:
        key = (name or "").strip()
        if not key:
            return ()
        return tuple(difflib.get_close_matches(key, list(self.available()), n=limit))
