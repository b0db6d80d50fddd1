"""Inheritable property registry for builder classes.

Each builder class owns one `PropertyRegistry` layer. Layers are linked to the
layers of the parent classes; defaults are merged once, most general first and
most specific last, when an instance is constructed.
"""

from __future__ import annotations

import copy
from typing import Any, Mapping, MutableMapping, Sequence

CONFIG_KEY = "config"


class PropertyRegistry:
    def __init__(self, owner: str, parents: Sequence["PropertyRegistry"] = ()) -> None:
        if not isinstance(owner, str) or not owner.strip():
            raise TypeError("PropertyRegistry.owner must be a non-empty string")
        self.owner = owner.strip()
        self._parents = tuple(parents)
        self._defaults: dict[str, Any] = {}
        self._lists: list[str] = []
        self._dicts: list[str] = []

    def __repr__(self) -> str:
        return f"PropertyRegistry(owner={self.owner!r}, properties={len(self._defaults)})"

    def lineage(self) -> tuple["PropertyRegistry", ...]:
        """This layer followed by its ancestors (depth-first, parents in order, no repeats)."""

        out: list[PropertyRegistry] = []
        seen: set[int] = set()
        stack: list[PropertyRegistry] = [self]
        while stack:
            current = stack.pop(0)
            if id(current) in seen:
                continue
            seen.add(id(current))
            out.append(current)
            stack[0:0] = [p for p in current._parents if id(p) not in seen]
        return tuple(out)

    def declared(self) -> tuple[str, ...]:
        return tuple(self._defaults)

    def valid_property(self, name: str) -> bool:
        return any(name in layer._defaults for layer in self.lineage())

    def owner_of(self, name: str) -> str | None:
        for layer in self.lineage():
            if name in layer._defaults:
                return layer.owner
        return None

    def add(self, name: str, default: Any = None) -> None:
        if not isinstance(name, str) or not name.strip():
            raise TypeError("Property name must be a non-empty string")
        name = name.strip()
        if self.valid_property(name):
            raise ValueError(f"Property '{name}' already exists (declared by {self.owner_of(name)})")

        self._defaults[name] = default
        if isinstance(default, list):
            self._lists.append(name)
        elif isinstance(default, dict):
            self._dicts.append(name)

    def defaults(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for layer in reversed(self.lineage()):
            out.update(layer._defaults)
        return out

    def valid_properties(self) -> tuple[str, ...]:
        return tuple(sorted(self.defaults()))

    def array_properties(self) -> tuple[str, ...]:
        names: list[str] = []
        for layer in self.lineage():
            names.extend(n for n in layer._lists if n not in names)
        return tuple(names)

    def hash_properties(self) -> tuple[str, ...]:
        names: list[str] = []
        for layer in self.lineage():
            names.extend(n for n in layer._dicts if n not in names)
        return tuple(names)

    def initialize(self, values: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
        """Fill every registered property missing from `values` with its default.

        Container defaults are deep-copied so no instance shares mutable state
        with another instance or with the registry.
        """

        for name, default in self.defaults().items():
            if name in values:
                continue
            if isinstance(default, (list, dict)):
                values[name] = copy.deepcopy(default)
            else:
                values[name] = default
        return values

    def merge_args(
        self,
        props: MutableMapping[str, Any],
        args: MutableMapping[str, Any],
        config: MutableMapping[str, Any],
        incoming: Mapping[str, Any],
    ) -> list[str]:
        """Route incoming key/value pairs into config, properties or the free-form args bag.

        Returns the names of recognized properties that were set.
        """

        additive = set(self.hash_properties())
        touched: list[str] = []

        for key, value in incoming.items():
            if key == CONFIG_KEY and isinstance(value, Mapping):
                config.update(value)
                touched.append(key)
                continue

            if key in additive:
                if value is None:
                    continue
                if not isinstance(value, Mapping):
                    raise TypeError(f"Property '{key}' expects a mapping (type={type(value).__name__})")
                target = props.get(key)
                if not isinstance(target, dict):
                    target = {}
                    props[key] = target
                target.update(value)
                touched.append(key)
            elif self.valid_property(key):
                props[key] = value
                touched.append(key)
            else:
                args[key] = value

        return touched

    def child(self, owner: str) -> "PropertyRegistry":
        return PropertyRegistry(owner, parents=(self,))


class PropertyAccessor:
    """Attribute accessor generated for a registered property."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = self.name or name

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance.props.get(self.name)

    def __set__(self, instance: Any, value: Any) -> None:
        instance.props[self.name] = value
