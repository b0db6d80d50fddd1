from __future__ import annotations

import json
import os
import pprint
from typing import Any, Iterator, Mapping

_MISSING = object()


class NotesStore:
    """A small persisted mapping backed by one JSON file.

    Values are kept in memory and only hit the disk on `write()`, which is a
    no-op when nothing has changed since the last restore or write.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._data: dict[str, Any] = {}
        self._dirty = False

    def __repr__(self) -> str:
        return f"NotesStore(path={self.path!r}, keys={len(self._data)})"

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def restore(self) -> None:
        with open(self.path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if not isinstance(payload, dict):
            raise ValueError(f"Notes file must contain a JSON object: {self.path}")
        self._data = payload
        self._dirty = False

    def has_data(self) -> bool:
        return bool(self._data)

    def access(self, key: str | None = None, value: Any = _MISSING) -> Any:
        if key is None:
            return dict(self._data)
        if value is not _MISSING:
            self._data[key] = value
            self._dirty = True
            return value
        return self._data.get(key)

    def read(self, key: str | None = None) -> Any:
        if key is None:
            return dict(self._data)
        return self._data.get(key)

    def update(self, values: Mapping[str, Any]) -> None:
        if not values:
            return
        self._data.update(values)
        self._dirty = True

    def write(self, updates: Mapping[str, Any] | None = None) -> None:
        if updates:
            self.update(updates)
        if not self._dirty and os.path.exists(self.path):
            return

        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(self._data, handle, indent=2, sort_keys=True, ensure_ascii=False)
            handle.write("\n")
        self._dirty = False


_CONFIG_MODULE_TEMPLATE = '''"""Build-time configuration recorded for {module}."""

CONFIG_DATA = {config_data}

FEATURES = {features}


def config(key):
    return CONFIG_DATA.get(key)


def feature(key):
    return bool(FEATURES.get(key))
'''


def write_config_module(
    path: str,
    *,
    module: str,
    config_data: Mapping[str, Any],
    features: Mapping[str, Any],
) -> str:
    """Write an importable module exposing config data and resolved features."""

    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    text = _CONFIG_MODULE_TEMPLATE.format(
        module=module,
        config_data=pprint.pformat(dict(config_data), sort_dicts=True),
        features=pprint.pformat({k: bool(v) for k, v in features.items()}, sort_dicts=True),
    )
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(text)
    return path
