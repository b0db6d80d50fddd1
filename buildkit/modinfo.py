"""Static module lookup and version inspection.

Modules are located on a search path and their declared version is read with
`ast`, so the inspected code is never executed.
"""

from __future__ import annotations

import ast
import importlib.metadata
import os
import sys
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

VERSION_NAMES: tuple[str, ...] = ("__version__", "VERSION", "version")


@dataclass(frozen=True)
class ModuleResolution:
    name: str
    found: bool
    version: str | None = None
    path: str | None = None


class ModuleInspector(Protocol):
    def resolve(self, name: str) -> ModuleResolution:
        ...


def _literal_version(node: ast.AST) -> str | None:
    if isinstance(node, ast.Constant) and isinstance(node.value, (str, int, float)):
        if isinstance(node.value, bool):
            return None
        return str(node.value)
    if isinstance(node, ast.Tuple) and node.elts:
        parts: list[str] = []
        for elt in node.elts:
            if not isinstance(elt, ast.Constant) or isinstance(elt.value, bool):
                return None
            parts.append(str(elt.value))
        return ".".join(parts)
    return None


def version_from_source(source: str | bytes, *, filename: str = "<unknown>") -> str | None:
    """Return the first literal `__version__`/`VERSION` assignment at module level.

    Bytes are decoded by the parser, which honours a PEP 263 coding cookie.
    """

    try:
        tree = ast.parse(source, filename=filename)
    except (SyntaxError, UnicodeDecodeError):
        return None

    for node in tree.body:
        targets: list[ast.expr] = []
        value: ast.AST | None = None
        if isinstance(node, ast.Assign):
            targets = list(node.targets)
            value = node.value
        elif isinstance(node, ast.AnnAssign) and node.value is not None:
            targets = [node.target]
            value = node.value
        else:
            continue

        for target in targets:
            if isinstance(target, ast.Name) and target.id in VERSION_NAMES:
                version = _literal_version(value)
                if version is not None:
                    return version
    return None


def version_from_file(path: str | os.PathLike[str]) -> str | None:
    with open(path, "rb") as handle:
        return version_from_source(handle.read(), filename=str(path))


def module_relpaths(name: str) -> tuple[str, str]:
    parts = [part for part in name.split(".") if part]
    if not parts:
        raise ValueError(f"Invalid module name: {name!r}")
    return (
        os.path.join(*parts) + ".py",
        os.path.join(*parts, "__init__.py"),
    )


def find_module_by_name(name: str, search_path: Iterable[str]) -> str | None:
    module_file, package_init = module_relpaths(name)
    for entry in search_path:
        if not entry or not os.path.isdir(entry):
            continue
        for rel in (package_init, module_file):
            candidate = os.path.join(entry, rel)
            if os.path.isfile(candidate):
                return candidate
    return None


class StaticModuleInspector:
    """Resolve modules from source files on a search path, falling back to
    installed distribution metadata for modules without readable source."""

    def __init__(
        self,
        search_path: Sequence[str] | None = None,
        *,
        use_metadata: bool = True,
    ) -> None:
        self._search_path = tuple(search_path) if search_path is not None else None
        self._use_metadata = use_metadata

    @property
    def search_path(self) -> tuple[str, ...]:
        if self._search_path is not None:
            return self._search_path
        return tuple(entry or os.getcwd() for entry in sys.path)

    def resolve(self, name: str) -> ModuleResolution:
        path = find_module_by_name(name, self.search_path)
        if path is not None:
            version = version_from_file(path)
            if version is None:
                version = self._metadata_version(name)
            return ModuleResolution(name=name, found=True, version=version, path=path)

        version = self._metadata_version(name)
        if version is not None:
            return ModuleResolution(name=name, found=True, version=version)
        return ModuleResolution(name=name, found=False)

    def _metadata_version(self, name: str) -> str | None:
        if not self._use_metadata:
            return None
        top_level = name.split(".", 1)[0]
        try:
            return importlib.metadata.version(top_level)
        except importlib.metadata.PackageNotFoundError:
            return None
