"""External tools a build calls into.

Each collaborator is a small protocol plus a plain default implementation.
Failures (`subprocess.CalledProcessError`, `OSError`, `tarfile.TarError`)
propagate unchanged to the action that called them.
"""

from __future__ import annotations

import ast
import filecmp
import html
import logging
import os
import shlex
import shutil
import subprocess
import sysconfig
import tarfile
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Protocol, Sequence

from buildkit.modinfo import ModuleInspector, StaticModuleInspector

PACKLIST_READ_KEY = "read"
PACKLIST_WRITE_KEY = "write"


class Compiler(Protocol):
    def object_file(self, source: str) -> str:
        ...

    def lib_file(self, object_file: str) -> str:
        ...

    def compile(
        self,
        source: str,
        object_dest: str,
        include_dirs: Sequence[str] = (),
        flags: Sequence[str] = (),
    ) -> str:
        ...

    def link(self, objects: Sequence[str], lib_dest: str, flags: Sequence[str] = ()) -> str:
        ...


class Archiver(Protocol):
    def create_archive(self, dest: str, file_list: Sequence[str], *, base_dir: str | None = None) -> str:
        ...


class Installer(Protocol):
    def install(
        self,
        install_map: Mapping[str, str],
        *,
        verbose: bool = True,
        dry_run: bool = False,
        uninstall: bool = False,
    ) -> list[str]:
        ...


class DocsGenerator(Protocol):
    def generate(self, source: str, dest: str) -> str:
        ...


class TestHarness(Protocol):
    def run(
        self,
        files: Sequence[str],
        *,
        python: str,
        paths: Sequence[str] = (),
        verbose: bool = False,
        debugger: bool = False,
    ) -> None:
        ...


def _run(cmd: Sequence[str], logger: logging.Logger, **kwargs) -> subprocess.CompletedProcess:
    logger.info("%s", " ".join(shlex.quote(str(part)) for part in cmd))
    return subprocess.run(list(cmd), check=True, **kwargs)


class CCompiler:
    """Drive the C compiler the running interpreter was built with."""

    def __init__(self, *, cc: Sequence[str] | None = None, logger: logging.Logger | None = None) -> None:
        if cc is None:
            cc = shlex.split(sysconfig.get_config_var("CC") or "cc")
        self.cc = list(cc)
        self.logger = logger or logging.getLogger(__name__)

    def have_compiler(self) -> bool:
        return bool(self.cc) and shutil.which(self.cc[0]) is not None

    def object_file(self, source: str) -> str:
        return os.path.splitext(source)[0] + ".o"

    def lib_file(self, object_file: str) -> str:
        suffix = sysconfig.get_config_var("EXT_SUFFIX") or ".so"
        return os.path.splitext(object_file)[0] + suffix

    def compile(
        self,
        source: str,
        object_dest: str,
        include_dirs: Sequence[str] = (),
        flags: Sequence[str] = (),
    ) -> str:
        includes = [f"-I{path}" for path in include_dirs]
        python_include = sysconfig.get_paths().get("include")
        if python_include:
            includes.append(f"-I{python_include}")
        _run([*self.cc, "-c", "-fPIC", *includes, *flags, source, "-o", object_dest], self.logger)
        return object_dest

    def link(self, objects: Sequence[str], lib_dest: str, flags: Sequence[str] = ()) -> str:
        parent = os.path.dirname(lib_dest)
        if parent:
            os.makedirs(parent, exist_ok=True)
        _run([*self.cc, "-shared", *objects, *flags, "-o", lib_dest], self.logger)
        return lib_dest


class TarArchiver:
    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def create_archive(self, dest: str, file_list: Sequence[str], *, base_dir: str | None = None) -> str:
        """Write a gzipped tarball; member names are relative to `base_dir` when given."""

        self.logger.debug("Archiving %d files into %s", len(file_list), dest)
        with tarfile.open(dest, "w:gz") as archive:
            for path in file_list:
                source = os.path.join(base_dir, path) if base_dir and not os.path.isabs(path) else path
                archive.add(source, arcname=path, recursive=False)
        return dest


def _read_packlist(path: str) -> list[str]:
    if not path or not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as handle:
        return [line.strip() for line in handle if line.strip()]


class ShutilInstaller:
    """Copy staged trees to their destinations and record a packlist."""

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def _files_under(self, root: str) -> Iterable[str]:
        for dirpath, _dirnames, filenames in os.walk(root):
            for filename in sorted(filenames):
                yield os.path.join(dirpath, filename)

    def install(
        self,
        install_map: Mapping[str, str],
        *,
        verbose: bool = True,
        dry_run: bool = False,
        uninstall: bool = False,
    ) -> list[str]:
        packlist = install_map.get(PACKLIST_WRITE_KEY) or ""
        previous = _read_packlist(install_map.get(PACKLIST_READ_KEY) or packlist)
        installed: list[str] = []

        for source_dir, dest_dir in install_map.items():
            if source_dir in (PACKLIST_READ_KEY, PACKLIST_WRITE_KEY):
                continue
            if not os.path.isdir(source_dir):
                continue
            for source in self._files_under(source_dir):
                target = os.path.join(dest_dir, os.path.relpath(source, source_dir))
                installed.append(target)
                if os.path.exists(target) and filecmp.cmp(source, target, shallow=False):
                    if verbose:
                        self.logger.debug("Skip %s (unchanged)", target)
                    continue
                if verbose:
                    self.logger.info("Installing %s", target)
                if dry_run:
                    continue
                os.makedirs(os.path.dirname(target), exist_ok=True)
                shutil.copy2(source, target)

        if uninstall:
            keep = set(installed)
            for stale in previous:
                if stale in keep or not os.path.exists(stale):
                    continue
                if verbose:
                    self.logger.info("Unlinking %s (shadowing)", stale)
                if not dry_run:
                    os.remove(stale)

        if packlist and not dry_run:
            os.makedirs(os.path.dirname(packlist), exist_ok=True)
            with open(packlist, "w", encoding="utf-8") as handle:
                for path in sorted(set(installed)):
                    handle.write(path + "\n")

        return installed


class DocstringDocsGenerator:
    """Render a module's docstrings as a reference page (plain text, or HTML for `.html` targets)."""

    def generate(self, source: str, dest: str) -> str:
        with open(source, "r", encoding="utf-8") as handle:
            tree = ast.parse(handle.read(), filename=source)

        name = os.path.splitext(os.path.basename(source))[0]
        lines = [name, "=" * len(name), ""]
        module_doc = ast.get_docstring(tree)
        if module_doc:
            lines.extend([module_doc, ""])

        for node in tree.body:
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                continue
            if node.name.startswith("_"):
                continue
            doc = ast.get_docstring(node)
            if not doc:
                continue
            kind = "class" if isinstance(node, ast.ClassDef) else "def"
            lines.extend([f"{kind} {node.name}", "", doc, ""])

        text = "\n".join(lines).rstrip() + "\n"
        if dest.endswith(".html"):
            text = (
                f"<html><head><title>{html.escape(name)}</title></head>\n"
                f"<body><pre>\n{html.escape(text)}</pre></body></html>\n"
            )

        parent = os.path.dirname(dest)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(dest, "w", encoding="utf-8") as handle:
            handle.write(text)
        return dest


def contains_docs(path: str) -> bool:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            tree = ast.parse(handle.read(), filename=path)
    except (UnicodeDecodeError, SyntaxError):
        return False
    if ast.get_docstring(tree):
        return True
    return any(
        ast.get_docstring(node)
        for node in tree.body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
    )


class PytestHarness:
    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def run(
        self,
        files: Sequence[str],
        *,
        python: str,
        paths: Sequence[str] = (),
        verbose: bool = False,
        debugger: bool = False,
    ) -> None:
        cmd = [python, "-m", "pytest"]
        if verbose:
            cmd.append("-v")
        if debugger:
            cmd.append("--pdb")
        cmd.extend(files)

        env = dict(os.environ)
        existing = env.get("PYTHONPATH")
        env["PYTHONPATH"] = os.pathsep.join([*paths, *([existing] if existing else [])])
        _run(cmd, self.logger, env=env)


@dataclass
class Services:
    """Collaborators a builder calls into; swap any of them in tests."""

    inspector: ModuleInspector = field(default_factory=StaticModuleInspector)
    compiler: Compiler = field(default_factory=CCompiler)
    archiver: Archiver = field(default_factory=TarArchiver)
    installer: Installer = field(default_factory=ShutilInstaller)
    docs: DocsGenerator = field(default_factory=DocstringDocsGenerator)
    harness: TestHarness = field(default_factory=PytestHarness)
