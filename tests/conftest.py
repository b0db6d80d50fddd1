import logging
import os
from pathlib import Path

import pytest

from buildkit.modinfo import ModuleResolution
from distbuild.collaborators import DocstringDocsGenerator, Services, ShutilInstaller, TarArchiver


class FakeInspector:
    def __init__(self, modules=None):
        self.modules = dict(modules or {})

    def resolve(self, name):
        if name not in self.modules:
            return ModuleResolution(name=name, found=False)
        return ModuleResolution(name=name, found=True, version=self.modules[name])


class FakeCompiler:
    def __init__(self):
        self.compiled = []
        self.linked = []

    def have_compiler(self):
        return True

    def object_file(self, source):
        return os.path.splitext(source)[0] + ".o"

    def lib_file(self, object_file):
        return os.path.splitext(object_file)[0] + ".so"

    def compile(self, source, object_dest, include_dirs=(), flags=()):
        self.compiled.append({"source": source, "include_dirs": list(include_dirs), "flags": list(flags)})
        Path(object_dest).write_text("obj", encoding="utf-8")
        return object_dest

    def link(self, objects, lib_dest, flags=()):
        self.linked.append({"objects": list(objects), "dest": lib_dest})
        os.makedirs(os.path.dirname(lib_dest), exist_ok=True)
        Path(lib_dest).write_text("lib", encoding="utf-8")
        return lib_dest


class RecordingHarness:
    def __init__(self):
        self.runs = []

    def run(self, files, *, python, paths=(), verbose=False, debugger=False):
        self.runs.append(
            {"files": list(files), "python": python, "paths": list(paths), "verbose": verbose, "debugger": debugger}
        )


class RecordingInstaller:
    def __init__(self):
        self.calls = []

    def install(self, install_map, *, verbose=True, dry_run=False, uninstall=False):
        self.calls.append({"map": dict(install_map), "dry_run": dry_run, "uninstall": uninstall})
        return []


@pytest.fixture(autouse=True)
def _isolated_rcfile(tmp_path, monkeypatch):
    monkeypatch.setenv("DISTBUILD_RC", str(tmp_path / "no-such-rcfile.yaml"))
    monkeypatch.delenv("DISTBUILD_CONFIG", raising=False)


@pytest.fixture
def logger():
    log = logging.getLogger("distbuild.tests")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def services():
    return Services(
        inspector=FakeInspector(),
        compiler=FakeCompiler(),
        archiver=TarArchiver(),
        installer=RecordingInstaller(),
        docs=DocstringDocsGenerator(),
        harness=RecordingHarness(),
    )


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "proj"
    (root / "lib" / "foo").mkdir(parents=True)
    (root / "lib" / "foo" / "__init__.py").write_text(
        '"""Foo package."""\n\n__version__ = "1.2"\n', encoding="utf-8"
    )
    (root / "lib" / "foo" / "util.py").write_text(
        'def helper():\n    """Return the answer."""\n    return 42\n', encoding="utf-8"
    )
    (root / "bin").mkdir()
    (root / "bin" / "foo-run").write_text(
        '#!/usr/bin/env python\n"""Run foo."""\nprint("hi")\n', encoding="utf-8"
    )
    (root / "tests").mkdir()
    (root / "tests" / "test_foo.py").write_text("def test_ok():\n    assert True\n", encoding="utf-8")
    return root


@pytest.fixture
def make_builder(project, services, logger):
    from distbuild.platforms import Unix

    def _make(argv=(), klass=Unix, **properties):
        properties.setdefault("module_name", "foo")
        return klass.new(list(argv), base_dir=str(project), logger=logger, services=services, **properties)

    return _make
