import os
import tarfile

from distbuild.collaborators import ShutilInstaller
from distbuild.platforms import Windows


def test_build_stages_code_scripts_and_docs(make_builder, project):
    builder = make_builder()
    builder.dispatch("build")

    blib = project / "blib"
    assert (blib / "lib" / "foo" / "__init__.py").exists()
    assert (blib / "lib" / "foo" / "util.py").exists()
    assert (blib / "arch").is_dir()

    script = blib / "script" / "foo-run"
    first_line = script.read_text(encoding="utf-8").splitlines()[0]
    assert first_line == f"#!{builder.props['python']}"
    assert os.access(script, os.X_OK)

    if builder.gen_manpages:
        assert (blib / "bindoc" / "foo-run.1").exists()
        assert (blib / "libdoc" / "foo.3").exists()
        assert "Foo package." in (blib / "libdoc" / "foo.3").read_text(encoding="utf-8")

    assert "blib" in builder.cleanup()


def test_code_action_skips_fresh_files(make_builder, project, logger, caplog):
    builder = make_builder()
    builder.dispatch("code")

    caplog.clear()
    with caplog.at_level("INFO", logger=logger.name):
        builder.dispatch("code")
    assert "lib/foo/util.py ->" not in caplog.text


def test_config_data_module_is_written(make_builder, project):
    builder = make_builder(config_data={"answer": 42}, features={"fast": True})
    builder.dispatch("code")

    text = (project / "blib" / "lib" / "foo_config.py").read_text(encoding="utf-8")
    assert "'answer': 42" in text
    assert "'fast': True" in text


def test_test_action_runs_harness_against_blib(make_builder, project, services):
    builder = make_builder()
    builder.dispatch("test", verbose=True)

    (run,) = services.harness.runs
    assert run["files"] == [str(project / "tests" / "test_foo.py")]
    assert run["paths"] == [str(project / "blib" / "lib"), str(project / "blib" / "arch")]
    assert run["verbose"] is True
    assert run["debugger"] is False
    assert builder.props["verbose"] is None


def test_testdb_turns_on_debugger_for_the_test_run(make_builder, services):
    builder = make_builder()
    builder.dispatch("testdb")

    assert services.harness.runs[0]["debugger"] is True
    assert builder.debugger is None


def test_explicit_test_files_and_recursive_discovery(make_builder, project, services):
    (project / "tests" / "deep").mkdir()
    (project / "tests" / "deep" / "test_deep.py").write_text("def test_x():\n    pass\n", encoding="utf-8")
    (project / "test.py").write_text("", encoding="utf-8")

    builder = make_builder()
    assert builder.find_test_files() == ["test.py", os.path.join("tests", "test_foo.py")]

    builder = make_builder(recursive_test_files=True)
    assert builder.find_test_files() == [
        "test.py",
        os.path.join("tests", "deep", "test_deep.py"),
        os.path.join("tests", "test_foo.py"),
    ]

    builder = make_builder(test_files="tests/deep/*.py")
    assert builder.find_test_files() == [os.path.join("tests", "deep", "test_deep.py")]


def test_no_tests_is_not_an_error(make_builder, project, services, logger, caplog):
    (project / "tests" / "test_foo.py").unlink()
    builder = make_builder()
    with caplog.at_level("INFO", logger=logger.name):
        builder.dispatch("test")
    assert services.harness.runs == []
    assert "No tests defined." in caplog.text


def test_c_extensions_are_compiled_and_linked(make_builder, project, services):
    (project / "lib" / "foo" / "speed.c").write_text("int x;\n", encoding="utf-8")
    (project / "csrc").mkdir()
    (project / "csrc" / "helper.c").write_text("int y;\n", encoding="utf-8")

    builder = make_builder(c_source="csrc", extra_compiler_flags="-O2")
    builder.dispatch("code")

    compiled = [os.path.basename(item["source"]) for item in services.compiler.compiled]
    assert compiled == ["helper.c", "speed.c"]
    assert "-O2" in services.compiler.compiled[1]["flags"]
    assert '-DVERSION="1.2"' in services.compiler.compiled[1]["flags"]
    assert str(project / "csrc") in services.compiler.compiled[0]["include_dirs"]

    (link,) = services.compiler.linked
    assert link["dest"] == str(project / "blib" / "arch" / "foo" / "speed.so")
    assert str(project / "csrc" / "helper.o") in link["objects"]
    assert os.path.join("lib", "foo", "speed.o") in builder.cleanup()


def test_relink_passes_each_support_object_once(make_builder, project, services):
    (project / "lib" / "foo" / "speed.c").write_text("int x;\n", encoding="utf-8")
    (project / "csrc").mkdir()
    (project / "csrc" / "helper.c").write_text("int y;\n", encoding="utf-8")

    builder = make_builder(c_source="csrc")
    builder.dispatch("code")

    lib_file = project / "blib" / "arch" / "foo" / "speed.so"
    stale = lib_file.stat().st_mtime - 3600
    os.utime(lib_file, (stale, stale))
    builder.dispatch("code")

    assert len(services.compiler.linked) == 2
    objects = services.compiler.linked[1]["objects"]
    assert objects.count(str(project / "csrc" / "helper.o")) == 1
    assert builder.props["objects"] == [os.path.join("csrc", "helper.o")]
    assert builder.props["include_dirs"] == ["csrc"]


def test_overridden_dispatch_leaves_container_properties_alone(make_builder, project, services):
    (project / "csrc").mkdir()
    (project / "csrc" / "helper.c").write_text("int y;\n", encoding="utf-8")

    builder = make_builder()
    assert builder.props["include_dirs"] == []

    builder.dispatch("code", c_source="csrc")

    assert [os.path.basename(item["source"]) for item in services.compiler.compiled] == ["helper.c"]
    assert builder.props["include_dirs"] == []
    assert builder.props.get("objects") is None
    assert builder.props.get("c_source") is None


def test_install_copies_blib_and_writes_packlist(make_builder, project, services, tmp_path):
    services.installer = ShutilInstaller()
    base = tmp_path / "inst"
    builder = make_builder(install_base=str(base))
    builder.dispatch("install")

    assert (base / "lib" / "python" / "foo" / "__init__.py").exists()
    assert (base / "bin" / "foo-run").exists()

    packlists = list(base.rglob(".packlist"))
    assert len(packlists) == 1
    assert str(base / "lib" / "python" / "foo" / "util.py") in packlists[0].read_text(encoding="utf-8")


def test_fakeinstall_is_a_dry_run(make_builder, services, tmp_path):
    builder = make_builder(install_base=str(tmp_path / "inst"), destdir=str(tmp_path / "stage"))
    builder.dispatch("fakeinstall")

    (call,) = services.installer.calls
    assert call["dry_run"] is True
    assert all(
        dest.startswith(str(tmp_path / "stage")) for key, dest in call["map"].items() if key != "read"
    )


def test_uninst_argument_reaches_installer(make_builder, services):
    builder = make_builder(["uninst=1"], install_base="/tmp/unused")
    builder.dispatch("pure_install")
    assert services.installer.calls[0]["uninstall"] is True


def test_clean_and_realclean(make_builder, project):
    builder = make_builder()
    builder.create_build_config()
    builder.dispatch("code")
    assert (project / "blib").exists()

    builder.dispatch("clean")
    assert not (project / "blib").exists()
    assert (project / "_build").exists()

    builder.dispatch("realclean")
    assert not (project / "_build").exists()


def test_dist_creates_tarball_from_manifest(make_builder, project):
    (project / "MANIFEST").write_text(
        "# files\nlib/foo/__init__.py\nlib/foo/util.py    the helper\nbin/foo-run\n", encoding="utf-8"
    )
    builder = make_builder()
    builder.dispatch("dist")

    tarball = project / "foo-1.2.tar.gz"
    assert tarball.exists()
    assert not (project / "foo-1.2").exists()
    with tarfile.open(tarball, "r:gz") as archive:
        names = archive.getnames()
    assert os.path.join("foo-1.2", "lib", "foo", "util.py") in names
    assert os.path.join("foo-1.2", "bin", "foo-run") in names

    builder.dispatch("distclean")
    assert not tarball.exists()


def test_distdir_uses_dist_files_property(make_builder, project):
    builder = make_builder(dist_files=["lib/foo/__init__.py"])
    builder.dispatch("distdir")
    assert (project / "foo-1.2" / "lib" / "foo" / "__init__.py").exists()
    assert not (project / "foo-1.2" / "bin").exists()


def test_windows_scripts_get_batch_launchers(make_builder, project):
    builder = make_builder(klass=Windows)
    builder.dispatch("code")

    launcher = project / "blib" / "script" / "foo-run.bat"
    text = launcher.read_text(encoding="utf-8")
    assert '"%~dp0foo-run" %*' in text
    assert builder.props["python"] in text
