import json
import logging
import os
import sys

import pytest

from buildkit.actions import ActionRef
from buildkit.errors import BuildError
from distbuild import __version__
from distbuild.builder import Builder
from distbuild.platforms import Unix, Windows, builder_class_for
from conftest import FakeInspector


def test_new_configures_identity_and_install_paths(make_builder, project):
    builder = make_builder()

    assert builder.action == "configure"
    assert builder.dist_name() == "foo"
    assert builder.dist_version() == "1.2"
    assert builder.props["dist_version_from"] == "lib/foo/__init__.py"
    assert builder.props["base_dir"] == str(project)
    assert builder.props["python"] == sys.executable
    assert builder.props["build_class"] == "distbuild.platforms.Unix"
    assert set(builder.props["install_sets"]) == {"core", "site", "vendor"}
    assert builder.blib == "blib"


def test_dotted_module_name_gives_dashed_dist_name(make_builder, project):
    (project / "lib" / "foo" / "sub.py").write_text('VERSION = "0.3"\n', encoding="utf-8")
    builder = make_builder(module_name="foo.sub")
    assert builder.dist_name() == "foo-sub"
    assert builder.dist_version() == "0.3"


def test_explicit_version_from(make_builder, project):
    (project / "VERSION.py").write_text('__version__ = "7.1"\n', encoding="utf-8")
    builder = make_builder(dist_version_from="VERSION.py", dist_name="Foo-Bar")
    assert builder.dist_name() == "Foo-Bar"
    assert builder.dist_version() == "7.1"


def test_missing_identity_is_fatal(make_builder):
    with pytest.raises(BuildError, match="Can't determine distribution name"):
        make_builder(module_name="")
    with pytest.raises(BuildError, match="Can't find file lib/nothere.py to determine version"):
        make_builder(module_name="nothere")


def test_scalar_for_mapping_property_is_a_build_error(make_builder):
    with pytest.raises(BuildError, match=r"Property 'requires' expects a mapping \(type=str\)"):
        make_builder(requires="Foo")

    builder = make_builder()
    with pytest.raises(BuildError, match=r"Property 'recommends' expects a mapping"):
        builder.merge_args(None, {"recommends": ["Foo"]})


def test_action_on_configure_is_rejected(make_builder):
    with pytest.raises(BuildError, match=r"Too early to specify a build action 'test'.  Run 'distbuild test' instead."):
        make_builder(["test"])


def test_command_line_routes_properties_and_args(make_builder):
    builder = make_builder(["verbose=1", "--requires", "Bar=2", "custom=yes"])

    assert builder.props["verbose"] == "1"
    assert builder.props["requires"] == {"Bar": "2"}
    assert builder.args["custom"] == "yes"
    assert builder.args["ARGV"] == []
    assert builder.runtime_params("verbose") == "1"
    assert builder.runtime_params("custom") is None


def test_synonyms_and_flag_splitting(make_builder):
    builder = make_builder(
        prereq={"Bar": "1"},
        scripts=["bin/foo-run"],
        extra_compiler_flags="-O2 -Wall",
        dist_author="Someone",
    )
    assert builder.props["requires"] == {"Bar": "1"}
    assert builder.script_files() == {"bin/foo-run": True}
    assert builder.props["extra_compiler_flags"] == ["-O2", "-Wall"]
    assert builder.props["dist_author"] == ["Someone"]


def test_prereq_report_is_logged_but_not_fatal_on_configure(make_builder, caplog):
    with caplog.at_level(logging.WARNING):
        builder = make_builder(requires={"Missing": "1.0"}, recommends={"Nice": "2"})

    assert " * ERROR: Prerequisite Missing isn't installed" in caplog.text
    assert " * Optional prerequisite Nice isn't installed" in caplog.text
    assert "ERRORS/WARNINGS FOUND IN PREREQUISITES" in caplog.text
    assert set(builder.prereq_failures()) == {"requires", "recommends"}


def test_action_prereqs_gate_dispatch(make_builder, services):
    builder = make_builder(test_requires={"Missing": "1.0"})

    with pytest.raises(BuildError, match=r"Aborting 'test' action"):
        builder.dispatch("test")

    builder.dispatch("test", ignore_prereq_requires=True)
    assert len(services.harness.runs) == 1


def test_ignore_prereqs_skips_every_check(make_builder, services):
    builder = make_builder(test_conflicts={"python": "0"}, ignore_prereqs=True)
    builder.dispatch("test")
    assert len(services.harness.runs) == 1


def test_build_requires_only_warn(make_builder, caplog):
    builder = make_builder(build_requires={"Missing": "1"})
    with caplog.at_level(logging.WARNING):
        builder.dispatch("build")
    assert "Ignoring for backwards compatibility" in caplog.text


def test_auto_features_follow_prerequisites(make_builder, services, caplog):
    with caplog.at_level(logging.INFO):
        builder = make_builder(
            auto_features={"speedups": {"requires": {"Fast": "2"}}},
            features={"manual": True},
        )

    assert "Feature 'speedups' disabled" in caplog.text
    assert builder.feature("speedups") is False
    assert builder.feature("manual") is True
    assert builder.feature() == {"speedups": False, "manual": True}

    services.inspector.modules["Fast"] = "2.1"
    assert builder.feature("speedups") is True

    builder.feature("speedups", False)
    assert builder.feature("speedups") is False


def test_notes_accessors(make_builder):
    builder = make_builder(notes={"color": "blue"})
    assert builder.notes("color") == "blue"
    builder.notes("size", 3)
    assert builder.notes() == {"color": "blue", "size": 3}
    assert not builder.has_config_data()
    builder.config_data("answer", 42)
    assert builder.has_config_data()


def test_write_config_and_resume(make_builder, project, services, logger):
    builder = make_builder(["verbose=1"], config_data={"answer": 42})
    builder.create_build_config()

    assert (project / "_build" / "build_params.json").exists()
    assert (project / "_build" / "prereqs.json").exists()
    assert (project / "_build" / "config_data.json").exists()

    resumed = Builder.resume(str(project), ["test", "quiet=1"], logger=logger, services=services)

    assert type(resumed) is Unix
    assert resumed.action == "test"
    assert resumed.props["verbose"] == "1"
    assert resumed.props["quiet"] == "1"
    assert resumed.config_data("answer") == 42
    assert resumed.dist_version() == "1.2"


def test_resume_defaults_to_build_action(make_builder, project, services, logger):
    make_builder().create_build_config()
    resumed = Unix.resume(str(project), [], logger=logger, services=services)
    assert resumed.action == "build"


def test_resume_rejects_other_engine_version(make_builder, project, services, logger):
    make_builder().create_build_config()
    params = project / "_build" / "build_params.json"
    payload = json.loads(params.read_text(encoding="utf-8"))
    payload[2]["engine_version"] = "0.0.0"
    params.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(BuildError, match=r"Configuration was initially created with distbuild version '0.0.0'"):
        Unix.resume(str(project), [], logger=logger, services=services)
    assert __version__ != "0.0.0"


def test_resume_warns_about_other_interpreter(make_builder, project, services, logger, caplog):
    make_builder(python="/nonexistent/python").create_build_config()
    with caplog.at_level(logging.WARNING):
        Unix.resume(str(project), [], logger=logger, services=services)
    assert "Configuration was initially created with '/nonexistent/python'" in caplog.text


def test_resume_without_configuration(project, services, logger):
    with pytest.raises(BuildError, match="Can't read"):
        Unix.resume(str(project), [], logger=logger, services=services)


def test_rcfile_options_merge_under_command_line(make_builder, tmp_path, monkeypatch):
    rc = tmp_path / "rc.yaml"
    rc.write_text(
        "'*':\n  verbose: 1\n  install_path:\n    lib: /rc/lib\n"
        "configure:\n  destdir: /rc/stage\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("DISTBUILD_RC", str(rc))

    builder = make_builder(["destdir=/cmd/stage", "install_path=bin=/cmd/bin"])

    assert builder.props["verbose"] == 1
    assert builder.props["destdir"] == "/cmd/stage"
    assert builder.props["install_path"] == {"bin": "/cmd/bin", "lib": "/rc/lib"}
    assert builder.read_rcfile("test") == {"verbose": 1, "install_path": {"lib": "/rc/lib"}}


def test_skip_rcfile(make_builder, tmp_path, monkeypatch):
    rc = tmp_path / "rc.yaml"
    rc.write_text("'*':\n  verbose: 1\n", encoding="utf-8")
    monkeypatch.setenv("DISTBUILD_RC", str(rc))

    builder = make_builder(["--skip-rcfile"])
    assert builder.props["verbose"] is None


def test_override_restores_previous_values(make_builder):
    builder = make_builder()
    with builder.override(debugger=True, brand_new="x"):
        assert builder.debugger is True
        assert builder.props["brand_new"] == "x"
    assert builder.debugger is None
    assert "brand_new" not in builder.props


def test_depends_on_requires_a_dispatch(make_builder):
    with pytest.raises(BuildError, match="outside of a dispatch"):
        make_builder().depends_on("code")


def test_install_destination_uses_builder_properties(make_builder, tmp_path):
    builder = make_builder(install_base=str(tmp_path / "base"), install_path={"script": "/scripts"})
    assert builder.install_destination("lib") == os.path.join(str(tmp_path / "base"), "lib", "python")
    assert builder.install_destination("script") == "/scripts"
    assert "script" in builder.install_types()


def test_bad_installdirs_is_a_build_error(make_builder):
    builder = make_builder(installdirs="nowhere")
    with pytest.raises(BuildError, match="installdirs must be one of"):
        builder.install_destination("lib")


def test_rscan_dir_and_copy_if_modified(make_builder, project):
    builder = make_builder()

    assert builder.rscan_dir("lib", r"\.py$") == [
        os.path.join("lib", "foo", "__init__.py"),
        os.path.join("lib", "foo", "util.py"),
    ]
    assert os.path.join("lib", "foo") in builder.rscan_dir("lib", lambda path: not path.endswith(".py"))

    copied = builder.copy_if_modified("lib/foo/util.py", to_dir="stage", flatten=True)
    assert copied == os.path.join("stage", "util.py")
    assert (project / "stage" / "util.py").exists()
    assert builder.copy_if_modified("lib/foo/util.py", to_dir="stage", flatten=True) is None

    assert builder.delete_filetree("stage", "not-there") == 1
    assert not (project / "stage").exists()


def test_dir_contains():
    assert Builder.dir_contains("/a/b", "/a/b/c")
    assert not Builder.dir_contains("/a/b", "/a/bc")
    assert not Builder.dir_contains("/a/b/c", "/a/b")


def test_help_lists_actions_and_suggests(make_builder, capsys):
    builder = make_builder()
    builder.dispatch("help")
    out = capsys.readouterr().out
    assert "Actions defined:" in out
    assert "distclean" in out

    builder.dispatch("help", args={"ARGV": ["tset"]})
    out = capsys.readouterr().out
    assert "No known action 'tset'" in out
    assert "test" in out

    assert "Run the 'code' and 'docs' actions." in builder.get_action_docs("build")


def test_unknown_action(make_builder):
    with pytest.raises(BuildError, match=r"No action 'biuld' defined"):
        make_builder().dispatch("biuld")


class Custom(Unix):
    action_layer = (
        ActionRef(name="hello", handler=lambda ctx: ctx.target.notes("greeted", ctx.target.greeting)),
    )


Custom.add_property("greeting", "hi")


def test_subclass_adds_actions_and_properties(make_builder):
    builder = make_builder(klass=Custom, hello_requires={})

    assert "hello" in Custom.known_actions()
    assert "hello" not in Unix.known_actions()
    assert Custom.valid_property("hello_requires")
    assert not Unix.valid_property("greeting")
    assert builder.greeting == "hi"

    builder.dispatch("hello")
    assert builder.notes("greeted") == "hi"
    assert "hello_requires" in builder.prereq_action_types()


def test_subclass_registry_inherits_defaults():
    assert Windows.valid_property("script_launcher_ext")
    assert not Unix.valid_property("script_launcher_ext")
    assert Windows.registry.defaults()["blib"] == "blib"
    assert builder_class_for("nt") is Windows
    assert builder_class_for("win32") is Windows
    assert builder_class_for("posix") is Unix


def test_check_installed_version_through_builder(make_builder, services):
    services.inspector.modules["Bar"] = "3.4"
    builder = make_builder()
    assert builder.check_installed_version("Bar", ">= 3") == "3.4"
    assert not builder.check_installed_status("Bar", "4").ok
    assert isinstance(builder.services.inspector, FakeInspector)


def test_do_system_and_run_python_script(make_builder, project):
    builder = make_builder()
    assert builder.do_system(sys.executable, "-c", "pass")

    (project / "fail.py").write_text("raise SystemExit(3)\n", encoding="utf-8")
    assert builder.run_python_script("fail.py") is False
    assert builder.split_like_shell("a 'b c'") == ["a", "b c"]
