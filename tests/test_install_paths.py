import os

import pytest

from buildkit.paths import (
    InstallPaths,
    build_install_sets,
    build_original_prefix,
    default_install_config,
)


def _paths(**kwargs):
    return InstallPaths(
        install_sets={
            "site": {
                "lib": "/usr/local/lib/perl5",
                "arch": "/usr/local/lib/perl5/arch",
                "bin": "/usr/local/bin",
                "script": "/usr/local/bin",
                "bindoc": "/usr/local/man/man1",
                "libdoc": None,
                "binhtml": None,
                "libhtml": None,
            }
        },
        original_prefix={"core": "/usr", "site": "/usr/local", "vendor": ""},
        install_base_relpaths={"lib": ["lib", "python"], "arch": ["lib", "python", "arch"], "bin": ["bin"]},
        prefix_relpaths={"site": {"lib": ["lib", "site-packages"], "bin": ["bin"]}},
        **kwargs,
    )


def test_prefixify_relocates_matching_prefix():
    paths = _paths(prefix="/opt/foo")
    assert paths.prefixify("/usr/local/lib/perl5", "/usr/local", "lib") == "/opt/foo/lib/perl5"


def test_prefixify_empty_path_uses_type_default():
    paths = _paths(prefix="/opt/foo")
    assert paths.prefixify("", "/usr/local", "lib") == os.path.join("/opt/foo", "lib", "site-packages")
    assert paths.prefixify(None, "/usr/local", "libhtml") == "/opt/foo"


def test_prefixify_unrelated_path_falls_back_to_default():
    paths = _paths(prefix="/opt/foo")
    assert paths.prefixify("/elsewhere/bin", "/usr/local", "bin") == os.path.join("/opt/foo", "bin")


def test_prefixify_leaves_relative_and_same_prefix_paths_alone():
    paths = _paths(prefix="/usr/local")
    assert paths.prefixify("relative/lib", "/usr/local", "lib") == "relative/lib"
    assert paths.prefixify("/usr/local/lib/perl5", "/usr/local", "lib") == "/usr/local/lib/perl5"


def test_prefixify_requires_word_boundary():
    paths = _paths(prefix="/opt/foo")
    assert paths.prefixify("/usr/localstuff/lib", "/usr/local", "lib") == os.path.join(
        "/opt/foo", "lib", "site-packages"
    )


def test_install_destination_precedence():
    paths = _paths(
        install_path={"lib": "/explicit/lib"},
        install_base="/base",
        prefix="/opt/foo",
    )
    assert paths.install_destination("lib") == "/explicit/lib"
    assert paths.install_destination("bin") == os.path.join("/base", "bin")

    paths = _paths(prefix="/opt/foo")
    assert paths.install_destination("bin") == "/opt/foo/bin"

    paths = _paths()
    assert paths.install_destination("bin") == "/usr/local/bin"
    assert paths.install_destination("libdoc") is None


def test_install_types_filters_docs():
    paths = _paths(install_path={"extra": "/x"})
    assert "extra" in paths.install_types()
    assert "binhtml" not in paths.install_types(html=False)
    assert "bindoc" not in paths.install_types(manpages=False)


def test_install_map_stages_under_destdir(tmp_path):
    blib = tmp_path / "blib"
    (blib / "lib").mkdir(parents=True)
    (blib / "libdoc").mkdir()

    paths = _paths(destdir=str(tmp_path / "stage"))
    mapping = paths.install_map(str(blib), packlist_parts=["Foo", "Bar"])

    assert mapping[str(blib / "lib")] == os.path.join(str(tmp_path / "stage"), "usr/local/lib/perl5")
    assert str(blib / "libdoc") not in mapping
    assert mapping["write"] == os.path.join(
        str(tmp_path / "stage"), "usr/local/lib/perl5/arch", "auto", "Foo", "Bar", ".packlist"
    )
    assert mapping["read"] == ""


def test_install_map_rejects_unknown_destination(tmp_path):
    blib = tmp_path / "blib"
    (blib / "binhtml").mkdir(parents=True)
    with pytest.raises(ValueError, match="Can't figure out where to install things of type 'binhtml'"):
        _paths().install_map(str(blib))


def test_installdirs_must_be_known():
    with pytest.raises(ValueError, match="installdirs must be one of"):
        _paths(installdirs="elsewhere")


def test_install_sets_from_platform_config():
    config = default_install_config()
    sets = build_install_sets(config)
    assert set(sets) == {"core", "site", "vendor"}
    assert sets["site"]["lib"]
    assert build_original_prefix(config)["site"] == config["siteprefix"]


def test_from_config_builds_relocatable_paths():
    config = {
        "installsitelib": "/usr/local/lib/python3.11/site-packages",
        "installsitebin": "/usr/local/bin",
        "siteprefix": "/usr/local",
        "installstyle": "lib/python3.11",
        "version": "3.11",
        "archname": "linux-x86_64",
    }
    paths = InstallPaths.from_config(config, prefix="/opt/app")

    assert paths.install_destination("lib") == "/opt/app/lib/python3.11/site-packages"
    assert paths.install_destination("bin") == "/opt/app/bin"
    assert paths.prefix_relpath("site", "arch") == os.path.join("lib", "python3.11", "site-packages", "3.11", "linux-x86_64")
    assert paths.install_base_relpath("arch") == os.path.join("lib", "python", "linux-x86_64")
