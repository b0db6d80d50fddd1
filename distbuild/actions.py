"""Built-in build actions.

Each action is a plain handler taking an `ActionContext`; the builder running
the dispatch is `ctx.target`. Handlers call `ctx.depends_on(...)` for the
actions they need, which runs each of them at most once per dispatch.
"""

from __future__ import annotations

import glob
import os
import shutil
import sys

from buildkit.actions import ActionRef
from buildkit.dispatch import ActionContext
from buildkit.errors import BuildError
from distbuild.foundation.args import ARGV_KEY
from distbuild.foundation.notes import write_config_module


def _help(ctx: ActionContext) -> None:
    builder = ctx.target
    argv = builder.args.get(ARGV_KEY) or []
    if argv:
        print(builder.get_action_docs(argv[0]))
        return

    prog = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "distbuild"
    print(
        f"\n Usage: {prog} <action> arg1=value arg2=value ...\n"
        f" Example: {prog} test verbose=1\n\n"
        " Actions defined:"
    )
    print(builder.action_listing(), end="")
    print(f"\nRun `{prog} help <action>` for details on an individual action.")


def _build(ctx: ActionContext) -> None:
    ctx.depends_on("code")
    ctx.depends_on("docs")


def _code(ctx: ActionContext) -> None:
    builder = ctx.target
    blib = builder.blib
    builder.add_to_cleanup(blib)
    os.makedirs(builder.localize(os.path.join(blib, "arch")), exist_ok=True)

    for element in builder.build_elements or []:
        builder.process_element(element)

    ctx.depends_on("config_data")


def _config_data(ctx: ActionContext) -> None:
    builder = ctx.target
    if not builder.has_config_data():
        return

    module_name = builder.module_name
    if not module_name:
        raise BuildError("The config_data feature requires that 'module_name' be set", action=ctx.action)

    parts = module_name.split(".")
    target = os.path.join(builder.blib, "lib", *parts[:-1], f"{parts[-1]}_config.py")
    sources = [
        path
        for path in (builder.config_file("config_data.json"), builder.config_file("features.json"))
        if path is not None
    ]
    if sources and builder.up_to_date(sources, target):
        return

    builder.log_info("Writing config notes to %s", target)
    write_config_module(
        builder.localize(target),
        module=module_name,
        config_data=builder.config_data(),
        features=builder.feature(),
    )


def _docs(ctx: ActionContext) -> None:
    ctx.depends_on("code")
    builder = ctx.target

    if builder.gen_manpages:
        builder.document_bin_files(".1", "bindoc")
        builder.document_lib_files(".3", "libdoc")
    if builder.gen_html:
        builder.document_bin_files(".html", "binhtml")
        builder.document_lib_files(".html", "libhtml")


def _test(ctx: ActionContext) -> None:
    ctx.depends_on("code")
    builder = ctx.target

    tests = builder.find_test_files()
    if not tests:
        builder.log_info("No tests defined.")
        return

    blib = builder.blib
    builder.services.harness.run(
        [builder.localize(path) for path in tests],
        python=builder.props.get("python") or sys.executable,
        paths=[builder.localize(os.path.join(blib, "lib")), builder.localize(os.path.join(blib, "arch"))],
        verbose=bool(builder.verbose),
        debugger=bool(builder.debugger),
    )


def _testdb(ctx: ActionContext) -> None:
    with ctx.target.override(debugger=True):
        ctx.depends_on("test")


def _clean(ctx: ActionContext) -> None:
    builder = ctx.target
    for pattern in builder.cleanup():
        for item in sorted(glob.glob(builder.localize(pattern))):
            builder.delete_filetree(item)


def _realclean(ctx: ActionContext) -> None:
    ctx.depends_on("clean")
    ctx.target.delete_filetree(ctx.target.config_dir)


def _install(ctx: ActionContext) -> None:
    ctx.depends_on("build")
    builder = ctx.target
    builder.services.installer.install(
        builder.install_map(),
        verbose=True,
        dry_run=False,
        uninstall=bool(builder.args.get("uninst")),
    )


def _fakeinstall(ctx: ActionContext) -> None:
    ctx.depends_on("build")
    builder = ctx.target
    builder.services.installer.install(
        builder.install_map(),
        verbose=True,
        dry_run=True,
        uninstall=bool(builder.args.get("uninst")),
    )


def _pure_install(ctx: ActionContext) -> None:
    ctx.depends_on("install")


def _distdir(ctx: ActionContext) -> None:
    builder = ctx.target
    dist_files = builder.find_dist_files()
    if not dist_files:
        raise BuildError("No files found for the distribution - list them in MANIFEST or 'dist_files'", action=ctx.action)

    dist_dir = builder.dist_dir()
    builder.delete_filetree(dist_dir)
    builder.log_info("Creating %s", dist_dir)
    builder.add_to_cleanup(dist_dir)

    for path in dist_files:
        copied = builder.copy_if_modified(path, to_dir=dist_dir, verbose=False)
        if copied is not None:
            shutil.copymode(builder.localize(path), builder.localize(copied))


def _dist(ctx: ActionContext) -> None:
    ctx.depends_on("distdir")
    builder = ctx.target
    dist_dir = builder.dist_dir()
    builder.make_tarball(dist_dir)
    builder.delete_filetree(dist_dir)


def _distclean(ctx: ActionContext) -> None:
    ctx.depends_on("realclean")
    builder = ctx.target
    dist_dir = builder.dist_dir()
    builder.delete_filetree(dist_dir, f"{dist_dir}.tar.gz")


HELP = ActionRef(name="help", handler=_help, doc="List the available actions, or describe one: `help <action>`.")
BUILD = ActionRef(name="build", handler=_build, doc="Run the 'code' and 'docs' actions.")
CODE = ActionRef(
    name="code",
    handler=_code,
    doc="Stage every build element into blib (python modules, C support code, extensions, scripts).",
)
CONFIG_DATA = ActionRef(
    name="config_data",
    handler=_config_data,
    doc="Write the config data and feature flags module into blib when there is any.",
)
DOCS = ActionRef(name="docs", handler=_docs, doc="Generate reference pages for scripts and modules in blib.")
TEST = ActionRef(name="test", handler=_test, doc="Run the test suite against the staged blib tree.")
TESTDB = ActionRef(name="testdb", handler=_testdb, doc="Run the 'test' action under the debugger.")
CLEAN = ActionRef(name="clean", handler=_clean, doc="Delete every file registered for cleanup.")
REALCLEAN = ActionRef(name="realclean", handler=_realclean, doc="Run 'clean', then delete the configuration directory.")
INSTALL = ActionRef(name="install", handler=_install, doc="Build, then copy blib to the install destinations.")
FAKEINSTALL = ActionRef(
    name="fakeinstall",
    handler=_fakeinstall,
    doc="Build, then report what 'install' would do without copying anything.",
)
PURE_INSTALL = ActionRef(name="pure_install", handler=_pure_install, doc="Same as 'install'.")
DISTDIR = ActionRef(name="distdir", handler=_distdir, doc="Copy the distribution files into <dist_name>-<dist_version>.")
DIST = ActionRef(name="dist", handler=_dist, doc="Create <dist_name>-<dist_version>.tar.gz from the distribution files.")
DISTCLEAN = ActionRef(name="distclean", handler=_distclean, doc="Run 'realclean' and delete any distribution directory or tarball.")

__all_actions__ = [
    HELP,
    BUILD,
    CODE,
    CONFIG_DATA,
    DOCS,
    TEST,
    TESTDB,
    CLEAN,
    REALCLEAN,
    INSTALL,
    FAKEINSTALL,
    PURE_INSTALL,
    DISTDIR,
    DIST,
    DISTCLEAN,
]
