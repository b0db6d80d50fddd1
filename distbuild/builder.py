"""The build engine: properties, persisted state, prerequisites and dispatch.

A `Builder` owns three mappings:

- `props`: registered build properties (defaults come from the class registry)
- `args`: free-form arguments that are not properties
- `config`: the platform install configuration (sysconfig based)

Subclasses get their own property registry layer and may add actions by
declaring `action_layer`; later layers override earlier ones by name.
"""

from __future__ import annotations

import copy
import glob
import importlib
import logging
import os
import re
import shutil
import subprocess
import sys
from contextlib import contextmanager
from typing import Any, ClassVar, Iterable, Iterator, Mapping, Sequence

from buildkit.actions import ActionRef, ActionRegistry
from buildkit.dispatch import ActionDispatcher
from buildkit.docs import render_action_doc, render_action_listing
from buildkit.errors import BuildError
from buildkit.freshness import up_to_date as _up_to_date
from buildkit.modinfo import version_from_file
from buildkit.paths import (
    InstallPaths,
    build_install_base_relpaths,
    build_install_sets,
    build_original_prefix,
    build_prefix_relpaths,
    default_install_config,
)
from buildkit.prereqs import (
    PREREQ_TYPES,
    InstalledStatus,
    PrerequisiteChecker,
    format_prereq_report,
    prereq_action_types,
)
from buildkit.prereqs import validate_action_prereqs as _validate_action_prereqs
from buildkit.properties import PropertyAccessor, PropertyRegistry
from distbuild import __version__
from distbuild.actions import __all_actions__
from distbuild.collaborators import Services, contains_docs
from distbuild.foundation import config_io
from distbuild.foundation.args import (
    merge_arglist,
    options_from_mapping,
    read_args,
    split_like_shell,
)
from distbuild.foundation.checkpoint import read_checkpoint, write_checkpoint
from distbuild.foundation.notes import NotesStore

NOTES_STORES: tuple[str, ...] = (
    "notes",
    "config_data",
    "features",
    "auto_features",
    "runtime_params",
    "cleanup",
)
CONFIGURE_ACTION = "configure"
DEFAULT_ACTION = "build"
SOURCE_DIR = "lib"

_MISSING = object()


def native_path(path: str) -> str:
    """Turn a `/`-separated relative path into a native one."""

    if os.path.isabs(path):
        return path
    return os.path.join(*[part for part in path.split("/") if part]) if path.strip("/") else path


def resolve_build_class(name: str) -> type["Builder"]:
    module_name, _, class_name = name.rpartition(".")
    if not module_name:
        raise BuildError(f"Failed to re-load '{name}': not a dotted class path")
    try:
        module = importlib.import_module(module_name)
        resolved = getattr(module, class_name)
    except (ImportError, AttributeError) as exc:
        raise BuildError(f"Failed to re-load '{name}': {exc}") from exc
    if not isinstance(resolved, type) or not issubclass(resolved, Builder):
        raise BuildError(f"Build class '{name}' is not a Builder subclass")
    return resolved


class Builder:
    registry: ClassVar[PropertyRegistry] = PropertyRegistry("distbuild.builder.Builder")
    action_layer: ClassVar[tuple[ActionRef, ...]] = tuple(__all_actions__)
    os_type: ClassVar[str] = ""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        parents = [base.registry for base in cls.__bases__ if issubclass(base, Builder)]
        cls.registry = PropertyRegistry(cls.build_class_name(), parents=parents)
        if "action_layer" not in cls.__dict__:
            cls.action_layer = ()
        cls._add_action_buckets()

    def __init__(
        self,
        *,
        args: Mapping[str, Any] | None = None,
        config: Mapping[str, Any] | None = None,
        base_dir: str | None = None,
        logger: logging.Logger | None = None,
        services: Services | None = None,
        **properties: Any,
    ) -> None:
        self.args: dict[str, Any] = dict(args or {})
        self._config: dict[str, Any] = {**default_install_config(), **dict(config or {})}
        self.props: dict[str, Any] = {
            "base_dir": os.path.abspath(base_dir or os.getcwd()),
            "engine_version": __version__,
            **properties,
        }
        self.action: str | None = None
        self.logger = logger or logging.getLogger("distbuild")
        self.services = services or Services()
        self.checker = PrerequisiteChecker(inspector=self.services.inspector, logger=self.logger)
        self.notes_stores: dict[str, NotesStore] = {}
        self._dispatcher = ActionDispatcher(
            type(self).action_registry(),
            target=self,
            logger=self.logger,
            prereq_gate=self.validate_action_prereqs,
            override_scope=self._override_scope,
            default_action=lambda: self.action,
        )
        self._construct()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_dir={self.props.get('base_dir')!r}, action={self.action!r})"

    # ------------------------------------------------------------------ classes

    @classmethod
    def build_class_name(cls) -> str:
        return f"{cls.__module__}.{cls.__qualname__}"

    @classmethod
    def add_property(cls, name: str, default: Any = None) -> type["Builder"]:
        """Register a property on this class; adds an attribute accessor unless the name is taken."""

        cls.registry.add(name, default)
        if not hasattr(cls, name):
            setattr(cls, name, PropertyAccessor(name))
        return cls

    @classmethod
    def _add_action_buckets(cls) -> None:
        for ref in cls.__dict__.get("action_layer", ()):
            for kind in PREREQ_TYPES:
                name = f"{ref.name}_{kind}"
                if not cls.registry.valid_property(name):
                    cls.add_property(name, {})

    @classmethod
    def action_registry(cls) -> ActionRegistry:
        layers = [
            klass.__dict__.get("action_layer", ())
            for klass in reversed(cls.__mro__)
            if isinstance(klass, type) and issubclass(klass, Builder)
        ]
        return ActionRegistry.layered(layers)

    @classmethod
    def known_actions(cls) -> tuple[str, ...]:
        return cls.action_registry().available()

    @classmethod
    def valid_property(cls, name: str) -> bool:
        return cls.registry.valid_property(name)

    @classmethod
    def valid_properties(cls) -> tuple[str, ...]:
        return cls.registry.valid_properties()

    # ------------------------------------------------------------ constructors

    def _construct(self) -> None:
        p = self.props
        p.setdefault("build_class", self.build_class_name())
        type(self).registry.initialize(p)

        for name in NOTES_STORES:
            store = NotesStore(os.path.join(self.config_path(), f"{name}.json"))
            if os.path.exists(store.path):
                store.restore()
            self.notes_stores[name] = store
            values = p.pop(name, None)
            if values:
                store.update(values)

        p["python"] = p.get("python") or sys.executable
        if not p["python"]:
            self.log_warn("Warning: Can't locate your python binary")

        blib = p["blib"]
        if not p.get("bindoc_dirs"):
            p["bindoc_dirs"] = [os.path.join(blib, "script")]
        if not p.get("libdoc_dirs"):
            p["libdoc_dirs"] = [os.path.join(blib, "lib"), os.path.join(blib, "arch")]

        if p.get("dist_author") is not None and not isinstance(p["dist_author"], list):
            p["dist_author"] = [p["dist_author"]]

        # Synonyms
        prereq = p.pop("prereq", None)
        if prereq is not None:
            p["requires"] = prereq
        scripts = p.pop("scripts", None)
        if scripts is not None:
            p["script_files"] = scripts

        for name in type(self).registry.hash_properties():
            value = p.get(name)
            if value is not None and not isinstance(value, Mapping):
                raise BuildError(f"Property '{name}' expects a mapping (type={type(value).__name__})")

        for key in ("extra_compiler_flags", "extra_linker_flags"):
            if p.get(key) is not None:
                p[key] = split_like_shell(p[key])

        cleanup = p.pop("add_to_cleanup", None)
        if cleanup:
            self.add_to_cleanup(*cleanup)

    @classmethod
    def new(cls, argv: Sequence[str] = (), **properties: Any) -> "Builder":
        """Create a fresh configuration (the `configure` step)."""

        self = cls(**properties)
        self.action = CONFIGURE_ACTION
        self.cull_args(argv)
        if self.action and self.action != CONFIGURE_ACTION:
            raise BuildError(
                f"Too early to specify a build action '{self.action}'.  "
                f"Run 'distbuild {self.action}' instead."
            )

        self.dist_name()
        self.dist_version()
        self.check_prereq()
        self.check_autofeatures()
        self._set_install_paths()
        return self

    @classmethod
    def resume(
        cls,
        base_dir: str | None = None,
        argv: Sequence[str] = (),
        *,
        config_dir: str = "_build",
        logger: logging.Logger | None = None,
        services: Services | None = None,
    ) -> "Builder":
        """Reload a configuration written by `write_config` and apply new arguments."""

        self = cls(base_dir=base_dir, config_dir=config_dir, logger=logger, services=services)
        self.read_config()

        build_class = self.props.get("build_class")
        if build_class and build_class != cls.build_class_name():
            target = resolve_build_class(build_class)
            if not issubclass(cls, target):
                return target.resume(base_dir, argv, config_dir=config_dir, logger=logger, services=services)

        recorded_python = self.props.get("python")
        if recorded_python and os.path.realpath(recorded_python) != os.path.realpath(sys.executable):
            self.log_warn(
                " * WARNING: Configuration was initially created with '%s',\n   but we are now using '%s'.",
                recorded_python,
                sys.executable,
            )

        recorded_version = self.props.get("engine_version")
        if recorded_version != __version__:
            raise BuildError(
                f" * ERROR: Configuration was initially created with distbuild version '{recorded_version}',\n"
                f"   but we are now using version '{__version__}'.  Please re-run the 'configure' action."
            )

        self.cull_args(argv)
        self.action = self.action or DEFAULT_ACTION
        return self

    def create_build_config(self) -> str:
        self.write_config()
        self.log_info(
            "Created build configuration for '%s' version '%s' in %s",
            self.dist_name(),
            self.dist_version(),
            self.config_dir,
        )
        return self.config_path()

    # ------------------------------------------------------------------ logging

    def log_info(self, message: str, *args: Any) -> None:
        if not self.props.get("quiet"):
            self.logger.info(message, *args)

    def log_verbose(self, message: str, *args: Any) -> None:
        if self.props.get("verbose"):
            self.log_info(message, *args)
        else:
            self.logger.debug(message, *args)

    def log_warn(self, message: str, *args: Any) -> None:
        self.logger.warning(message, *args)

    # --------------------------------------------------------------- dispatch

    @property
    def config(self) -> dict[str, Any]:
        return self._config

    @contextmanager
    def _override_scope(self, overrides: Mapping[str, Any], args: Mapping[str, Any]) -> Iterator[None]:
        saved_props, saved_args = self.props, self.args
        self.props = {**copy.deepcopy(saved_props), **overrides}
        self.args = {**copy.deepcopy(saved_args), **args}
        try:
            yield
        finally:
            self.props, self.args = saved_props, saved_args

    @contextmanager
    def override(self, **props: Any) -> Iterator["Builder"]:
        """Temporarily set properties; previous values come back on every exit path."""

        target = self.props
        saved = {name: target.get(name, _MISSING) for name in props}
        target.update(props)
        try:
            yield self
        finally:
            for name, value in saved.items():
                if value is _MISSING:
                    target.pop(name, None)
                else:
                    target[name] = value

    def dispatch(self, action: str | None = None, *, args: Mapping[str, Any] | None = None, **overrides: Any) -> Any:
        return self._dispatcher.dispatch(action, overrides=overrides, args=args)

    def depends_on(self, *actions: str) -> None:
        session = self._dispatcher.current
        if session is None:
            raise BuildError("depends_on() called outside of a dispatch")
        self._dispatcher.depends_on(session, *actions)

    def current_action(self) -> str | None:
        session = self._dispatcher.current
        if session is not None and session.current_action:
            return session.current_action
        return self.action

    def last_run(self) -> tuple[dict[str, Any], ...]:
        return self._dispatcher.last_run

    def get_action_docs(self, action: str) -> str:
        return render_action_doc(self._dispatcher.registry, action)

    def action_listing(self) -> str:
        return render_action_listing(self._dispatcher.registry.describe())

    # ---------------------------------------------------------- prerequisites

    def prereq_action_types(self) -> tuple[str, ...]:
        return prereq_action_types(self.known_actions())

    def check_installed_status(self, name: str, spec: Any) -> InstalledStatus:
        return self.checker.check_installed_status(name, spec)

    def check_installed_version(self, name: str, spec: Any) -> str:
        return self.checker.check_installed_version(name, spec)

    def prereq_failures(
        self, info: Mapping[str, Any] | None = None
    ) -> dict[str, dict[str, InstalledStatus]] | None:
        types = self.prereq_action_types()
        if info is None:
            info = {kind: self.props.get(kind) for kind in types}
        return self.checker.prereq_failures(info, types)

    def validate_action_prereqs(self, action: str) -> None:
        if self.props.get("ignore_prereqs"):
            return
        _validate_action_prereqs(
            action,
            self.prereq_failures(),
            ignore_requires=bool(self.props.get("ignore_prereq_requires")),
            ignore_conflicts=bool(self.props.get("ignore_prereq_conflicts")),
            logger=self.logger,
        )

    def check_prereq(self) -> bool:
        if self.find_ext_files() or self.props.get("c_source"):
            have_compiler = getattr(self.services.compiler, "have_compiler", None)
            if callable(have_compiler) and not have_compiler():
                self.log_warn("Warning: this distribution contains C sources, but no C compiler is available")

        failures = self.prereq_failures()
        if not failures:
            return True

        for line in format_prereq_report(failures, self.prereq_action_types()):
            self.log_warn("%s", line)
        self.log_warn(
            "ERRORS/WARNINGS FOUND IN PREREQUISITES.  You may wish to install the versions\n"
            " of the modules indicated above before proceeding with this installation.\n"
        )
        return False

    def check_autofeatures(self) -> None:
        types = self.prereq_action_types()
        for name, info in self.auto_features().items():
            failures = self.prereq_failures(info or {})
            if not failures:
                self.log_info("Feature '%s' enabled.", name)
                continue
            lines = [f"Feature '{name}' disabled because of the following prerequisite failures:"]
            for kind in types:
                for status in (failures.get(kind) or {}).values():
                    lines.append(f" * {status.message}")
            self.log_warn("%s", "\n".join(lines))

    # ---------------------------------------------------------------- notes

    def notes(self, key: str | None = None, value: Any = _MISSING) -> Any:
        store = self.notes_stores["notes"]
        return store.access(key) if value is _MISSING else store.access(key, value)

    def config_data(self, key: str | None = None, value: Any = _MISSING) -> Any:
        store = self.notes_stores["config_data"]
        return store.access(key) if value is _MISSING else store.access(key, value)

    def auto_features(self, key: str | None = None, value: Any = _MISSING) -> Any:
        store = self.notes_stores["auto_features"]
        return store.access(key) if value is _MISSING else store.access(key, value)

    def runtime_params(self, key: str | None = None) -> Any:
        return self.notes_stores["runtime_params"].read(key)

    def feature(self, name: str | None = None, value: Any = _MISSING) -> Any:
        """Read or set a feature flag; auto features resolve from their prerequisites."""

        features = self.notes_stores["features"]
        auto = self.notes_stores["auto_features"]

        if name is not None:
            if value is not _MISSING:
                return features.access(name, value)
            if name in features:
                return features.access(name)
            info = auto.access(name)
            if info:
                return not self.prereq_failures(info)
            return features.access(name)

        resolved = {key: not self.prereq_failures(info or {}) for key, info in auto.access().items()}
        resolved.update(features.access())
        return resolved

    def has_config_data(self) -> bool:
        return any(self.notes_stores[name].has_data() for name in ("config_data", "features", "auto_features"))

    def add_to_cleanup(self, *files: str) -> None:
        self.notes_stores["cleanup"].write({native_path(path): True for path in files})

    def cleanup(self) -> list[str]:
        return list(self.notes_stores["cleanup"].read())

    # -------------------------------------------------------------- arguments

    def read_args(self, argv: Sequence[str]) -> tuple[dict[str, Any], str | None]:
        return read_args(
            argv,
            hash_properties=type(self).registry.hash_properties(),
            get_options=self.props.get("get_options"),
            valid_property=self.valid_property,
            owner=type(self).__name__,
        )

    def merge_args(self, action: str | None, args: Mapping[str, Any]) -> list[str]:
        if action is not None:
            self.action = action

        registry = type(self).registry
        runtime = self.notes_stores["runtime_params"]
        for key, value in args.items():
            if registry.valid_property(key):
                runtime.access(key, value)
        try:
            return registry.merge_args(self.props, self.args, self._config, args)
        except (TypeError, ValueError) as exc:
            raise BuildError(str(exc)) from exc

    def read_rcfile(self, action: str) -> dict[str, Any]:
        """Options from the rc file for `action`; action-specific entries beat `*` ones."""

        try:
            sections = config_io.read_rcfile()
        except ValueError as exc:
            raise BuildError(str(exc)) from exc
        hash_properties = type(self).registry.hash_properties()
        global_opts = options_from_mapping(
            sections.get(config_io.RC_GLOBAL_SECTION, {}), hash_properties=hash_properties
        )
        action_opts = options_from_mapping(sections.get(action, {}), hash_properties=hash_properties)
        return merge_arglist(action_opts, global_opts)

    def merge_rcfile(self, action: str | None, cmdline: Mapping[str, Any]) -> None:
        rc_opts = self.read_rcfile(action or self.action or DEFAULT_ACTION)
        self.merge_args(action, merge_arglist(cmdline, rc_opts))

    def cull_args(self, argv: Sequence[str]) -> None:
        args, action = self.read_args(argv)
        self.merge_args(action, args)
        if not self.props.get("skip_rcfile"):
            self.merge_rcfile(action, args)

    # ------------------------------------------------------------ distribution

    def dist_name(self) -> str:
        p = self.props
        if p.get("dist_name") is not None:
            return p["dist_name"]
        if not p.get("module_name"):
            raise BuildError(
                "Can't determine distribution name, must supply either 'dist_name' or 'module_name' parameter"
            )
        p["dist_name"] = p["module_name"].replace(".", "-")
        return p["dist_name"]

    def dist_version(self) -> str:
        p = self.props
        if p.get("dist_version") is not None:
            return str(p["dist_version"])

        module_name = p.get("module_name")
        if module_name and not p.get("dist_version_from"):
            stem = "/".join([SOURCE_DIR, *module_name.split(".")])
            package_init = f"{stem}/__init__.py"
            p["dist_version_from"] = package_init if os.path.isfile(self.localize(package_init)) else f"{stem}.py"

        version_from = p.get("dist_version_from")
        if version_from:
            path = self.localize(version_from)
            if not os.path.isfile(path):
                raise BuildError(f"Can't find file {version_from} to determine version")
            p["dist_version"] = version_from_file(path)

        if not p.get("dist_version"):
            raise BuildError(
                "Can't determine distribution version, must supply either 'dist_version',\n"
                "'dist_version_from', or 'module_name' parameter"
            )
        return str(p["dist_version"])

    def dist_dir(self) -> str:
        return f"{self.dist_name()}-{self.dist_version()}"

    def find_dist_files(self) -> list[str]:
        explicit = self.props.get("dist_files")
        if explicit:
            return [native_path(path) for path in explicit]

        manifest = self.localize("MANIFEST")
        if not os.path.exists(manifest):
            raise BuildError("Can't create distdir without a MANIFEST file or a 'dist_files' list")
        files: list[str] = []
        with open(manifest, "r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                files.append(native_path(line.split()[0]))
        return files

    def make_tarball(self, directory: str, file: str | None = None) -> str:
        file = file or directory
        self.log_info("Creating %s.tar.gz", file)
        return self.services.archiver.create_archive(
            self.localize(f"{file}.tar.gz"),
            self.rscan_dir(directory),
            base_dir=self.props["base_dir"],
        )

    # ----------------------------------------------------------- install paths

    def _set_install_paths(self) -> None:
        c = self._config
        p = self.props
        p["install_sets"] = build_install_sets(c)
        p["original_prefix"] = build_original_prefix(c)
        p["install_base_relpaths"] = build_install_base_relpaths(c)
        p["prefix_relpaths"] = build_prefix_relpaths(c)

        named = p["install_sets"].get(p.get("installdirs")) or {}
        if p.get("gen_manpages") is None:
            p["gen_manpages"] = bool(named.get("bindoc") and named.get("libdoc"))
        if p.get("gen_html") is None:
            p["gen_html"] = bool(named.get("binhtml") and named.get("libhtml"))
        if p.get("install_manpages") is None:
            p["install_manpages"] = bool(p["gen_manpages"])
        if p.get("install_html") is None:
            p["install_html"] = bool(p["gen_html"])

    def install_paths(self) -> InstallPaths:
        p = self.props
        if p.get("install_sets") is None:
            self._set_install_paths()
        try:
            return InstallPaths(
                install_sets=p["install_sets"],
                original_prefix=p["original_prefix"],
                install_base_relpaths=p["install_base_relpaths"],
                prefix_relpaths=p["prefix_relpaths"],
                installdirs=p.get("installdirs") or "site",
                install_path=dict(p.get("install_path") or {}),
                install_base=p.get("install_base"),
                prefix=p.get("prefix"),
                destdir=p.get("destdir"),
                logger=self.logger,
            )
        except ValueError as exc:
            raise BuildError(str(exc)) from exc

    def install_destination(self, install_type: str) -> str | None:
        return self.install_paths().install_destination(install_type)

    def install_types(self) -> list[str]:
        return self.install_paths().install_types(
            html=bool(self.props.get("install_html")),
            manpages=bool(self.props.get("install_manpages")),
        )

    def install_map(self, blib: str | None = None) -> dict[str, str]:
        packlist_parts = [part for part in (self.props.get("module_name") or "").split(".") if part]
        try:
            return self.install_paths().install_map(
                self.localize(blib or self.props["blib"]),
                html=bool(self.props.get("install_html")),
                manpages=bool(self.props.get("install_manpages")),
                packlist_parts=packlist_parts,
            )
        except ValueError as exc:
            raise BuildError(str(exc)) from exc

    # ----------------------------------------------------------- file helpers

    def localize(self, path: str) -> str:
        """Absolute path for `path`, resolving relative paths against the base dir."""

        if os.path.isabs(path):
            return path
        return os.path.join(self.props["base_dir"], native_path(path))

    def config_path(self) -> str:
        return self.localize(self.props.get("config_dir") or "_build")

    def config_file(self, *names: str) -> str | None:
        path = self.config_path()
        if not os.path.isdir(path):
            return None
        return os.path.join(path, *names)

    def up_to_date(self, source: str | Iterable[str], derived: str | Iterable[str]) -> bool:
        sources = [source] if isinstance(source, str) else list(source)
        derived_paths = [derived] if isinstance(derived, str) else list(derived)
        return _up_to_date(
            [self.localize(path) for path in sources],
            [self.localize(path) for path in derived_paths],
            logger=self.logger,
        )

    def copy_if_modified(
        self,
        from_: str,
        to: str | None = None,
        *,
        to_dir: str | None = None,
        flatten: bool = False,
        verbose: bool = True,
    ) -> str | None:
        """Copy `from_` unless the target is already fresh; returns the target path when copied."""

        if not from_:
            raise ValueError("No 'from' parameter given to copy_if_modified")
        if to:
            to_path = to
        elif to_dir:
            to_path = os.path.join(to_dir, os.path.basename(from_) if flatten else from_)
        else:
            raise ValueError("No 'to' or 'to_dir' parameter given to copy_if_modified")

        if self.up_to_date(from_, to_path):
            return None

        target = self.localize(to_path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        if verbose:
            self.log_info("%s -> %s", from_, to_path)
        shutil.copyfile(self.localize(from_), target)
        return to_path

    def delete_filetree(self, *paths: str) -> int:
        deleted = 0
        for path in paths:
            target = self.localize(path)
            if not os.path.lexists(target):
                continue
            self.log_info("Deleting %s", path)
            if os.path.isdir(target) and not os.path.islink(target):
                shutil.rmtree(target, ignore_errors=True)
            else:
                try:
                    os.remove(target)
                except OSError:
                    pass
            if os.path.lexists(target):
                raise BuildError(f"Couldn't remove '{path}'")
            deleted += 1
        return deleted

    def rscan_dir(self, directory: str, pattern: Any = None) -> list[str]:
        """Every path under `directory` (itself included), optionally filtered.

        `pattern` is a regex (matched with `search` against the path) or a
        predicate taking the path.
        """

        if pattern is None:
            wanted = lambda path: True  # noqa: E731
        elif isinstance(pattern, (str, re.Pattern)):
            regex = re.compile(pattern)
            wanted = lambda path: regex.search(path) is not None  # noqa: E731
        elif callable(pattern):
            wanted = pattern
        else:
            raise TypeError(f"Unknown pattern type: {type(pattern).__name__}")

        root = self.localize(directory)
        result: list[str] = []
        if not os.path.exists(root):
            return result
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            rel_dir = os.path.normpath(os.path.join(directory, os.path.relpath(dirpath, root)))
            if wanted(rel_dir):
                result.append(rel_dir)
            for filename in sorted(filenames):
                path = os.path.join(rel_dir, filename)
                if wanted(path):
                    result.append(path)
        return result

    def _files_in(self, directory: str) -> list[str]:
        root = self.localize(directory)
        if not os.path.isdir(root):
            return []
        return [
            os.path.join(directory, name)
            for name in sorted(os.listdir(root))
            if os.path.isfile(os.path.join(root, name))
        ]

    @staticmethod
    def dir_contains(first: str, second: str) -> bool:
        first_parts = os.path.normcase(os.path.normpath(first)).split(os.sep)
        second_parts = os.path.normcase(os.path.normpath(second)).split(os.sep)
        if len(second_parts) < len(first_parts):
            return False
        return second_parts[: len(first_parts)] == first_parts

    @staticmethod
    def split_like_shell(value: Any) -> list[str]:
        return split_like_shell(value)

    def do_system(self, *cmd: str, env: Mapping[str, str] | None = None) -> bool:
        self.log_info("%s", " ".join(cmd))
        completed = subprocess.run(list(cmd), cwd=self.props["base_dir"], env=dict(env) if env else None)
        return completed.returncode == 0

    def run_python_script(self, script: str, preargs: Any = (), postargs: Any = ()) -> bool:
        python = self.props.get("python") or sys.executable
        return self.do_system(python, *split_like_shell(preargs), script, *split_like_shell(postargs))

    def make_executable(self, *files: str) -> None:
        for path in files:
            target = self.localize(path)
            mode = os.stat(target).st_mode
            os.chmod(target, mode | 0o111)

    def fix_shebang_line(self, *files: str) -> None:
        python = self.props.get("python") or sys.executable
        for path in files:
            target = self.localize(path)
            with open(target, "r", encoding="utf-8") as handle:
                first = handle.readline()
                rest = handle.read()
            if not first.startswith("#!"):
                continue

            cmd, _, arg = first[2:].strip().partition(" ")
            if os.path.basename(cmd) == "env" and arg:
                cmd, _, arg = arg.partition(" ")
            if "python" not in os.path.basename(cmd).lower():
                continue

            self.log_verbose("Changing sharpbang in %s to %s", path, python)
            shebang = f"#!{python} {arg}".rstrip() + "\n"
            tmp_path = f"{target}.new"
            with open(tmp_path, "w", encoding="utf-8") as handle:
                handle.write(shebang + rest)
            shutil.copymode(target, tmp_path)
            os.replace(tmp_path, target)

    # ------------------------------------------------------- build elements

    def process_element(self, element: str) -> None:
        handler = getattr(self, f"process_{element}_files", None)
        if callable(handler):
            handler()
        else:
            self.process_files_by_extension(element)

    def process_files_by_extension(self, ext: str) -> None:
        finder = getattr(self, f"find_{ext}_files", None)
        files = finder() if callable(finder) else self._find_files(f"{ext}_files", rf"\.{re.escape(ext)}$")
        blib = self.props["blib"]
        for source, dest in files.items():
            self.copy_if_modified(source, to=os.path.join(blib, dest))

    def _find_files(self, prop: str, pattern: str, directory: str = SOURCE_DIR) -> dict[str, str]:
        explicit = self.props.get(prop)
        if explicit:
            if isinstance(explicit, Mapping):
                return {native_path(k): native_path(v) for k, v in explicit.items()}
            return {native_path(path): native_path(path) for path in explicit}

        if not os.path.isdir(self.localize(directory)):
            return {}
        found = {}
        for path in self.rscan_dir(directory, pattern):
            if ".#" in os.path.basename(path) or not os.path.isfile(self.localize(path)):
                continue
            found[path] = path
        return found

    def find_py_files(self) -> dict[str, str]:
        return self._find_files("py_files", r"\.py$")

    def find_ext_files(self) -> dict[str, str]:
        return self._find_files("ext_files", r"\.c$")

    def script_files(self, value: Any = _MISSING) -> dict[str, Any]:
        """The scripts to install, always coerced into a mapping."""

        p = self.props
        if value is not _MISSING:
            p["script_files"] = value

        files = p.get("script_files")
        if files:
            if isinstance(files, Mapping):
                return dict(files)
            if isinstance(files, (list, tuple)):
                p["script_files"] = {path: True for path in files}
            elif isinstance(files, str):
                if os.path.isdir(self.localize(files)):
                    p["script_files"] = {path: True for path in self._files_in(files)}
                else:
                    p["script_files"] = {files: True}
            else:
                raise TypeError("'script_files' must be a mapping, a list, or a string")
            return dict(p["script_files"])

        p["script_files"] = {path: True for path in self._files_in("bin")}
        return dict(p["script_files"])

    def find_script_files(self) -> dict[str, Any]:
        return {native_path(path): value for path, value in self.script_files().items()}

    def process_py_files(self) -> None:
        self.process_files_by_extension("py")

    def process_support_files(self) -> None:
        c_source = self.props.get("c_source")
        if not c_source:
            return

        include_dirs = list(self.props.get("include_dirs") or [])
        if c_source not in include_dirs:
            include_dirs.append(c_source)
        self.props["include_dirs"] = include_dirs

        # Rebuilt on every run so a relink never sees an object twice.
        self.props["objects"] = [self.compile_c(path) for path in self.rscan_dir(c_source, r"\.c(pp)?$")]

    def process_script_files(self) -> None:
        files = self.find_script_files()
        if not files:
            return

        script_dir = os.path.join(self.props["blib"], "script")
        os.makedirs(self.localize(script_dir), exist_ok=True)
        for path in files:
            result = self.copy_if_modified(path, to_dir=script_dir, flatten=True)
            if result is None:
                continue
            self.fix_shebang_line(result)
            self.make_executable(result)

    def process_ext_files(self) -> None:
        for path in self.find_ext_files():
            self.process_ext(path)

    def process_ext(self, path: str) -> str:
        obj = self.compile_c(path, defines={"VERSION": f'"{self.dist_version()}"'})
        parts = os.path.normpath(os.path.dirname(path)).split(os.sep)
        archdir = os.path.join(self.props["blib"], "arch", *parts[1:])
        return self.link_c(archdir, obj)

    def compile_c(self, path: str, *, defines: Mapping[str, str] | None = None) -> str:
        compiler = self.services.compiler
        obj = compiler.object_file(path)
        self.add_to_cleanup(obj)
        if self.up_to_date(path, obj):
            return obj

        flags = split_like_shell(self.props.get("extra_compiler_flags"))
        flags.extend(f"-D{key}={value}" for key, value in (defines or {}).items())
        compiler.compile(
            self.localize(path),
            self.localize(obj),
            [self.localize(directory) for directory in self.props.get("include_dirs") or []],
            flags,
        )
        return obj

    def link_c(self, to_dir: str, obj: str) -> str:
        compiler = self.services.compiler
        lib_file = os.path.join(to_dir, os.path.basename(compiler.lib_file(obj)))
        self.add_to_cleanup(lib_file)

        objects = [obj, *(self.props.get("objects") or [])]
        if self.up_to_date(objects, lib_file):
            return lib_file

        compiler.link(
            [self.localize(path) for path in objects],
            self.localize(lib_file),
            split_like_shell(self.props.get("extra_linker_flags")),
        )
        return lib_file

    # ------------------------------------------------------------------ tests

    def find_test_files(self) -> list[str]:
        files = self.props.get("test_files")
        base_dir = self.props["base_dir"]
        if files:
            if isinstance(files, Mapping):
                files = list(files)
            found: list[str] = []
            for spec in split_like_shell(files):
                matches = sorted(glob.glob(native_path(spec), root_dir=base_dir)) or [native_path(spec)]
                for match in matches:
                    if os.path.isdir(self.localize(match)):
                        found.extend(self.expand_test_dir(match))
                    else:
                        found.append(match)
            return found

        tests: list[str] = []
        if os.path.isfile(self.localize("test.py")):
            tests.append("test.py")
        if os.path.isdir(self.localize("tests")):
            tests.extend(self.expand_test_dir("tests"))
        return tests

    def expand_test_dir(self, directory: str) -> list[str]:
        if self.props.get("recursive_test_files"):
            return sorted(
                path
                for path in self.rscan_dir(directory, r"(^|[\\/])test_[^\\/]*\.py$")
                if os.path.isfile(self.localize(path))
            )
        return sorted(glob.glob(os.path.join(directory, "test_*.py"), root_dir=self.props["base_dir"]))

    # ------------------------------------------------------------------- docs

    def _find_docs(self, dirs: Iterable[str] | None, *, exclude: Sequence[str] = ()) -> dict[str, str]:
        files: dict[str, str] = {}
        for spec in dirs or []:
            directory = native_path(spec)
            if not os.path.exists(self.localize(directory)):
                continue
            for path in self.rscan_dir(directory):
                if not os.path.isfile(self.localize(path)):
                    continue
                if any(re.search(regex, path) for regex in exclude):
                    continue
                if contains_docs(self.localize(path)):
                    files[path] = os.path.relpath(path, directory)
        return files

    def _document(self, source: str, outfile: str) -> None:
        if self.up_to_date(source, outfile):
            return
        self.log_info("Documenting %s -> %s", source, outfile)
        self.services.docs.generate(self.localize(source), self.localize(outfile))

    def document_bin_files(self, ext: str, subdir: str) -> None:
        files = self._find_docs(self.props.get("bindoc_dirs"), exclude=(r"\.bat$", r"\.cmd$"))
        outdir = os.path.join(self.props["blib"], subdir)
        for path in sorted(files):
            page = os.path.splitext(os.path.basename(path))[0]
            self._document(path, os.path.join(outdir, page + ext))

    def document_lib_files(self, ext: str, subdir: str) -> None:
        files = self._find_docs(self.props.get("libdoc_dirs"))
        outdir = os.path.join(self.props["blib"], subdir)
        for path, relpath in sorted(files.items()):
            page = os.path.splitext(relpath)[0].replace(os.sep, ".")
            if page.endswith(".__init__"):
                page = page[: -len(".__init__")]
            self._document(path, os.path.join(outdir, page + ext))

    # ------------------------------------------------------------- checkpoint

    def write_config(self) -> str:
        types = self.prereq_action_types()
        path = write_checkpoint(
            self.config_path(),
            args=self.args,
            config=self._config,
            properties=self.props,
            prereqs={kind: self.props.get(kind) for kind in types},
        )
        for name in NOTES_STORES:
            self.notes_stores[name].write()
        return path

    def read_config(self) -> None:
        self.args, self._config, self.props = read_checkpoint(self.config_path())


_BASE_PROPERTIES: tuple[tuple[str, Any], ...] = (
    ("module_name", ""),
    ("config_dir", "_build"),
    ("blib", "blib"),
    ("engine_version", None),
    ("build_class", None),
    ("build_elements", ["py", "support", "script", "ext"]),
    ("installdirs", "site"),
    ("install_path", {}),
    ("include_dirs", []),
    ("requires", {}),
    ("build_requires", {}),
    ("recommends", {}),
    ("conflicts", {}),
)
_PLAIN_PROPERTIES: tuple[str, ...] = (
    "base_dir",
    "dist_name",
    "dist_version",
    "dist_version_from",
    "dist_author",
    "dist_abstract",
    "dist_files",
    "license",
    "py_files",
    "ext_files",
    "script_files",
    "test_files",
    "recursive_test_files",
    "python",
    "gen_manpages",
    "gen_html",
    "install_manpages",
    "install_html",
    "install_sets",
    "install_base_relpaths",
    "original_prefix",
    "prefix_relpaths",
    "install_base",
    "prefix",
    "destdir",
    "debugger",
    "verbose",
    "quiet",
    "c_source",
    "objects",
    "extra_compiler_flags",
    "extra_linker_flags",
    "bindoc_dirs",
    "libdoc_dirs",
    "get_options",
    "ignore_prereq_conflicts",
    "ignore_prereq_requires",
    "ignore_prereqs",
    "skip_rcfile",
)

for _name, _default in _BASE_PROPERTIES:
    Builder.add_property(_name, _default)
for _name in _PLAIN_PROPERTIES:
    Builder.add_property(_name)
Builder._add_action_buckets()
