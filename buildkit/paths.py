"""Install destination resolution.

Precedence for `install_destination(type)`:

1) explicit `install_path[type]`
2) `install_base` + install-base relative path
3) `prefix`: the named install set path relocated from its original prefix
4) the named install set path verbatim

`destdir` is a staging root applied afterwards (see `staged`).
"""

from __future__ import annotations

import logging
import os
import re
import sys
import sysconfig
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

INSTALL_TYPES: tuple[str, ...] = (
    "lib",
    "arch",
    "bin",
    "script",
    "bindoc",
    "libdoc",
    "binhtml",
    "libhtml",
)
INSTALL_DIRS: tuple[str, ...] = ("core", "site", "vendor")
HTML_TYPES: tuple[str, ...] = ("binhtml", "libhtml")
MANPAGE_TYPES: tuple[str, ...] = ("bindoc", "libdoc")


def _first(config: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = config.get(key)
        if value:
            return value
    return None


def default_install_config() -> dict[str, Any]:
    """Platform install configuration for the running interpreter.

    Key names follow the core/site/vendor layout the path resolver expects;
    values come from `sysconfig`.
    """

    base_vars = {"base": sys.base_prefix, "platbase": sys.base_exec_prefix}
    site_vars = {"base": sys.prefix, "platbase": sys.exec_prefix}
    core = sysconfig.get_paths(vars=base_vars)
    site = sysconfig.get_paths(vars=site_vars)

    version = sysconfig.get_python_version()
    share_man = os.path.join(sys.base_prefix, "share", "man")
    site_man = os.path.join(sys.prefix, "share", "man")

    return {
        "version": version,
        "archname": sysconfig.get_platform(),
        "installstyle": os.path.join("lib", f"python{version}"),
        "installprefix": sys.base_prefix,
        "prefix": sys.base_prefix,
        "siteprefix": sys.prefix,
        "vendorprefix": "",
        "usevendorprefix": False,
        "installprivlib": core.get("stdlib"),
        "installarchlib": core.get("platstdlib"),
        "installbin": core.get("scripts"),
        "installscript": core.get("scripts"),
        "installman1dir": os.path.join(share_man, "man1"),
        "installman3dir": os.path.join(share_man, "man3"),
        "installhtmldir": "",
        "installsitelib": site.get("purelib"),
        "installsitearch": site.get("platlib"),
        "installsitebin": site.get("scripts"),
        "installsitescript": site.get("scripts"),
        "installsiteman1dir": os.path.join(site_man, "man1"),
        "installsiteman3dir": os.path.join(site_man, "man3"),
    }


def build_install_sets(config: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    html1 = _first(config, "installhtml1dir", "installhtmldir")
    html3 = _first(config, "installhtml3dir", "installhtmldir")

    return {
        "core": {
            "lib": config.get("installprivlib"),
            "arch": config.get("installarchlib"),
            "bin": config.get("installbin"),
            "script": config.get("installscript"),
            "bindoc": config.get("installman1dir"),
            "libdoc": config.get("installman3dir"),
            "binhtml": html1,
            "libhtml": html3,
        },
        "site": {
            "lib": config.get("installsitelib"),
            "arch": config.get("installsitearch"),
            "bin": _first(config, "installsitebin", "installbin"),
            "script": _first(config, "installsitescript", "installsitebin", "installscript"),
            "bindoc": _first(config, "installsiteman1dir", "installman1dir"),
            "libdoc": _first(config, "installsiteman3dir", "installman3dir"),
            "binhtml": _first(config, "installsitehtml1dir") or html1,
            "libhtml": _first(config, "installsitehtml3dir") or html3,
        },
        "vendor": {
            "lib": config.get("installvendorlib"),
            "arch": config.get("installvendorarch"),
            "bin": _first(config, "installvendorbin", "installbin"),
            "script": _first(config, "installvendorscript", "installvendorbin", "installscript"),
            "bindoc": _first(config, "installvendorman1dir", "installman1dir"),
            "libdoc": _first(config, "installvendorman3dir", "installman3dir"),
            "binhtml": _first(config, "installvendorhtml1dir") or html1,
            "libhtml": _first(config, "installvendorhtml3dir") or html3,
        },
    }


def build_original_prefix(config: Mapping[str, Any]) -> dict[str, str]:
    core = _first(config, "installprefixexp", "installprefix", "prefixexp", "prefix") or ""
    site = _first(config, "siteprefixexp", "siteprefix") or core
    vendor = _first(config, "vendorprefixexp", "vendorprefix") if config.get("usevendorprefix") else ""
    return {"core": core, "site": site, "vendor": vendor or ""}


def build_install_base_relpaths(config: Mapping[str, Any]) -> dict[str, list[str]]:
    arch = str(config.get("archname") or "")
    return {
        "lib": ["lib", "python"],
        "arch": ["lib", "python", arch] if arch else ["lib", "python"],
        "bin": ["bin"],
        "script": ["bin"],
        "bindoc": ["man", "man1"],
        "libdoc": ["man", "man3"],
        "binhtml": ["html"],
        "libhtml": ["html"],
    }


def build_prefix_relpaths(config: Mapping[str, Any]) -> dict[str, dict[str, list[str]]]:
    style = str(config.get("installstyle") or os.path.join("lib", "python"))
    libstyle = [part for part in re.split(r"[\\/]+", style) if part]
    version = str(config.get("version") or "")
    arch = str(config.get("archname") or "")
    arch_tail = [part for part in (version, arch) if part]

    def _table(lib: list[str]) -> dict[str, list[str]]:
        return {
            "lib": list(lib),
            "arch": [*lib, *arch_tail],
            "bin": ["bin"],
            "script": ["bin"],
            "bindoc": ["man", "man1"],
            "libdoc": ["man", "man3"],
            "binhtml": ["html"],
            "libhtml": ["html"],
        }

    return {
        "core": _table(libstyle),
        "vendor": _table(libstyle),
        "site": _table([*libstyle, "site-packages"]),
    }


def _join_parts(parts: Sequence[str] | None) -> str | None:
    if not parts:
        return None
    return os.path.join(*[str(part) for part in parts])


@dataclass
class InstallPaths:
    install_sets: dict[str, dict[str, Any]]
    original_prefix: dict[str, str]
    install_base_relpaths: dict[str, list[str]]
    prefix_relpaths: dict[str, dict[str, list[str]]]
    installdirs: str = "site"
    install_path: dict[str, str] = field(default_factory=dict)
    install_base: str | None = None
    prefix: str | None = None
    destdir: str | None = None
    logger: logging.Logger | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.installdirs not in INSTALL_DIRS:
            raise ValueError(
                f"installdirs must be one of: {', '.join(INSTALL_DIRS)} (got {self.installdirs!r})"
            )

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **kwargs: Any) -> "InstallPaths":
        return cls(
            install_sets=build_install_sets(config),
            original_prefix=build_original_prefix(config),
            install_base_relpaths=build_install_base_relpaths(config),
            prefix_relpaths=build_prefix_relpaths(config),
            **kwargs,
        )

    def _log_verbose(self, message: str, *args: Any) -> None:
        if self.logger is not None:
            self.logger.debug(message, *args)

    def install_base_relpath(self, install_type: str) -> str | None:
        return _join_parts(self.install_base_relpaths.get(install_type))

    def prefix_relpath(self, installdirs: str | None, install_type: str) -> str | None:
        table = self.prefix_relpaths.get(installdirs or self.installdirs) or {}
        return _join_parts(table.get(install_type))

    def _prefixify_default(self, install_type: str, rprefix: str) -> str:
        default = self.prefix_relpath(self.installdirs, install_type)
        if not default:
            self._log_verbose(
                "no default install location for type '%s', using prefix '%s'", install_type, rprefix
            )
            return rprefix
        return os.path.join(rprefix, default)

    def prefixify(self, path: str | None, source_prefix: str | None, install_type: str) -> str:
        """Relocate `path` from `source_prefix` to the configured `prefix`."""

        sprefix = source_prefix or ""
        rprefix = self.prefix or ""
        if sprefix.endswith("/") and not rprefix.endswith("/"):
            rprefix += "/"

        if path is None or len(path) == 0:
            self._log_verbose("no path to prefixify, falling back to default")
            return self._prefixify_default(install_type, rprefix)

        self._log_verbose("prefixify %s from %s to %s", path, sprefix, rprefix)

        if not os.path.isabs(path):
            self._log_verbose("path is relative, not prefixifying")
            return path
        if sprefix == rprefix:
            self._log_verbose("no new prefix")
            return path

        match = re.match(re.escape(sprefix) + r"\b", path, flags=re.S) if sprefix else None
        if match is None:
            self._log_verbose("cannot prefixify, falling back to default")
            return self._prefixify_default(install_type, rprefix)

        relocated = rprefix + path[match.end():]
        self._log_verbose("now %s", relocated)
        return relocated

    def install_destination(self, install_type: str) -> str | None:
        if install_type in self.install_path:
            return self.install_path[install_type]

        if self.install_base:
            rel = self.install_base_relpath(install_type)
            return os.path.join(self.install_base, rel) if rel else self.install_base

        named = self.install_sets.get(self.installdirs) or {}
        if self.prefix:
            return self.prefixify(
                named.get(install_type),
                self.original_prefix.get(self.installdirs),
                install_type,
            )

        return named.get(install_type)

    def staged(self, path: str) -> str:
        if not self.destdir:
            return path
        _drive, rest = os.path.splitdrive(path)
        return os.path.join(self.destdir, rest.lstrip("/\\"))

    def install_types(self, *, html: bool = True, manpages: bool = True) -> list[str]:
        named = self.install_sets.get(self.installdirs) or {}
        types = set(self.install_path) | set(named)
        if not html:
            types.difference_update(HTML_TYPES)
        if not manpages:
            types.difference_update(MANPAGE_TYPES)
        return sorted(types)

    def install_map(
        self,
        blib: str,
        *,
        html: bool = True,
        manpages: bool = True,
        packlist_parts: Iterable[str] = (),
    ) -> dict[str, str]:
        out: dict[str, str] = {}
        for install_type in self.install_types(html=html, manpages=manpages):
            localdir = os.path.join(blib, install_type)
            if not os.path.exists(localdir):
                continue

            dest = self.install_destination(install_type)
            if dest:
                out[localdir] = dest
            elif install_type not in MANPAGE_TYPES:
                # Platforms without man page dirs simply skip docs.
                raise ValueError(f"Can't figure out where to install things of type '{install_type}'")

        archdir = self.install_destination("arch")
        if archdir:
            out["write"] = os.path.join(archdir, "auto", *packlist_parts, ".packlist")

        if self.destdir:
            out = {key: self.staged(value) for key, value in out.items()}

        out["read"] = ""
        return out
