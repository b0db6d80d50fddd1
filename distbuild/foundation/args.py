"""Command-line argument reading.

Accepted forms: `action`, `key=value`, `--key=value`, `--key value`,
`--flag`, `--noflag` / `--no-flag`. Dashes in option names become
underscores. A key given more than once accumulates into a list.
"""

from __future__ import annotations

import argparse
import os
import re
import shlex
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from buildkit.errors import BuildError

BOOL_OPTIONS: tuple[str, ...] = (
    "gen_manpages",
    "gen_html",
    "install_manpages",
    "install_html",
    "verbose",
    "quiet",
    "debugger",
    "uninst",
    "ignore_prereq_conflicts",
    "ignore_prereq_requires",
    "ignore_prereqs",
    "skip_rcfile",
)
PATH_OPTIONS: tuple[str, ...] = ("prefix", "install_base", "destdir")
ARGV_KEY = "ARGV"

_OPT = r"[\w\-]+"
_ASSIGN_RE = re.compile(rf"^(?:--)?({_OPT})=(.*)$", re.S)
_LONG_RE = re.compile(rf"^--({_OPT})$")
_WORD_RE = re.compile(rf"^({_OPT})$")
_HASH_ITEM_RE = re.compile(r"^(\w+)=(.*)$", re.S)
_NEGATED_RE = re.compile(r"^no_?(\w+)$")
_DIGITS_RE = re.compile(r"^\d+$")

_OPTION_TYPES: dict[str, Callable[[str], Any]] = {"str": str, "int": int, "float": float}


def translate_option(opt: str) -> str:
    return opt.replace("-", "_")


def split_like_shell(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    text = str(value).strip()
    if not text:
        return []
    return shlex.split(text)


def detildefy(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("~"):
        return os.path.expanduser(value)
    return value


def read_arg(args: dict[str, Any], key: str, value: Any) -> None:
    key = translate_option(key)
    if key in args:
        current = args[key]
        if not isinstance(current, list):
            current = [current]
        current.append(value)
        args[key] = current
    else:
        args[key] = value


def optional_arg(opt: str, argv: list[str]) -> tuple[str, Any]:
    """Resolve `--opt`, consuming its value from `argv` when it takes one."""

    opt = translate_option(opt)

    negated = _NEGATED_RE.match(opt)
    if negated and negated.group(1) in BOOL_OPTIONS:
        return negated.group(1), False

    if opt not in BOOL_OPTIONS:
        return opt, argv.pop(0) if argv else None

    # A boolean flag takes a following number as its value, otherwise it is just set.
    if argv and _DIGITS_RE.match(argv[0]):
        return opt, int(argv.pop(0))
    return opt, True


def cull_options(
    specs: Mapping[str, Mapping[str, Any] | None] | None,
    argv: Sequence[str],
    *,
    valid_property: Callable[[str], bool] | None = None,
    owner: str = "builder",
) -> tuple[dict[str, Any], list[str]]:
    """Parse the extra `get_options` specs out of `argv`.

    Each spec maps an option name to `{type, default, action}`; a spec without
    a type is a flag. Unrecognized arguments are returned untouched, in order.
    """

    if not specs:
        return {}, list(argv)

    parser = argparse.ArgumentParser(prog=owner, add_help=False, allow_abbrev=False)
    values: dict[str, Any] = {}

    for name, raw_spec in specs.items():
        if valid_property is not None and valid_property(name):
            raise BuildError(
                f"Option specification '{name}' conflicts with a {owner} option of the same name"
            )
        spec = dict(raw_spec or {})
        flags = [f"--{name}"]
        if "_" in name:
            flags.append(f"--{name.replace('_', '-')}")

        kwargs: dict[str, Any] = {"dest": name, "default": argparse.SUPPRESS}
        kind = spec.get("type")
        action = spec.get("action")
        if action is not None:
            kwargs["action"] = action
        elif kind in (None, "bool"):
            kwargs["action"] = "store_true"
        if kind not in (None, "bool"):
            if kind not in _OPTION_TYPES:
                raise BuildError(f"Option specification '{name}' has unknown type {kind!r}")
            kwargs["type"] = _OPTION_TYPES[kind]
        parser.add_argument(*flags, **kwargs)

        if "default" in spec:
            values[name] = spec["default"]

    namespace, remaining = parser.parse_known_args(list(argv))
    values.update(vars(namespace))
    return values, remaining


def normalize_options(
    args: dict[str, Any],
    *,
    hash_properties: Iterable[str] = (),
) -> dict[str, Any]:
    """Hashify dict-valued options, expand `~` in path options, split `install_path html`."""

    for name in hash_properties:
        if name not in args:
            continue
        raw = args[name]
        if isinstance(raw, Mapping):
            args[name] = dict(raw)
            continue
        items = raw if isinstance(raw, list) else [raw]
        hashed: dict[str, Any] = {}
        for item in items:
            match = _HASH_ITEM_RE.match(str(item))
            if match is None:
                raise BuildError(f"Malformed '{name}' argument: '{item}' should be something like 'foo=bar'")
            hashed[match.group(1)] = match.group(2)
        args[name] = hashed

    for key in PATH_OPTIONS:
        if args.get(key) is not None:
            args[key] = detildefy(args[key])

    install_path = args.get("install_path")
    if isinstance(install_path, dict):
        expanded: dict[str, Any] = {}
        for subkey, value in install_path.items():
            value = detildefy(value)
            if subkey == "html":
                expanded["binhtml"] = value
                expanded["libhtml"] = value
            else:
                expanded[subkey] = value
        args["install_path"] = expanded

    return args


def options_from_mapping(
    options: Mapping[str, Any],
    *,
    hash_properties: Iterable[str] = (),
) -> dict[str, Any]:
    """Normalize an already-structured option mapping (rc file sections)."""

    args: dict[str, Any] = {}
    for key, value in options.items():
        args[translate_option(str(key))] = value
    return normalize_options(args, hash_properties=hash_properties)


def read_args(
    argv: Sequence[str],
    *,
    hash_properties: Iterable[str] = (),
    get_options: Mapping[str, Any] | None = None,
    valid_property: Callable[[str], bool] | None = None,
    owner: str = "builder",
) -> tuple[dict[str, Any], str | None]:
    """Return `(args, action)`; leftover positional words land in `args["ARGV"]`."""

    args, remaining = cull_options(get_options, argv, valid_property=valid_property, owner=owner)
    queue = list(remaining)
    action: str | None = None
    extra: list[str] = []

    while queue:
        token = queue.pop(0)
        assign = _ASSIGN_RE.match(token)
        if assign:
            read_arg(args, assign.group(1), assign.group(2))
            continue
        long_opt = _LONG_RE.match(token)
        if long_opt:
            opt, value = optional_arg(long_opt.group(1), queue)
            read_arg(args, opt, value)
            continue
        if action is None and _WORD_RE.match(token):
            action = token
            continue
        extra.append(token)

    args[ARGV_KEY] = extra
    return normalize_options(args, hash_properties=hash_properties), action


def merge_arglist(primary: Mapping[str, Any], secondary: Mapping[str, Any]) -> dict[str, Any]:
    """Merge two parsed option sets; `primary` wins, dict values fill missing keys only."""

    merged: dict[str, Any] = {
        key: dict(value) if isinstance(value, dict) else value for key, value in primary.items()
    }
    for key, value in secondary.items():
        if key not in primary:
            merged[key] = value
            continue
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            for subkey, subvalue in value.items():
                merged[key].setdefault(subkey, subvalue)
    return merged
