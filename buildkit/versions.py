"""Version constraint parsing and naive numeric version comparison.

Comparison is intentionally not semantic versioning: each operand is reduced to
its leading numeric prefix (after folding a trailing ``_NN`` alpha suffix into
the number) and compared as a float. ``1.2.3`` therefore compares as ``1.2``.
"""

from __future__ import annotations

import logging
import operator
import re
from typing import Any, Callable

ALLOWED_OPERATORS: tuple[str, ...] = ("<=", ">=", "<", ">", "==", "!=")

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<=": operator.le,
    ">=": operator.ge,
    "<": operator.lt,
    ">": operator.gt,
    "==": operator.eq,
    "!=": operator.ne,
}

_ALPHA_SUFFIX_RE = re.compile(r"_(\d+)\Z")
_LEADING_NUMBER_RE = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")
_BARE_VERSION_RE = re.compile(r"^\s*([\w.]+)\s*$")
_CONDITION_RE = re.compile(r"^\s*(<=?|>=?|==|!=)\s*([\w.]+)\s*$")
_CLAUSE_SPLIT_RE = re.compile(r"\s*,\s*")


def strip_alpha_suffix(version: str) -> str:
    """Fold a trailing ``_NN`` alpha marker into the number (``1.23_04`` -> ``1.2304``)."""

    return _ALPHA_SUFFIX_RE.sub(r"\1", version)


def numify(version: Any) -> float | None:
    if version is None:
        return None
    if isinstance(version, bool):
        return float(version)
    if isinstance(version, (int, float)):
        return float(version)
    match = _LEADING_NUMBER_RE.match(strip_alpha_suffix(str(version)))
    if match is None:
        return None
    return float(match.group(1))


def is_true_version(version: Any) -> bool:
    """Truthiness of a version string: ``None``, ``""`` and ``"0"`` are false."""

    if version is None:
        return False
    text = str(version)
    return text not in ("", "0")


def compare_versions(
    have: Any, op: str, need: Any, *, logger: logging.Logger | None = None
) -> bool:
    log = logger or logging.getLogger(__name__)
    expression = f"{have!r} {op} {need!r}"

    compare = _OPERATORS.get(op)
    if compare is None:
        log.warning("error comparing versions: '%s' unknown operator %r", expression, op)
        return False

    left = numify(have)
    right = numify(need)
    if left is None or right is None:
        bad = have if left is None else need
        log.warning("error comparing versions: '%s' non-numeric operand %r", expression, bad)
        return False

    return bool(compare(left, right))


def parse_conditions(spec: Any) -> list[str]:
    if spec is None:
        return [">= 0"]
    text = str(spec)
    if not text.strip():
        return [">= 0"]
    if _BARE_VERSION_RE.match(text):
        return [f">= {text.strip()}"]
    return [clause for clause in _CLAUSE_SPLIT_RE.split(text.strip()) if clause]


def parse_condition(clause: str, *, name: str | None = None) -> tuple[str, str]:
    match = _CONDITION_RE.match(clause)
    if match is None:
        label = f" for {name}" if name else ""
        raise ValueError(f"Invalid prerequisite condition '{clause}'{label}")
    return match.group(1), match.group(2)


def version_to_float(version: Any) -> str:
    """Render a dotted interpreter version as a float string (``3.11.4`` -> ``3.011004``)."""

    text = str(version)
    head, sep, tail = text.partition(".")
    if not sep:
        return text
    parts = tail.split(".")
    if len(parts) == 1 and len(parts[0]) >= 3:
        # already in float form (3.011)
        return text
    out = [head, "."]
    for part in parts:
        if part.isdigit():
            out.append(f"{int(part):03d}")
        else:
            out.append(part)
    return "".join(out)
