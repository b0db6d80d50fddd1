"""Prerequisite evaluation: requires / recommends / conflicts buckets.

Conflicts invert the usual polarity: a conflicts entry is a failure when its
constraint IS satisfied by the installed version.
"""

from __future__ import annotations

import logging
import platform
import sys
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Mapping

from buildkit.errors import BuildError
from buildkit.modinfo import ModuleInspector, StaticModuleInspector
from buildkit.versions import (
    compare_versions,
    is_true_version,
    parse_condition,
    parse_conditions,
    version_to_float,
)

NOT_INSTALLED = "<none>"
INTERPRETER_NAME = "python"

PREREQ_TYPES: tuple[str, ...] = ("requires", "recommends", "conflicts")
GLOBAL_PREREQ_TYPES: tuple[str, ...] = ("requires", "build_requires", "recommends", "conflicts")
LEGACY_ACTIONS: tuple[str, ...] = ("build",)


@dataclass
class InstalledStatus:
    name: str
    need: Any
    have: str | None = None
    ok: bool = False
    message: str | None = None
    conflicts: Any = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def interpreter_version() -> str:
    return version_to_float(platform.python_version())


def prereq_action_types(actions: Iterable[str]) -> tuple[str, ...]:
    """Global buckets first, then `<action>_<type>` for every action.

    `build_requires` is both a global bucket and the `build` action's requires
    bucket; it is listed once.
    """

    out: list[str] = list(GLOBAL_PREREQ_TYPES)
    for action in actions:
        for kind in PREREQ_TYPES:
            name = f"{action}_{kind}"
            if name not in out:
                out.append(name)
    return tuple(out)


def _need_label(need: Any) -> str:
    text = "" if need is None else str(need)
    if text.lstrip()[:1] in ("!", "=", "<", ">"):
        return text
    return f"> {text}"


class PrerequisiteChecker:
    def __init__(
        self,
        *,
        inspector: ModuleInspector | None = None,
        resident: Mapping[str, Any] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.inspector = inspector or StaticModuleInspector()
        self._resident = resident
        self.logger = logger or logging.getLogger(__name__)

    @property
    def resident(self) -> Mapping[str, Any]:
        return self._resident if self._resident is not None else sys.modules

    def _resident_version(self, name: str) -> str | None:
        module = self.resident.get(name)
        if module is None:
            return None
        version = getattr(module, "__version__", None)
        if version is None or version == "":
            return None
        return str(version)

    def check_installed_status(self, name: str, spec: Any) -> InstalledStatus:
        status = InstalledStatus(name=name, need=spec)

        if name == INTERPRETER_NAME:
            status.have = interpreter_version()
        else:
            resident = self._resident_version(name)
            if resident is not None:
                status.have = resident
            else:
                resolution = self.inspector.resolve(name)
                if not resolution.found:
                    status.have = NOT_INSTALLED
                    status.message = f"Prerequisite {name} isn't installed"
                    return status

                status.have = resolution.version
                if is_true_version(spec) and not is_true_version(status.have):
                    status.have = None
                    status.message = f"Couldn't find a version in prerequisite {name}"
                    return status

        for clause in parse_conditions(spec):
            try:
                op, version = parse_condition(clause, name=name)
            except ValueError as exc:
                self.logger.warning("%s", exc)
                status.message = str(exc)
                return status

            if name == INTERPRETER_NAME:
                version = version_to_float(version)

            # a module does not have to declare a version to satisfy ">= 0"
            if op == ">=" and not is_true_version(version):
                continue

            if not compare_versions(status.have, op, version, logger=self.logger):
                status.message = (
                    f"Version {status.have} of {name} is installed, but we need version {op} {version}"
                )
                return status

        status.ok = True
        return status

    def check_installed_version(self, name: str, spec: Any) -> str:
        status = self.check_installed_status(name, spec)
        if status.ok:
            if status.have and status.have != NOT_INSTALLED:
                return status.have
            return "0 but true"
        raise ValueError(status.message or f"Prerequisite {name} not satisfied")

    def prereq_failures(
        self,
        info: Mapping[str, Mapping[str, Any] | None],
        types: Iterable[str],
    ) -> dict[str, dict[str, InstalledStatus]] | None:
        out: dict[str, dict[str, InstalledStatus]] = {}

        for kind in types:
            prereqs = info.get(kind) or {}
            for name, spec in prereqs.items():
                status = self.check_installed_status(name, spec)

                if kind.endswith("conflicts"):
                    if not status.ok:
                        continue
                    status.conflicts = status.need
                    status.need = None
                    status.message = (
                        f"Installed version '{status.have}' of {name} conflicts with this distribution"
                    )
                elif kind.endswith("recommends"):
                    if status.ok:
                        continue
                    if status.have == NOT_INSTALLED:
                        status.message = f"Optional prerequisite {name} isn't installed"
                    else:
                        status.message = (
                            f"Version {status.have} of {name} is installed, but we prefer to have {spec}"
                        )
                elif status.ok:
                    continue

                out.setdefault(kind, {})[name] = status

        return out or None


def action_prereq_failure_message(
    action: str,
    failures: Mapping[str, Mapping[str, InstalledStatus]] | None,
    *,
    ignore_requires: bool = False,
    ignore_conflicts: bool = False,
    legacy_actions: Iterable[str] = LEGACY_ACTIONS,
    logger: logging.Logger | None = None,
) -> str | None:
    """Build the batched abort message for one action (or None when it may run).

    Only `<action>_requires` and `<action>_conflicts` are consulted; recommends
    never block an action.
    """

    if not failures:
        return None

    log = logger or logging.getLogger(__name__)
    fail_msg = ""

    requires = failures.get(f"{action}_requires")
    if requires and not ignore_requires:
        text = f"Missing prerequisite module versions for action '{action}':\n"
        for name, info in requires.items():
            text += f"  Requested module '{name} {_need_label(info.need)}' but found {info.have}\n"
        if action in tuple(legacy_actions):
            log.warning(
                "%s\nIgnoring for backwards compatibility.\n"
                "This will be a fatal error in future versions.\n",
                text,
            )
        else:
            fail_msg += text

    conflicts = failures.get(f"{action}_conflicts")
    if conflicts and not ignore_conflicts:
        fail_msg += f"Found conflicting module requirements for action '{action}':\n"
        for name, info in conflicts.items():
            fail_msg += (
                f"  Requested module '{name} {_need_label(info.conflicts)}' "
                f"conflicts with installed version {info.have}\n"
            )

    return fail_msg or None


def validate_action_prereqs(
    action: str,
    failures: Mapping[str, Mapping[str, InstalledStatus]] | None,
    **kwargs: Any,
) -> None:
    message = action_prereq_failure_message(action, failures, **kwargs)
    if message:
        raise BuildError(f"Aborting '{action}' action.\n{message}", action=action)


def format_prereq_report(
    failures: Mapping[str, Mapping[str, InstalledStatus]] | None,
    types: Iterable[str],
) -> list[str]:
    if not failures:
        return []
    lines: list[str] = []
    for kind in types:
        bucket = failures.get(kind)
        if not bucket:
            continue
        prefix = "" if kind.endswith("recommends") else "ERROR: "
        for status in bucket.values():
            lines.append(f" * {prefix}{status.message}")
    return lines
