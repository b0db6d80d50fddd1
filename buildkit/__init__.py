"""Reusable build kernel (dispatch, prerequisites, install paths, properties).

This package is intentionally independent of `distbuild.*`. Project-specific
conventions (which actions exist, where files live, how arguments are read)
must live in the consuming application.
"""

from buildkit.actions import ActionHandler, ActionRef, ActionRegistry
from buildkit.dispatch import (
    ActionContext,
    ActionDispatcher,
    ActionRecorder,
    DefaultActionRecorder,
    DispatchContext,
    NullActionRecorder,
    utc_now_iso8601,
)
from buildkit.errors import BuildError
from buildkit.freshness import up_to_date
from buildkit.modinfo import ModuleInspector, ModuleResolution, StaticModuleInspector
from buildkit.paths import INSTALL_TYPES, InstallPaths, default_install_config
from buildkit.prereqs import (
    NOT_INSTALLED,
    InstalledStatus,
    PrerequisiteChecker,
    format_prereq_report,
    prereq_action_types,
    validate_action_prereqs,
)
from buildkit.properties import PropertyAccessor, PropertyRegistry
from buildkit.versions import compare_versions, parse_conditions

__all__ = [
    "INSTALL_TYPES",
    "NOT_INSTALLED",
    "ActionContext",
    "ActionDispatcher",
    "ActionHandler",
    "ActionRecorder",
    "ActionRef",
    "ActionRegistry",
    "BuildError",
    "DefaultActionRecorder",
    "DispatchContext",
    "InstallPaths",
    "InstalledStatus",
    "ModuleInspector",
    "ModuleResolution",
    "NullActionRecorder",
    "PrerequisiteChecker",
    "PropertyAccessor",
    "PropertyRegistry",
    "StaticModuleInspector",
    "compare_versions",
    "default_install_config",
    "format_prereq_report",
    "parse_conditions",
    "prereq_action_types",
    "up_to_date",
    "utc_now_iso8601",
    "validate_action_prereqs",
]
