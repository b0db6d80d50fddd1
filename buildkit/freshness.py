from __future__ import annotations

import logging
import os
import time
from typing import Iterable

SECONDS_PER_DAY = 24 * 60 * 60

PathLike = str | os.PathLike[str]


def _as_list(value: PathLike | Iterable[PathLike]) -> list[PathLike]:
    if isinstance(value, (str, os.PathLike)):
        return [value]
    return list(value)


def age_in_days(path: PathLike, *, now: float) -> float:
    """Days since `path` was modified, measured from `now` (larger = older)."""

    return (now - os.stat(path).st_mtime) / SECONDS_PER_DAY


def up_to_date(
    source: PathLike | Iterable[PathLike],
    derived: PathLike | Iterable[PathLike],
    *,
    logger: logging.Logger | None = None,
    now: float | None = None,
) -> bool:
    """True when every derived path exists and is at least as fresh as every source."""

    sources = _as_list(source)
    derived_paths = _as_list(derived)

    if any(not os.path.exists(path) for path in derived_paths):
        return False

    now = time.time() if now is None else now
    log = logger or logging.getLogger(__name__)

    most_recent_source = now / SECONDS_PER_DAY
    for path in sources:
        if not os.path.exists(path):
            log.warning("Can't find source file %s for up-to-date check", path)
            continue
        age = age_in_days(path, now=now)
        if age < most_recent_source:
            most_recent_source = age

    for path in derived_paths:
        if age_in_days(path, now=now) > most_recent_source:
            return False
    return True
