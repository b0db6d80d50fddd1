"""Plain-text help rendered from `ActionRegistry.describe()` rows."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from buildkit.actions import ActionRegistry


def render_action_listing(rows: Iterable[Mapping[str, Any]], *, columns: int = 2, width: int = 12) -> str:
    """Lay action names out column-major, the way `help` prints them."""

    names = [str(row["action"]) for row in rows]
    if not names:
        return ""

    per_column = (len(names) + columns - 1) // columns
    grid = [names[i : i + per_column] for i in range(0, len(names), per_column)]
    lines = []
    for index in range(per_column):
        cells = [column[index] for column in grid if index < len(column)]
        line = "  " + "".join(f"{name:<{width}}" + " " * 19 for name in cells[:-1]) + cells[-1]
        lines.append(line.rstrip())
    return "\n".join(lines) + "\n"


def render_action_doc(registry: ActionRegistry, action: str) -> str:
    rows = {row["action"]: row for row in registry.describe()}
    row = rows.get((action or "").strip())
    if row is None:
        message = f"No known action '{action}'"
        suggestions = registry.suggest(action)
        if suggestions:
            message += f" (did you mean: {', '.join(suggestions)})"
        return message
    if not row["doc"]:
        return f"Couldn't find any docs for action '{action}'"
    return f"{row['action']}\n\n    {row['doc']}"
