"""Action dispatch with prerequisite gating and at-most-once execution.

This module is intentionally app-agnostic and must not import `distbuild.*`.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, Iterator, Mapping, Protocol

from buildkit.actions import ActionRegistry
from buildkit.errors import BuildError

OverrideScope = Callable[[Mapping[str, Any], Mapping[str, Any]], ContextManager[Any]]
PrereqGate = Callable[[str], None]


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass
class DispatchContext:
    """State shared by every action reached from one top-level dispatch."""

    completed: set[str] = field(default_factory=set)
    stack: list[str] = field(default_factory=list)
    records: list[dict[str, Any]] = field(default_factory=list)
    overrides: dict[str, Any] = field(default_factory=dict)
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def current_action(self) -> str | None:
        return self.stack[-1] if self.stack else None


@dataclass
class ActionContext:
    """What an action handler receives."""

    dispatcher: "ActionDispatcher"
    session: DispatchContext
    action: str

    @property
    def target(self) -> Any:
        return self.dispatcher.target

    @property
    def logger(self) -> logging.Logger:
        return self.dispatcher.logger

    @property
    def args(self) -> dict[str, Any]:
        return self.session.args

    @property
    def path(self) -> str:
        return "/".join(self.session.stack)

    def depends_on(self, *actions: str) -> None:
        self.dispatcher.depends_on(self.session, *actions)


class ActionRecorder(Protocol):
    def on_action_start(self, logger: logging.Logger, path: str, **metrics: Any) -> None:
        ...

    def on_action_skip(self, logger: logging.Logger, path: str) -> None:
        ...

    def on_action_end(self, logger: logging.Logger, record: dict[str, Any]) -> None:
        ...

    def on_action_error(
        self, logger: logging.Logger, path: str, action: str, exc: Exception
    ) -> None:
        ...


class DefaultActionRecorder:
    def on_action_start(self, logger: logging.Logger, path: str, **metrics: Any) -> None:
        tokens: list[str] = []
        source = metrics.get("source")
        if isinstance(source, str) and source.strip():
            tokens.append(f"source={source.strip()}")
        if tokens:
            logger.debug("Action: %s (%s)", path, ", ".join(tokens))
        else:
            logger.debug("Action: %s", path)

    def on_action_skip(self, logger: logging.Logger, path: str) -> None:
        logger.debug("Action already completed: %s", path)

    def on_action_end(self, logger: logging.Logger, record: dict[str, Any]) -> None:
        logger.debug(
            "Completed action %s (elapsed=%.3fs)",
            record.get("path", "<unknown>"),
            float(record.get("elapsed", 0.0) or 0.0),
        )

    def on_action_error(
        self, logger: logging.Logger, path: str, action: str, exc: Exception
    ) -> None:
        logger.debug("Action failed: %s (%s)", path, exc)


class NullActionRecorder:
    def on_action_start(self, logger: logging.Logger, path: str, **metrics: Any) -> None:
        return

    def on_action_skip(self, logger: logging.Logger, path: str) -> None:
        return

    def on_action_end(self, logger: logging.Logger, record: dict[str, Any]) -> None:
        return

    def on_action_error(
        self, logger: logging.Logger, path: str, action: str, exc: Exception
    ) -> None:
        return


def _attach_action_error(exc: Exception, *, action_path: str, action: str) -> None:
    for attr, value in (("action_path", action_path), ("action_name", action)):
        if hasattr(exc, attr):
            continue
        try:
            setattr(exc, attr, value)
        except Exception:
            pass


class ActionDispatcher:
    def __init__(
        self,
        registry: ActionRegistry,
        *,
        target: Any = None,
        logger: logging.Logger | None = None,
        prereq_gate: PrereqGate | None = None,
        override_scope: OverrideScope | None = None,
        default_action: Callable[[], str | None] | None = None,
        recorder: ActionRecorder | None = None,
    ) -> None:
        self.registry = registry
        self.target = target
        self.logger = logger or logging.getLogger(__name__)
        self._prereq_gate = prereq_gate
        self._override_scope = override_scope
        self._default_action = default_action
        self._recorder = recorder or DefaultActionRecorder()
        self._current: DispatchContext | None = None
        self._last_run: tuple[dict[str, Any], ...] = ()
        self._validate_recorder(self._recorder)

    @property
    def current(self) -> DispatchContext | None:
        return self._current

    @property
    def last_run(self) -> tuple[dict[str, Any], ...]:
        """Records of the actions completed by the most recent top-level dispatch."""

        return self._last_run

    def _validate_recorder(self, recorder: ActionRecorder) -> None:
        required = ("on_action_start", "on_action_skip", "on_action_end", "on_action_error")
        for name in required:
            method = getattr(recorder, name, None)
            if method is None or not callable(method):
                raise TypeError(f"Action recorder missing required method: {name}")

    @contextmanager
    def session(
        self,
        *,
        overrides: Mapping[str, Any] | None = None,
        args: Mapping[str, Any] | None = None,
    ) -> Iterator[DispatchContext]:
        """Open a dispatch scope.

        A top-level session starts with an empty completed set; sessions opened
        while another is active share its completed set and action stack.
        Overrides are released on every exit path.
        """

        outer = self._current
        ctx = DispatchContext(
            completed=outer.completed if outer is not None else set(),
            stack=outer.stack if outer is not None else [],
            records=outer.records if outer is not None else [],
            overrides=dict(overrides or {}),
            args=dict(args or {}),
        )

        if self._override_scope is not None and (ctx.overrides or ctx.args):
            scope: ContextManager[Any] = self._override_scope(ctx.overrides, ctx.args)
        else:
            scope = nullcontext()

        self._current = ctx
        try:
            with scope:
                yield ctx
        finally:
            self._current = outer
            if outer is None:
                self._last_run = tuple(ctx.records)

    def dispatch(
        self,
        action: str | None = None,
        *,
        overrides: Mapping[str, Any] | None = None,
        args: Mapping[str, Any] | None = None,
    ) -> Any:
        if action is None or not str(action).strip():
            action = self._default_action() if self._default_action is not None else None
            if not action:
                raise BuildError("No build action specified")

        with self.session(overrides=overrides, args=args) as ctx:
            return self.call_action(ctx, str(action).strip())

    def call_action(self, ctx: DispatchContext, action: str) -> Any:
        if self._prereq_gate is not None:
            self._prereq_gate(action)

        action_path = "/".join([*ctx.stack, action])
        if action in ctx.completed:
            self._recorder.on_action_skip(self.logger, action_path)
            return None
        ctx.completed.add(action)

        ref = self.registry.find(action)
        if ref is None:
            message = f"No action '{action}' defined, try running the 'help' action."
            suggestions = self.registry.suggest(action)
            if suggestions:
                message += f" (did you mean: {', '.join(suggestions)})"
            raise BuildError(message, action=action)

        ctx.stack.append(action)
        started = time.monotonic()
        try:
            self._recorder.on_action_start(self.logger, action_path, source=ref.source)
            result = ref.handler(ActionContext(dispatcher=self, session=ctx, action=action))
            record: dict[str, Any] = {
                "action": action,
                "path": action_path,
                "source": ref.source,
                "elapsed": time.monotonic() - started,
                "created_at": utc_now_iso8601(),
            }
            ctx.records.append(record)
            self._recorder.on_action_end(self.logger, record)
            return result
        except Exception as exc:
            try:
                self._recorder.on_action_error(self.logger, action_path, action, exc)
            except Exception:
                self.logger.exception("Action recorder failed during error handling for %s", action_path)
            _attach_action_error(exc, action_path=action_path, action=action)
            raise
        finally:
            ctx.stack.pop()

    def depends_on(self, ctx: DispatchContext, *actions: str) -> None:
        for action in actions:
            self.call_action(ctx, action)
