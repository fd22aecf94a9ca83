"""Step results and their wire encoding."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeAlias

from flowvm.state import ContinuationToken


@dataclass(frozen=True)
class Continue:
    """Internal: keep stepping."""


CONTINUE = Continue()


@dataclass(frozen=True)
class AwaitExternal:
    """Internal: the instruction needs external invocations before it can finish.

    The run loop awaits ``action()``, installs the result as params and runs
    error inspection. ``action`` must convert invocation failures into
    error-shaped values itself.
    """

    action: Callable[[], Awaitable[Any]]
    description: str = ""


@dataclass(frozen=True)
class Suspended:
    """Execution stopped at an ``action`` instruction."""

    action: str
    params: Any
    token: ContinuationToken

    def to_wire(self) -> dict[str, Any]:
        return {"action": self.action, "params": self.params, "state": self.token.to_json()}


@dataclass(frozen=True)
class Finished:
    params: Any

    def to_wire(self) -> dict[str, Any]:
        return {"params": self.params}


@dataclass(frozen=True)
class Failed:
    """Terminal failure.

    ``error`` is the error-shaped params for an unhandled recoverable error, or
    ``{"code", "error"}`` for a fatal one, in which case ``fatal`` is set.
    """

    error: dict[str, Any]
    fatal: bool = False
    exception: BaseException | None = None

    def to_wire(self) -> dict[str, Any]:
        return dict(self.error)


StepResult: TypeAlias = Continue | AwaitExternal | Suspended | Finished | Failed
Outcome: TypeAlias = Suspended | Finished | Failed


__all__ = [
    "AwaitExternal",
    "CONTINUE",
    "Continue",
    "Failed",
    "Finished",
    "Outcome",
    "StepResult",
    "Suspended",
]
