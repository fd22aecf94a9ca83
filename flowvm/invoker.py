"""Invocation capability.

The interpreter never talks to a transport directly. Hosts construct an
:class:`Invoker` once and pass it to the interpreter and to plugin handlers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from flowvm.errors import InvocationError

logger = logging.getLogger(__name__)

ActionCallable = Callable[[Any], Any]


@runtime_checkable
class Invoker(Protocol):
    async def invoke(self, name: str, params: Any, *, blocking: bool = True) -> Any:
        """Invoke action ``name``.

        Blocking invocations return the action result. Non-blocking ones return
        ``{"activationId": str}`` immediately. Rejections raise.
        """
        ...


class LocalInvoker:
    """In-process invoker backed by a dict of named callables.

    Actions may be plain or ``async`` callables taking the params. Non-blocking
    invocations run as asyncio tasks kept in ``activations`` by activation id
    until :meth:`wait` collects them. ``calls`` records every invocation for
    the lifetime of the invoker, so an instance is meant for one run or test.
    """

    def __init__(self, actions: Mapping[str, ActionCallable] | None = None) -> None:
        self.actions: dict[str, ActionCallable] = dict(actions or {})
        self.activations: dict[str, asyncio.Task[Any]] = {}
        self.calls: list[tuple[str, Any]] = []

    def register(self, name: str, action: ActionCallable) -> None:
        self.actions[name] = action

    async def invoke(self, name: str, params: Any, *, blocking: bool = True) -> Any:
        self.calls.append((name, params))
        action = self.actions.get(name)
        if action is None:
            raise InvocationError(name, "action not found")
        if not blocking:
            activation_id = uuid4().hex
            self.activations[activation_id] = asyncio.create_task(self._call(name, action, params))
            return {"activationId": activation_id}
        return await self._call(name, action, params)

    async def _call(self, name: str, action: ActionCallable, params: Any) -> Any:
        logger.debug("Invoking action %s", name)
        try:
            result = action(params)
            if inspect.isawaitable(result):
                result = await result
        except InvocationError:
            raise
        except Exception as exc:
            raise InvocationError(name, exc) from exc
        return result

    async def wait(self, activation_id: str) -> Any:
        """Await a non-blocking activation, forget it and return its result."""

        return await self.activations.pop(activation_id)


__all__ = ["ActionCallable", "Invoker", "LocalInvoker"]
