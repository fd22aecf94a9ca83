"""Drive an execution across suspensions.

In production an external scheduler performs each suspended action and
re-invokes the composition with ``$resume``. :func:`drive` plays that role
in-process through an :class:`~flowvm.invoker.Invoker`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from flowvm.errors import InvocationError
from flowvm.interpreter import Interpreter
from flowvm.invoker import Invoker
from flowvm.result import Outcome, Suspended
from flowvm.state import RESUME_KEY

logger = logging.getLogger(__name__)


def resume_params(result: Any, suspended: Suspended) -> dict[str, Any]:
    """Merge an action result with the continuation token of ``suspended``."""

    payload = dict(result) if isinstance(result, Mapping) else {"value": result}
    payload[RESUME_KEY] = suspended.token.to_json()
    return payload


def rejection_payload(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, InvocationError) and not isinstance(exc.reason, BaseException):
        return {"error": exc.reason}
    return {"error": str(exc)}


async def drive(
    interpreter: Interpreter,
    params: Any,
    invoker: Invoker | None = None,
) -> Outcome:
    """Run until the execution finishes or fails, performing every suspended action."""

    invoker = invoker if invoker is not None else interpreter.invoker
    if invoker is None:
        raise ValueError("drive() needs an invoker to perform suspended actions")

    outcome = await interpreter.process(params)
    while isinstance(outcome, Suspended):
        logger.debug("Performing suspended action %s", outcome.action)
        try:
            result = await invoker.invoke(outcome.action, outcome.params)
        except Exception as exc:
            logger.warning("Action %s was rejected: %s", outcome.action, exc)
            result = rejection_payload(exc)
        outcome = await interpreter.process(resume_params(result, outcome))
    return outcome


def run_sync(interpreter: Interpreter, params: Any, invoker: Invoker | None = None) -> Outcome:
    """Blocking wrapper around :func:`drive`."""

    return asyncio.run(drive(interpreter, params, invoker))


__all__ = ["drive", "rejection_payload", "resume_params", "run_sync"]
