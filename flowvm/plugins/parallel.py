"""Fan-out combinators: ``parallel`` and ``map``.

Both lower to a single instruction. Their handlers issue every invocation
concurrently through the injected invoker and join the results in input
order before the interpreter continues. The first rejection observed turns
the combined result into a single error; invocations already started are
not cancelled.

    {"type": "parallel", "components": ["resize", {"type": "action", "name": "tag"}]}
    {"type": "map", "task": "resize"}
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping
from typing import Any

from flowvm._vendor import FrozenDict
from flowvm.compiler import LoweringContext
from flowvm.errors import CompileError, InvocationError
from flowvm.instructions import Instruction
from flowvm.interpreter import StepContext
from flowvm.invoker import Invoker
from flowvm.result import AwaitExternal

logger = logging.getLogger(__name__)

PARALLEL = "parallel"
MAP = "map"


def _task(spec: Any, node: Mapping[str, Any]) -> FrozenDict:
    if isinstance(spec, str) and spec:
        return FrozenDict(name=spec, blocking=True)
    if isinstance(spec, Mapping) and spec.get("type", "action") == "action":
        name = spec.get("name")
        if isinstance(name, str) and name:
            return FrozenDict(name=name, blocking=not spec.get("async", False))
    raise CompileError(f"{node.get('type')} expects action names or action nodes", spec)


# ============================================================================
# Lowerings
# ============================================================================


def lower_parallel(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    components = node.get("components")
    if not isinstance(components, (list, tuple)):
        raise CompileError("parallel node has no components field of type list", node)
    return [ctx.instruction(PARALLEL, components=tuple(_task(c, node) for c in components))]


def lower_map(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    if "task" not in node:
        raise CompileError("map node has no task field", node)
    return [ctx.instruction(MAP, task=_task(node["task"], node))]


# ============================================================================
# Handlers
# ============================================================================


async def _invoke_one(invoker: Invoker, task: Mapping[str, Any], params: Any) -> Any:
    result = await invoker.invoke(task["name"], params, blocking=task["blocking"])
    if task["blocking"] and isinstance(result, Mapping) and "error" in result:
        raise InvocationError(task["name"], result["error"])
    return result


async def _join(invoker: Invoker, calls: list[tuple[Mapping[str, Any], Any]], location: str) -> Any:
    try:
        results = await asyncio.gather(*(_invoke_one(invoker, task, params) for task, params in calls))
    except InvocationError as exc:
        logger.warning("Invocation of %s failed at %s: %s", exc.name, location, exc.reason)
        if isinstance(exc.reason, BaseException):
            return {"error": f"An exception was caught at {location} (see log for details)"}
        return {"error": exc.reason}
    except Exception:
        logger.exception("Fan-out failed at %s", location)
        return {"error": f"An exception was caught at {location} (see log for details)"}
    return list(results)


def handle_parallel(ctx: StepContext) -> AwaitExternal:
    tasks = ctx.instruction.components
    invoker = ctx.invoker
    calls = [(task, copy.deepcopy(ctx.state.params)) for task in tasks]
    location = ctx.location
    return AwaitExternal(lambda: _join(invoker, calls, location), f"parallel x{len(calls)}")


def handle_map(ctx: StepContext) -> AwaitExternal | None:
    task = ctx.require("task")
    params = ctx.state.params
    values = params.get("value") if isinstance(params, dict) else params
    if not isinstance(values, list):
        ctx.state.params = {"error": f"map combinator at {ctx.location} expects a list in params.value"}
        ctx.inspect()
        return None
    shared = {k: v for k, v in params.items() if k != "value"} if isinstance(params, dict) else {}
    calls = []
    for value in values:
        item = copy.deepcopy(shared)
        if isinstance(value, dict):
            item.update(copy.deepcopy(value))
        else:
            item["value"] = copy.deepcopy(value)
        calls.append((task, item))
    invoker = ctx.invoker
    location = ctx.location
    return AwaitExternal(lambda: _join(invoker, calls, location), f"map {task['name']} x{len(calls)}")


class ParallelPlugin:
    def lowerings(self) -> dict[str, Any]:
        return {PARALLEL: lower_parallel, MAP: lower_map}

    def handlers(self) -> dict[str, Any]:
        return {PARALLEL: handle_parallel, MAP: handle_map}


__all__ = ["MAP", "PARALLEL", "ParallelPlugin"]
