"""The stepping interpreter.

``step`` executes exactly one instruction and reports what should happen
next. ``run`` drives ``step`` until the execution finishes, fails, or
suspends at an ``action`` instruction:

1. Fetch the instruction at ``state.index`` (out of range means terminal)
2. Advance ``state.index`` by the instruction's ``next``
3. Dispatch to the handler registered for the instruction kind
4. Handlers may rewrite ``state.index`` (``choice``, ``stop``) or return a
   request for the run loop (``Suspended``, ``AwaitExternal``)

Instruction handlers are plain functions ``(StepContext) -> StepResult | None``
collected in a dict, the same shape plugins contribute.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from flowvm._vendor import json_clone, thaw
from flowvm.config import Settings
from flowvm.errors import FlowError, InternalError, UserError, normalize_error
from flowvm.frames import BindingFrame, HandlerFrame, MarkerFrame
from flowvm.instructions import (
    ACTION,
    ASYNC,
    CHOICE,
    EMPTY,
    EXIT,
    FUNCTION,
    LET,
    PASS,
    STOP,
    TRY,
    VALUE,
    Composition,
    Instruction,
)
from flowvm.invoker import Invoker
from flowvm.result import (
    CONTINUE,
    AwaitExternal,
    Continue,
    Failed,
    Finished,
    Outcome,
    StepResult,
    Suspended,
)
from flowvm.scope import current_bindings, pop, push, unwind, write_back
from flowvm.state import RESUME_KEY, TERMINAL, ContinuationToken, ExecutionState

logger = logging.getLogger(__name__)


# ============================================================================
# Error inspection
# ============================================================================


def inspect_params(state: ExecutionState) -> None:
    """Wrap non-record params and route error-shaped params to a handler.

    This is the only place where error-vs-value branching happens. An error
    discards every other field, then frames are popped until a handler frame
    is found. Without one (or when a fork marker blocks the search) the
    execution jumps to the terminal index.
    """

    if not isinstance(state.params, dict):
        state.params = {"value": state.params}
    if "error" in state.params:
        state.params = {"error": state.params["error"]}
        target = unwind(state.stack)
        state.index = TERMINAL if target is None else target


# ============================================================================
# Step context
# ============================================================================


@dataclass
class StepContext:
    """Everything an instruction handler may touch.

    ``index`` is the position of the instruction being executed;
    ``state.index`` already points at the default successor.
    """

    state: ExecutionState
    instruction: Instruction
    index: int
    interpreter: Interpreter

    @property
    def invoker(self) -> Invoker:
        invoker = self.interpreter.invoker
        if invoker is None:
            raise InternalError(f"{self.instruction.kind} instruction requires an invoker")
        return invoker

    @property
    def settings(self) -> Settings:
        return self.interpreter.settings

    @property
    def location(self) -> str:
        return self.instruction.path or f"instruction {self.index}"

    def require(self, field: str) -> Any:
        value = getattr(self.instruction, field)
        if value is None:
            raise InternalError(
                f"State {self.index} ({self.instruction.kind}) has no {field.rstrip('_')} field"
            )
        return value

    def inspect(self) -> None:
        inspect_params(self.state)


# ============================================================================
# Core instruction handlers
# ============================================================================


def handle_pass(ctx: StepContext) -> None:
    return None


def handle_empty(ctx: StepContext) -> None:
    ctx.inspect()


def handle_choice(ctx: StepContext) -> None:
    """Branch on the Python truthiness of ``params["value"]``.

    Empty lists and empty mappings take the ``else`` branch.
    """

    then = ctx.require("then")
    else_ = ctx.require("else_")
    params = ctx.state.params
    test = params.get("value") if isinstance(params, dict) else params
    ctx.state.index = ctx.index + (then if test else else_)


def handle_try(ctx: StepContext) -> None:
    push(ctx.state.stack, HandlerFrame(ctx.index + ctx.require("catch")))


def handle_exit(ctx: StepContext) -> None:
    pop(ctx.state.stack)


def handle_let(ctx: StepContext) -> None:
    if ctx.instruction.mask:
        push(ctx.state.stack, BindingFrame(None))
        return
    push(ctx.state.stack, BindingFrame(thaw(ctx.require("let"))))


def handle_value(ctx: StepContext) -> None:
    ctx.state.params = thaw(ctx.instruction.value)
    ctx.inspect()


def handle_function(ctx: StepContext) -> None:
    body = ctx.require("function")
    state = ctx.state
    env = current_bindings(state.stack)
    try:
        result = body(state.params, env)
    except UserError as exc:
        result = {"error": exc.payload}
    except Exception:
        logger.exception("Function combinator threw an exception at %s", ctx.location)
        result = {
            "error": f"Function combinator threw an exception at {ctx.location} (see log for details)"
        }
    try:
        for name, value in env.items():
            write_back(state.stack, name, value)
    except (TypeError, ValueError):
        logger.exception("Function combinator stored an invalid variable at %s", ctx.location)
        result = {"error": f"Function combinator stored a non-serializable variable at {ctx.location}"}
    if callable(result):
        result = {"error": f"Function combinator evaluated to a function type at {ctx.location}"}
    try:
        # a body with only side effects keeps the current params
        state.params = json_clone(state.params if result is None else result)
    except (TypeError, ValueError):
        state.params = {"error": f"Function combinator returned a non-serializable value at {ctx.location}"}
    ctx.inspect()


def handle_action(ctx: StepContext) -> Suspended:
    name = ctx.require("name")
    return Suspended(action=name, params=ctx.state.params, token=ctx.state.token())


def handle_async(ctx: StepContext) -> AwaitExternal:
    return_ = ctx.require("return_")
    state = ctx.state
    invoker = ctx.invoker
    name = ctx.settings.composition_name or ctx.interpreter.composition.name
    location = ctx.location

    fork = state.fork()
    params = fork.params if isinstance(fork.params, dict) else {"value": fork.params}
    # the fork resumes at the body's first instruction behind a boundary marker
    params[RESUME_KEY] = ContinuationToken(
        index=state.index, stack=[MarkerFrame(), *fork.stack], session=state.session
    ).to_json()
    state.index = ctx.index + return_

    async def fork_composition() -> Any:
        if name is None:
            return {"error": f"Async combinator at {location} requires a composition name"}
        try:
            response = await invoker.invoke(name, params, blocking=False)
        except Exception:
            logger.exception("Async combinator failed to invoke composition at %s", location)
            return {
                "error": f"Async combinator failed to invoke composition at {location} (see log for details)"
            }
        activation_id = response.get("activationId") if isinstance(response, Mapping) else response
        return {"method": "async", "activationId": activation_id, "sessionId": state.session}

    return AwaitExternal(fork_composition, f"async fork of {name}")


def handle_stop(ctx: StepContext) -> None:
    ctx.state.index = TERMINAL


def core_handlers() -> dict[str, Any]:
    return {
        PASS: handle_pass,
        EMPTY: handle_empty,
        CHOICE: handle_choice,
        TRY: handle_try,
        EXIT: handle_exit,
        LET: handle_let,
        VALUE: handle_value,
        FUNCTION: handle_function,
        ACTION: handle_action,
        ASYNC: handle_async,
        STOP: handle_stop,
    }


# ============================================================================
# Interpreter
# ============================================================================


class Interpreter:
    """Executes one compiled composition.

    The instruction array is shared read-only; every execution owns its own
    :class:`ExecutionState`. The invoker is only needed by instructions that
    call out (``async`` and plugin kinds); ``action`` always suspends.
    """

    def __init__(
        self,
        composition: Composition,
        invoker: Invoker | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.composition = composition
        self.instructions = composition.instructions
        self.handlers = composition.handlers or core_handlers()
        self.invoker = invoker
        self.settings = settings if settings is not None else Settings.from_env()

    # ------------------------------------------------------------------
    # State construction
    # ------------------------------------------------------------------

    def start(self, params: Any) -> ExecutionState:
        return ExecutionState(
            index=self.composition.entry,
            stack=[],
            params=params,
            session=self.settings.session or uuid4().hex,
        )

    def resume(self, token: ContinuationToken, result: Any) -> ExecutionState:
        """Rebuild the state for ``token`` with ``result`` as params.

        Error inspection runs once because the external result may itself be
        error-shaped.
        """

        state = token.restore(result)
        if state.session is None:
            state.session = self.settings.session or uuid4().hex
        if not -1 <= state.index <= len(self.instructions):
            raise InternalError(f"Resume index {state.index} is out of range")
        inspect_params(state)
        return state

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self, state: ExecutionState) -> StepResult:
        index = state.index
        if index == TERMINAL or index == len(self.instructions):
            return self._finish(state)
        if not 0 <= index < len(self.instructions):
            raise InternalError(f"Instruction index {index} is out of range")

        instruction = self.instructions[index]
        logger.log(
            logging.INFO if self.settings.trace else logging.DEBUG,
            "Entering composition%s [%d] %s",
            instruction.path or "",
            index,
            instruction.kind,
        )
        state.index = index + instruction.next
        handler = self.handlers.get(instruction.kind)
        if handler is None:
            raise InternalError(f'unexpected "{instruction.kind}" combinator')
        result = handler(StepContext(state, instruction, index, self))
        return CONTINUE if result is None else result

    async def run(self, state: ExecutionState) -> Outcome:
        """Step until the execution finishes, fails, or suspends."""

        steps = 0
        while True:
            try:
                result = self.step(state)
                if isinstance(result, AwaitExternal):
                    state.params = await result.action()
                    inspect_params(state)
                    result = CONTINUE
                if isinstance(result, Continue):
                    steps += 1
                    max_steps = self.settings.max_steps
                    if max_steps is not None and steps > max_steps:
                        raise InternalError(f"Exceeded {max_steps} steps")
                    continue
            except FlowError as exc:
                return self._abort(exc)
            except Exception as exc:
                logger.exception("Unexpected interpreter failure")
                return self._abort(InternalError(str(exc) or type(exc).__name__))
            return result

    async def process(self, params: Any) -> Outcome:
        """Start or resume an execution from invocation params.

        Params carrying ``$resume`` continue the execution described by that
        token, with the remaining params as the result of the awaited action.
        """

        resume = None
        if isinstance(params, dict) and RESUME_KEY in params:
            params = dict(params)
            resume = params.pop(RESUME_KEY)
        try:
            if resume is not None:
                state = self.resume(ContinuationToken.from_json(resume), params)
            else:
                state = self.start(params)
        except FlowError as exc:
            return self._abort(exc)
        return await self.run(state)

    async def execute(self, params: Any) -> dict[str, Any]:
        """Wire-level entry point.

        Returns ``{"params"}`` on success, the error-shaped params on failure,
        or ``{"action", "params", "state"}`` when suspended.
        """

        return (await self.process(params)).to_wire()

    # ------------------------------------------------------------------
    # Terminal results
    # ------------------------------------------------------------------

    def _finish(self, state: ExecutionState) -> Finished | Failed:
        logger.info("Entering final state")
        logger.info("%s", state.params)
        if isinstance(state.params, dict) and "error" in state.params:
            return Failed(error=dict(state.params))
        return Finished(state.params)

    def _abort(self, exc: FlowError) -> Failed:
        logger.error("Composition aborted: %s", exc)
        return Failed(error=normalize_error(exc), fatal=True, exception=exc)


__all__ = [
    "Interpreter",
    "StepContext",
    "core_handlers",
    "inspect_params",
]
