"""Lower a composition tree into a flat instruction array.

Each node kind has a lowering that returns a locally complete run of
instructions: the first element is the entry and every jump is relative, so
runs are spliced by plain concatenation. Offsets only ever change through
``dataclasses.replace`` on a freshly lowered run.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from flowvm._vendor import copy_tree, freeze, json_clone
from flowvm.errors import CompileError
from flowvm.functions import FunctionBody
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

if TYPE_CHECKING:
    from flowvm.registry import LoweringTable, Registry

logger = logging.getLogger(__name__)


# ============================================================================
# Lowering context
# ============================================================================


@dataclass(frozen=True)
class LoweringContext:
    """Passed to every lowering.

    ``path`` is the provenance label inherited by instructions emitted for the
    current node.
    """

    lowerings: LoweringTable
    functions: Mapping[str, FunctionBody]
    path: str | None = None

    def compile(self, node: Any) -> list[Instruction]:
        if not isinstance(node, Mapping):
            raise CompileError("Composition node must be a mapping", node)
        kind = node.get("type")
        if not isinstance(kind, str):
            raise CompileError("Composition node has no type field of type string", node)
        lowering = self.lowerings.get(kind)
        if lowering is None:
            raise CompileError(f"Unknown composition node type {kind!r}", node)
        path = node.get("path", self.path)
        if path is not None and not isinstance(path, str):
            raise CompileError("Composition node path must be a string", node)
        child = replace(self, path=path) if path != self.path else self
        fsm = lowering(node, child)
        if not fsm:
            raise CompileError(f"Lowering for {kind!r} produced no instructions", node)
        return fsm

    def compile_many(self, nodes: Any) -> list[Instruction]:
        """Concatenate the runs of ``nodes``; no nodes gives a single ``empty``."""

        if not isinstance(nodes, (list, tuple)):
            raise CompileError("Expected a list of composition nodes", nodes)
        if not nodes:
            return [self.instruction(EMPTY)]
        fsm: list[Instruction] = []
        for node in nodes:
            fsm.extend(self.compile(node))
        return fsm

    def compile_optional(self, node: Any) -> list[Instruction]:
        return self.compile_many([]) if node is None else self.compile(node)

    def instruction(self, kind: str, **fields: Any) -> Instruction:
        return Instruction(kind=kind, path=self.path, **fields)


def _field(node: Mapping[str, Any], name: str) -> Any:
    if name not in node:
        raise CompileError(f"Composition node of type {node.get('type')!r} has no {name} field", node)
    return node[name]


def _single(node: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = _field(node, name)
    if not isinstance(value, Mapping):
        raise CompileError(
            f"The {name} of a {node.get('type')!r} node must be exactly one composition node", node
        )
    return value


def _retarget(fsm: list[Instruction], index: int, **offsets: int) -> None:
    fsm[index] = replace(fsm[index], **offsets)


# ============================================================================
# Core lowerings
# ============================================================================


def lower_sequence(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    return ctx.compile_many(_field(node, "components"))


def lower_action(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    name = _field(node, "name")
    if not isinstance(name, str) or not name:
        raise CompileError("Action name must be a non-empty string", node)
    return [ctx.instruction(ACTION, name=name)]


def lower_function(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    body = _field(node, "function")
    if isinstance(body, str):
        if body not in ctx.functions:
            raise CompileError(f"Unknown function {body!r}", node)
        return [ctx.instruction(FUNCTION, name=body, function=ctx.functions[body])]
    if not callable(body):
        raise CompileError("Function body must be callable or the name of a registered function", node)
    return [ctx.instruction(FUNCTION, function=body)]


def lower_value(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    try:
        value = json_clone(_field(node, "value"))
    except (TypeError, ValueError) as exc:
        raise CompileError(f"Value is not JSON serializable: {exc}", node) from exc
    return [ctx.instruction(VALUE, value=freeze(value))]


def lower_async(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    body = ctx.compile_many(_field(node, "components"))
    return [
        ctx.instruction(ASYNC, return_=len(body) + 2),
        *body,
        ctx.instruction(STOP),
        ctx.instruction(PASS),
    ]


def lower_let(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    declarations = _field(node, "declarations")
    if not isinstance(declarations, Mapping) or not all(isinstance(k, str) for k in declarations):
        raise CompileError("Let declarations must be a mapping with string keys", node)
    try:
        declarations = json_clone(declarations)
    except (TypeError, ValueError) as exc:
        raise CompileError(f"Let declarations are not JSON serializable: {exc}", node) from exc
    return [
        ctx.instruction(LET, let=freeze(declarations)),
        *ctx.compile_many(_field(node, "components")),
        ctx.instruction(EXIT),
    ]


def lower_mask(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    return [
        ctx.instruction(LET, mask=True),
        *ctx.compile_many(_field(node, "components")),
        ctx.instruction(EXIT),
    ]


def lower_try(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    handler = [*ctx.compile(_single(node, "handler")), ctx.instruction(PASS)]
    fsm = [
        ctx.instruction(TRY),
        *ctx.compile(_single(node, "body")),
        ctx.instruction(EXIT),
        *handler,
    ]
    _retarget(fsm, 0, catch=len(fsm) - len(handler))
    # exit skips the handler and lands on the trailing pass
    _retarget(fsm, len(fsm) - len(handler) - 1, next=len(handler))
    return fsm


def lower_finally(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    finalizer = ctx.compile(_single(node, "finalizer"))
    fsm = [
        ctx.instruction(TRY),
        *ctx.compile(_single(node, "body")),
        ctx.instruction(EXIT),
        *finalizer,
    ]
    _retarget(fsm, 0, catch=len(fsm) - len(finalizer))
    return fsm


def lower_if(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    consequent = ctx.compile(_single(node, "consequent"))
    alternate = [*ctx.compile_optional(node.get("alternate")), ctx.instruction(PASS)]
    fsm = [
        ctx.instruction(PASS),
        *ctx.compile(_single(node, "test")),
        ctx.instruction(CHOICE, then=1, else_=len(consequent) + 1),
        *consequent,
        *alternate,
    ]
    _retarget(fsm, len(fsm) - len(alternate) - 1, next=len(alternate))
    return fsm


def lower_while(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    body = ctx.compile(_single(node, "body"))
    fsm = [
        ctx.instruction(PASS),
        *ctx.compile(_single(node, "test")),
        ctx.instruction(CHOICE, then=1, else_=len(body) + 1),
        *body,
        ctx.instruction(PASS),
    ]
    _retarget(fsm, len(fsm) - 2, next=2 - len(fsm))
    return fsm


def lower_dowhile(node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]:
    fsm = [
        ctx.instruction(PASS),
        *ctx.compile(_single(node, "body")),
        *ctx.compile(_single(node, "test")),
        ctx.instruction(CHOICE, else_=1),
        ctx.instruction(PASS),
    ]
    _retarget(fsm, len(fsm) - 2, then=2 - len(fsm))
    return fsm


def core_lowerings() -> dict[str, Any]:
    return {
        "sequence": lower_sequence,
        "action": lower_action,
        "function": lower_function,
        "value": lower_value,
        "async": lower_async,
        "let": lower_let,
        "mask": lower_mask,
        "try": lower_try,
        "finally": lower_finally,
        "if": lower_if,
        "while": lower_while,
        "dowhile": lower_dowhile,
        "do-while": lower_dowhile,
    }


# ============================================================================
# Entry points
# ============================================================================


def validate_offsets(fsm: list[Instruction] | tuple[Instruction, ...]) -> None:
    """Check every jump lands inside ``[0, len(fsm)]``; the end index is terminal."""

    size = len(fsm)
    for index, instruction in enumerate(fsm):
        for label, offset in instruction.targets().items():
            target = index + offset
            if not 0 <= target <= size:
                raise CompileError(
                    f"Instruction {index} ({instruction.kind}) has {label} offset {offset:+d} "
                    f"outside of the composition (0..{size})"
                )


def compile_node(
    node: Any,
    registry: Registry | None = None,
    *,
    functions: Mapping[str, FunctionBody] | None = None,
) -> list[Instruction]:
    """Lower ``node`` to a relocatable run of instructions."""

    if registry is None:
        from flowvm.registry import default_registry

        registry = default_registry()
    ctx = LoweringContext(lowerings=registry.lowerings, functions=functions or {})
    return ctx.compile(node)


def compile_composition(
    ast: Any,
    registry: Registry | None = None,
    *,
    functions: Mapping[str, FunctionBody] | None = None,
    name: str | None = None,
) -> Composition:
    """Compile ``ast`` into a validated, immutable :class:`Composition`."""

    if registry is None:
        from flowvm.registry import default_registry

        registry = default_registry()
    fsm = compile_node(ast, registry, functions=functions)
    validate_offsets(fsm)
    for index, instruction in enumerate(fsm):
        if instruction.kind not in registry.handlers:
            raise CompileError(f"Instruction {index} has no handler for kind {instruction.kind!r}")
    logger.debug("Compiled composition %s into %d instructions", name or "<anonymous>", len(fsm))
    return Composition(
        instructions=tuple(fsm),
        ast=copy_tree(ast),
        handlers=registry.handlers,
        name=name,
    )


__all__ = [
    "LoweringContext",
    "compile_composition",
    "compile_node",
    "core_lowerings",
    "validate_offsets",
]
