"""Instruction kind registry.

A registry maps each instruction kind to a compiler lowering and an
interpreter handler. The core kinds are always present; plugins contribute
more. No global state: build a registry and pass it to ``compile_composition``.

    registry = core_registry().with_plugins(ParallelPlugin())
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

from flowvm._vendor import FrozenDict
from flowvm.errors import RegistryError

if TYPE_CHECKING:
    from flowvm.compiler import LoweringContext
    from flowvm.instructions import Instruction
    from flowvm.interpreter import StepContext
    from flowvm.result import StepResult


class Lowering(Protocol):
    def __call__(self, node: Mapping[str, Any], ctx: LoweringContext) -> list[Instruction]: ...


class InstructionHandler(Protocol):
    def __call__(self, ctx: StepContext) -> StepResult | None: ...


LoweringTable: TypeAlias = Mapping[str, Lowering]
HandlerTable: TypeAlias = Mapping[str, InstructionHandler]


class Plugin(Protocol):
    """Contributes node kinds to the compiler and instruction kinds to the interpreter."""

    def lowerings(self) -> LoweringTable: ...

    def handlers(self) -> HandlerTable: ...


class Registry:
    def __init__(self, lowerings: LoweringTable, handlers: HandlerTable) -> None:
        self.lowerings: FrozenDict = FrozenDict(lowerings)
        self.handlers: FrozenDict = FrozenDict(handlers)

    def with_plugins(self, *plugins: Plugin) -> Registry:
        lowerings = dict(self.lowerings)
        handlers = dict(self.handlers)
        for plugin in plugins:
            for kind, lowering in plugin.lowerings().items():
                if kind in lowerings:
                    raise RegistryError(f"Node kind {kind!r} is already registered")
                lowerings[kind] = lowering
            for kind, handler in plugin.handlers().items():
                if kind in handlers:
                    raise RegistryError(f"Instruction kind {kind!r} is already registered")
                handlers[kind] = handler
        return Registry(lowerings, handlers)

    def __repr__(self) -> str:
        return f"Registry(nodes={sorted(self.lowerings)}, instructions={sorted(self.handlers)})"


def core_registry() -> Registry:
    from flowvm.compiler import core_lowerings
    from flowvm.interpreter import core_handlers

    return Registry(core_lowerings(), core_handlers())


def default_registry() -> Registry:
    """Core kinds plus the parallel plugin."""

    from flowvm.plugins.parallel import ParallelPlugin

    return core_registry().with_plugins(ParallelPlugin())


__all__ = [
    "HandlerTable",
    "InstructionHandler",
    "Lowering",
    "LoweringTable",
    "Plugin",
    "Registry",
    "core_registry",
    "default_registry",
]
