"""Compiled instruction and composition types.

A composition is lowered into a flat tuple of :class:`Instruction` values.
Every cross-reference (``next``, ``then``, ``else_``, ``catch``, ``return_``)
is an offset relative to the instruction's own index, so compiled runs can be
concatenated or nested without renumbering.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import cloudpickle

from flowvm._vendor import FrozenDict

if TYPE_CHECKING:
    from flowvm.registry import InstructionHandler


# ============================================================================
# Instruction kinds
# ============================================================================

PASS = "pass"
EMPTY = "empty"
ACTION = "action"
FUNCTION = "function"
VALUE = "value"
CHOICE = "choice"
TRY = "try"
EXIT = "exit"
LET = "let"
ASYNC = "async"
STOP = "stop"


@dataclass(frozen=True)
class Instruction:
    """One entry of the flat state machine.

    Only the fields relevant to ``kind`` are set. ``let`` is ``None`` for a
    masking frame; ``mask`` distinguishes that from a missing binding map.
    """

    kind: str
    next: int = 1
    path: str | None = None
    then: int | None = None
    else_: int | None = None
    catch: int | None = None
    return_: int | None = None
    let: FrozenDict | None = None
    mask: bool = False
    name: str | None = None
    function: Callable[..., Any] | None = None
    value: Any = None
    components: tuple[Any, ...] = ()
    task: FrozenDict | None = None

    def targets(self) -> dict[str, int]:
        """Return every relative jump carried by this instruction."""

        out = {"next": self.next}
        for label, offset in (
            ("then", self.then),
            ("else", self.else_),
            ("catch", self.catch),
            ("return", self.return_),
        ):
            if offset is not None:
                out[label] = offset
        return out

    def describe(self) -> str:
        parts = [self.kind]
        for label, offset in self.targets().items():
            if label == "next" and offset == 1:
                continue
            parts.append(f"{label}={offset:+d}")
        if self.name is not None:
            parts.append(repr(self.name))
        return " ".join(parts)


# ============================================================================
# Compiled composition
# ============================================================================


@dataclass(frozen=True)
class Composition:
    """The immutable output of compilation.

    Attributes:
        instructions: The flat instruction array; execution starts at ``entry``.
        ast: Copy of the source tree structure, kept for diagnostics only. Leaf
            values such as function bodies are shared with the input.
        handlers: Instruction handler table resolved when the composition was built.
        name: Optional name under which the composition is deployed.
    """

    instructions: tuple[Instruction, ...]
    ast: Any = field(default=None, compare=False, repr=False)
    handlers: Mapping[str, InstructionHandler] = field(
        default_factory=FrozenDict, compare=False, repr=False
    )
    name: str | None = None
    entry: int = 0

    def __len__(self) -> int:
        return len(self.instructions)

    def listing(self) -> str:
        """Human-readable listing, one instruction per line."""

        width = len(str(len(self.instructions)))
        lines = []
        for index, instruction in enumerate(self.instructions):
            path = f"  # {instruction.path}" if instruction.path else ""
            lines.append(f"{index:>{width}}: {instruction.describe()}{path}")
        return "\n".join(lines)

    def dumps(self) -> bytes:
        """Serialize with cloudpickle so native function bodies survive the trip."""

        return cloudpickle.dumps(self)

    @staticmethod
    def loads(payload: bytes) -> Composition:
        try:
            composition = cloudpickle.loads(payload)
        except Exception as exc:
            raise TypeError(f"Failed to load composition via cloudpickle: {exc}") from exc
        if not isinstance(composition, Composition):
            raise TypeError(
                f"Payload does not contain a Composition, got {type(composition).__name__}"
            )
        return composition


__all__ = [
    "ACTION",
    "ASYNC",
    "CHOICE",
    "Composition",
    "EMPTY",
    "EXIT",
    "FUNCTION",
    "Instruction",
    "LET",
    "PASS",
    "STOP",
    "TRY",
    "VALUE",
]
