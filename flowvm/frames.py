"""Scope stack frames.

The frame stack is a plain ``list[Frame]`` with the top at index 0, the same
orientation as a continuation list: pushing is ``[frame] + stack``.

- BindingFrame: variables declared by ``let``; ``bindings is None`` masks
- HandlerFrame: absolute instruction index to jump to on error
- MarkerFrame: fork boundary inserted by ``async``; unwinding stops here
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypeAlias

from flowvm.errors import ValidationError


@dataclass
class BindingFrame:
    bindings: dict[str, Any] | None

    @property
    def masked(self) -> bool:
        return self.bindings is None


@dataclass(frozen=True)
class HandlerFrame:
    catch: int


@dataclass(frozen=True)
class MarkerFrame:
    pass


Frame: TypeAlias = BindingFrame | HandlerFrame | MarkerFrame
Stack: TypeAlias = list[Frame]


def frame_to_json(frame: Frame) -> dict[str, Any]:
    if isinstance(frame, BindingFrame):
        return {"let": frame.bindings}
    if isinstance(frame, HandlerFrame):
        return {"catch": frame.catch}
    if isinstance(frame, MarkerFrame):
        return {"marker": True}
    raise TypeError(f"Not a frame: {type(frame).__name__}")


def frame_from_json(obj: Any) -> Frame:
    if not isinstance(obj, dict):
        raise ValidationError(f"Frame must be an object, got {type(obj).__name__}")
    if "let" in obj:
        bindings = obj["let"]
        if bindings is not None and not isinstance(bindings, dict):
            raise ValidationError("Frame 'let' field must be an object or null")
        return BindingFrame(dict(bindings) if bindings is not None else None)
    if "catch" in obj:
        catch = obj["catch"]
        if not isinstance(catch, int) or isinstance(catch, bool):
            raise ValidationError("Frame 'catch' field must be an integer")
        return HandlerFrame(catch)
    if obj.get("marker") is True:
        return MarkerFrame()
    raise ValidationError(f"Unrecognized frame: {obj!r}")


def stack_to_json(stack: Stack) -> list[dict[str, Any]]:
    return [frame_to_json(frame) for frame in stack]


def stack_from_json(obj: Any) -> Stack:
    if not isinstance(obj, list):
        raise ValidationError("Stack must be an array")
    return [frame_from_json(item) for item in obj]


__all__ = [
    "BindingFrame",
    "Frame",
    "HandlerFrame",
    "MarkerFrame",
    "Stack",
    "frame_from_json",
    "frame_to_json",
    "stack_from_json",
    "stack_to_json",
]
