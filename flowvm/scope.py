"""Scope stack operations.

All functions take the frame stack (top at index 0) and mutate it in place.
"""

from __future__ import annotations

from typing import Any, cast

from flowvm._vendor import json_clone
from flowvm.errors import StackUnderflow
from flowvm.frames import BindingFrame, Frame, HandlerFrame, MarkerFrame, Stack


def push(stack: Stack, frame: Frame) -> None:
    stack.insert(0, frame)


def pop(stack: Stack) -> Frame:
    if not stack:
        raise StackUnderflow("pop from an empty stack")
    return stack.pop(0)


def visible_frames(stack: Stack) -> list[BindingFrame]:
    """Binding frames visible from the top, stopping at the nearest mask."""

    view: list[BindingFrame] = []
    for frame in stack:
        if isinstance(frame, BindingFrame):
            if frame.masked:
                break
            view.append(frame)
    return view


def current_bindings(stack: Stack) -> dict[str, Any]:
    """Collapse visible binding frames into one environment.

    Frames nearer the top shadow earlier-pushed frames declaring the same name.
    """

    env: dict[str, Any] = {}
    for frame in reversed(visible_frames(stack)):
        env.update(json_clone(cast(dict, frame.bindings)))
    return env


def write_back(stack: Stack, name: str, value: Any) -> bool:
    """Update the topmost visible frame that declares ``name``.

    Writes never create bindings. Returns whether a frame was updated.
    """

    for frame in visible_frames(stack):
        bindings = cast(dict, frame.bindings)
        if name in bindings:
            bindings[name] = json_clone(value)
            return True
    return False


def unwind(stack: Stack) -> int | None:
    """Pop frames until a handler is found and return its target index.

    Binding frames are discarded on the way. A marker frame stops the search
    and is left in place. Returns ``None`` when no handler is reachable.
    """

    while stack and not isinstance(stack[0], MarkerFrame):
        frame = stack.pop(0)
        if isinstance(frame, HandlerFrame):
            return frame.catch
    return None


__all__ = [
    "current_bindings",
    "pop",
    "push",
    "unwind",
    "visible_frames",
    "write_back",
]
