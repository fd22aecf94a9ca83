"""Execution state and continuation tokens.

The triple ``(index, stack, params)`` fully determines how an execution
proceeds. A continuation token carries ``(index, stack)`` across a suspension;
params travel separately and are merged back on resume.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from flowvm._vendor import json_clone
from flowvm.errors import ValidationError
from flowvm.frames import Stack, stack_from_json, stack_to_json

TERMINAL = -1
RESUME_KEY = "$resume"


@dataclass
class ExecutionState:
    """Mutable state owned by exactly one execution branch."""

    index: int = 0
    stack: Stack = field(default_factory=list)
    params: Any = field(default_factory=dict)
    session: Any = None

    def token(self) -> ContinuationToken:
        return ContinuationToken(index=self.index, stack=copy.deepcopy(self.stack), session=self.session)

    def fork(self) -> ExecutionState:
        """Deep copy for a concurrent branch."""

        return ExecutionState(
            index=self.index,
            stack=copy.deepcopy(self.stack),
            params=copy.deepcopy(self.params),
            session=self.session,
        )


@dataclass(frozen=True)
class ContinuationToken:
    index: int
    stack: Stack
    session: Any = None

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "state": {"index": self.index, "stack": json_clone(stack_to_json(self.stack))}
        }
        if self.session is not None:
            out["session"] = self.session
        return out

    @staticmethod
    def from_json(obj: Any) -> ContinuationToken:
        if not isinstance(obj, dict):
            raise ValidationError("The type of $resume must be object")
        state = obj.get("state")
        if not isinstance(state, dict):
            raise ValidationError("The type of $resume.state must be object")
        index = state.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            raise ValidationError("state parameter is not a number")
        stack = stack_from_json(json_clone(state.get("stack")))
        # the session is opaque and passed through unchanged
        return ContinuationToken(index=index, stack=stack, session=obj.get("session"))

    def restore(self, params: Any) -> ExecutionState:
        return ExecutionState(
            index=self.index,
            stack=copy.deepcopy(self.stack),
            params=params,
            session=self.session,
        )


__all__ = ["ContinuationToken", "ExecutionState", "RESUME_KEY", "TERMINAL"]
