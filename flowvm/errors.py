"""flowvm error types.

Fatal errors derive from :class:`FlowError` and abort an execution without
consulting handler frames. :class:`UserError` and :class:`InvocationError` are
recoverable: they are turned into error-shaped params and routed through the
handler search.
"""

from __future__ import annotations

from typing import Any


class FlowError(Exception):
    """Base class for fatal flowvm errors."""

    code: int = 500


class CompileError(FlowError):
    """Raised when a composition tree cannot be lowered."""

    def __init__(self, message: str, node: Any = None) -> None:
        self.node = node
        if node is not None:
            message = f"{message}\nCause: {node!r}"
        super().__init__(message)


class ValidationError(FlowError):
    """Raised when an execution state or continuation token is malformed."""

    code = 400


class StackUnderflow(FlowError):
    """Raised when an instruction pops from an empty frame stack."""


class InternalError(FlowError):
    """Raised when the interpreter reaches an invalid state."""


class RegistryError(FlowError):
    """Raised when two plugins contribute the same instruction kind."""


class UserError(Exception):
    """Raised by a function body to produce ``{"error": payload}``."""

    def __init__(self, payload: Any) -> None:
        self.payload = payload
        super().__init__(str(payload))


class InvocationError(Exception):
    """Raised by an invoker when an action invocation is rejected."""

    def __init__(self, name: str, reason: Any) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Invocation of {name!r} failed: {reason}")


def normalize_error(error: BaseException) -> dict[str, Any]:
    """Encode a fatal error as ``{"code", "error"}`` for the caller."""

    code = getattr(error, "code", 500)
    if not isinstance(code, int) or isinstance(code, bool):
        code = 500
    message = str(error)
    return {
        "code": code,
        "error": f"Internal error: {message}" if message else "Internal error",
    }


__all__ = [
    "CompileError",
    "FlowError",
    "InternalError",
    "InvocationError",
    "RegistryError",
    "StackUnderflow",
    "UserError",
    "ValidationError",
    "normalize_error",
]
