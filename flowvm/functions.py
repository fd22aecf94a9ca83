"""Function bodies.

A function body is any callable ``(params, env) -> result``. ``env`` is a
fresh dict holding the bindings visible at the call site; the interpreter
writes whatever the body leaves in it back to the owning ``let`` frames.

    def increment(params, env):
        env["n"] += 1

Bodies can be embedded directly in the composition tree or registered under a
name and referenced by that name.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from typing import Any, Protocol

from flowvm.errors import RegistryError


class FunctionBody(Protocol):
    def __call__(self, params: Any, env: dict[str, Any]) -> Any: ...


class FunctionRegistry(Mapping[str, FunctionBody]):
    """Named function bodies that composition trees refer to by string."""

    def __init__(self, functions: Mapping[str, FunctionBody] | None = None) -> None:
        self._functions: dict[str, FunctionBody] = {}
        for name, body in (functions or {}).items():
            self.register(name, body)

    def register(self, name: str, body: FunctionBody) -> FunctionBody:
        if not callable(body):
            raise TypeError(f"Function body {name!r} is not callable")
        if name in self._functions and self._functions[name] is not body:
            raise RegistryError(f"Function {name!r} is already registered")
        self._functions[name] = body
        return body

    def function(self, name: str | None = None) -> Callable[[FunctionBody], FunctionBody]:
        """Decorator form of :meth:`register`."""

        def decorator(body: FunctionBody) -> FunctionBody:
            return self.register(name or getattr(body, "__name__", repr(body)), body)

        return decorator

    def __getitem__(self, name: str) -> FunctionBody:
        return self._functions[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._functions)

    def __len__(self) -> int:
        return len(self._functions)


__all__ = ["FunctionBody", "FunctionRegistry"]
