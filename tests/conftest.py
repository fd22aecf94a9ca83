"""
Shared fixtures for flowvm tests.

Composition trees are written as plain dicts.
"""

from collections.abc import Callable
from typing import Any

import pytest

from flowvm import Interpreter, LocalInvoker, Settings, compile_composition


@pytest.fixture
def settings() -> Settings:
    return Settings(composition_name="pipeline", session="session-1", max_steps=10_000)


@pytest.fixture
def invoker() -> LocalInvoker:
    return LocalInvoker()


@pytest.fixture
def make_interpreter(settings: Settings) -> Callable[..., Interpreter]:
    def _make(ast: Any, invoker: LocalInvoker | None = None, **kwargs: Any) -> Interpreter:
        composition = compile_composition(ast, name="pipeline", **kwargs)
        return Interpreter(composition, invoker=invoker, settings=settings)

    return _make
