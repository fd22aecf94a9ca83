"""``async`` forks the composition body into a separate activation."""

import logging
from typing import Any

import pytest

from flowvm import Failed, Finished, Interpreter, Settings, UserError, compile_composition


def fn(body) -> dict[str, Any]:
    return {"type": "function", "function": body}


def seq(*components) -> dict[str, Any]:
    return {"type": "sequence", "components": list(components)}


def serve(interpreter: Interpreter):
    """Deploy ``interpreter`` so that it can be invoked under its own name."""

    async def handler(params):
        return await interpreter.process(params)

    return handler


class Recorder:
    def __init__(self) -> None:
        self.seen: list[Any] = []

    def __call__(self, params, env):
        self.seen.append(params)


@pytest.mark.asyncio
class TestAsyncFork:
    async def test_parent_continues_and_fork_runs_body(self, make_interpreter, invoker):
        after = Recorder()
        interpreter = make_interpreter(
            seq(
                fn(lambda p, env: {"value": 1}),
                {"type": "async", "components": [fn(lambda p, env: {"value": p["value"] + 10})]},
                fn(after),
            ),
            invoker,
        )
        invoker.register("pipeline", serve(interpreter))

        outcome = await interpreter.process({})

        assert isinstance(outcome, Finished)
        assert outcome.params["method"] == "async"
        assert outcome.params["sessionId"] == "session-1"
        fork = await invoker.wait(outcome.params["activationId"])
        assert fork == Finished({"value": 11})
        # the continuation after the async block only runs in the parent
        assert after.seen == [outcome.params]

    async def test_fork_token_starts_at_body_behind_marker(self, make_interpreter, invoker):
        interpreter = make_interpreter(
            {"type": "let", "declarations": {"n": 5}, "components": [{"type": "async", "components": [fn(Recorder())]}]},
            invoker,
        )
        invoker.register("pipeline", lambda params: None)

        outcome = await interpreter.process({"value": 1})
        await invoker.wait(outcome.params["activationId"])

        [(name, params)] = invoker.calls
        assert name == "pipeline"
        assert params == {
            "value": 1,
            "$resume": {
                "state": {"index": 2, "stack": [{"marker": True}, {"let": {"n": 5}}]},
                "session": "session-1",
            },
        }

    async def test_fork_sees_enclosing_bindings(self, make_interpreter, invoker):
        interpreter = make_interpreter(
            {
                "type": "let",
                "declarations": {"n": 5},
                "components": [{"type": "async", "components": [fn(lambda p, env: {"n": env["n"]})]}],
            },
            invoker,
        )
        invoker.register("pipeline", serve(interpreter))

        outcome = await interpreter.process({})
        assert await invoker.wait(outcome.params["activationId"]) == Finished({"n": 5})

    async def test_marker_hides_parent_handlers_from_fork(self, make_interpreter, invoker):
        def fail(params, env):
            raise UserError("fork failed")

        handler = Recorder()
        interpreter = make_interpreter(
            {
                "type": "try",
                "body": {"type": "async", "components": [fn(fail)]},
                "handler": fn(handler),
            },
            invoker,
        )
        invoker.register("pipeline", serve(interpreter))

        outcome = await interpreter.process({})
        assert isinstance(outcome, Finished)

        fork = await invoker.wait(outcome.params["activationId"])
        assert fork == Failed({"error": "fork failed"})
        assert handler.seen == []

    async def test_missing_composition_name(self, invoker):
        composition = compile_composition({"type": "async", "components": [fn(Recorder())]})
        interpreter = Interpreter(composition, invoker, Settings(session="s"))
        assert await interpreter.process({}) == Failed(
            {"error": "Async combinator at instruction 0 requires a composition name"}
        )
        assert invoker.calls == []

    async def test_failed_invocation(self, make_interpreter, invoker, caplog):
        interpreter = make_interpreter({"type": "async", "components": [fn(Recorder())]}, invoker)
        with caplog.at_level(logging.ERROR, logger="flowvm.interpreter"):
            outcome = await interpreter.process({})
        assert outcome == Failed(
            {"error": "Async combinator failed to invoke composition at instruction 0 (see log for details)"}
        )
        assert "Async combinator failed to invoke composition" in caplog.text

    async def test_settings_name_takes_precedence(self, invoker):
        composition = compile_composition({"type": "async", "components": [fn(Recorder())]}, name="local")
        interpreter = Interpreter(composition, invoker, Settings(composition_name="deployed", session="s"))
        invoker.register("deployed", lambda params: None)
        outcome = await interpreter.process({})
        await invoker.wait(outcome.params["activationId"])
        assert [name for name, _ in invoker.calls] == ["deployed"]
