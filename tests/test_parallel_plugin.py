"""The parallel plugin: concurrent fan-out with ordered joins."""

import asyncio
from typing import Any

import pytest

from flowvm import (
    CompileError,
    Finished,
    Failed,
    InternalError,
    LocalInvoker,
    ParallelPlugin,
    RegistryError,
    compile_composition,
    core_registry,
)


def fn(body) -> dict[str, Any]:
    return {"type": "function", "function": body}


def delayed(delay: float, tag: str, completed: list[str]):
    async def action(params):
        await asyncio.sleep(delay)
        completed.append(tag)
        return {"tag": tag, "value": params.get("value")}

    return action


@pytest.mark.asyncio
class TestParallel:
    async def test_results_keep_component_order(self, make_interpreter, invoker):
        completed: list[str] = []
        invoker.register("a", delayed(0.03, "a", completed))
        invoker.register("b", delayed(0.0, "b", completed))
        invoker.register("c", delayed(0.01, "c", completed))

        interpreter = make_interpreter({"type": "parallel", "components": ["a", "b", "c"]}, invoker)
        outcome = await interpreter.process({"value": 7})

        assert completed == ["b", "c", "a"]
        assert outcome == Finished(
            {"value": [{"tag": "a", "value": 7}, {"tag": "b", "value": 7}, {"tag": "c", "value": 7}]}
        )

    async def test_branches_get_independent_params(self, make_interpreter, invoker):
        def mutate(params):
            params["items"].append("x")
            return len(params["items"])

        invoker.register("mutate", mutate)
        interpreter = make_interpreter({"type": "parallel", "components": ["mutate", "mutate"]}, invoker)
        assert await interpreter.process({"items": []}) == Finished({"value": [1, 1]})

    async def test_action_nodes_as_components(self, make_interpreter, invoker):
        invoker.register("echo", lambda params: params)
        interpreter = make_interpreter(
            {"type": "parallel", "components": [{"type": "action", "name": "echo"}, "echo"]}, invoker
        )
        assert await interpreter.process({"n": 1}) == Finished({"value": [{"n": 1}, {"n": 1}]})

    async def test_rejection_fails_the_whole_join(self, make_interpreter, invoker):
        def broken(params):
            raise RuntimeError("disk full")

        invoker.register("ok", lambda params: 1)
        invoker.register("broken", broken)
        interpreter = make_interpreter({"type": "parallel", "components": ["ok", "broken"]}, invoker)
        outcome = await interpreter.process({})
        assert outcome == Failed({"error": "An exception was caught at instruction 0 (see log for details)"})

    async def test_error_shaped_result_is_a_rejection(self, make_interpreter, invoker):
        invoker.register("ok", lambda params: 1)
        invoker.register("refuse", lambda params: {"error": "quota exceeded"})
        interpreter = make_interpreter({"type": "parallel", "components": ["ok", "refuse"]}, invoker)
        assert await interpreter.process({}) == Failed({"error": "quota exceeded"})

    async def test_rejection_inside_try_reaches_handler(self, make_interpreter, invoker):
        interpreter = make_interpreter(
            {
                "type": "try",
                "body": {"type": "parallel", "components": ["missing"]},
                "handler": fn(lambda p, env: {"handled": p["error"]}),
            },
            invoker,
        )
        assert await interpreter.process({}) == Finished({"handled": "action not found"})

    async def test_async_components_return_activation_ids(self, make_interpreter, invoker):
        invoker.register("background", lambda params: "done")
        interpreter = make_interpreter(
            {"type": "parallel", "components": [{"type": "action", "name": "background", "async": True}]},
            invoker,
        )
        outcome = await interpreter.process({})
        [response] = outcome.params["value"]
        assert await invoker.wait(response["activationId"]) == "done"

    async def test_missing_invoker_is_fatal(self, make_interpreter):
        outcome = await make_interpreter({"type": "parallel", "components": ["a"]}).process({})
        assert outcome.fatal
        assert isinstance(outcome.exception, InternalError)


@pytest.mark.asyncio
class TestMap:
    async def test_scalars_and_records(self, make_interpreter, invoker):
        invoker.register("describe", lambda params: params)
        interpreter = make_interpreter({"type": "map", "task": "describe"}, invoker)
        outcome = await interpreter.process({"value": [1, {"size": 2}], "unit": "px"})
        assert outcome == Finished({"value": [{"unit": "px", "value": 1}, {"unit": "px", "size": 2}]})

    async def test_empty_list(self, make_interpreter, invoker):
        interpreter = make_interpreter({"type": "map", "task": "describe"}, invoker)
        assert await interpreter.process({"value": []}) == Finished({"value": []})
        assert invoker.calls == []

    async def test_non_list_is_an_error(self, make_interpreter, invoker):
        interpreter = make_interpreter({"type": "map", "task": "describe"}, invoker)
        assert await interpreter.process({"value": 3}) == Failed(
            {"error": "map combinator at instruction 0 expects a list in params.value"}
        )

    async def test_map_composes_with_functions(self, make_interpreter, invoker):
        invoker.register("square", lambda params: params["value"] ** 2)
        interpreter = make_interpreter(
            {
                "type": "sequence",
                "components": [{"type": "map", "task": "square"}, fn(lambda p, env: sum(p["value"]))],
            },
            invoker,
        )
        assert await interpreter.process({"value": [1, 2, 3]}) == Finished({"value": 14})


class TestRegistration:
    def test_plugin_kinds_cannot_be_registered_twice(self):
        registry = core_registry().with_plugins(ParallelPlugin())
        with pytest.raises(RegistryError, match="'parallel' is already registered"):
            registry.with_plugins(ParallelPlugin())

    def test_bad_component(self):
        with pytest.raises(CompileError, match="expects action names or action nodes"):
            compile_composition({"type": "parallel", "components": [{"type": "function", "function": print}]})

    def test_components_must_be_a_list(self):
        with pytest.raises(CompileError, match="components field of type list"):
            compile_composition({"type": "parallel", "components": "a"})

    def test_map_needs_task(self):
        with pytest.raises(CompileError, match="map node has no task field"):
            compile_composition({"type": "map"})

    def test_compiled_instruction(self):
        composition = compile_composition({"type": "parallel", "components": ["a", "b"]})
        [instruction] = composition.instructions
        assert instruction.kind == "parallel"
        assert [dict(task) for task in instruction.components] == [
            {"name": "a", "blocking": True},
            {"name": "b", "blocking": True},
        ]
