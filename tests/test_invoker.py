import pytest

from flowvm import FunctionRegistry, InvocationError, Invoker, LocalInvoker, RegistryError


@pytest.mark.asyncio
class TestLocalInvoker:
    async def test_sync_and_async_actions(self):
        async def later(params):
            return params["value"] * 3

        invoker = LocalInvoker({"now": lambda params: params["value"] + 1, "later": later})
        assert await invoker.invoke("now", {"value": 1}) == 2
        assert await invoker.invoke("later", {"value": 2}) == 6
        assert invoker.calls == [("now", {"value": 1}), ("later", {"value": 2})]

    async def test_unknown_action(self):
        with pytest.raises(InvocationError, match="action not found"):
            await LocalInvoker().invoke("missing", {})

    async def test_exceptions_become_invocation_errors(self):
        def broken(params):
            raise KeyError("value")

        with pytest.raises(InvocationError) as excinfo:
            await LocalInvoker({"broken": broken}).invoke("broken", {})
        assert excinfo.value.name == "broken"
        assert isinstance(excinfo.value.reason, KeyError)

    async def test_non_blocking_invocation(self):
        invoker = LocalInvoker({"slow": lambda params: "ok"})
        response = await invoker.invoke("slow", {}, blocking=False)
        assert set(response) == {"activationId"}
        assert await invoker.wait(response["activationId"]) == "ok"
        assert invoker.activations == {}


class TestInvokerProtocol:
    def test_local_invoker_satisfies_protocol(self):
        assert isinstance(LocalInvoker(), Invoker)


class TestFunctionRegistry:
    def test_register_and_lookup(self):
        functions = FunctionRegistry({"identity": lambda params, env: params})
        assert "identity" in functions
        assert len(functions) == 1

    def test_decorator_with_explicit_name(self):
        functions = FunctionRegistry()

        @functions.function("inc")
        def increment(params, env):
            env["n"] += 1

        assert functions["inc"] is increment

    def test_duplicate_name(self):
        functions = FunctionRegistry({"f": lambda params, env: None})
        with pytest.raises(RegistryError, match="already registered"):
            functions.register("f", lambda params, env: 1)

    def test_not_callable(self):
        with pytest.raises(TypeError, match="not callable"):
            FunctionRegistry().register("f", 3)
