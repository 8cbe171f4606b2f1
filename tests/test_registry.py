"""Tests for the agent registry lifecycle."""

import asyncio

import pytest

from localassist.compiler import PARSE_FAILURE_MESSAGE
from localassist.errors import ResolutionError
from localassist.registry import AgentRegistry
from localassist.schemas import AgentDescriptor, AgentShape


class CountingAgent:
    """Native agent that counts bootstraps and calls."""

    def __init__(self):
        self.bootstraps = 0
        self.calls = 0

    async def bootstrap(self, global_config, context):
        await asyncio.sleep(0)
        self.bootstraps += 1

    async def execute(self, params, context):
        self.calls += 1
        return {"shout": context["helpers"]["shout"](params.get("text", ""))}

    def shout(self, text):
        return text.upper()


class TestRegistration:
    """Test descriptor registration and lookup."""

    def test_memory_only(self, registry):
        """Without a database path the registry is not persistent."""
        assert not registry.persistent

    def test_register_dict(self, registry):
        """Descriptors can be registered from their mapping form."""
        stored = registry.register({"name": "Echo", "code": "return params"})
        assert stored.shape == AgentShape.SCRIPTED
        assert registry.registered() == ["Echo"]

    def test_register_extracts_bootstrap(self, registry):
        """A bootstrap function in the source is kept separately."""
        code = (
            "async def bootstrap(global_config, context):\n"
            "    pass\n"
            "\n"
            "async def execute(params, context):\n"
            "    return 1\n"
        )
        stored = registry.register({"name": "Boot", "code": code})
        assert stored.bootstrap_code.startswith("async def bootstrap")

    def test_reregister_keeps_created_at(self, registry):
        """Re-registering a name keeps its creation time."""
        first = registry.register({"name": "Echo", "code": "return 1"})
        second = registry.register({"name": "Echo", "code": "return 2", "version": "v2"})
        assert second.created_at == first.created_at
        assert registry.describe("Echo").version == "v2"

    def test_describe_unknown(self, registry):
        """Unknown agents raise ResolutionError."""
        with pytest.raises(ResolutionError):
            registry.describe("Nope")

    def test_invalid_name_rejected(self, registry):
        """Names must start with a letter."""
        with pytest.raises(ValueError):
            registry.register({"name": "9lives", "code": "return 1"})

    def test_catalog_persists_between_registries(self, catalog_db_path):
        """Scripted agents survive a restart through the catalog."""
        first = AgentRegistry(db_path=catalog_db_path)
        first.register({"name": "Adder", "code": "return params['a'] + params['b']", "dependencies": "json, re"})

        second = AgentRegistry(db_path=catalog_db_path)
        descriptor = second.describe("Adder")
        assert descriptor.dependencies == ["json", "re"]

        result = asyncio.run(second.invoke("Adder", {"a": 2, "b": 3}))
        assert result.success
        assert result.result == 5


class TestLoading:
    """Test lazy loading and caching."""

    def test_load_is_identity_stable(self, registry):
        """Repeated loads return the same instance."""
        registry.register({"name": "Echo", "code": "return params"})
        assert registry.load("Echo") is registry.load("Echo")

    def test_unload_then_load_recompiles(self, registry):
        """Unloading evicts the instance so the next load builds a new one."""
        registry.register({"name": "Echo", "code": "return params"})
        first = registry.load("Echo")

        assert registry.unload("Echo")
        assert not registry.is_loaded("Echo")
        assert registry.load("Echo") is not first

    def test_reload_picks_up_new_code(self, registry):
        """Reload compiles the latest registered source."""
        registry.register({"name": "Version", "code": "return 1"})
        assert asyncio.run(registry.invoke("Version")).result == 1

        registry.register({"name": "Version", "code": "return 2"})
        assert asyncio.run(registry.invoke("Version")).result == 1

        registry.reload("Version")
        assert asyncio.run(registry.invoke("Version")).result == 2

    def test_native_helpers_bound(self, registry):
        """Public callables other than the hooks become helpers."""
        registry.register(AgentDescriptor(name="Loud", native=CountingAgent()))
        instance = registry.load("Loud")

        assert "shout" in instance.helpers
        assert "execute" not in instance.helpers
        assert "bootstrap" not in instance.helpers

    def test_clear_evicts_everything(self, registry):
        """clear() empties the instance cache."""
        registry.register({"name": "A", "code": "return 1"})
        registry.register({"name": "B", "code": "return 2"})
        registry.load("A")
        registry.load("B")

        registry.clear()

        assert registry.loaded() == []


class TestInvocation:
    """Test invocation and result wrapping."""

    def test_invoke_scripted_body(self, registry):
        """A bare function body runs as execute(params, context)."""
        registry.register({"name": "Echo", "code": "return {'echo': params.get('x')}"})
        result = asyncio.run(registry.invoke("Echo", {"x": 1, "action": "echo"}))

        assert result.success
        assert result.agent == "Echo"
        assert result.action == "echo"
        assert result.result == {"echo": 1}

    def test_invoke_native(self, registry):
        """Native agents get their helpers through the context."""
        registry.register(AgentDescriptor(name="Loud", native=CountingAgent()))
        result = asyncio.run(registry.invoke("Loud", {"text": "hi"}))
        assert result.result == {"shout": "HI"}

    def test_invoke_unknown_agent(self, registry):
        """Unknown agents produce a failed result instead of raising."""
        result = asyncio.run(registry.invoke("Ghost"))
        assert not result.success
        assert "not found" in result.error

    def test_syntax_error_registers_and_fails_on_invoke(self, registry):
        """Unparseable code registers fine and fails with a parse error."""
        registry.register({"name": "Broken", "code": "return {{{"})
        result = asyncio.run(registry.invoke("Broken"))

        assert not result.success
        assert result.error == PARSE_FAILURE_MESSAGE

    def test_raised_exception_is_wrapped(self, registry):
        """Exceptions from execute become failed results."""
        registry.register({"name": "Fails", "code": "raise ValueError('bad input')"})
        result = asyncio.run(registry.invoke("Fails"))

        assert not result.success
        assert result.error == "bad input"

    def test_sandbox_has_no_open(self, registry):
        """Scripted agents cannot reach file builtins."""
        registry.register({"name": "Snoop", "code": "return open('/etc/hostname').read()"})
        result = asyncio.run(registry.invoke("Snoop"))

        assert not result.success
        assert "open" in result.error

    def test_sandbox_blocks_subclass_walk(self, registry):
        """Undeclared modules cannot be reached through object internals."""
        registry.register({"name": "Escape", "code": (
            "for cls in ().__class__.__base__.__subclasses__():\n"
            "    if cls.__name__ == 'catch_warnings':\n"
            "        return cls()._module.__builtins__['__import__']('os').getcwd()\n"
            "return None\n"
        )})
        result = asyncio.run(registry.invoke("Escape"))

        assert not result.success
        assert "is not allowed" in result.error
        assert registry.get_instance("Escape").compile_error == result.error

    def test_dependency_warning(self, registry):
        """Resolvable dependencies are injected; missing ones become warnings."""
        registry.register({
            "name": "Paths",
            "code": "return fs.path.join('a', 'b')",
            "dependencies": ["fs", "some-native-lib"],
        })
        result = asyncio.run(registry.invoke("Paths"))

        assert result.success
        assert result.result.replace("\\", "/") == "a/b"
        assert len(result.warnings) == 1
        assert "some-native-lib" in result.warnings[0]

    def test_config_and_secrets_in_context(self):
        """Agent config is merged over global config in the context."""
        registry = AgentRegistry(db_path=None, global_config={"units": "metric", "region": "eu"})
        registry.register({
            "name": "Settings",
            "code": "return [context['config']['units'], context['config']['region'], context['secrets']['token']]",
            "config": {"units": "imperial"},
            "secrets": {"token": "abc"},
        })
        result = asyncio.run(registry.invoke("Settings"))
        assert result.result == ["imperial", "eu", "abc"]

    def test_agents_can_invoke_each_other(self, registry):
        """The context carries an invoke callable for chaining."""
        registry.register({"name": "Inner", "code": "return params['n'] * 2"})
        registry.register({
            "name": "Outer",
            "code": (
                "async def execute(params, context):\n"
                "    inner = await context['invoke']('Inner', {'n': 21})\n"
                "    return inner.result\n"
            ),
        })
        assert asyncio.run(registry.invoke("Outer")).result == 42


class TestBootstrap:
    """Test one-time bootstrap."""

    def test_bootstrap_runs_once(self, registry):
        """Sequential invocations bootstrap once."""
        agent = CountingAgent()
        registry.register(AgentDescriptor(name="Loud", native=agent))

        async def run():
            await registry.invoke("Loud", {"text": "a"})
            await registry.invoke("Loud", {"text": "b"})

        asyncio.run(run())
        assert agent.bootstraps == 1
        assert agent.calls == 2

    def test_concurrent_first_use_bootstraps_once(self, registry):
        """Concurrent first invocations share one bootstrap."""
        agent = CountingAgent()
        registry.register(AgentDescriptor(name="Loud", native=agent))

        async def run():
            return await asyncio.gather(*(registry.invoke("Loud", {"text": str(i)}) for i in range(5)))

        results = asyncio.run(run())
        assert all(r.success for r in results)
        assert agent.bootstraps == 1

    def test_unload_allows_bootstrap_again(self, registry):
        """An unloaded agent bootstraps again on next use."""
        agent = CountingAgent()
        registry.register(AgentDescriptor(name="Loud", native=agent))

        asyncio.run(registry.invoke("Loud"))
        registry.unload("Loud")
        asyncio.run(registry.invoke("Loud"))

        assert agent.bootstraps == 2

    def test_scripted_bootstrap_shares_module_state(self, registry):
        """A scripted bootstrap prepares state that execute reads."""
        code = (
            "state = {}\n"
            "\n"
            "async def bootstrap(global_config, context):\n"
            "    state['greeting'] = global_config.get('greeting', 'hello')\n"
            "\n"
            "async def execute(params, context):\n"
            "    return state['greeting']\n"
        )
        registry.register({"name": "Greeter", "code": code, "config": {"greeting": "hola"}})
        assert asyncio.run(registry.invoke("Greeter")).result == "hola"

    def test_failed_bootstrap_fails_invocation(self, registry):
        """A raising bootstrap fails the call and is retried next time."""
        calls = []

        def bootstrap(global_config, context):
            calls.append(1)
            raise RuntimeError("model not downloaded")

        registry.register(AgentDescriptor(
            name="Flaky",
            native={"bootstrap": bootstrap, "execute": lambda params, context: "ok"},
        ))

        first = asyncio.run(registry.invoke("Flaky"))
        second = asyncio.run(registry.invoke("Flaky"))

        assert not first.success
        assert "model not downloaded" in first.error
        assert not second.success
        assert len(calls) == 2


class TestPrewarm:
    """Test background prewarming."""

    def test_prewarm_isolates_failures(self, registry):
        """One failing agent does not affect the others."""
        good = CountingAgent()
        registry.register(AgentDescriptor(name="Good", native=good))
        registry.register({"name": "Bad", "code": "return {{{"})

        outcome = asyncio.run(registry.prewarm(["Good", "Bad", "Missing"]))

        assert outcome == {"Good": True, "Bad": False, "Missing": False}
        assert good.bootstraps == 1

    def test_prewarm_runs_bootstrap_not_execute(self, registry):
        """Warming loads and bootstraps without calling execute."""
        agent = CountingAgent()
        registry.register(AgentDescriptor(name="Counter", native=agent))

        outcome = asyncio.run(registry.prewarm(["Counter"]))

        assert outcome == {"Counter": True}
        assert agent.bootstraps == 1
        assert agent.calls == 0
        assert registry.get_instance("Counter").bootstrapped

    def test_prewarm_failing_bootstrap(self, registry):
        def bootstrap(global_config, context):
            raise RuntimeError("model not downloaded")

        registry.register(AgentDescriptor(
            name="Cold",
            native={"bootstrap": bootstrap, "execute": lambda params, context: "ok"},
        ))

        assert asyncio.run(registry.prewarm(["Cold"])) == {"Cold": False}
        assert not registry.get_instance("Cold").bootstrapped
