"""Agent registry: catalog, lazy loading, bootstrap and invocation."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

from localassist.catalog import AgentCatalog, open_catalog
from localassist.compiler import (
    PARSE_FAILURE_MESSAGE,
    compile_agent,
    extract_bootstrap,
)
from localassist.dependencies import DependencyResolver
from localassist.errors import (
    CompilationError,
    ConfigurationError,
    InvocationError,
    ResolutionError,
)
from localassist.schemas import AgentDescriptor, AgentResult, AgentShape

logger = logging.getLogger(__name__)

# Upper bound on agents loaded concurrently by prewarm
PREWARM_CONCURRENCY = 4

_HOOK_NAMES = ("bootstrap", "execute")


@dataclass
class AgentInstance:
    """A loaded, callable agent."""

    descriptor: AgentDescriptor
    execute: Callable[..., Any]
    bootstrap: Callable[..., Any] | None = None
    helpers: dict[str, Callable[..., Any]] = field(default_factory=dict)
    bootstrapped: bool = False
    compile_error: str | None = None
    bootstrap_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def shape(self) -> AgentShape:
        return self.descriptor.shape


def _get_member(native: Any, name: str) -> Any:
    if isinstance(native, dict):
        return native.get(name)
    return getattr(native, name, None)


def _native_helpers(native: Any) -> dict[str, Callable[..., Any]]:
    """Collect every public callable other than the lifecycle hooks."""
    if isinstance(native, dict):
        members = native.items()
    else:
        members = ((name, getattr(native, name, None)) for name in dir(native))

    return {
        name: value
        for name, value in members
        if not name.startswith("_")
        and name not in _HOOK_NAMES
        and callable(value)
        and not inspect.isclass(value)
    }


def _parse_failure_stub(message: str) -> Callable[..., Any]:
    """Build an execute hook that always raises a compilation error."""

    async def execute(params: dict[str, Any], context: dict[str, Any]) -> Any:
        raise CompilationError(message)

    return execute


async def _call(hook: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async hook."""
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class AgentRegistry:
    """Catalogs agent descriptors and manages loaded instances.

    Descriptors are kept in two places: the persistent catalog (when a
    database path is configured) and an in-process literal map that also
    holds native objects, which cannot be persisted.
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        global_config: dict[str, Any] | None = None,
        resolver: DependencyResolver | None = None,
        catalog: AgentCatalog | None = None,
    ):
        """Initialize the registry.

        Args:
            db_path: SQLite catalog path; None runs memory-only
            global_config: Shared configuration passed to every bootstrap
            resolver: Dependency injection table
            catalog: Pre-built catalog, takes precedence over db_path
        """
        self.catalog = catalog if catalog is not None else open_catalog(db_path)
        if self.catalog is None:
            logger.info(f"{ConfigurationError('No agent catalog configured')}; running memory-only")

        self.global_config: dict[str, Any] = dict(global_config or {})
        self.resolver = resolver or DependencyResolver()
        self._literals: dict[str, AgentDescriptor] = {}
        self._instances: dict[str, AgentInstance] = {}

    @property
    def persistent(self) -> bool:
        return self.catalog is not None

    # --- Catalog ---

    def register(self, descriptor: AgentDescriptor | dict[str, Any]) -> AgentDescriptor:
        """Upsert a descriptor by name.

        Registering the same descriptor twice is a no-op beyond refreshing
        updated_at. The cached instance, if any, is left untouched until
        reload.

        Args:
            descriptor: Descriptor or its mapping form

        Returns:
            The stored descriptor
        """
        if isinstance(descriptor, dict):
            descriptor = AgentDescriptor.model_validate(descriptor)

        if descriptor.native is None and descriptor.code and not descriptor.bootstrap_code:
            bootstrap_code = extract_bootstrap(descriptor.code)
            if bootstrap_code:
                descriptor = descriptor.model_copy(update={"bootstrap_code": bootstrap_code})

        existing = self._literals.get(descriptor.name)
        if existing is not None:
            descriptor = descriptor.model_copy(update={"created_at": existing.created_at})

        self._literals[descriptor.name] = descriptor
        if self.catalog is not None:
            self.catalog.upsert(descriptor)

        logger.info(f"Registered agent {descriptor.name} ({descriptor.shape.value})")
        return descriptor

    def registered(self) -> list[str]:
        """Names of every known agent, catalogued or literal."""
        names = set(self._literals)
        if self.catalog is not None:
            names.update(self.catalog.names())
        return sorted(names)

    def describe(self, name: str) -> AgentDescriptor:
        """Resolve the descriptor for an agent.

        The catalog row wins; a native object from the literal map is merged
        in since it is never persisted.

        Raises:
            ResolutionError: If the agent is unknown
        """
        literal = self._literals.get(name)
        row = self.catalog.get(name) if self.catalog is not None else None

        if row is not None:
            if literal is not None and literal.native is not None:
                row = row.model_copy(update={"native": literal.native})
            return row
        if literal is not None:
            return literal
        raise ResolutionError(f"Agent {name} not found")

    def force_reregister(self, descriptors: Iterable[AgentDescriptor | dict[str, Any]]) -> list[str]:
        """Drop the cached instances of the given agents and register them again."""
        names = []
        for descriptor in descriptors:
            stored = self.register(descriptor)
            self.unload(stored.name)
            names.append(stored.name)
        return names

    # --- Lifecycle ---

    def load(self, name: str) -> AgentInstance:
        """Return the cached instance, loading it on first use.

        Raises:
            ResolutionError: If the agent is unknown
        """
        instance = self._instances.get(name)
        if instance is not None:
            return instance

        descriptor = self.describe(name)
        if descriptor.native is not None:
            instance = self._instantiate_native(descriptor)
        else:
            instance = self._instantiate_scripted(descriptor)

        self._instances[name] = instance
        logger.debug(f"Loaded agent {name} ({instance.shape.value})")
        return instance

    def _instantiate_native(self, descriptor: AgentDescriptor) -> AgentInstance:
        native = descriptor.native
        execute = _get_member(native, "execute")
        if not callable(execute):
            execute = _parse_failure_stub(f"Agent {descriptor.name} has no valid execute hook")
        bootstrap = _get_member(native, "bootstrap")

        return AgentInstance(
            descriptor=descriptor,
            execute=execute,
            bootstrap=bootstrap if callable(bootstrap) else None,
            helpers=_native_helpers(native),
        )

    def _instantiate_scripted(self, descriptor: AgentDescriptor) -> AgentInstance:
        bindings, _ = self.resolver.resolve_all(descriptor.dependencies)
        try:
            compiled = compile_agent(
                descriptor.name,
                descriptor.code,
                bindings=bindings,
                bootstrap_source=descriptor.bootstrap_code,
            )
        except CompilationError as e:
            logger.error(f"Failed to compile agent {descriptor.name}: {e}")
            message = str(e) if str(e) else PARSE_FAILURE_MESSAGE
            return AgentInstance(
                descriptor=descriptor,
                execute=_parse_failure_stub(message),
                compile_error=message,
            )

        return AgentInstance(
            descriptor=descriptor,
            execute=compiled.execute,
            bootstrap=compiled.bootstrap,
            helpers=compiled.helpers,
        )

    def unload(self, name: str) -> bool:
        """Evict a cached instance so the next load recompiles and re-bootstraps."""
        removed = self._instances.pop(name, None) is not None
        if removed:
            logger.info(f"Unloaded agent {name}")
        return removed

    def reload(self, name: str) -> AgentInstance:
        """Unload then load an agent, picking up catalog changes."""
        self.unload(name)
        return self.load(name)

    def clear(self) -> None:
        """Evict every cached instance."""
        count = len(self._instances)
        self._instances.clear()
        logger.info(f"Cleared {count} loaded agents")

    def loaded(self) -> list[str]:
        return sorted(self._instances)

    def is_loaded(self, name: str) -> bool:
        return name in self._instances

    def get_instance(self, name: str) -> AgentInstance | None:
        return self._instances.get(name)

    # --- Invocation ---

    async def invoke(
        self,
        name: str,
        params: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> AgentResult:
        """Load, bootstrap and execute an agent.

        Every outcome, including unknown agents and raised exceptions, is
        returned as an AgentResult.

        Args:
            name: Agent name
            params: Execute parameters; ``action`` labels the result
            context: Caller context merged into the agent's context

        Returns:
            AgentResult describing success or failure
        """
        params = dict(params or {})
        action = str(params.get("action") or "default")
        warnings: list[str] = []

        try:
            instance = self.load(name)
            agent_context, warnings = self._agent_context(instance, context)

            await self._ensure_bootstrapped(instance, agent_context)

            if not callable(instance.execute):
                raise InvocationError("No valid execute code provided")
            result = await _call(instance.execute, params, agent_context)

        except Exception as e:
            logger.error(f"Agent execution failed for {name}: {e}")
            return AgentResult(
                success=False,
                agent=name,
                action=action,
                error=str(e),
                warnings=warnings,
            )

        return AgentResult(
            success=True,
            agent=name,
            action=action,
            result=result,
            warnings=warnings,
        )

    def _agent_context(
        self,
        instance: AgentInstance,
        context: dict[str, Any] | None,
    ) -> tuple[dict[str, Any], list[str]]:
        """Build the context an agent's hooks receive, with dependency warnings."""
        bindings, warnings = self.resolver.resolve_all(instance.descriptor.dependencies)
        agent_context = {
            **self.global_config,
            **(context or {}),
            **bindings,
            "config": {**self.global_config, **instance.descriptor.config},
            "secrets": instance.descriptor.secrets,
            "helpers": instance.helpers,
            "registry": self,
            "invoke": self.invoke,
        }
        return agent_context, warnings

    async def _ensure_bootstrapped(self, instance: AgentInstance, context: dict[str, Any]) -> None:
        """Run an agent's bootstrap hook at most once."""
        if instance.bootstrapped or instance.bootstrap is None:
            return

        async with instance.bootstrap_lock:
            if instance.bootstrapped:
                return
            logger.info(f"Bootstrapping {instance.name}")
            global_config = {**self.global_config, **instance.descriptor.config}
            await _call(instance.bootstrap, global_config, context)
            instance.bootstrapped = True

    async def prewarm(self, names: Iterable[str], concurrency: int = PREWARM_CONCURRENCY) -> dict[str, bool]:
        """Load and bootstrap agents ahead of first use.

        Failures are logged per agent and never propagate.

        Args:
            names: Agents to warm
            concurrency: Maximum concurrent warm-ups

        Returns:
            Mapping of agent name to whether it warmed successfully
        """
        names = list(names)
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def warm(name: str) -> bool:
            async with semaphore:
                try:
                    instance = self.load(name)
                    if instance.compile_error:
                        raise CompilationError(instance.compile_error)
                    agent_context, _ = self._agent_context(instance, None)
                    await self._ensure_bootstrapped(instance, agent_context)
                except Exception as e:
                    logger.warning(f"Prewarm failed for {name}: {e}")
                    return False
                return True

        outcomes = await asyncio.gather(*(warm(name) for name in names))
        return dict(zip(names, outcomes))
