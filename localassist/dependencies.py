"""Dependency injection table for agent declared dependencies."""

from __future__ import annotations

import importlib
import logging
import re
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from localassist.errors import DependencyError

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    """How a dependency is provided."""

    BUILTIN = "builtin"
    EXTERNAL = "external"
    PROVIDED = "provided"


# Short names agents may declare for standard-library modules
BUILTIN_ALIASES: dict[str, str] = {
    "fs": "os",
    "os": "os",
    "path": "os.path",
    "pathlib": "pathlib",
    "crypto": "hashlib",
    "hashlib": "hashlib",
    "child_process": "subprocess",
    "subprocess": "subprocess",
    "url": "urllib.parse",
    "util": "functools",
    "json": "json",
    "re": "re",
    "time": "time",
    "datetime": "datetime",
    "platform": "platform",
    "math": "math",
    "random": "random",
    "uuid": "uuid",
    "asyncio": "asyncio",
}


@dataclass
class Resolution:
    """Outcome of resolving one dependency."""

    name: str
    key: str
    kind: ProviderKind
    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def binding_name(dependency: str) -> str:
    """Context key a dependency is exposed under.

    >>> binding_name("some-native-lib")
    'some_native_lib'
    """
    return re.sub(r"[^0-9A-Za-z_]", "_", dependency.strip())


def _is_builtin(dependency: str) -> bool:
    root = dependency.split(".")[0]
    return dependency in BUILTIN_ALIASES or root in sys.stdlib_module_names


class DependencyResolver:
    """Maps declared dependency names to concrete providers.

    Each name is resolved once per process; failures are remembered too so a
    broken dependency is reported without re-importing it on every call.
    """

    def __init__(self, providers: dict[str, Any] | None = None):
        self._providers: dict[str, Any] = dict(providers or {})
        self._resolved: dict[str, Resolution] = {}
        self._lock = threading.Lock()

    def register_provider(self, name: str, provider: Any) -> None:
        """Bind a dependency name to an explicit provider.

        Args:
            name: Declared dependency name
            provider: Object to inject as-is
        """
        with self._lock:
            self._providers[name] = provider
            self._resolved.pop(name, None)

    def register_factory(self, name: str, factory: Callable[[], Any]) -> None:
        """Bind a dependency name to a lazily-called factory."""
        self.register_provider(name, _Factory(factory))

    def resolve(self, dependency: str) -> Resolution:
        """Resolve one dependency, using the per-process memo."""
        with self._lock:
            cached = self._resolved.get(dependency)
        if cached is not None:
            return cached

        resolution = self._resolve_uncached(dependency)
        if resolution.ok:
            logger.debug(f"Resolved dependency {dependency} via {resolution.kind.value} path")
        else:
            logger.warning(f"Failed to resolve dependency {dependency}: {resolution.error}")

        with self._lock:
            self._resolved[dependency] = resolution
        return resolution

    def _resolve_uncached(self, dependency: str) -> Resolution:
        key = binding_name(dependency)

        if dependency in self._providers:
            provider = self._providers[dependency]
            try:
                value = provider() if isinstance(provider, _Factory) else provider
            except Exception as e:
                return Resolution(dependency, key, ProviderKind.PROVIDED, error=str(e))
            return Resolution(dependency, key, ProviderKind.PROVIDED, value=value)

        if _is_builtin(dependency):
            module_name = BUILTIN_ALIASES.get(dependency, dependency)
            try:
                return Resolution(
                    dependency, key, ProviderKind.BUILTIN,
                    value=importlib.import_module(module_name),
                )
            except Exception as e:
                return Resolution(dependency, key, ProviderKind.BUILTIN, error=str(e))

        module_name = dependency.replace("-", "_")
        try:
            return Resolution(
                dependency, key, ProviderKind.EXTERNAL,
                value=importlib.import_module(module_name),
            )
        except Exception as e:
            return Resolution(dependency, key, ProviderKind.EXTERNAL, error=str(e))

    def resolve_all(self, dependencies: list[str]) -> tuple[dict[str, Any], list[str]]:
        """Resolve a dependency list, skipping failures.

        Args:
            dependencies: Declared dependency names

        Returns:
            Tuple of (bindings keyed by binding name, warning messages)
        """
        bindings: dict[str, Any] = {}
        warnings: list[str] = []
        for dependency in dependencies:
            resolution = self.resolve(dependency)
            if resolution.ok:
                bindings[resolution.key] = resolution.value
            else:
                warnings.append(str(DependencyError(
                    f"Dependency {dependency} unavailable: {resolution.error}"
                )))
        return bindings, warnings

    def forget(self, dependency: str | None = None) -> None:
        """Drop memoized resolutions (all, or one name)."""
        with self._lock:
            if dependency is None:
                self._resolved.clear()
            else:
                self._resolved.pop(dependency, None)


class _Factory:
    """Marker wrapper for lazily-evaluated providers."""

    def __init__(self, factory: Callable[[], Any]):
        self.factory = factory

    def __call__(self) -> Any:
        return self.factory()
