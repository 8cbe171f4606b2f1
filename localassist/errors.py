"""Error taxonomy for LocalAssist.

Most of these are recovered close to where they happen and turned into
structured results; only orchestrator misuse is meant to reach the caller.
"""

from __future__ import annotations


class LocalAssistError(Exception):
    """Base class for all LocalAssist errors."""

    pass


class ConfigurationError(LocalAssistError):
    """Raised when a collaborator (e.g. the persistent catalog) is not configured."""

    pass


class ResolutionError(LocalAssistError):
    """Raised when an agent name or an intent resolves to nothing."""

    pass


class CompilationError(LocalAssistError):
    """Raised when a scripted agent cannot be compiled."""

    pass


class DependencyError(LocalAssistError):
    """Raised when a declared agent dependency cannot be resolved."""

    pass


class InvocationError(LocalAssistError):
    """Raised when an agent's execute hook is missing or unusable."""

    pass


class CascadeStageError(LocalAssistError):
    """Raised inside a staged search tier; always caught by the cascade."""

    pass


class WorkflowStepError(LocalAssistError):
    """Raised when a workflow step cannot be dispatched."""

    pass


class CompletionUnavailableError(LocalAssistError):
    """Raised when the text-completion service is unreachable or timed out."""

    pass


class OrchestratorNotInitializedError(LocalAssistError):
    """Raised when the orchestrator is used before initialize()."""

    pass
