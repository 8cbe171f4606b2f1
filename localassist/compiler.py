"""Compilation of scripted (source-encoded) agents.

Scripted agents are stored as Python source in the catalog. The source is
either a small module defining ``execute`` (and optionally ``bootstrap`` and
helper functions), or a bare function body that becomes the body of
``async def execute(params, context)``.

Before evaluation the syntax tree is checked: import statements, dunder
names and attributes, and frame or traceback attributes are rejected. The
code then runs in an isolated namespace holding a restricted builtins table
(no import, file, eval, attribute reflection or class creation) plus the
agent's declared dependency bindings. Anything else an agent needs must be
declared as a dependency.
"""

from __future__ import annotations

import ast
import builtins
import inspect
import logging
import textwrap
from dataclasses import dataclass, field
from typing import Any, Callable

from localassist.errors import CompilationError

logger = logging.getLogger(__name__)

PARSE_FAILURE_MESSAGE = "Could not parse function body"

_ALLOWED_BUILTINS = {
    "abs", "all", "any", "bool", "callable", "dict", "divmod", "enumerate",
    "filter", "float", "format", "frozenset", "hasattr", "hash",
    "int", "isinstance", "iter", "len", "list", "map", "max",
    "min", "next", "print", "range", "repr", "reversed", "round", "set",
    "slice", "sorted", "str", "sum", "tuple", "zip",
    "True", "False", "None", "Exception", "ValueError", "KeyError",
    "TypeError", "RuntimeError", "LookupError", "IndexError",
    "NotImplementedError", "StopIteration", "ZeroDivisionError",
}

# Attributes that lead from an agent's objects to interpreter frames
_FRAME_ATTRIBUTES = {
    "gi_frame", "gi_code", "cr_frame", "cr_code", "ag_frame", "ag_code",
    "f_back", "f_builtins", "f_globals", "f_locals", "f_code",
    "tb_frame", "tb_next",
}

SAFE_BUILTINS: dict[str, Any] = {
    name: getattr(builtins, name) for name in _ALLOWED_BUILTINS if hasattr(builtins, name)
}

_HOOK_NAMES = ("bootstrap", "execute")


@dataclass
class CompiledAgent:
    """Callables produced by compiling a scripted agent."""

    execute: Callable[..., Any]
    bootstrap: Callable[..., Any] | None = None
    helpers: dict[str, Callable[..., Any]] = field(default_factory=dict)


def _defines(tree: ast.Module, name: str) -> bool:
    """Check whether a module defines a top-level function called name."""
    return any(
        isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == name
        for node in tree.body
    )


def extract_bootstrap(source: str | None) -> str | None:
    """Extract the source of a top-level ``bootstrap`` function.

    Args:
        source: Agent source text

    Returns:
        The bootstrap function's source, or None if absent or unparseable
    """
    if not source or "bootstrap" not in source:
        return None
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return None

    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == "bootstrap":
            return ast.get_source_segment(source, node)
    return None


def normalize_source(source: str | None) -> str:
    """Turn agent source into a module that defines ``execute``.

    Args:
        source: Module text or a bare function body

    Returns:
        Module source text

    Raises:
        CompilationError: If the source cannot be parsed either way
    """
    if not source or not source.strip():
        raise CompilationError("No execute code provided")

    source = textwrap.dedent(source).strip("\n")

    try:
        tree = ast.parse(source)
        if _defines(tree, "execute"):
            return source
    except SyntaxError:
        pass

    wrapped = "async def execute(params, context):\n" + textwrap.indent(source, "    ")
    try:
        ast.parse(wrapped)
    except SyntaxError as e:
        logger.debug(f"Unparseable agent body at line {e.lineno}: {e.msg}")
        raise CompilationError(PARSE_FAILURE_MESSAGE) from e
    return wrapped


def compile_agent(
    name: str,
    source: str | None,
    bindings: dict[str, Any] | None = None,
    bootstrap_source: str | None = None,
) -> CompiledAgent:
    """Compile a scripted agent inside an isolated namespace.

    Args:
        name: Agent name, used for the code object's filename
        source: Agent source text
        bindings: Declared dependency bindings to expose
        bootstrap_source: Stand-alone bootstrap snippet, used when the
            main source does not define one

    Returns:
        CompiledAgent with execute, bootstrap and helper callables

    Raises:
        CompilationError: If the source cannot be parsed or evaluated
    """
    module_source = normalize_source(source)
    namespace: dict[str, Any] = {
        "__builtins__": SAFE_BUILTINS,
        "__name__": f"localassist.scripted.{name}",
        **(bindings or {}),
    }

    _exec_into(name, module_source, namespace)

    if "bootstrap" not in namespace and bootstrap_source:
        try:
            _exec_into(name, textwrap.dedent(bootstrap_source), namespace)
        except CompilationError as e:
            logger.warning(f"Ignoring unusable bootstrap snippet for {name}: {e}")

    execute = namespace.get("execute")
    if not callable(execute):
        raise CompilationError(f"Agent {name} defines no callable execute")

    bootstrap = namespace.get("bootstrap")
    helpers = {
        key: value
        for key, value in namespace.items()
        if key not in _HOOK_NAMES
        and not key.startswith("_")
        and inspect.isfunction(value)
        and value.__globals__ is namespace
    }

    return CompiledAgent(
        execute=execute,
        bootstrap=bootstrap if callable(bootstrap) else None,
        helpers=helpers,
    )


def check_tree(tree: ast.AST) -> None:
    """Reject constructs that could escape the agent namespace.

    Raises:
        CompilationError: On imports, dunder names or attributes, and frame
            or traceback attributes
    """
    for node in ast.walk(tree):
        if isinstance(node, (ast.Import, ast.ImportFrom)):
            raise CompilationError(
                f"Import statements are not allowed (line {node.lineno}); declare a dependency instead"
            )
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise CompilationError(f"Name {node.id} is not allowed (line {node.lineno})")
        if isinstance(node, ast.Attribute) and (
            node.attr.startswith("__") or node.attr in _FRAME_ATTRIBUTES
        ):
            raise CompilationError(f"Attribute {node.attr} is not allowed (line {node.lineno})")


def _exec_into(name: str, source: str, namespace: dict[str, Any]) -> None:
    """Check, compile and run source text in namespace."""
    try:
        tree = ast.parse(source)
    except SyntaxError as e:
        raise CompilationError(PARSE_FAILURE_MESSAGE) from e

    check_tree(tree)
    code = compile(tree, f"<agent:{name}>", "exec")

    try:
        exec(code, namespace)
    except Exception as e:
        raise CompilationError(f"Could not evaluate agent code: {e}") from e
