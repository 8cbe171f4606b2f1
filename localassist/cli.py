"""CLI for LocalAssist - broker, routing and agent catalog management."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from localassist import __version__
from localassist.catalog import DEFAULT_DB_PATH


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _parse_json_option(value: str | None, option: str) -> dict:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint=option) from e
    if not isinstance(parsed, dict):
        raise click.BadParameter("expected a JSON object", param_hint=option)
    return parsed


db_option = click.option(
    "--db",
    "db_path",
    default=str(DEFAULT_DB_PATH),
    show_default=True,
    help="Agent catalog database",
)


@click.group()
@click.version_option(version=__version__, prog_name="localassist")
def main() -> None:
    """LocalAssist - local-first assistant routing utterances to agents.

    Route user input to memory, language-model and custom agents.
    """
    pass


@main.command()
@click.option("--port", default=8000, help="Port to run the broker on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(port: int, host: str, reload: bool) -> None:
    """Start the LocalAssist HTTP broker server."""
    import uvicorn

    click.echo(f"Starting LocalAssist broker on {host}:{port}")
    uvicorn.run(
        "localassist.server:app",
        host=host,
        port=port,
        reload=reload,
    )


@main.command()
@click.argument("text")
@click.option("--semantic", is_flag=True, help="Use the embedding model for the storage signal")
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
def route(text: str, semantic: bool, raw: bool) -> None:
    """Show how an utterance would be routed.

    \b
    Example:
        localassist route "remember that my sister lives in Lisbon"
    """
    from localassist.router import EntityRouter

    embedder = None
    if semantic:
        from localassist.memory import Embedder

        embedder = Embedder()

    decision = asyncio.run(EntityRouter(embedder=embedder).route(text))

    if raw:
        _echo_json(decision.model_dump(mode="json") if decision else None)
        return

    if decision is None:
        click.echo("Router abstained (no confident intent).")
        return

    click.echo(f"Intent: {decision.primary_intent.value} (confidence {decision.confidence:.2f}, margin {decision.margin:.2f})")
    if decision.also_run is not None:
        click.echo(f"Also runs: {decision.also_run.value}")
    for bucket, values in decision.entities.items():
        click.echo(f"  {bucket}: {', '.join(values)}")
    click.echo(f"Reasoning: {decision.reasoning}")


@main.command()
@click.argument("text")
@click.option("--session", "session_id", default=None, help="Session identifier")
@click.option("--context", "conversation", default=None, help="Recent conversation text")
@click.option("--payload", is_flag=True, help="Treat TEXT as a pre-classified JSON payload")
@db_option
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
def ask(
    text: str,
    session_id: str | None,
    conversation: str | None,
    payload: bool,
    db_path: str,
    raw: bool,
) -> None:
    """Answer an utterance with a local orchestrator.

    \b
    Example:
        localassist ask "what did I say about the React project?"
        localassist ask '{"intents": [{"intent": "greeting"}]}' --payload
    """
    from localassist.orchestrator import Orchestrator

    context = {"session_id": session_id, "conversation_context": conversation}
    context = {key: value for key, value in context.items() if value}

    async def run():
        orchestrator = Orchestrator(db_path=db_path, prewarm=False)
        await orchestrator.initialize()
        if payload:
            return await orchestrator.ask(text, context)
        return await orchestrator.process(text, context)

    response = asyncio.run(run())

    if raw:
        _echo_json(response.model_dump(mode="json"))
        return

    if response.success:
        click.echo(response.response or "(no response)")
        if response.stage is not None:
            click.echo(f"[from {response.stage.value} memory]")
    else:
        click.echo(response.fallback or "Request failed.")
        if response.error:
            click.echo(f"Error: {response.error}", err=True)
        raise SystemExit(1)


@main.command()
@db_option
def agents(db_path: str) -> None:
    """List agents in the catalog."""
    from localassist.registry import AgentRegistry

    registry = AgentRegistry(db_path=db_path)
    names = registry.registered()

    if not names:
        click.echo("No agents registered. Use 'localassist register' to add one.")
        return

    click.echo("Registered agents:")
    for name in names:
        descriptor = registry.describe(name)
        deps = f" [deps: {', '.join(descriptor.dependencies)}]" if descriptor.dependencies else ""
        click.echo(f"  - {name} ({descriptor.version}){deps}: {descriptor.description}")


@main.command()
@click.argument("name")
@click.argument("code_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--description", "-d", default="", help="What the agent does")
@click.option("--deps", default="", help="Comma-separated dependency names")
@click.option("--config", "config_json", default=None, help="Agent config as a JSON object")
@click.option("--version", "agent_version", default="v1", help="Agent version label")
@db_option
def register(
    name: str,
    code_file: Path,
    description: str,
    deps: str,
    config_json: str | None,
    agent_version: str,
    db_path: str,
) -> None:
    """Register a scripted agent from a Python source file.

    The file defines ``async def execute(params, context)`` (or just its
    body) and optionally ``bootstrap(global_config, context)``.

    \b
    Example:
        localassist register Weather weather_agent.py --deps httpx
    """
    from localassist.registry import AgentRegistry

    registry = AgentRegistry(db_path=db_path)
    if not registry.persistent:
        raise click.ClickException(f"Could not open agent catalog at {db_path}")

    try:
        descriptor = registry.register({
            "name": name,
            "description": description,
            "code": code_file.read_text(),
            "dependencies": deps,
            "config": _parse_json_option(config_json, "--config"),
            "version": agent_version,
        })
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Registered agent {descriptor.name} ({descriptor.version})")


@main.command()
@click.argument("name")
@click.option("--params", "params_json", default=None, help="Execute params as a JSON object")
@db_option
def invoke(name: str, params_json: str | None, db_path: str) -> None:
    """Invoke a catalog agent once and print its result.

    \b
    Example:
        localassist invoke Weather --params '{"city": "Lisbon"}'
    """
    from localassist.registry import AgentRegistry

    params = _parse_json_option(params_json, "--params")
    registry = AgentRegistry(db_path=db_path)
    result = asyncio.run(registry.invoke(name, params, {}))

    _echo_json(result.model_dump(mode="json"))
    if not result.success:
        raise SystemExit(1)


@main.command()
def mcp() -> None:
    """Run the MCP server for assistant integration.

    The MCP tools forward to a running broker (``localassist serve``).

    \b
    Configure in .mcp.json:
        {
            "mcpServers": {
                "localassist": {
                    "command": "localassist",
                    "args": ["mcp"]
                }
            }
        }
    """
    from mcp_localassist.server import mcp as mcp_server

    mcp_server.run()


if __name__ == "__main__":
    main()
