"""Tests for the CLI module."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from localassist.cli import main
from localassist.orchestrator import FALLBACK_MESSAGE
from localassist.schemas import AskResponse, StageTag


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def agent_file(tmp_path):
    path = tmp_path / "echo_agent.py"
    path.write_text("async def execute(params, context):\n    return {'echo': params.get('text')}\n")
    return path


class TestCLI:
    """Test top-level CLI behaviour."""

    def test_main_help(self, runner):
        """Main command shows help."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "LocalAssist" in result.output
        for command in ("ask", "route", "serve", "agents", "register", "invoke", "mcp"):
            assert command in result.output

    def test_version(self, runner):
        """Version flag works."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestRouteCommand:
    """Test the route command."""

    def test_route_command(self, runner):
        result = runner.invoke(main, ["route", "Open the calculator"])

        assert result.exit_code == 0
        assert "Intent: command" in result.output
        assert "Reasoning:" in result.output

    def test_route_abstains(self, runner):
        result = runner.invoke(main, ["route", "xk qq zzwp"])

        assert result.exit_code == 0
        assert "abstained" in result.output

    def test_route_raw(self, runner):
        result = runner.invoke(main, ["route", "Hello", "--raw"])

        assert result.exit_code == 0
        assert json.loads(result.output)["primary_intent"] == "greeting"


class TestAskCommand:
    """Test the ask command with a mocked orchestrator."""

    def _orchestrator(self, response):
        instance = MagicMock()
        instance.initialize = AsyncMock()
        instance.process = AsyncMock(return_value=response)
        instance.ask = AsyncMock(return_value=response)
        return instance

    @patch("localassist.orchestrator.Orchestrator")
    def test_ask_prints_response(self, mock_cls, runner, tmp_path):
        instance = self._orchestrator(AskResponse(
            success=True,
            primary_intent="memory_retrieve",
            response="You picked React.",
            stage=StageTag.SESSION,
        ))
        mock_cls.return_value = instance

        result = runner.invoke(main, [
            "ask", "Which framework did I pick?",
            "--session", "s1",
            "--db", str(tmp_path / "agents.db"),
        ])

        assert result.exit_code == 0
        assert "You picked React." in result.output
        assert "[from session memory]" in result.output
        instance.process.assert_awaited_once_with("Which framework did I pick?", {"session_id": "s1"})

    @patch("localassist.orchestrator.Orchestrator")
    def test_ask_payload_uses_ask(self, mock_cls, runner, tmp_path):
        """--payload sends TEXT through ask() instead of process()."""
        instance = self._orchestrator(AskResponse(success=True, primary_intent="greeting", response="Hi!"))
        mock_cls.return_value = instance
        payload = '{"intents": [{"intent": "greeting"}]}'

        result = runner.invoke(main, ["ask", payload, "--payload", "--db", str(tmp_path / "agents.db")])

        assert result.exit_code == 0
        instance.ask.assert_awaited_once_with(payload, {})
        instance.process.assert_not_awaited()

    @patch("localassist.orchestrator.Orchestrator")
    def test_ask_failure_exits_nonzero(self, mock_cls, runner, tmp_path):
        mock_cls.return_value = self._orchestrator(AskResponse(
            success=False,
            fallback=FALLBACK_MESSAGE,
            error="Ollama service unavailable",
        ))

        result = runner.invoke(main, ["ask", "How does photosynthesis work?", "--db", str(tmp_path / "agents.db")])

        assert result.exit_code == 1
        assert FALLBACK_MESSAGE in result.output


class TestCatalogCommands:
    """Test register, agents and invoke against a temporary catalog."""

    def test_agents_empty(self, runner, tmp_path):
        result = runner.invoke(main, ["agents", "--db", str(tmp_path / "agents.db")])

        assert result.exit_code == 0
        assert "No agents registered" in result.output

    def test_register_list_invoke(self, runner, tmp_path, agent_file):
        db = str(tmp_path / "agents.db")

        result = runner.invoke(main, [
            "register", "Echo", str(agent_file),
            "-d", "Echoes text",
            "--deps", "json",
            "--version", "v2",
            "--db", db,
        ])
        assert result.exit_code == 0
        assert "Registered agent Echo (v2)" in result.output

        result = runner.invoke(main, ["agents", "--db", db])
        assert result.exit_code == 0
        assert "Echo (v2) [deps: json]: Echoes text" in result.output

        result = runner.invoke(main, ["invoke", "Echo", "--params", '{"text": "ping"}', "--db", db])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["success"]
        assert data["result"] == {"echo": "ping"}

    def test_register_bad_config(self, runner, tmp_path, agent_file):
        result = runner.invoke(main, [
            "register", "Echo", str(agent_file),
            "--config", "[1, 2]",
            "--db", str(tmp_path / "agents.db"),
        ])

        assert result.exit_code != 0
        assert "expected a JSON object" in result.output

    def test_register_invalid_name(self, runner, tmp_path, agent_file):
        result = runner.invoke(main, ["register", "9lives", str(agent_file), "--db", str(tmp_path / "agents.db")])
        assert result.exit_code == 1

    def test_invoke_unknown_agent(self, runner, tmp_path):
        result = runner.invoke(main, ["invoke", "Ghost", "--db", str(tmp_path / "agents.db")])

        assert result.exit_code == 1
        assert "not found" in result.output
