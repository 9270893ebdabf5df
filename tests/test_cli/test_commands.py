import json
from pathlib import Path

import pytest
import structlog
from typer.testing import CliRunner

import stripe_chat.config as config_module
import stripe_chat.main as main_module
from stripe_chat.llm import LLMProvider
from stripe_chat.logging import get_logger

runner = CliRunner()


class FakeMCP:
    def __init__(self, *args, **kwargs):
        self.closed = False

    async def list_tools(self):
        return [
            {
                "name": "create_customer",
                "description": "Create a customer",
                "inputSchema": {"type": "object", "properties": {"email": {"type": "string"}}, "required": ["email"]},
            }
        ]

    async def call_tool(self, name, arguments):
        return {"content": [{"type": "text", "text": "{}"}]}

    async def aclose(self):
        self.closed = True


class OneShotProvider(LLMProvider):
    async def stream_chat(self, messages, tools=None, temperature=None, max_tokens=None):
        yield f"data: {json.dumps({'choices': [{'delta': {'content': 'All good'}}]})}\n\n"
        yield "data: [DONE]\n\n"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing" / "config.yaml")
    monkeypatch.setattr(main_module, "MCPClient", FakeMCP)
    # CliRunner swaps stderr for a stream it closes after invoke
    levels: list[str | None] = []
    monkeypatch.setattr(main_module, "configure_logging", levels.append)
    yield levels
    structlog.reset_defaults()


def test_version_prints_package_version():
    result = runner.invoke(main_module.cli, ["version"])

    assert result.exit_code == 0
    assert "Stripe Chat v0.1.0" in result.output


def test_tools_lists_catalog():
    result = runner.invoke(main_module.cli, ["tools", "--refresh"])

    assert result.exit_code == 0
    assert "create_customer" in result.output
    assert "email" in result.output


def test_ask_streams_answer(monkeypatch):
    monkeypatch.setattr(main_module, "create_provider", lambda **kwargs: OneShotProvider())

    result = runner.invoke(main_module.cli, ["ask", "how are things?"])

    assert result.exit_code == 0
    assert "All good" in result.output


def test_verbose_flag_requests_debug_logging(_isolated_env):
    result = runner.invoke(main_module.cli, ["tools", "-v"])

    assert result.exit_code == 0
    assert _isolated_env == ["DEBUG"]


def test_loggers_keep_working_after_cli_runs():
    runner.invoke(main_module.cli, ["tools"])

    get_logger("stripe_chat.tests").info("after cli run")
