"""Tests for agentchat/cli.py: flag handling and end-to-end runs over fake endpoints."""

from pathlib import Path

import click
import pytest
from click.testing import CliRunner

from agentchat.cli import CliObserver, build_provider_config, load_object, main, make_approval_handler, read_attachments
from agentchat.models import ProviderKind
from agentchat.providers.base import FinishEvent, StreamResult, TextDelta
from agentchat.tools import ApprovalRequest, Tool
from config.config_loader import load_config
from tests.conftest import fake_registry


@pytest.fixture
def app_config():
    return load_config()


@pytest.fixture
def cli_env(monkeypatch):
    """Fake registry, no .env loading, OpenAI key present."""
    registry = fake_registry()
    monkeypatch.setattr("agentchat.cli.ProviderRegistry", lambda settings=None: registry)
    monkeypatch.setattr("agentchat.cli.load_dotenv", lambda: None)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    return registry


def test_build_provider_config_defaults(app_config):
    cfg = build_provider_config(app_config, None, None, None, None, None, False, None)
    assert cfg.provider_kind == ProviderKind(app_config.defaults.provider)
    assert cfg.model_id == app_config.defaults.model
    assert cfg.credential_ref == "OPENAI_API_KEY"
    assert cfg.reasoning_enabled is False
    assert cfg.web_search_enabled is True


def test_build_provider_config_overrides(app_config):
    cfg = build_provider_config(
        app_config, "anthropic", "claude-sonnet-4", "https://proxy.example", "Be terse.", 0.2, False, "low",
        web_search=False,
    )
    assert cfg.provider_kind == ProviderKind.ANTHROPIC
    assert cfg.credential_ref == "ANTHROPIC_API_KEY"
    assert cfg.base_url == "https://proxy.example"
    assert cfg.system_prompt == "Be terse."
    assert cfg.temperature == 0.2
    assert cfg.reasoning_enabled is True
    assert cfg.reasoning_effort == "low"
    assert cfg.web_search_enabled is False


def test_build_provider_config_unknown_provider(app_config):
    with pytest.raises(click.BadParameter, match="Unknown provider 'acme'"):
        build_provider_config(app_config, "acme", None, None, None, None, False, None)


def test_read_attachments(tmp_path: Path):
    image = tmp_path / "cat.png"
    image.write_bytes(b"ABCD")
    blob = tmp_path / "data.unknownext"
    blob.write_bytes(b"\x00")
    attachments = read_attachments((str(image), str(blob)))
    assert attachments[0].media_type == "image/png"
    assert attachments[0].base64 == "QUJDRA=="
    assert attachments[0].name == "cat.png"
    assert attachments[1].media_type == "application/octet-stream"


def test_cli_observer_collects_without_printing():
    observer = CliObserver(live=False)
    observer.on_text("Hel")
    observer.on_text("lo")
    observer.on_reasoning("thinking")
    observer.on_complete("stop")
    assert observer.answer == "Hello"
    assert observer.reasoning == ["thinking"]
    assert observer.stop_reason == "stop"
    assert observer.error is None


def test_main_streams_answer(cli_env):
    result = CliRunner().invoke(main, ["Say hello"])
    assert result.exit_code == 0, result.output
    assert "Hello" in result.output
    request = cli_env.created["gpt-4o"].requests[0]
    assert request.messages[0].content == "Say hello"


def test_main_exports_transcript(cli_env, tmp_path: Path):
    out_dir = tmp_path / "transcripts"
    result = CliRunner().invoke(main, ["Say hello", "--export", str(out_dir), "--format", "json"])
    assert result.exit_code == 0, result.output
    [saved] = list(out_dir.glob("*.json"))
    assert "say-hello" in saved.name


def test_main_missing_key_exits_nonzero(cli_env, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = CliRunner().invoke(main, ["Say hello"])
    assert result.exit_code == 1
    assert "No API key configured" in result.output


def test_main_unknown_provider(cli_env):
    result = CliRunner().invoke(main, ["Say hello", "--provider", "acme"])
    assert result.exit_code != 0
    assert "Unknown provider" in result.output


def test_main_consensus(cli_env):
    result = CliRunner().invoke(main, ["Monorepo or polyrepo?", "--consensus", "--quiet"])
    assert result.exit_code == 0, result.output
    assert "Hello" in result.output


async def test_auto_approve_handler():
    handler = make_approval_handler(auto_approve=True)
    assert await handler(ApprovalRequest("write_file", {"path": "a.md"})) is True


async def test_interactive_approval_handler(monkeypatch):
    monkeypatch.setattr("agentchat.cli.click.confirm", lambda *args, **kwargs: False)
    handler = make_approval_handler(auto_approve=False)
    assert await handler(ApprovalRequest("delete_file", {"path": "a.md"})) is False


class ToolReportRuntime:
    """Lists the tools it was given, then tries write_file and reports the outcome."""

    def __init__(self, spec):
        self.spec = spec

    def stream(self, request):
        async def gen():
            yield TextDelta("tools: " + ", ".join(sorted(self.spec.tools)) + "\n")
            result = await self.spec.tools["write_file"].invoke({"path": "/notes.md", "content": "hi"})
            yield TextDelta(f"write_file: {result}\n")
            yield FinishEvent("stop")

        return StreamResult(gen())

    async def dispose(self):
        pass


class SearchTools:
    def build_tools(self, *, web_search):
        async def search(query):
            return []

        async def fetch(url):
            return ""

        return {
            "web_search": Tool("web_search", "Search the web.", {}, search),
            "fetch_url": Tool("fetch_url", "Fetch a page.", {}, fetch),
        }


_RUNTIME = "tests.test_cli:ToolReportRuntime"
_TOOLS = "tests.test_cli:SearchTools"


def test_load_object_resolves_attribute():
    assert load_object("agentchat.cli:load_object", "--runtime") is load_object


@pytest.mark.parametrize("path", ["no_colon", "agentchat.cli:missing", "agentchat.nowhere:thing"])
def test_load_object_rejects_bad_paths(path):
    with pytest.raises(click.BadParameter):
        load_object(path, "--runtime")


def test_main_runtime_with_yes_runs_gated_tools(cli_env):
    result = CliRunner().invoke(main, ["Draft notes", "--runtime", _RUNTIME, "--tools", _TOOLS, "--yes"])
    assert result.exit_code == 0, result.output
    assert "web_search" in result.output
    assert "write_file: Wrote 2 characters to /notes.md" in result.output


def test_main_runtime_without_yes_asks(cli_env, monkeypatch):
    asked = []

    def deny(text, default=False):
        asked.append(text)
        return False

    monkeypatch.setattr("agentchat.cli.click.confirm", deny)
    result = CliRunner().invoke(main, ["Draft notes", "--runtime", _RUNTIME])
    assert result.exit_code == 0, result.output
    assert asked == ["Allow write_file?"]
    assert "denied permission to run write_file" in result.output


def test_main_no_web_search_drops_search_tools(cli_env):
    result = CliRunner().invoke(
        main, ["Draft notes", "--runtime", _RUNTIME, "--tools", _TOOLS, "--no-web-search", "--yes"],
    )
    assert result.exit_code == 0, result.output
    assert "fetch_url" in result.output
    assert "web_search" not in result.output


def test_main_tool_flags_without_runtime_warn(cli_env):
    result = CliRunner().invoke(main, ["Say hello", "--yes", "--no-web-search"])
    assert result.exit_code == 0, result.output
    assert "only apply with --runtime" in result.output
    assert "Hello" in result.output


def test_main_bad_runtime_path(cli_env):
    result = CliRunner().invoke(main, ["Say hello", "--runtime", "nowhere"])
    assert result.exit_code == 2
    assert "module:attribute" in result.output
