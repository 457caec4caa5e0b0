"""Tests for agentchat/prompts.py."""

from datetime import datetime, timezone

import pytest

from agentchat.prompts import AGENT_MODE_CONTRACT, build_system_prompt, date_line
from tests.conftest import make_config

NOW = datetime(2025, 3, 7, 14, 5, tzinfo=timezone.utc)


def test_date_line_format():
    assert date_line(NOW) == "Current date and time: Friday, March 07, 2025, 02:05 PM (UTC)."


def test_custom_prompt_is_kept_with_date_prepended():
    prompt = build_system_prompt(make_config(system_prompt="You are a pirate."), {}, now=NOW)
    assert prompt == f"{date_line(NOW)}\n\nYou are a pirate."


def test_no_tools_keeps_guidance_without_tool_sections():
    prompt = build_system_prompt(make_config(), {}, now=NOW)
    assert prompt.startswith("You are a helpful AI assistant")
    assert date_line(NOW) in prompt
    assert "## Task Complexity Guidelines" in prompt
    assert "respond directly." in prompt
    assert "todo list" in prompt
    assert "## File Tools" not in prompt
    assert "## Web Search" not in prompt
    assert "write_todos" not in prompt


def test_sections_follow_present_tools():
    tools = {"write_todos": 1, "review_todos": 1, "ls": 1, "read_file": 1, "web_search": 1}
    prompt = build_system_prompt(make_config(), tools, now=NOW)
    assert "## Task Complexity Guidelines" in prompt
    assert "## File Tools" in prompt
    assert "using ls, read_file." in prompt
    assert "## Web Search" in prompt
    assert "read_webpage" not in prompt


def test_extra_tools_are_listed():
    prompt = build_system_prompt(make_config(), {"web_search": 1, "read_webpage": 1, "mcp_weather": 1}, now=NOW)
    assert "Use read_webpage" in prompt
    assert "## Additional Tools" in prompt
    assert "mcp_weather" in prompt


@pytest.mark.parametrize("system_prompt", [None, "Custom."])
def test_force_agent_mode_appends_contract(system_prompt):
    prompt = build_system_prompt(make_config(system_prompt=system_prompt), {}, force_agent_mode=True, now=NOW)
    assert prompt.endswith(AGENT_MODE_CONTRACT)


def test_agent_mode_off_has_no_contract():
    assert "AGENTIC MODE" not in build_system_prompt(make_config(), {}, now=NOW)
