"""System prompt assembly for single-agent runs."""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from agentchat.models import ProviderConfig
from agentchat.tools import FILESYSTEM_TOOLS, PLANNING_TOOLS, SEARCH_TOOLS

AGENT_MODE_CONTRACT = """## AGENTIC MODE (ACTIVE)
You MUST follow this structured approach for EVERY response:

### Output Format
1. **Plan**: start EVERY response with a visible plan section:
   ```
   ## Plan
   - [ ] Step 1: description
   - [ ] Step 2: description
   ...
   ```
2. **Execution**: for each step, show your work under a header:
   ```
   ### Step 1: description
   [your work here]
   Done
   ```
3. **Summary**: end with a summary of what was accomplished and the updated checklist with [x] for completed items.

### Rules
- ALWAYS show the plan as a markdown checklist (- [ ] / - [x]) so the user can see progress.
- For multi-step tasks, update the checklist as you complete each step.
- Use sub-headings (###) for each step.
- If using tools, explain what you're doing before and after each tool call.
- NEVER skip the plan. Even for simple questions, show at least: Plan, Execute, Summary.
- Think step-by-step and show your reasoning."""


def date_line(now: datetime | None = None) -> str:
    now = now or datetime.now()
    if now.tzinfo is None:
        now = now.astimezone()
    timezone = now.tzname() or "UTC"
    return f"Current date and time: {now.strftime('%A, %B %d, %Y')}, {now.strftime('%I:%M %p')} ({timezone})."


def build_system_prompt(
    config: ProviderConfig,
    tools: Mapping[str, Any],
    force_agent_mode: bool = False,
    now: datetime | None = None,
) -> str:
    """Synthesize the run's system prompt.

    A caller-supplied prompt is kept verbatim with the date line prepended.
    Otherwise the prompt always carries the task complexity guidance and
    lists only the tool categories actually present.
    """
    if config.system_prompt:
        prompt = f"{date_line(now)}\n\n{config.system_prompt}"
    else:
        parts = [
            "You are a helpful AI assistant with agentic capabilities.",
            date_line(now),
            "Always respond in the same language as the user's message unless explicitly asked "
            "to use a different language.",
        ]
        parts += ["", "## Task Complexity Guidelines"]
        if any(name in tools for name in PLANNING_TOOLS):
            parts += [
                "For simple questions (greetings, quick facts, translations, small tasks), respond directly "
                "without using planning tools.",
                "For complex multi-step tasks (research, analysis, building plans, comparing multiple sources), "
                "use the write_todos and review_todos tools to decompose the work into steps and track progress.",
                "For tasks that can be parallelized, delegate sub-tasks to specialized sub-agents.",
            ]
        else:
            parts += [
                "For simple questions (greetings, quick facts, translations, small tasks), respond directly.",
                "For complex multi-step tasks, first write a short todo list of the steps, then work through it "
                "and mark each step done.",
                "For tasks with independent parts, handle each part separately before combining the results.",
            ]
        fs_tools = [name for name in FILESYSTEM_TOOLS if name in tools]
        if fs_tools:
            parts += [
                "",
                "## File Tools",
                "You can read, write, edit, and search files in a virtual workspace using "
                f"{', '.join(fs_tools)}.",
            ]
        if "web_search" in tools:
            parts += [
                "",
                "## Web Search",
                "Use web_search for current events, recent news, real-time data, or anything you're unsure about.",
            ]
            if "read_webpage" in tools:
                parts.append("Use read_webpage to get detailed content from a specific URL.")
            if "scrape_many" in tools:
                parts.append("Use scrape_many to read multiple pages in parallel.")
        known = set(FILESYSTEM_TOOLS) | set(PLANNING_TOOLS) | set(SEARCH_TOOLS)
        other = [name for name in tools if name not in known]
        if other:
            parts += ["", "## Additional Tools", f"You also have: {', '.join(other)}."]
        prompt = "\n".join(parts)

    if force_agent_mode:
        prompt += "\n\n" + AGENT_MODE_CONTRACT
    return prompt
