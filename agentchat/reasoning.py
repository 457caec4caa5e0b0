"""Normalize per-vendor reasoning knobs into one directive.

Vendors expose nothing, an effort level, a token budget or a "show thoughts"
switch. ``derive_reasoning`` runs once per run; each endpoint maps the
directive back onto its own request parameters.
"""

from dataclasses import dataclass

from agentchat.models import ProviderConfig, ProviderKind

ANTHROPIC_THINKING_BUDGET = 10_000


@dataclass(frozen=True)
class ReasoningDirective:
    effort: str | None = None
    budget_tokens: int | None = None
    include_thoughts: bool = False


_EFFORT_OPTIONAL = {
    ProviderKind.DEEPSEEK,
    ProviderKind.GROQ,
    ProviderKind.TOGETHER,
    ProviderKind.MISTRAL,
}


def derive_reasoning(config: ProviderConfig) -> ReasoningDirective | None:
    """Return the reasoning directive for this run, or None when nothing applies."""
    if not config.reasoning_enabled or config.reasoning_effort == "none":
        return None
    effort = config.reasoning_effort
    kind = config.provider_kind

    if kind == ProviderKind.OPENAI:
        return ReasoningDirective(effort=effort) if effort else None
    if kind == ProviderKind.XAI:
        return ReasoningDirective(effort=effort or "high")
    if kind == ProviderKind.ANTHROPIC:
        return ReasoningDirective(budget_tokens=ANTHROPIC_THINKING_BUDGET)
    if kind == ProviderKind.GOOGLE:
        return ReasoningDirective(include_thoughts=True)
    if kind in _EFFORT_OPTIONAL and effort:
        return ReasoningDirective(effort=effort)
    return None
