"""Load settings.yaml into typed dataclasses. Checks API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from agentchat.models import DEFAULT_CONSENSUS_AGENTS, AgentRole

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

DEFAULT_APPROVAL_TOOLS = ["write_file", "edit_file", "delete_file", "web_search", "run_command"]


@dataclass
class ProviderSettings:
    name: str
    api_key_env: str
    timeout_sec: int = 120
    max_tokens: int = 8192
    base_url: str | None = None


@dataclass
class AgentSettings:
    max_steps: int = 15
    subagent_max_depth: int = 2
    subagent_timeout_sec: int = 120
    approval_tools: list[str] = field(default_factory=lambda: list(DEFAULT_APPROVAL_TOOLS))
    memory_db: Path = Path("./data/memory.db")


@dataclass
class ConsensusSettings:
    timeout_sec: int = 120
    max_concurrency: int = 3
    analyst_max_steps: int = 5
    use_shared_model: bool = True
    agents: list[AgentRole] = field(default_factory=lambda: list(DEFAULT_CONSENSUS_AGENTS))


@dataclass
class PromptsConfig:
    analyst: str = "You are a {role}. {instructions}"
    synthesizer: str = (
        "You are the final synthesizer. Based on the consensus result, provide a coherent, "
        "unified response to the user. Do not explicitly mention the internal debate, "
        "just give the best answer."
    )
    judge: str = (
        "You are the reviewer of a panel of analysts.\n\nQuestion:\n{question}\n\n{proposals}\n\n"
        "Score each proposal from 0 to 10 and pick the best one. Reply with JSON only: "
        '{{"scores": {{"A": 7}}, "winner": "A", "reasoning": "..."}}'
    )


@dataclass
class DefaultsConfig:
    provider: str
    model: str
    output_dir: Path


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    providers: dict[str, ProviderSettings]
    agent: AgentSettings
    consensus: ConsensusSettings
    prompts: PromptsConfig
    available_providers: set[str] = field(default_factory=set)


def _load_agents(raw_agents: list[dict] | None) -> list[AgentRole]:
    if not raw_agents:
        return list(DEFAULT_CONSENSUS_AGENTS)
    return [
        AgentRole(
            id=str(a["id"]),
            role=str(a["role"]),
            instructions=str(a.get("instructions", "")),
            model=a.get("model"),
        )
        for a in raw_agents
    ]


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs providers with no API key but does not raise; callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        provider=str(defaults_raw["provider"]),
        model=str(defaults_raw["model"]),
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
    )

    agent_raw = raw.get("agent", {})
    agent = AgentSettings(
        max_steps=int(agent_raw.get("max_steps", 15)),
        subagent_max_depth=int(agent_raw.get("subagent_max_depth", 2)),
        subagent_timeout_sec=int(agent_raw.get("subagent_timeout_sec", 120)),
        approval_tools=list(agent_raw.get("approval_tools", DEFAULT_APPROVAL_TOOLS)),
        memory_db=Path(agent_raw.get("memory_db", "./data/memory.db")),
    )

    consensus_raw = raw.get("consensus", {})
    consensus = ConsensusSettings(
        timeout_sec=int(consensus_raw.get("timeout_sec", 120)),
        max_concurrency=int(consensus_raw.get("max_concurrency", 3)),
        analyst_max_steps=int(consensus_raw.get("analyst_max_steps", 5)),
        use_shared_model=bool(consensus_raw.get("use_shared_model", True)),
        agents=_load_agents(consensus_raw.get("agents")),
    )

    prompts_raw = raw.get("prompts", {})
    default_prompts = PromptsConfig()
    prompts = PromptsConfig(
        analyst=prompts_raw.get("analyst", default_prompts.analyst),
        synthesizer=prompts_raw.get("synthesizer", default_prompts.synthesizer),
        judge=prompts_raw.get("judge", default_prompts.judge),
    )

    providers: dict[str, ProviderSettings] = {}
    available_providers: set[str] = set()

    for provider_name, provider_raw in raw.get("providers", {}).items():
        providers[provider_name] = ProviderSettings(
            name=provider_name,
            api_key_env=provider_raw["api_key_env"],
            timeout_sec=int(provider_raw.get("timeout_sec", 120)),
            max_tokens=int(provider_raw.get("max_tokens", 8192)),
            base_url=provider_raw.get("base_url"),
        )

        api_key = os.environ.get(provider_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                provider_name,
                provider_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        providers=providers,
        agent=agent,
        consensus=consensus,
        prompts=prompts,
        available_providers=available_providers,
    )
