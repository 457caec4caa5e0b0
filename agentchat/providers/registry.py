"""Provider registry: maps a ProviderKind to a callable ModelEndpoint.

Endpoint classes are imported on first use and cached per kind, so resolving
the same kind twice does not re-import its SDK.
"""

import importlib
import logging
from collections.abc import Callable
from dataclasses import dataclass

from agentchat.errors import ConfigurationError
from agentchat.models import ProviderConfig, ProviderKind
from agentchat.providers.base import ModelEndpoint
from config.config_loader import ProviderSettings

logger = logging.getLogger(__name__)

EndpointFactory = Callable[..., ModelEndpoint]

_OPENAI = "agentchat.providers.openai_provider:OpenAIEndpoint"
_ANTHROPIC = "agentchat.providers.anthropic:AnthropicEndpoint"
_GEMINI = "agentchat.providers.gemini:GeminiEndpoint"


@dataclass(frozen=True)
class ProviderInfo:
    kind: ProviderKind
    name: str
    endpoint_path: str             # "module:Class"
    default_base_url: str | None = None
    compatible: bool = False       # generic REST family, base URL required


PROVIDERS: dict[ProviderKind, ProviderInfo] = {
    ProviderKind.OPENAI: ProviderInfo(ProviderKind.OPENAI, "OpenAI", _OPENAI),
    ProviderKind.ANTHROPIC: ProviderInfo(ProviderKind.ANTHROPIC, "Anthropic", _ANTHROPIC),
    ProviderKind.GOOGLE: ProviderInfo(ProviderKind.GOOGLE, "Google", _GEMINI),
    ProviderKind.XAI: ProviderInfo(ProviderKind.XAI, "xAI", _OPENAI, "https://api.x.ai/v1"),
    ProviderKind.OPENROUTER: ProviderInfo(
        ProviderKind.OPENROUTER, "OpenRouter", _OPENAI, "https://openrouter.ai/api/v1"
    ),
    ProviderKind.KIMI: ProviderInfo(ProviderKind.KIMI, "Kimi", _OPENAI, "https://api.moonshot.cn/v1", True),
    ProviderKind.MINIMAX: ProviderInfo(
        ProviderKind.MINIMAX, "MiniMax", _OPENAI, "https://api.minimax.chat/v1", True
    ),
    ProviderKind.GLM: ProviderInfo(
        ProviderKind.GLM, "GLM", _OPENAI, "https://open.bigmodel.cn/api/paas/v4/", True
    ),
    ProviderKind.DEEPSEEK: ProviderInfo(
        ProviderKind.DEEPSEEK, "DeepSeek", _OPENAI, "https://api.deepseek.com/v1", True
    ),
    ProviderKind.GROQ: ProviderInfo(ProviderKind.GROQ, "Groq", _OPENAI, "https://api.groq.com/openai/v1", True),
    ProviderKind.TOGETHER: ProviderInfo(
        ProviderKind.TOGETHER, "Together AI", _OPENAI, "https://api.together.xyz/v1", True
    ),
    ProviderKind.MISTRAL: ProviderInfo(
        ProviderKind.MISTRAL, "Mistral", _OPENAI, "https://api.mistral.ai/v1", True
    ),
    ProviderKind.PERPLEXITY: ProviderInfo(
        ProviderKind.PERPLEXITY, "Perplexity", _OPENAI, "https://api.perplexity.ai", True
    ),
    ProviderKind.CUSTOM: ProviderInfo(ProviderKind.CUSTOM, "Custom", _OPENAI, None, True),
}


def _load_class(path: str) -> EndpointFactory:
    module_name, _, class_name = path.partition(":")
    module = importlib.import_module(module_name)
    return getattr(module, class_name)


class ProviderRegistry:
    """Resolves provider configs to endpoints. One instance per application."""

    def __init__(self, settings: dict[str, ProviderSettings] | None = None) -> None:
        self._settings = settings or {}
        self._factories: dict[ProviderKind, EndpointFactory] = {}

    def register(self, kind: ProviderKind, factory: EndpointFactory) -> None:
        """Override the endpoint factory used for ``kind``."""
        self._factories[kind] = factory

    def factory_for(self, kind: ProviderKind) -> EndpointFactory:
        factory = self._factories.get(kind)
        if factory is None:
            factory = _load_class(PROVIDERS[kind].endpoint_path)
            self._factories[kind] = factory
            logger.debug("Loaded endpoint for %s", kind.value)
        return factory

    def settings_for(self, kind: ProviderKind) -> ProviderSettings:
        settings = self._settings.get(kind.value)
        if settings is None:
            return ProviderSettings(name=kind.value, api_key_env=f"{kind.value.upper()}_API_KEY")
        return settings

    def base_url_for(self, config: ProviderConfig, kind: ProviderKind) -> str | None:
        info = PROVIDERS[kind]
        settings = self._settings.get(kind.value)
        override = settings.base_url if settings else None
        return config.base_url or override or info.default_base_url

    def resolve(self, config: ProviderConfig, credential: str | None) -> ModelEndpoint:
        """Build the endpoint for ``config``. Never touches the network.

        Raises:
            ConfigurationError: Unknown kind, missing credential, or a
                REST-compatible kind with no resolvable base URL.
        """
        try:
            kind = ProviderKind(config.provider_kind)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown provider kind: {config.provider_kind!r}") from exc
        info = PROVIDERS.get(kind)
        if info is None:
            raise ConfigurationError(f"Unknown provider kind: {kind.value!r}")

        if not credential or not credential.strip():
            raise ConfigurationError(f"No API key configured for provider \"{kind.value}\".")

        base_url = self.base_url_for(config, kind)
        if info.compatible and not base_url:
            raise ConfigurationError(f"Base URL is required for provider \"{kind.value}\".")

        factory = self.factory_for(kind)
        return factory(config, credential.strip(), self.settings_for(kind), base_url=base_url)
