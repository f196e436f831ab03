"""
Intelligence providers registry.

Providers classify incident reports, summarize them, embed them for
similarity search and review routing decisions.
"""

from django.conf import settings

from apps.intelligence.providers.ai_base import BaseAIClassifier
from apps.intelligence.providers.base import BaseClassifier, assigned_team
from apps.intelligence.providers.gemini import GeminiClassifier
from apps.intelligence.providers.local import LocalClassifier
from apps.intelligence.providers.openai import OpenAIClassifier

# Registry of available providers. AI SDKs are imported lazily on first call.
PROVIDERS: dict[str, type[BaseClassifier]] = {
    "local": LocalClassifier,
    "gemini": GeminiClassifier,
    "openai": OpenAIClassifier,
}


def get_provider(name: str = "local", **kwargs) -> BaseClassifier:
    """
    Get a provider instance by name.

    Args:
        name: Provider name (e.g., 'local', 'gemini').
        **kwargs: Provider-specific configuration.

    Returns:
        Configured provider instance.

    Raises:
        KeyError: If provider name is not registered.
    """
    if name not in PROVIDERS:
        raise KeyError(f"Unknown provider: {name}. Available: {list(PROVIDERS.keys())}")
    return PROVIDERS[name](**kwargs)


def get_active_provider() -> BaseClassifier:
    """Build the provider named by INTELLIGENCE_PROVIDER with its configured options."""
    name = getattr(settings, "INTELLIGENCE_PROVIDER", "local")
    config = getattr(settings, "INTELLIGENCE_PROVIDER_CONFIG", {}) or {}
    return get_provider(name, **{key: value for key, value in config.items() if value})


def list_providers() -> list[str]:
    """List all registered provider names."""
    return list(PROVIDERS.keys())


__all__ = [
    "BaseAIClassifier",
    "BaseClassifier",
    "GeminiClassifier",
    "LocalClassifier",
    "OpenAIClassifier",
    "PROVIDERS",
    "assigned_team",
    "get_active_provider",
    "get_provider",
    "list_providers",
]
