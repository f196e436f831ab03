"""Tests for the intelligence provider registry."""

import pytest
from django.test import SimpleTestCase, override_settings

from apps.intelligence.providers import (
    PROVIDERS,
    GeminiClassifier,
    LocalClassifier,
    get_active_provider,
    get_provider,
    list_providers,
)


class TestProviderRegistry(SimpleTestCase):
    def test_expected_providers_registered(self):
        assert set(PROVIDERS) == {"local", "gemini", "openai"}
        assert list_providers() == ["local", "gemini", "openai"]

    def test_get_provider_passes_kwargs(self):
        provider = get_provider("gemini", api_key="k", model="gemini-2.0-pro")
        assert isinstance(provider, GeminiClassifier)
        assert provider.model == "gemini-2.0-pro"

    def test_unknown_provider_raises(self):
        with pytest.raises(KeyError):
            get_provider("nonexistent")


class TestGetActiveProvider(SimpleTestCase):
    @override_settings(INTELLIGENCE_PROVIDER="local", INTELLIGENCE_PROVIDER_CONFIG={})
    def test_local_by_default(self):
        assert isinstance(get_active_provider(), LocalClassifier)

    @override_settings(
        INTELLIGENCE_PROVIDER="gemini",
        INTELLIGENCE_PROVIDER_CONFIG={"api_key": "sk-1", "model": ""},
    )
    def test_empty_config_values_use_defaults(self):
        provider = get_active_provider()
        assert isinstance(provider, GeminiClassifier)
        assert provider.api_key == "sk-1"
        assert provider.model == "gemini-2.0-flash"
