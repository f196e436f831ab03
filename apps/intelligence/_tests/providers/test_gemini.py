"""Tests for the GeminiClassifier."""

import json
from unittest.mock import ANY, MagicMock, patch

from django.test import SimpleTestCase, override_settings

from apps.incidents.exceptions import CollaboratorError
from apps.intelligence.providers.gemini import GeminiClassifier


class TestGeminiInitialization(SimpleTestCase):
    def test_initialization_defaults(self):
        provider = GeminiClassifier(api_key="test-key")
        assert provider.api_key == "test-key"
        assert provider.model == "gemini-2.0-flash"
        assert provider.embedding_model == "text-embedding-004"
        assert provider.max_tokens == 1024

    def test_initialization_custom_values(self):
        provider = GeminiClassifier(api_key="custom-key", model="gemini-2.0-pro", max_tokens=2048)
        assert provider.model == "gemini-2.0-pro"
        assert provider.max_tokens == 2048

    def test_provider_attributes(self):
        provider = GeminiClassifier(api_key="test-key")
        assert provider.name == "gemini"
        assert provider.description == "Gemini (Google) incident classifier"


class TestGeminiCallApi(SimpleTestCase):
    @patch("google.genai.Client")
    def test_call_api_success(self, mock_client_class):
        mock_response = MagicMock()
        mock_response.text = '{"test": "response"}'
        mock_client = MagicMock()
        mock_client.models.generate_content.return_value = mock_response
        mock_client_class.return_value = mock_client

        provider = GeminiClassifier(api_key="test-key")
        result = provider._call_api("Test prompt")

        assert result == '{"test": "response"}'
        mock_client_class.assert_called_once_with(api_key="test-key", http_options=ANY)
        call_kwargs = mock_client.models.generate_content.call_args.kwargs
        assert call_kwargs["model"] == "gemini-2.0-flash"
        assert call_kwargs["contents"] == "Test prompt"

    @patch("google.genai.Client")
    def test_empty_response_is_an_error(self, mock_client_class):
        mock_client_class.return_value.models.generate_content.return_value.text = None

        provider = GeminiClassifier(api_key="test-key", fallback_enabled=False)

        with self.assertRaises(CollaboratorError):
            provider.classify("Flickering light", [])

    @override_settings(SIMILARITY_VECTOR_SIZE=3)
    @patch("google.genai.Client")
    def test_embed_api(self, mock_client_class):
        mock_embedding = MagicMock()
        mock_embedding.values = [0.1, 0.2, 0.3]
        mock_client = MagicMock()
        mock_client.models.embed_content.return_value.embeddings = [mock_embedding]
        mock_client_class.return_value = mock_client

        provider = GeminiClassifier(api_key="test-key")

        assert provider.embed("water leak") == [0.1, 0.2, 0.3]
        call_kwargs = mock_client.models.embed_content.call_args.kwargs
        assert call_kwargs["model"] == "text-embedding-004"
        assert call_kwargs["contents"] == "water leak"


class TestGeminiClassify(SimpleTestCase):
    @patch.object(GeminiClassifier, "_call_api")
    def test_classify_success(self, mock_call_api):
        mock_call_api.return_value = json.dumps(
            {"incident_type": "infrastructure", "severity_score": 15, "risk_indicators": []}
        )
        fields = GeminiClassifier(api_key="key").classify("Flickering light", [])
        assert fields.incident_type == "infrastructure"
        assert fields.severity_label == "Low"

    @patch.object(GeminiClassifier, "_call_api", side_effect=Exception("API Error"))
    def test_classify_falls_back_on_error(self, mock_call_api):
        fields = GeminiClassifier(api_key="key", fallback_enabled=True).classify("text", [])
        assert fields.incident_type == "other"
        assert fields.severity_score == 50
