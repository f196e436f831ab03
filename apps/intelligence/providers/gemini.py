"""
Gemini (Google) classifier.

Text tasks use ``generate_content`` with a JSON response type; similarity
vectors come from ``embed_content`` at the configured vector size.
"""

from apps.intelligence.providers.ai_base import BaseAIClassifier


class GeminiClassifier(BaseAIClassifier):
    """Gemini-powered classifier using Google's GenAI API."""

    name = "gemini"
    description = "Gemini (Google) incident classifier"
    default_model = "gemini-2.0-flash"
    default_embedding_model = "text-embedding-004"

    _client = None

    @property
    def client(self):
        if self._client is None:
            from google import genai

            self._client = genai.Client(
                api_key=self.api_key,
                http_options=genai.types.HttpOptions(timeout=self.timeout_s * 1000),
            )
        return self._client

    def _call_api(self, prompt: str) -> str:
        from google.genai import types

        response = self.client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=self.SYSTEM_PROMPT,
                max_output_tokens=self.max_tokens,
                response_mime_type="application/json",
            ),
        )
        if not response.text:
            # Blocked or truncated generations come back without text.
            raise ValueError("Gemini returned an empty response")
        return response.text

    def _embed_api(self, text: str) -> list[float]:
        from google.genai import types

        response = self.client.models.embed_content(
            model=self.embedding_model,
            contents=text,
            config=types.EmbedContentConfig(output_dimensionality=self.vector_size),
        )
        return list(response.embeddings[0].values)
