"""
OpenAI-powered classifier.

Uses chat completions for the JSON tasks and the embeddings endpoint for
similarity vectors.
"""

import os

from apps.intelligence.providers.ai_base import BaseAIClassifier


class OpenAIClassifier(BaseAIClassifier):
    """
    OpenAI-powered classifier.

    The API key falls back to the OPENAI_API_KEY environment variable, and the
    client is created lazily so the provider can be registered without
    credentials.
    """

    name = "openai"
    description = "OpenAI-powered incident classifier"
    default_model = "gpt-4o-mini"
    default_embedding_model = "text-embedding-3-small"

    def __init__(self, api_key: str = "", **kwargs) -> None:
        super().__init__(api_key=api_key or os.environ.get("OPENAI_API_KEY", ""), **kwargs)
        self._client = None

    @property
    def client(self):
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout_s)
        return self._client

    def _call_api(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=0.2,  # Low temperature keeps triage output stable
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    def _embed_api(self, text: str) -> list[float]:
        response = self.client.embeddings.create(
            model=self.embedding_model,
            input=text,
            dimensions=self.vector_size,
        )
        return list(response.data[0].embedding)
