"""
OpenAI-compatible chat-completions client used for intent extraction.

The client is advisory only: every failure surfaces as ``CollaboratorError``
and the caller falls back to deterministic parsing.
"""
from __future__ import annotations
import httpx

from giggle.core.config import get_settings
from giggle.core.errors import CollaboratorError
from giggle.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


class LLMClient:
    def __init__(self, api_key: str = None, base_url: str = None, model: str = None,
                 timeout: float = None):
        self.api_key = api_key or settings.LLM_API_KEY
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.model = model or settings.LLM_MODEL
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS

    async def complete(self, system_prompt: str, user_text: str) -> str:
        """Returns the raw assistant message content (expected to be JSON)."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.3,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
                resp.raise_for_status()
                data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error("LLM completion failed: %s", exc)
            raise CollaboratorError(f"LLM completion failed: {exc}") from exc
        if not content:
            raise CollaboratorError("LLM returned an empty message")
        return content.strip()


def build_llm_client():
    """Live client when an API key is configured, otherwise None (rules only)."""
    if settings.llm_configured:
        return LLMClient()
    logger.info("LLM key not configured, using rule-based intent parsing")
    return None
