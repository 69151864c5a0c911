"""
Intent extraction providers: send a prompt, get raw model text back.

Parsing and validation are not done here; see services.query_normalizer.

Providers
---------
- gemini : google-genai generate_content (default), requires GEMINI_API_KEY
- ollama : local Ollama server over HTTP, JSON output mode
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from travelbot.core.config import settings

logger = logging.getLogger(__name__)


class IntentExtractionProvider(ABC):
    @abstractmethod
    async def complete(self, prompt: str) -> str: ...


class GeminiIntentProvider(IntentExtractionProvider):
    def __init__(self) -> None:
        from google import genai
        from google.genai import types as genai_types
        self._client = genai.Client(api_key=settings.GEMINI_API_KEY)
        self._config = genai_types.GenerateContentConfig(
            temperature=0.0,
            response_mime_type="application/json",
        )
        self._model = settings.INTENT_MODEL

    async def complete(self, prompt: str) -> str:
        response = await asyncio.wait_for(
            asyncio.to_thread(
                self._client.models.generate_content,
                model=self._model,
                contents=prompt,
                config=self._config,
            ),
            timeout=settings.INTENT_TIMEOUT_SECONDS,
        )
        raw = (response.text or "").strip()
        logger.debug("Gemini intent raw: %s", raw[:300])
        return raw


class OllamaIntentProvider(IntentExtractionProvider):
    def __init__(self, url: Optional[str] = None, model: Optional[str] = None) -> None:
        self._url = url or settings.OLLAMA_URL
        self._model = model or settings.OLLAMA_MODEL

    async def complete(self, prompt: str) -> str:
        async with httpx.AsyncClient(timeout=settings.INTENT_TIMEOUT_SECONDS) as client:
            response = await client.post(
                self._url,
                json={
                    "model": self._model,
                    "prompt": prompt,
                    "stream": False,
                    "format": "json",
                },
            )
            response.raise_for_status()
            raw = response.json().get("response", "")
        logger.debug("Ollama intent raw: %s", raw[:300])
        return raw


def build_intent_provider() -> Optional[IntentExtractionProvider]:
    """None means every query gets the default analysis."""
    name = settings.INTENT_PROVIDER.lower()
    if name == "gemini":
        if not settings.GEMINI_API_KEY:
            logger.warning("GEMINI_API_KEY not set — queries will use the default analysis")
            return None
        return GeminiIntentProvider()
    if name == "ollama":
        return OllamaIntentProvider()
    raise ValueError(
        f"Unknown INTENT_PROVIDER='{name}'. "
        "Set INTENT_PROVIDER=gemini or ollama in .env"
    )
