"""
Advisory text-service client used for classification, clustering and re-ranking hints.

Uses httpx to call OpenRouter (OpenAI-compatible) first and the Gemini REST
API as a second path. Every caller treats this client as optional: when no
key is configured ``build_advisory_client`` returns None and callers go
straight to their deterministic fallback.
"""

import json
import logging
import re
from typing import Any, Dict, Optional, Protocol

import httpx

from config import Settings
from exceptions import AdvisoryError

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class AdvisoryBackend(Protocol):
    async def complete_json(self, prompt: str, *, timeout: float) -> Dict[str, Any]:
        ...


def _extract_json(text: str) -> dict:
    """Extract JSON object from a model response, handling markdown fences and prose."""
    cleaned = re.sub(r"```(?:json)?\s*\n?", "", text or "")
    cleaned = re.sub(r"\n?```", "", cleaned)
    first_brace = cleaned.find("{")
    last_brace = cleaned.rfind("}")
    if first_brace != -1 and last_brace > first_brace:
        cleaned = cleaned[first_brace : last_brace + 1]
    parsed = json.loads(cleaned)
    if not isinstance(parsed, dict):
        raise ValueError("Expected a JSON object")
    return parsed


class LLMAdvisoryClient:
    """Strict-JSON completion client over OpenRouter with a Gemini direct fallback."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._http_client = http_client

    async def _post(self, url: str, *, timeout: float, **kwargs) -> Dict[str, Any]:
        if self._http_client is not None:
            resp = await self._http_client.post(url, timeout=timeout, **kwargs)
            resp.raise_for_status()
            return resp.json()
        async with httpx.AsyncClient() as client:
            resp = await client.post(url, timeout=timeout, **kwargs)
            resp.raise_for_status()
            return resp.json()

    async def _call_openrouter(self, prompt: str, timeout: float) -> str:
        data = await self._post(
            OPENROUTER_URL,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {self.settings.openrouter_api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.settings.openrouter_model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": 0,
                "max_tokens": 1024,
            },
        )
        choices = data.get("choices", [])
        if not choices:
            raise ValueError("OpenRouter returned no choices")
        return choices[0].get("message", {}).get("content", "")

    async def _call_gemini(self, prompt: str, timeout: float) -> str:
        data = await self._post(
            GEMINI_URL.format(model=self.settings.gemini_model),
            timeout=timeout,
            params={"key": self.settings.gemini_api_key},
            json={
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": 0, "responseMimeType": "application/json"},
            },
        )
        candidates = data.get("candidates", [])
        if not candidates:
            raise ValueError("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        if not parts:
            raise ValueError("Gemini returned no content parts")
        return parts[0].get("text", "")

    async def complete(self, prompt: str, *, timeout: float) -> str:
        if self.settings.openrouter_api_key:
            try:
                return await self._call_openrouter(prompt, timeout)
            except (httpx.HTTPError, ValueError, KeyError) as e:
                logger.warning(f"[Advisory] OpenRouter failed, trying Gemini direct: {e}")

        if self.settings.gemini_api_key:
            try:
                return await self._call_gemini(prompt, timeout)
            except (httpx.HTTPError, ValueError, KeyError) as e:
                raise AdvisoryError(f"Gemini direct failed: {e}") from e

        raise AdvisoryError("No advisory backend succeeded")

    async def complete_json(self, prompt: str, *, timeout: float) -> Dict[str, Any]:
        text = await self.complete(prompt, timeout=timeout)
        try:
            return _extract_json(text)
        except ValueError as e:
            raise AdvisoryError(f"Advisory response was not a JSON object: {e}") from e


def build_advisory_client(settings: Settings) -> Optional[LLMAdvisoryClient]:
    if not settings.advisory_enabled:
        logger.info("[Advisory] No advisory key configured; using deterministic fallbacks")
        return None
    return LLMAdvisoryClient(settings)
