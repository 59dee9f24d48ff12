"""
Reasoning client - text generation via Anthropic, plus helpers to pull
structured data out of free-text responses.

Callers treat every response as untrusted: extract_json() may return None
and each caller owns its own neutral fallback.
"""

import json
import logging
import re
from typing import Optional, Dict, Any

from pulseledger.common.config import settings

logger = logging.getLogger(__name__)


class ReasoningUnavailableError(Exception):
    """No API key configured, or the provider call failed"""
    pass


def extract_json(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Best-effort JSON object extraction.

    Order: ```json fenced block, the whole text, then the outermost {...} span.
    """
    if not raw:
        return None

    json_match = re.search(r"```(?:json)?\s*(.*?)\s*```", raw, re.DOTALL)
    if json_match:
        try:
            candidate = json.loads(json_match.group(1))
            if isinstance(candidate, dict):
                return candidate
        except json.JSONDecodeError:
            pass

    try:
        candidate = json.loads(raw)
        if isinstance(candidate, dict):
            return candidate
    except (json.JSONDecodeError, ValueError):
        pass

    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        try:
            candidate = json.loads(raw[start:end + 1])
            if isinstance(candidate, dict):
                return candidate
        except json.JSONDecodeError:
            pass

    return None


class ReasoningClient:
    """Anthropic messages API, non-streaming"""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 max_tokens: Optional[int] = None, client=None):
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.reasoning_model
        self.max_tokens = max_tokens or settings.reasoning_max_tokens
        self._client = client

    @property
    def available(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise ReasoningUnavailableError("ANTHROPIC_API_KEY not configured")
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
    ) -> str:
        client = self._get_client()
        kwargs = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if system:
            kwargs["system"] = system

        try:
            response = await client.messages.create(**kwargs)
        except Exception as e:
            raise ReasoningUnavailableError(f"Reasoning call failed: {e}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        logger.debug(f"Reasoning response ({len(text)} chars) from {self.model}")
        return text

    async def complete_json(self, prompt: str, system: Optional[str] = None,
                            max_tokens: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """complete() + extract_json(); None when the text carries no JSON object"""
        raw = await self.complete(prompt, system=system, max_tokens=max_tokens, temperature=0.3)
        parsed = extract_json(raw)
        if parsed is None:
            logger.warning(f"Reasoning response had no parseable JSON: {raw[:200]!r}")
        return parsed


_reasoning_client: Optional[ReasoningClient] = None


def get_reasoning_client() -> ReasoningClient:
    global _reasoning_client
    if _reasoning_client is None:
        _reasoning_client = ReasoningClient()
    return _reasoning_client
