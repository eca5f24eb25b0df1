"""
LLM Client
==========
Asynchronous client for the reasoning model behind the matcher.

Contract:
    complete(system_prompt, user_prompt) -> dict
    The model is asked for a JSON object and the decoded object is returned
    untouched. Checking ids and required fields is the matching engine's job.

Wire formats:
    openai, groq  OpenAI chat completions, ``response_format=json_object``
    gemini        ``models/<model>:generateContent``, JSON response MIME type

Fallback:
    Providers are tried in LLMRouter order. An HTTP error, a timeout or a
    reply that is empty or not a JSON object moves on to the next provider.
    MatchingFailed is raised once the list is exhausted. The overall time
    bound on a match (MATCH_TIMEOUT_SECONDS) is applied by the engine.
"""
import json
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from linker.core.errors import MatchingFailed
from linker.llm.router import LLMRouter, ProviderConfig

logger = logging.getLogger(__name__)

TEMPERATURE = 0.3
MAX_OUTPUT_TOKENS = 4096


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding markdown fence (```json ... ```) if present."""
    text = raw.strip()
    if not text.startswith("```"):
        return text
    _, _, body = text.partition("\n")
    body = body.rstrip()
    if body.endswith("```"):
        body = body[:-3]
    return body.strip()


def parse_json_object(raw: str) -> dict:
    """
    Decode a model reply that must be a single JSON object.

    Raises
    ------
    ValueError
        Empty reply, invalid JSON, or JSON that is not an object.
    """
    if not (raw or "").strip():
        raise ValueError("Empty response from model")
    data = json.loads(strip_code_fences(raw))
    if not isinstance(data, dict):
        raise ValueError(f"Expected JSON object, got {type(data).__name__}")
    return data


# ---------------------------------------------------------------------------
# Per-provider request / reply shapes
# ---------------------------------------------------------------------------
def _gemini_request(provider: ProviderConfig, system_prompt: str, user_prompt: str) -> Tuple[str, Dict[str, Any]]:
    return f"{provider.base_url}/models/{provider.model}:generateContent", {
        "params": {"key": provider.api_key},
        "json": {
            "system_instruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "temperature": TEMPERATURE,
                "maxOutputTokens": MAX_OUTPUT_TOKENS,
                "responseMimeType": "application/json",
            },
        },
    }


def _chat_request(provider: ProviderConfig, system_prompt: str, user_prompt: str) -> Tuple[str, Dict[str, Any]]:
    return f"{provider.base_url}/chat/completions", {
        "headers": {"Authorization": f"Bearer {provider.api_key}"},
        "json": {
            "model": provider.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": TEMPERATURE,
            "max_tokens": MAX_OUTPUT_TOKENS,
            "response_format": {"type": "json_object"},
        },
    }


def _gemini_text(data: Dict[str, Any]) -> str:
    for candidate in data.get("candidates") or []:
        for part in (candidate.get("content") or {}).get("parts") or []:
            if part.get("text"):
                return part["text"]
    return ""


def _chat_text(data: Dict[str, Any]) -> str:
    for choice in data.get("choices") or []:
        content = (choice.get("message") or {}).get("content")
        if content:
            return content
    return ""


class LLMClient:
    """
    Usage:
        client = LLMClient()
        data = await client.complete(SYSTEM_PROMPT, user_prompt)
        await client.close()
    """

    def __init__(self, router: Optional[LLMRouter] = None) -> None:
        self.router = router or LLMRouter()
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient()
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def complete(self, system_prompt: str, user_prompt: str) -> dict:
        """
        Ask the first working provider for a JSON object.

        Parameters
        ----------
        system_prompt : str
            Tester role and output rules.
        user_prompt : str
            Bug block and candidate listing.

        Returns
        -------
        dict
            Decoded JSON object from the model.

        Raises
        ------
        MatchingFailed
            If no provider is configured or every provider failed.
        """
        providers = self.router.providers_in_order()
        if not providers:
            raise MatchingFailed("No reasoning-model provider configured")

        errors = []
        for provider in providers:
            try:
                data = await self._ask(provider, system_prompt, user_prompt)
            except httpx.TimeoutException:
                reason = "timeout"
            except httpx.HTTPStatusError as e:
                reason = f"HTTP {e.response.status_code}"
            except (httpx.HTTPError, ValueError) as e:
                reason = str(e) or type(e).__name__
            else:
                self.router.report_success(provider.name)
                logger.info("Model response received from %s", provider.name)
                return data

            logger.warning("Provider %s failed: %s", provider.name, reason)
            errors.append(f"{provider.name}: {reason}")
            self.router.report_failure(provider.name)

        raise MatchingFailed("All providers failed", detail="; ".join(errors))

    async def _ask(self, provider: ProviderConfig, system_prompt: str, user_prompt: str) -> dict:
        if provider.name == "gemini":
            url, request = _gemini_request(provider, system_prompt, user_prompt)
            extract = _gemini_text
        else:
            url, request = _chat_request(provider, system_prompt, user_prompt)
            extract = _chat_text

        http = await self._get_http()
        resp = await http.post(url, timeout=provider.timeout_seconds, **request)
        resp.raise_for_status()
        return parse_json_object(extract(resp.json()))
