# rentmap/adapters/clients/inference.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from ...config import settings
from ...domain.errors import ProviderError
from ...domain.types import Completion
from .http_resilience import resilient_request

log = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You analyze Telegram posts about apartments in Tbilisi, Georgia. Posts are written in "
    "Georgian, Russian or English. Decide whether the post offers a property for rent "
    "(not for sale, not a request from someone looking) and extract the listing details. "
    "Prices are usually in GEL (lari) or USD. Known districts: Vake, Saburtalo, Old Tbilisi, "
    "Gldani, Isani, Didube, Nadzaladevi, Mtatsminda, Krtsanisi, Samgori. "
    "Answer with a single JSON object and nothing else."
)

USER_PROMPT_TEMPLATE = """Analyze this post:

\"\"\"{text}\"\"\"

Reply with JSON in exactly this shape:
{{
  "isRental": true | false,
  "confidence": number between 0 and 1,
  "extractedData": {{
    "price": {{"amount": number, "currency": "GEL" | "USD" | "EUR"}} or {{"min": number, "max": number, "currency": "GEL" | "USD" | "EUR"}} or null,
    "rooms": integer or null,
    "area": number (square meters) or null,
    "district": English district name or null,
    "address": street address or null,
    "contactInfo": phone or username or null,
    "amenities": [string],
    "petsAllowed": true | false | null,
    "furnished": true | false | null
  }},
  "language": "ka" | "ru" | "en",
  "reasoning": short explanation
}}"""


def build_user_prompt(text: str) -> str:
    return USER_PROMPT_TEMPLATE.format(text=text.strip())


class InferenceProvider(Protocol):
    name: str
    model: str

    async def complete(self, system_prompt: str, user_prompt: str) -> Completion: ...


@dataclass
class ChatCompletionsProvider:
    """
    Any OpenAI-compatible /chat/completions endpoint (OpenAI itself, OpenRouter).
    """

    name: str
    base_url: str
    api_key: str
    model: str
    temperature: float = 0.1
    max_tokens: int = 1000
    timeout_s: float = 30.0
    extra_headers: dict[str, str] = field(default_factory=dict)
    client: httpx.AsyncClient | None = None

    def _headers(self) -> dict[str, str]:
        h = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        h.update(self.extra_headers)
        return h

    async def complete(self, system_prompt: str, user_prompt: str) -> Completion:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        try:
            resp = await resilient_request(
                "POST",
                url,
                headers=self._headers(),
                json=body,
                timeout_s=self.timeout_s,
                client=self.client,
            )
            data: dict[str, Any] = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(self.name, str(e) or type(e).__name__) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.name, "response has no choices[0].message.content") from e
        if not isinstance(content, str) or not content.strip():
            raise ProviderError(self.name, "empty completion")

        usage = data.get("usage") or {}
        return Completion(
            content=content,
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
            request_id=data.get("id"),
        )


def build_providers_from_settings() -> list[InferenceProvider]:
    """
    Ordered provider list: OpenRouter (DeepSeek) first, OpenAI second.
    Providers without credentials are left out.
    """
    out: list[InferenceProvider] = []
    if settings.OPENROUTER_API_KEY:
        out.append(
            ChatCompletionsProvider(
                name="openrouter",
                base_url=settings.OPENROUTER_BASE_URL,
                api_key=settings.OPENROUTER_API_KEY,
                model=settings.OPENROUTER_MODEL,
                temperature=settings.AI_TEMPERATURE,
                max_tokens=settings.AI_MAX_TOKENS,
                timeout_s=settings.AI_HTTP_TIMEOUT_S,
                extra_headers={"HTTP-Referer": "https://rentmap.local", "X-Title": "rentmap"},
            )
        )
    if settings.OPENAI_API_KEY:
        out.append(
            ChatCompletionsProvider(
                name="openai",
                base_url=settings.OPENAI_BASE_URL,
                api_key=settings.OPENAI_API_KEY,
                model=settings.OPENAI_MODEL,
                temperature=settings.AI_TEMPERATURE,
                max_tokens=settings.AI_MAX_TOKENS,
                timeout_s=settings.AI_HTTP_TIMEOUT_S,
            )
        )
    if not out:
        log.warning("No inference provider configured; extraction will use keyword heuristics only")
    return out
