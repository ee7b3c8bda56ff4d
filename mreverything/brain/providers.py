"""LLM intent classifiers backed by LiteLLM.

Each classifier wraps one upstream model behind ``classify(prompt) -> str``
with a hard per-attempt timeout and bounded retries with exponential
backoff.  A rate-limit response is surfaced immediately as
``ProviderRateLimited`` so the caller can trip its circuit breaker.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import litellm
from litellm import acompletion
from loguru import logger


class ProviderError(RuntimeError):
    """Raised when a classifier exhausts its attempts."""


class ProviderRateLimited(ProviderError):
    """Raised when the upstream answers with a rate-limit signal (HTTP 429)."""


class IntentClassifier(Protocol):
    name: str

    async def classify(self, prompt: str) -> str: ...


def is_rate_limit(exc: BaseException) -> bool:
    if isinstance(exc, litellm.RateLimitError):
        return True
    if getattr(exc, "status_code", None) == 429:
        return True
    raw = str(exc).lower()
    return "rate_limit" in raw or "429" in raw


class LiteLLMClassifier:
    """One upstream model used as an intent classifier."""

    def __init__(
        self,
        name: str,
        model: str,
        api_key: str,
        *,
        system_prompt: str = "",
        json_mode: bool = False,
        attempt_timeout: float = 10.0,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        api_base: str | None = None,
    ) -> None:
        self.name = name
        self.model = model
        self._api_key = api_key
        self._api_base = api_base
        self._system_prompt = system_prompt
        self._json_mode = json_mode
        self._attempt_timeout = attempt_timeout
        self._max_retries = max_retries
        self._backoff_base = backoff_base

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True
        # Drop unsupported parameters for providers (e.g. response_format on Gemini)
        litellm.drop_params = True

    def _request(self, prompt: str) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.append({"role": "user", "content": prompt})
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": 0,
            "max_tokens": 512,
        }
        if self._json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def classify(self, prompt: str) -> str:
        kwargs = self._request(prompt)
        attempts = self._max_retries + 1
        last_exc: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = await asyncio.wait_for(acompletion(**kwargs), timeout=self._attempt_timeout)
                return response.choices[0].message.content or ""
            except Exception as exc:
                if is_rate_limit(exc):
                    logger.warning(f"Brain: {self.name} rate limited ({self.model})")
                    raise ProviderRateLimited(f"{self.name}: rate limited") from exc
                last_exc = exc
                reason = "timeout" if isinstance(exc, TimeoutError) else str(exc)[:120]
                logger.warning(f"Brain: {self.name} attempt {attempt}/{attempts} failed: {reason}")

            if attempt < attempts:
                await asyncio.sleep(self._backoff_base * 2 ** (attempt - 1))

        raise ProviderError(f"{self.name}: {attempts} attempts failed") from last_exc
