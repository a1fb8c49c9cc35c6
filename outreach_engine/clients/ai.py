"""AI backend abstraction: providers, typed errors and the retrying backend."""

import asyncio
import json
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import anthropic
import structlog

from outreach_engine.core.config import AIConfig, RetryConfig, Settings
from outreach_engine.core.retry import with_retry

log = structlog.get_logger()

RETRYABLE_KINDS = frozenset({"rate_limit", "timeout", "5xx"})

# USD per million tokens
INPUT_COST_PER_MTOK = 5.0
OUTPUT_COST_PER_MTOK = 25.0


class TransportError(Exception):
    """The backend could not produce a response."""

    def __init__(self, kind: str, message: str = ""):
        super().__init__(message or kind)
        self.kind = kind


class ParseError(Exception):
    """The backend responded but the text was not the structure we asked for."""


def is_transient(error: BaseException) -> bool:
    return isinstance(error, TransportError) and error.kind in RETRYABLE_KINDS


def extract_json(text: str) -> dict:
    """Pull the first-to-last brace span out of model output and parse it."""
    match = re.search(r"\{[\s\S]*\}", text or "")
    if not match:
        raise ParseError("no JSON object in response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("JSON payload is not an object")
    return data


@dataclass
class AIResponse:
    text: str
    latency: float
    cost_estimate: float = 0.0
    model: str = ""


class DecisionProvider(ABC):
    """A single model endpoint."""

    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        task_hints: Optional[dict[str, Any]] = None,
    ) -> AIResponse:
        ...


class AnthropicProvider(DecisionProvider):
    """Claude via the Anthropic SDK (uses ANTHROPIC_API_KEY env var)."""

    def __init__(self, config: Optional[AIConfig] = None, client: Optional[anthropic.AsyncAnthropic] = None):
        self.config = config or AIConfig()
        self.client = client or anthropic.AsyncAnthropic()

    async def invoke(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        task_hints: Optional[dict[str, Any]] = None,
    ) -> AIResponse:
        hints = task_hints or {}
        kwargs: dict[str, Any] = {
            "model": hints.get("model", self.config.model),
            "max_tokens": hints.get("max_tokens", self.config.max_tokens),
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if "temperature" in hints:
            kwargs["temperature"] = hints["temperature"]

        start = time.monotonic()
        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            raise TransportError("rate_limit", str(e)) from e
        except anthropic.APITimeoutError as e:
            raise TransportError("timeout", str(e)) from e
        except anthropic.APIConnectionError as e:
            raise TransportError("connection", str(e)) from e
        except anthropic.APIStatusError as e:
            kind = "5xx" if e.status_code >= 500 else "client_error"
            raise TransportError(kind, str(e)) from e
        latency = time.monotonic() - start

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()

        usage = getattr(response, "usage", None)
        cost = 0.0
        if usage is not None:
            cost = (
                usage.input_tokens * INPUT_COST_PER_MTOK
                + usage.output_tokens * OUTPUT_COST_PER_MTOK
            ) / 1_000_000

        return AIResponse(text=text, latency=latency, cost_estimate=cost, model=kwargs["model"])


class AIBackend:
    """The single entry point the engine uses to reach a model, with retries."""

    def __init__(self, provider: DecisionProvider, retry: Optional[RetryConfig] = None, sleep=asyncio.sleep):
        self.provider = provider
        self.retry = retry or RetryConfig()
        self._sleep = sleep

    async def invoke(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        task_hints: Optional[dict[str, Any]] = None,
    ) -> AIResponse:
        response = await with_retry(
            lambda: self.provider.invoke(prompt, system_prompt, task_hints),
            is_transient,
            max_retries=self.retry.max_retries,
            base_delay=self.retry.base_delay_seconds,
            max_delay=self.retry.max_delay_seconds,
            jitter=self.retry.jitter,
            sleep=self._sleep,
        )
        log.debug(
            "ai_invoked",
            task=(task_hints or {}).get("task"),
            latency=round(response.latency, 3),
            cost=round(response.cost_estimate, 5),
        )
        return response

    async def invoke_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        task_hints: Optional[dict[str, Any]] = None,
    ) -> tuple[dict, AIResponse]:
        """Invoke and parse the JSON object in the reply. Raises ParseError on bad output."""
        response = await self.invoke(prompt, system_prompt, task_hints)
        return extract_json(response.text), response


def build_backend(settings: Settings) -> Optional[AIBackend]:
    """Production backend for the configured model, or None without an API key."""
    if not os.environ.get("ANTHROPIC_API_KEY"):
        log.warning("ai_backend_disabled", reason="ANTHROPIC_API_KEY not set")
        return None
    return AIBackend(AnthropicProvider(settings.ai), settings.retry)
