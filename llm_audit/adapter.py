"""LLM adapters for the comparator.

Provides a base interface, an adapter for OpenAI-compatible chat
completion APIs and a deterministic mock for local runs.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import openai
from openai import OpenAI

from app import metrics
from app.connectors.circuit_breaker import CircuitBreaker
from app.pipeline.backoff import compute_backoff
from app.pipeline.results import CallResult, FailureKind
from db.models.cost_entry import CostService

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class LLMCompletion:
    content: str
    model: str
    usage: Optional[TokenUsage] = None


class BaseLLMAdapter(ABC):
    """Abstract base for all LLM adapters."""

    model: str

    @abstractmethod
    def generate(self, messages: List[Dict[str, str]]) -> CallResult[LLMCompletion]:
        """Send chat messages to the LLM.

        Args:
            messages: Chat messages (system + user).

        Returns:
            The completion, or a TRANSIENT/PERMANENT failure. Adapters never
            raise for provider errors.
        """


class OpenAILLMAdapter(BaseLLMAdapter):
    """Adapter for OpenAI-compatible chat completion APIs.

    Requests JSON output at temperature 0 and retries transient provider
    errors (rate limits, timeouts, connection errors, 5xx) with backoff.
    """

    def __init__(
        self,
        model: str = "gpt-4o",
        max_tokens: int = 4096,
        temperature: float = 0.0,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_call_retries: int = 3,
        call_backoff_seconds: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[OpenAI] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if client is None:
            client_kwargs: dict = {"api_key": api_key}
            if base_url:
                client_kwargs["base_url"] = base_url
            client = OpenAI(**client_kwargs)

        self._client = client
        self.model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._max_call_retries = max(1, max_call_retries)
        self._call_backoff_seconds = call_backoff_seconds
        self._circuit_breaker = circuit_breaker
        self._sleep = sleep

    def generate(self, messages: List[Dict[str, str]]) -> CallResult[LLMCompletion]:
        last: CallResult[LLMCompletion] = CallResult.transient("not_attempted")
        for attempt in range(1, self._max_call_retries + 1):
            if self._circuit_breaker is not None and not self._circuit_breaker.allow_request():
                metrics.API_REQUESTS_TOTAL.labels(service=CostService.LLM, outcome="circuit_open").inc()
                return CallResult.transient("circuit_open")

            last = self._complete(messages)
            metrics.API_REQUESTS_TOTAL.labels(
                service=CostService.LLM,
                outcome="ok" if last.ok else last.failure.value,  # type: ignore[union-attr]
            ).inc()
            if self._circuit_breaker is not None:
                if last.failure == FailureKind.TRANSIENT:
                    self._circuit_breaker.record_failure()
                else:
                    self._circuit_breaker.record_success()

            if last.failure != FailureKind.TRANSIENT:
                return last
            if attempt >= self._max_call_retries:
                break

            delay = compute_backoff(attempt, base_seconds=self._call_backoff_seconds)
            logger.warning(
                "Chat completion retry attempt=%d/%d wait_seconds=%.2f error=%s",
                attempt,
                self._max_call_retries,
                delay,
                last.detail,
            )
            self._sleep(delay)
        return last

    def _complete(self, messages: List[Dict[str, str]]) -> CallResult[LLMCompletion]:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                response_format={"type": "json_object"},
                stream=False,
            )
        except _TRANSIENT_ERRORS as exc:
            return CallResult.transient(type(exc).__name__, detail=str(exc))
        except openai.OpenAIError as exc:
            return CallResult.permanent(type(exc).__name__, detail=str(exc))

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )
        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""
        return CallResult.success(LLMCompletion(content=content, model=self.model, usage=usage))


# ---------------------------------------------------------------------------
# Fixed mock response used for local runs without an API key.
# ---------------------------------------------------------------------------
_MOCK_RESPONSE = {
    "overall_score": 100,
    "field_comparisons": [],
    "summary": "Mock audit: no comparison performed.",
    "recommendations": [],
}

_MOCK_RESPONSE_JSON = json.dumps(_MOCK_RESPONSE, indent=2)


class MockLLMAdapter(BaseLLMAdapter):
    """Deterministic adapter returning a fixed valid comparison and no usage."""

    model = "mock"

    def generate(self, messages: List[Dict[str, str]]) -> CallResult[LLMCompletion]:
        return CallResult.success(LLMCompletion(content=_MOCK_RESPONSE_JSON, model=self.model))
