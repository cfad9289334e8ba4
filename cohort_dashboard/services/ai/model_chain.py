# cohort_dashboard/services/ai/model_chain.py
"""
Model-fallback chain for OpenAI calls.

Each run walks an ordered list of model identifiers: the first model whose
completion arrives in time and passes the caller's parser wins. Every attempt
is recorded with its latency so callers can expose which models were tried.

Run states: pending -> trying(model_i) -> succeeded(model_i) | exhausted.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from openai import AsyncOpenAI

from cohort_dashboard.config import settings
from cohort_dashboard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CompletionFn = Callable[[str, str, str], Awaitable[str]]
ParseFn = Callable[[str], Any]


class AIConfigurationError(Exception):
    """Raised when the AI provider cannot be used at all (e.g. no API key)."""


class MalformedResponseError(ValueError):
    """Raised when a completion is empty or not the JSON we asked for."""


class AIExhaustedError(Exception):
    """Raised when every model in the chain failed."""

    def __init__(self, message: str, attempts: list["ModelAttempt"], ms: int = 0):
        super().__init__(message)
        self.attempts = attempts
        self.ms = ms
        self.recoverable = True

    @property
    def models_tried(self) -> list[str]:
        return [attempt.model for attempt in self.attempts]


class ChainState(str, Enum):
    PENDING = "pending"
    TRYING = "trying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass
class ModelAttempt:
    model: str
    latency_ms: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ModelChainResult:
    model: str
    models_tried: list[str]
    ms: int
    text: str
    parsed: Any = None
    attempts: list[ModelAttempt] = field(default_factory=list)


def clean_json_response(text: str) -> str:
    """Strip markdown code fences the model sometimes wraps JSON in."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """Default parser: the completion must be a JSON object."""
    if not text or not text.strip():
        raise MalformedResponseError("Empty response from model")
    try:
        result = json.loads(clean_json_response(text))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Model returned invalid JSON: {e}") from e
    if not isinstance(result, dict):
        raise MalformedResponseError("Model returned JSON that is not an object")
    return result


class OpenAIChatCompletion:
    """Default completion function backed by ``AsyncOpenAI`` chat completions."""

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.timeout = timeout or settings.AI_TIMEOUT_SECONDS
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise AIConfigurationError("OPENAI_API_KEY not configured")
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def __call__(self, model: str, system_message: str, prompt: str) -> str:
        response = await self._get_client().chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_message},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_completion_tokens=self.max_tokens,
        )
        if not response.choices or not response.choices[0].message.content:
            raise MalformedResponseError("Empty response from OpenAI API")
        return response.choices[0].message.content.strip()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class _ChainRun:
    """Single walk of the chain. Holds the per-run state."""

    def __init__(self, models: list[str]):
        self.models = models
        self.state = ChainState.PENDING
        self.current_model: str | None = None
        self.attempts: list[ModelAttempt] = []

    def trying(self, model: str) -> None:
        self.state = ChainState.TRYING
        self.current_model = model

    def failed(self, latency_ms: int, error: Exception) -> None:
        self.attempts.append(
            ModelAttempt(self.current_model, latency_ms, f"{type(error).__name__}: {error}")
        )

    def succeeded(self, latency_ms: int) -> None:
        self.attempts.append(ModelAttempt(self.current_model, latency_ms))
        self.state = ChainState.SUCCEEDED

    def exhausted(self) -> None:
        self.state = ChainState.EXHAUSTED
        self.current_model = None


class ModelFallbackChain:
    """Ordered model chain. New models are appended to ``models``; the run loop is unchanged."""

    def __init__(
        self,
        models: list[str] | None = None,
        completion_fn: CompletionFn | None = None,
        timeout_seconds: float | None = None,
    ):
        self.models = list(models) if models else settings.model_chain()
        self.completion_fn = completion_fn or OpenAIChatCompletion()
        self.timeout_seconds = timeout_seconds or settings.AI_TIMEOUT_SECONDS

    async def run(
        self,
        system_message: str,
        prompt: str,
        parse: ParseFn | None = parse_json_object,
        label: str = "ai_call",
    ) -> ModelChainResult:
        """
        Try each model in order until one returns a completion that parses.

        Raises:
            AIExhaustedError: every model failed (or the provider is not configured)
        """
        run = _ChainRun(self.models)
        started = time.monotonic()

        for model in self.models:
            run.trying(model)
            attempt_started = time.monotonic()
            try:
                text = await asyncio.wait_for(
                    self.completion_fn(model, system_message, prompt),
                    timeout=self.timeout_seconds,
                )
                parsed = parse(text) if parse else None
            except AIConfigurationError as e:
                run.failed(_elapsed_ms(attempt_started), e)
                logger.error("AI provider not configured", label=label, error=str(e))
                break
            except Exception as e:
                if isinstance(e, asyncio.TimeoutError):
                    e = TimeoutError(f"{model} timed out after {self.timeout_seconds}s")
                run.failed(_elapsed_ms(attempt_started), e)
                logger.warning(
                    "Model attempt failed, trying next model",
                    label=label,
                    model=model,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            run.succeeded(_elapsed_ms(attempt_started))
            result = ModelChainResult(
                model=model,
                models_tried=[attempt.model for attempt in run.attempts],
                ms=_elapsed_ms(started),
                text=text,
                parsed=parsed,
                attempts=list(run.attempts),
            )
            logger.info(
                "Model chain succeeded",
                label=label,
                model=model,
                models_tried=result.models_tried,
                ms=result.ms,
            )
            return result

        run.exhausted()
        total_ms = _elapsed_ms(started)
        tried = " -> ".join(attempt.model for attempt in run.attempts) or "none"
        last_error = run.attempts[-1].error if run.attempts else "no models configured"
        logger.error(
            "All models failed", label=label, models_tried=tried, ms=total_ms, last_error=last_error
        )
        raise AIExhaustedError(
            f"All models failed ({tried}). Last error: {last_error}", run.attempts, total_ms
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
