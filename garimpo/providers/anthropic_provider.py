"""Anthropic (Claude) provider for the product audit.

The audit asks for one JSON object, so by default the assistant turn is
prefilled with ``{`` and the answer is returned with that brace put back.
An answer cut off at ``max_tokens`` cannot be valid JSON and is reported as
:class:`TruncatedAnswerError` instead of being handed to the parser.
"""
from __future__ import annotations

import logging
import os
import random
import time
from typing import Callable, List, Optional

import anthropic
from dotenv import load_dotenv

from garimpo.config import BudgetConfig, RetryConfig
from garimpo.providers.base import BaseProvider

logger = logging.getLogger(__name__)

# HTTP status codes that warrant an automatic retry
_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504, 529}

_JSON_PREFILL = "{"

DEFAULT_SYSTEM = (
    "You are a senior affiliate-marketing strategist who audits sales pages "
    "and plans bottom-of-funnel search campaigns."
)


class BudgetExceededError(RuntimeError):
    """Raised when max_calls_per_run audits have already been requested."""


class TruncatedAnswerError(RuntimeError):
    """The model stopped at ``max_tokens`` before finishing its answer."""


class AnthropicProvider(BaseProvider):
    """Claude Messages API client used by the enrichment gateway.

    Retries 429 / 529 / 5xx and connection errors with back-off (honouring
    ``Retry-After``), caps audits per run and counts tokens for the audit
    summary.
    """

    def __init__(
        self,
        model: str = "claude-sonnet-4-5-20250929",
        temperature: float = 0.4,
        max_tokens: int = 2048,
        retry_cfg: Optional[RetryConfig] = None,
        budget_cfg: Optional[BudgetConfig] = None,
        json_prefill: bool = True,
    ):
        load_dotenv()
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise EnvironmentError(
                "ANTHROPIC_API_KEY not found. "
                "Copy .env.example → .env and add your key."
            )
        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model
        self.temperature = temperature
        self.default_max_tokens = max_tokens
        self.prefill = _JSON_PREFILL if json_prefill else ""

        self._retry_cfg = retry_cfg or RetryConfig()
        self._budget_cfg = budget_cfg or BudgetConfig()

        self.call_count: int = 0
        self.retry_count: int = 0
        self.truncated_count: int = 0
        self.total_input_tokens: int = 0
        self.total_output_tokens: int = 0
        self.last_error: Optional[str] = None

    # ── Public interface ──────────────────────────────────────────────────────

    def generate(self, prompt: str, system: str = "", max_tokens: int = 0) -> str:
        """Request one audit and return the answer text.

        Raises
        ------
        BudgetExceededError
            If ``max_calls_per_run`` is > 0 and has been reached.
        TruncatedAnswerError
            If the answer hit the token limit.
        anthropic.APIStatusError / anthropic.APIConnectionError
            If all retries are exhausted or the error is not retryable.
        """
        budget = self._budget_cfg.max_calls_per_run
        if budget and self.call_count >= budget:
            raise BudgetExceededError(f"max_calls_per_run={budget} reached")

        messages: List[dict] = [{"role": "user", "content": prompt}]
        if self.prefill:
            messages.append({"role": "assistant", "content": self.prefill})

        message = self._with_retries(
            lambda: self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens or self.default_max_tokens,
                temperature=self.temperature,
                system=system or DEFAULT_SYSTEM,
                messages=messages,
            )
        )
        self.call_count += 1
        self._count_tokens(message)

        if getattr(message, "stop_reason", None) == "max_tokens":
            self.truncated_count += 1
            self.last_error = "answer truncated at max_tokens"
            raise TruncatedAnswerError(
                f"answer exceeded max_tokens={max_tokens or self.default_max_tokens}"
            )
        return self.prefill + _answer_text(message)

    def stats(self) -> dict:
        """Return a snapshot of runtime counters for the audit summary."""
        return {
            "call_count": self.call_count,
            "retry_count": self.retry_count,
            "truncated_count": self.truncated_count,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_tokens": self.total_input_tokens + self.total_output_tokens,
            "last_error": self.last_error,
        }

    # ── Private helpers ───────────────────────────────────────────────────────

    def _with_retries(self, call: Callable[[], object]):
        max_retries = self._retry_cfg.max_api_retries
        for attempt in range(max_retries + 1):
            try:
                return call()
            except anthropic.APIStatusError as exc:
                if exc.status_code not in _RETRYABLE_STATUS_CODES or attempt >= max_retries:
                    self.last_error = f"HTTP {exc.status_code}: {exc.message}"
                    raise
                wait = self._get_wait_seconds(exc, attempt)
                failure: BaseException = exc
            except (anthropic.APIConnectionError, anthropic.APITimeoutError) as exc:
                if attempt >= max_retries:
                    self.last_error = str(exc)
                    raise
                wait = self._backoff_secs(attempt)
                failure = exc
            self.retry_count += 1
            logger.debug("Audit request failed (%s); retry in %.1fs", failure, wait)
            time.sleep(wait)

    def _count_tokens(self, message) -> None:
        usage = getattr(message, "usage", None)
        if usage:
            self.total_input_tokens += getattr(usage, "input_tokens", 0)
            self.total_output_tokens += getattr(usage, "output_tokens", 0)

    def _get_wait_seconds(self, exc: anthropic.APIStatusError, attempt: int) -> float:
        """Honour Retry-After if present, otherwise use exponential back-off."""
        try:
            retry_after = exc.response.headers.get("retry-after")
            if retry_after:
                return max(0.0, float(retry_after))
        except (AttributeError, TypeError, ValueError):
            pass
        return self._backoff_secs(attempt)

    def _backoff_secs(self, attempt: int) -> float:
        """min(base * 2^attempt + jitter, cap)."""
        base = self._retry_cfg.backoff_base_seconds
        cap = self._retry_cfg.backoff_max_seconds
        return min(base * (2 ** attempt) + random.uniform(0.0, 1.0), cap)


def _answer_text(message) -> str:
    return "".join(
        block.text for block in message.content if getattr(block, "type", "text") == "text"
    )
