"""LLM provider package."""
from __future__ import annotations

import logging
from typing import Optional

from garimpo.config import AppConfig
from garimpo.providers.base import BaseProvider
from garimpo.providers.mock_provider import MockProvider

logger = logging.getLogger(__name__)

__all__ = ["BaseProvider", "MockProvider", "build_provider"]


def build_provider(cfg: AppConfig, mode: str = "live") -> Optional[BaseProvider]:
    """Return the provider for *mode* (``live`` or ``dry``).

    Live mode without ``ANTHROPIC_API_KEY`` returns None: enrichment is then
    unavailable and records are entered manually.
    """
    if mode == "dry":
        return MockProvider()

    from garimpo.providers.anthropic_provider import AnthropicProvider

    pcfg = cfg.provider
    try:
        return AnthropicProvider(
            model=pcfg.model,
            temperature=pcfg.temperature,
            max_tokens=pcfg.max_tokens,
            retry_cfg=cfg.retry_api,
            budget_cfg=cfg.budget,
            json_prefill=pcfg.json_prefill,
        )
    except EnvironmentError as exc:
        logger.warning("AI enrichment disabled: %s", exc)
        return None
