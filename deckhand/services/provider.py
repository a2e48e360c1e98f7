"""
AI provider used by the onboarding orchestrator.

The orchestrator only needs text in, text out. Tool calls are parsed from
the returned text, so any chat model works.
"""

import asyncio
import logging
from functools import lru_cache
from typing import Optional

from ..core.config import get_settings
from ..core.errors import ProviderError, ProviderTimeout
from . import llm

logger = logging.getLogger(__name__)


class AIProvider:
    """Base class. Subclasses implement generate()."""

    name: str = "base"

    async def generate(self, prompt: str) -> str:
        raise NotImplementedError


class LLMProvider(AIProvider):
    """Backed by services.llm (retry, backoff, provider fallback)."""

    name = "llm"

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.model = model
        self.temperature = settings.default_llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.default_llm_max_tokens
        self.timeout = settings.provider_timeout_seconds if timeout is None else timeout

    async def generate(self, prompt: str) -> str:
        try:
            text = await asyncio.wait_for(
                llm.chat_simple(
                    prompt=prompt,
                    model=self.model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error("AI provider timed out after %.0fs", self.timeout)
            raise ProviderTimeout(f"No response within {self.timeout:.0f}s")
        except Exception as e:
            logger.error("AI provider failed: %s", e)
            raise ProviderError(str(e)) from e

        if not text or not text.strip():
            raise ProviderError("Empty response from AI provider")
        return text


@lru_cache
def get_provider() -> AIProvider:
    return LLMProvider()
