"""
Completion client for the hosted model.

Talks to any OpenAI-compatible chat-completions endpoint (Ollama locally,
OpenAI, or Anthropic's compatibility layer). One call per request, no
retries: failures propagate to the caller as-is.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .models import CompletionResult, CompletionUsage
from . import config

logger = logging.getLogger(__name__)


class CompletionClient:
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 model: Optional[str] = None, max_tokens: Optional[int] = None):
        self.base_url = base_url or config.LLM_BASE_URL
        self.api_key = api_key or config.LLM_API_KEY
        self.model = model or config.LLM_MODEL
        self.max_tokens = max_tokens or config.LLM_MAX_TOKENS
        self._client = None

    def _get_client(self):
        """Create the OpenAI SDK client on first use."""
        if self._client is None:
            logger.info("Initializing OpenAI-compatible client")
            logger.info(f"  base_url: {self.base_url}")
            logger.info(f"  model:    {self.model}")
            from openai import OpenAI  # Lazy import to speed up server startup
            self._client = OpenAI(base_url=self.base_url, api_key=self.api_key)
        return self._client

    async def complete(self, system_prompt: str, messages: List[Dict[str, str]]) -> CompletionResult:
        """Send a system prompt plus role-tagged messages, return text and token usage."""
        client = self._get_client()
        response = await asyncio.to_thread(
            client.chat.completions.create,
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "system", "content": system_prompt}, *messages],
        )

        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        tokens_in = getattr(usage, "prompt_tokens", 0) or 0
        tokens_out = getattr(usage, "completion_tokens", 0) or 0
        logger.info(f"Completion from {response.model or self.model}: {tokens_in} in / {tokens_out} out tokens")

        return CompletionResult(
            content=content.strip(),
            model=response.model or self.model,
            usage=CompletionUsage(input_tokens=tokens_in, output_tokens=tokens_out),
        )


# Singleton
_client: Optional[CompletionClient] = None


def get_llm_client() -> CompletionClient:
    global _client
    if not _client:
        _client = CompletionClient()
    return _client
