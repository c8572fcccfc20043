"""Playground generation: assemble the prompt and ask the model for a reply."""

import logging

from .errors import UpstreamError
from .llm_client import CompletionClient
from .models import GenerateResponse
from .prompt_builder import build_system_prompt, build_user_message
from .sqlite_service import SQLiteService

logger = logging.getLogger(__name__)


class GeneratorService:
    def __init__(self, db_service: SQLiteService, llm: CompletionClient):
        self.db = db_service
        self.llm = llm

    async def run(self, system_prompt: str, user_prompt: str, email_thread: str) -> GenerateResponse:
        knowledge = await self.db.query_many(
            "SELECT category, key, value FROM knowledge_base ORDER BY category, sort_order"
        )
        enhanced_system_prompt = build_system_prompt(system_prompt, knowledge)
        user_message = build_user_message(user_prompt, email_thread)
        logger.debug(f"Generating reply with {len(knowledge)} knowledge entries in the system prompt")

        try:
            result = await self.llm.complete(
                enhanced_system_prompt,
                [{"role": "user", "content": user_message}],
            )
        except Exception as e:
            raise UpstreamError(f"Failed to generate response: {e}") from e

        return GenerateResponse(response=result.content, model=result.model, usage=result.usage)
