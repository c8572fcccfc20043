"""
Suggestion Service: turns an evaluation into knowledge-base improvements.

The model sees the current knowledge base (grouped by category) and the
evaluation, and proposes entries that would have prevented the failures.
An unparseable reply degrades to an empty suggestion list; only a failed
model call is an error.
"""

import logging
import secrets
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import UpstreamError
from .llm_client import CompletionClient
from .models import EvaluationResult, Suggestion, SuggestionsResponse
from .prompt_builder import group_by_category
from .reply_parser import ReplyParseError, extract_json
from .sqlite_service import SQLiteService

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3
HIGH_SCORE_THRESHOLD = 80
FALLBACK_SUMMARY = "Unable to generate suggestions at this time."

_OUTPUT_FORMAT = """```json
{
  "suggestions": [
    {
      "id": "unique_id",
      "type": "add_to_existing",
      "stepTitle": "Existing Step Name",
      "stepCategory": "existing_category_slug",
      "questionTitle": "Short title for the new entry",
      "questionValue": "The actual content/value to add",
      "reasoning": "Why this improvement is needed",
      "priority": "high|medium|low",
      "ruleViolated": "Name of the rule that was violated (if applicable)"
    },
    {
      "id": "unique_id_2",
      "type": "new_step",
      "stepTitle": "New Step Name",
      "stepCategory": "new_category_slug",
      "questionTitle": "First entry for this new step",
      "questionValue": "The content for this entry",
      "reasoning": "Why a new step is needed",
      "priority": "high|medium|low",
      "ruleViolated": "Name of the rule that was violated (if applicable)"
    }
  ],
  "summary": "Brief summary of all suggested improvements"
}
```"""

_GUIDELINES = f"""Guidelines:
- **MAXIMUM {MAX_SUGGESTIONS} SUGGESTIONS** - Focus on the most impactful improvements only
- **NO REPETITION** - If multiple issues stem from the same root cause, consolidate into ONE comprehensive suggestion
- **ONE suggestion per rule violation** - Don't create separate suggestions for examples, rules, and guidelines about the same issue
- Only suggest improvements that would prevent the identified issues
- Be specific and actionable
- Use existing categories when possible
- Only suggest new steps when truly necessary
- Priority should be "high" for rule violations, "medium" for quality issues, "low" for minor improvements
- Generate unique IDs using format "sug_" + random string
- If the score is {HIGH_SCORE_THRESHOLD}+, suggest at most 1 improvement or none at all"""


def new_suggestion_id() -> str:
    return f"sug_{secrets.token_hex(4)}"


def build_suggestions_system_prompt(knowledge: List[Mapping]) -> str:
    grouped = group_by_category(knowledge)
    category_lines = "\n".join(f"- {category}" for category in grouped)
    entry_blocks = "\n\n".join(
        f"### {category}\n" + "\n".join(f"- **{e['key']}**: {e['value']}" for e in entries)
        for category, entries in grouped.items()
    )

    return (
        "You are an AI assistant that helps improve customer service agent training data.\n"
        "Your job is to analyze evaluation results and suggest specific improvements to the training knowledge base.\n"
        "\n"
        "## Current Training Structure\n"
        "\n"
        "The training wizard has these existing steps/categories:\n"
        f"{category_lines}\n"
        "\n"
        "Each step contains questions with key-value pairs that train the AI agent.\n"
        "\n"
        "## Current Knowledge Base Entries\n"
        "\n"
        f"{entry_blocks}\n"
        "\n"
        "## Your Task\n"
        "\n"
        "Based on the evaluation results, suggest specific improvements to add to the training wizard.\n"
        "For each failed rule or issue identified, suggest:\n"
        "\n"
        "1. **Add to existing step**: If the improvement fits an existing category\n"
        "2. **Create new step**: If the improvement needs a new category that doesn't exist\n"
        "\n"
        "## Output Format\n"
        "\n"
        "Respond with a JSON object:\n"
        f"{_OUTPUT_FORMAT}\n"
        "\n"
        f"{_GUIDELINES}"
    )


def build_suggestions_user_prompt(email_thread: str, agent_response: str,
                                  evaluation: EvaluationResult) -> str:
    rule_lines = "\n".join(
        f"- **{rule}**: {'✅ PASSED' if check.passed else '❌ FAILED'} - {check.reasoning}"
        for rule, check in evaluation.rule_checks.items()
    )
    return (
        "## Evaluation Results\n"
        "\n"
        f"**Score**: {evaluation.score}/100\n"
        "\n"
        "**Overall Assessment**:\n"
        f"{evaluation.reasoning}\n"
        "\n"
        "**Rule Checks**:\n"
        f"{rule_lines}\n"
        "\n"
        "## Original Email Thread\n"
        f"{email_thread}\n"
        "\n"
        "## Agent Response That Was Evaluated\n"
        f"{agent_response}\n"
        "\n"
        "---\n"
        "\n"
        "Please analyze these results and suggest specific improvements to add to the training wizard.\n"
        "Focus especially on any failed rule checks - what knowledge could be added to prevent these failures?\n"
        f"If the score is already high ({HIGH_SCORE_THRESHOLD}+), you may suggest fewer or no improvements."
    )


def parse_suggestions(raw: str, score: Optional[int] = None) -> SuggestionsResponse:
    """Parse the model reply; never raises."""
    try:
        payload = extract_json(raw)
    except ReplyParseError:
        logger.warning(f"Failed to parse suggestions response: {(raw or '')[:500]}")
        return SuggestionsResponse(suggestions=[], summary=FALLBACK_SUMMARY)

    if not isinstance(payload, dict):
        logger.warning("Suggestions response is not a JSON object")
        return SuggestionsResponse(suggestions=[], summary=FALLBACK_SUMMARY)

    items = payload.get("suggestions") or []
    if not isinstance(items, list):
        items = []

    suggestions: List[Suggestion] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if item.get("priority") not in ("high", "medium", "low"):
            item = {k: v for k, v in item.items() if k != "priority"}
        if item.get("id") is not None and not isinstance(item["id"], str):
            item = {**item, "id": str(item["id"])}
        try:
            suggestion = Suggestion.model_validate(item)
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed suggestion: {e.error_count()} error(s)")
            continue
        if not suggestion.id:
            suggestion.id = new_suggestion_id()
        suggestions.append(suggestion)

    limit = 1 if score is not None and score >= HIGH_SCORE_THRESHOLD else MAX_SUGGESTIONS
    if len(suggestions) > limit:
        logger.info(f"Capping {len(suggestions)} suggestions to {limit}")
        suggestions = suggestions[:limit]

    return SuggestionsResponse(suggestions=suggestions, summary=str(payload.get("summary") or ""))


class SuggestionService:
    def __init__(self, db_service: SQLiteService, llm: CompletionClient):
        self.db = db_service
        self.llm = llm

    async def suggest(self, email_thread: str, agent_response: str,
                      evaluation: EvaluationResult) -> SuggestionsResponse:
        knowledge: List[Dict[str, Any]] = await self.db.query_many(
            "SELECT category, key, value FROM knowledge_base ORDER BY category, key"
        )
        system_prompt = build_suggestions_system_prompt(knowledge)
        user_prompt = build_suggestions_user_prompt(email_thread, agent_response, evaluation)

        try:
            result = await self.llm.complete(system_prompt, [{"role": "user", "content": user_prompt}])
        except Exception as e:
            raise UpstreamError(f"Failed to generate suggestions: {e}") from e

        response = parse_suggestions(result.content, evaluation.score)
        logger.info(f"Generated {len(response.suggestions)} suggestion(s) for score {evaluation.score}")
        return response
