"""
Knowledge Service: applies accepted suggestions and reports wizard progress.

==============================================================================
FEATURES IMPLEMENTED IN THIS MODULE:
==============================================================================

1. APPLY SUGGESTION (Feature: suggestions-apply)
   - Upserts the knowledge entry on (category, key), appending new entries
     at the end of their category
   - For "new_step" suggestions, registers the wizard step if it is missing
   - Optionally appends the improvement to a prompt version's system prompt
   - Step registration and prompt update are best-effort: a failure there
     is logged and does not undo the knowledge write

2. WIZARD STATUS (Feature: wizard-status)
   - Completion is computed per wizard step from the knowledge entries
     filed under the step's category
   - A step with no entries counts as complete

==============================================================================
"""

import logging
import math
import re
from typing import Dict, Iterable, List, Mapping, Optional

from .models import ApplySuggestionResult, KnowledgeEntry, WizardStatus, WizardStepStatus
from .sqlite_service import SQLiteService

logger = logging.getLogger(__name__)


def slugify_step_title(title: str) -> str:
    """'Refund Handling' -> 'refund_handling'."""
    return re.sub(r"\s+", "_", title.strip().lower())


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _is_answered(entry: Mapping) -> bool:
    value = entry.get("value")
    return bool(value and str(value).strip())


def compute_wizard_status(steps: Iterable[Mapping], entries: Iterable[Mapping]) -> WizardStatus:
    """Summarize wizard completion.

    steps: rows with `category` and `title`, in wizard order.
    entries: knowledge rows with `category` and `value`.
    """
    by_category: Dict[str, List[Mapping]] = {}
    for entry in entries:
        by_category.setdefault(entry["category"], []).append(entry)

    step_statuses: List[WizardStepStatus] = []
    for step in steps:
        items = by_category.get(step["category"], [])
        total = len(items)
        answered = sum(1 for e in items if _is_answered(e))
        step_statuses.append(WizardStepStatus(
            category=step["category"],
            title=step.get("title"),
            total=total,
            answered=answered,
            complete=total == 0 or answered == total,
        ))

    total_steps = len(step_statuses)
    completed_steps = sum(1 for s in step_statuses if s.complete)
    total_questions = sum(s.total for s in step_statuses)
    answered_questions = sum(s.answered for s in step_statuses)

    if total_steps == 0:
        percent = 0
    elif total_questions == 0:
        percent = 100
    else:
        percent = _round_half_up(100 * answered_questions / total_questions)

    return WizardStatus(
        is_complete=total_steps > 0 and completed_steps == total_steps,
        total_steps=total_steps,
        completed_steps=completed_steps,
        total_questions=total_questions,
        answered_questions=answered_questions,
        percent_complete=percent,
        steps=step_statuses,
    )


class KnowledgeService:
    def __init__(self, db_service: SQLiteService):
        self.db = db_service

    async def wizard_status(self) -> WizardStatus:
        steps = await self.db.list_wizard_steps()
        entries = await self.db.query_many("SELECT category, value FROM knowledge_base")
        return compute_wizard_status(steps, entries)

    async def apply_suggestion(self, type: str, step_title: Optional[str], step_category: str,
                               question_title: str, question_value: str,
                               prompt_version_id: Optional[int] = None) -> ApplySuggestionResult:
        sort_order = await self.db.next_knowledge_sort_order(step_category)
        row = await self.db.upsert_knowledge_entry(
            category=step_category,
            key=question_title,
            value=question_value,
            display_title=question_title,
            sort_order=sort_order,
        )
        entry = KnowledgeEntry.model_validate(row)
        logger.info(f"Applied suggestion to {step_category}/{question_title} (entry {entry.id})")

        step_label = step_title or step_category
        if type == "new_step":
            await self._register_step(step_label, step_category)

        prompt_updated = False
        if prompt_version_id:
            prompt_updated = await self._append_to_prompt(prompt_version_id, question_title, question_value)

        if type == "new_step":
            message = f'Created new step "{step_label}" with entry "{question_title}"'
        else:
            message = f'Added "{question_title}" to "{step_label}"'
        if prompt_updated:
            message += " and updated current prompt"

        return ApplySuggestionResult(entry=entry, message=message, prompt_updated=prompt_updated)

    async def _register_step(self, title: str, category: str) -> None:
        try:
            if await self.db.insert_wizard_step_if_missing(title, category):
                logger.info(f"Created wizard step '{title}' ({category})")
        except Exception as e:
            logger.warning(f"Could not create wizard step for {category}: {e}")

    async def _append_to_prompt(self, prompt_version_id: int, title: str, value: str) -> bool:
        try:
            prompt = await self.db.get_prompt_version(prompt_version_id)
            if not prompt:
                logger.warning(f"Prompt version {prompt_version_id} not found, prompt not updated")
                return False
            updated = prompt["system_prompt"] + f"\n\n## Improvement: {title}\n{value}"
            await self.db.update_prompt_version(prompt_version_id, {"system_prompt": updated})
            return True
        except Exception as e:
            logger.warning(f"Failed to update prompt {prompt_version_id}: {e}")
            return False
