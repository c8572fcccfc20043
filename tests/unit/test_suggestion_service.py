"""
Unit Tests for the Suggestion Service

Parsing is lenient: a bad reply degrades to an empty list instead of an
error, malformed items are dropped and the list is capped.
"""

import pytest

from src.api.errors import UpstreamError
from src.api.models import EvaluationResult, RuleCheck
from src.api.suggestion_service import (
    FALLBACK_SUMMARY,
    SuggestionService,
    build_suggestions_system_prompt,
    build_suggestions_user_prompt,
    parse_suggestions,
)


def _suggestion(title, **overrides):
    item = {
        "id": f"sug_{title.lower()}",
        "type": "add_to_existing",
        "stepTitle": "Policies",
        "stepCategory": "policies",
        "questionTitle": title,
        "questionValue": f"{title} guidance",
        "reasoning": "Prevents the failure",
        "priority": "high",
        "ruleViolated": "Escalation on Refund Keywords",
    }
    item.update(overrides)
    return item


@pytest.fixture
def low_score_evaluation():
    return EvaluationResult(
        score=40,
        reasoning="Missed the refund escalation.",
        rule_checks={
            "Escalation on Refund Keywords": RuleCheck(passed=False, reasoning="No escalation"),
            "Appropriate Tone for Sentiment": RuleCheck(passed=True, reasoning="Empathetic"),
        },
    )


class TestParseSuggestions:

    def test_invalid_raw_json_returns_empty_fallback(self):
        result = parse_suggestions("Here are my thoughts: add more refund rules.", 40)

        assert result.suggestions == []
        assert result.summary == FALLBACK_SUMMARY

    def test_fenced_reply(self):
        raw = '```json\n{"suggestions": [' + \
              '{"type": "new_step", "stepTitle": "Shipping", "stepCategory": "shipping", ' + \
              '"questionTitle": "Carrier", "questionValue": "DHL", "reasoning": "r", "priority": "medium"}' + \
              '], "summary": "One fix"}\n```'
        result = parse_suggestions(raw, 50)

        assert result.summary == "One fix"
        assert len(result.suggestions) == 1
        suggestion = result.suggestions[0]
        assert suggestion.type == "new_step"
        assert suggestion.step_category == "shipping"
        assert suggestion.id.startswith("sug_")

    def test_capped_at_three(self):
        import json
        raw = json.dumps({"suggestions": [_suggestion(f"S{i}") for i in range(5)], "summary": "many"})
        assert len(parse_suggestions(raw, 40).suggestions) == 3

    def test_high_score_allows_one(self):
        import json
        raw = json.dumps({"suggestions": [_suggestion("A"), _suggestion("B")], "summary": "two"})
        result = parse_suggestions(raw, 85)
        assert [s.question_title for s in result.suggestions] == ["A"]

    def test_malformed_items_are_skipped(self):
        import json
        raw = json.dumps({
            "suggestions": [
                _suggestion("Good"),
                {"type": "rewrite_everything", "stepTitle": "X", "questionTitle": "Y", "questionValue": "Z"},
                {"type": "add_to_existing", "stepTitle": "Policies"},
                "not an object",
            ],
            "summary": "mixed",
        })
        result = parse_suggestions(raw, 40)
        assert [s.question_title for s in result.suggestions] == ["Good"]

    def test_numeric_id_is_kept_as_string(self):
        import json
        raw = json.dumps({"suggestions": [_suggestion("A", id=1)], "summary": ""})

        result = parse_suggestions(raw, 40)

        assert len(result.suggestions) == 1
        assert result.suggestions[0].id == "1"

    def test_unknown_priority_defaults_to_medium(self):
        import json
        raw = json.dumps({"suggestions": [_suggestion("A", priority="high|medium|low")], "summary": ""})
        assert parse_suggestions(raw, 40).suggestions[0].priority == "medium"


class TestPrompts:

    def test_system_prompt_lists_categories_and_entries(self):
        knowledge = [
            {"category": "policies", "key": "returns", "value": "30 days"},
            {"category": "tone_brand", "key": "voice", "value": "Warm"},
        ]
        prompt = build_suggestions_system_prompt(knowledge)

        assert "- policies\n- tone_brand" in prompt
        assert "### policies\n- **returns**: 30 days" in prompt
        assert "MAXIMUM 3 SUGGESTIONS" in prompt

    def test_user_prompt_marks_passed_and_failed_rules(self, low_score_evaluation):
        prompt = build_suggestions_user_prompt("thread", "reply", low_score_evaluation)

        assert "**Score**: 40/100" in prompt
        assert "- **Escalation on Refund Keywords**: ❌ FAILED - No escalation" in prompt
        assert "- **Appropriate Tone for Sentiment**: ✅ PASSED - Empathetic" in prompt


class TestSuggestionService:

    @pytest.mark.asyncio
    async def test_knowledge_snapshot_is_sent(self, db_service, fake_llm, low_score_evaluation):
        await db_service.create_knowledge_entry("policies", "returns", "30 days")
        fake_llm.queue_json({"suggestions": [_suggestion("Refunds")], "summary": "Escalate refunds"})

        result = await SuggestionService(db_service, fake_llm).suggest("thread", "reply", low_score_evaluation)

        assert result.summary == "Escalate refunds"
        assert result.suggestions[0].rule_violated == "Escalation on Refund Keywords"
        assert "- **returns**: 30 days" in fake_llm.last_system_prompt

    @pytest.mark.asyncio
    async def test_garbage_reply_degrades(self, db_service, fake_llm, low_score_evaluation):
        fake_llm.queue("{not json")

        result = await SuggestionService(db_service, fake_llm).suggest("thread", "reply", low_score_evaluation)

        assert result.suggestions == []
        assert result.summary == FALLBACK_SUMMARY

    @pytest.mark.asyncio
    async def test_completion_failure_still_raises(self, db_service, fake_llm, low_score_evaluation):
        fake_llm.queue(TimeoutError("timed out"))

        with pytest.raises(UpstreamError):
            await SuggestionService(db_service, fake_llm).suggest("thread", "reply", low_score_evaluation)
