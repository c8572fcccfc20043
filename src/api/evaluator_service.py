"""
Evaluator Service: scores a candidate agent reply against the active rules.

==============================================================================
FEATURES IMPLEMENTED IN THIS MODULE:
==============================================================================

1. RULE-BASED JUDGING (Feature: evaluator-rules)
   - Every active evaluator rule is listed in one judge prompt
   - The model returns an overall 0-100 score, reasoning, and a
     pass/fail verdict with reasoning per rule

2. STRICT PARSING (Feature: evaluator-rules)
   - The reply goes through the shared JSON extractor
   - An unparseable or malformed reply is an UpstreamError; there is no
     fallback score, the caller sees the failure

==============================================================================
"""

import json
import logging
import math
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import UpstreamError
from .llm_client import CompletionClient
from .models import EvaluationResult, RuleCheck
from .reply_parser import ReplyParseError, extract_json
from .sqlite_service import SQLiteService

logger = logging.getLogger(__name__)


JUDGE_SYSTEM_PROMPT = (
    "You are a strict quality reviewer for customer service email replies. "
    "You judge a support agent's reply against a list of evaluation rules and "
    "return ONLY valid JSON with no additional text."
)


def _to_bool(value) -> bool:
    """Safely convert the judge's 'passed' field to bool.

    Judges sometimes return "passed": "false" (string) or "PASS"/"FAIL"
    instead of a JSON boolean; bool("false") would be True.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "pass", "passed", "1")
    return bool(value)


def _clamp_score(value) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise UpstreamError(f"Failed to evaluate response: judge returned a non-numeric score ({value!r})") from e
    if not math.isfinite(number):
        raise UpstreamError(f"Failed to evaluate response: judge returned a non-finite score ({value!r})")
    return max(0, min(100, int(round(number))))


def build_judge_prompt(email_thread: str, agent_response: str,
                       rules: List[Dict[str, Any]],
                       expected_behavior: Optional[str] = None) -> str:
    if rules:
        rule_lines = "\n".join(
            f"{i}. **{rule['name']}**: {rule['check_prompt']}"
            for i, rule in enumerate(rules, start=1)
        )
    else:
        rule_lines = "No specific rules are active. Judge overall quality only."

    example_checks = {
        rule["name"]: {"passed": True, "reasoning": "One sentence explanation."}
        for rule in rules[:2]
    }
    example = {
        "score": 85,
        "reasoning": "Overall assessment of the reply.",
        "ruleChecks": example_checks,
    }

    expected_block = ""
    if expected_behavior:
        expected_block = f"\n**Expected Behavior (from the test case):**\n{expected_behavior}\n"

    return (
        f"Evaluate the support agent's reply to the customer email thread below.\n"
        f"\n"
        f"**Email Thread:**\n{email_thread}\n"
        f"\n"
        f"**Agent Reply:**\n{agent_response}\n"
        f"{expected_block}"
        f"\n"
        f"**Evaluation Rules:**\n{rule_lines}\n"
        f"\n"
        f"**Task:**\n"
        f"- Check the reply against EACH rule above and decide whether it passed.\n"
        f"- Give the reply an overall score from 0 to 100 (100 = ready to send, "
        f"below 70 = should not be sent).\n"
        f"- Include exactly one ruleChecks entry per rule, keyed by the rule name.\n"
        f"\n"
        f"Respond with ONLY a JSON object in this shape:\n"
        f"```json\n{json.dumps(example, indent=2)}\n```"
    )


def parse_evaluation(raw: str) -> EvaluationResult:
    """Turn the judge's reply into an EvaluationResult or raise UpstreamError."""
    try:
        payload = extract_json(raw)
    except ReplyParseError as e:
        logger.error(f"Failed to parse evaluation response as JSON: {raw[:500]}")
        raise UpstreamError(f"Failed to evaluate response: {e}") from e

    if not isinstance(payload, dict) or "score" not in payload:
        raise UpstreamError("Failed to evaluate response: judge reply is missing 'score'")

    raw_checks = payload.get("ruleChecks") or payload.get("rule_checks") or {}
    if not isinstance(raw_checks, dict):
        raise UpstreamError("Failed to evaluate response: 'ruleChecks' must be an object")

    rule_checks = {}
    for name, check in raw_checks.items():
        if isinstance(check, dict):
            rule_checks[str(name)] = RuleCheck(
                passed=_to_bool(check.get("passed")),
                reasoning=str(check.get("reasoning") or ""),
            )
        else:
            rule_checks[str(name)] = RuleCheck(passed=_to_bool(check))

    try:
        return EvaluationResult(
            score=_clamp_score(payload["score"]),
            reasoning=str(payload.get("reasoning") or ""),
            rule_checks=rule_checks,
        )
    except PydanticValidationError as e:
        raise UpstreamError(f"Failed to evaluate response: {e}") from e


class EvaluatorService:
    def __init__(self, db_service: SQLiteService, llm: CompletionClient):
        self.db = db_service
        self.llm = llm

    async def evaluate(self, email_thread: str, agent_response: str,
                       expected_behavior: Optional[str] = None) -> EvaluationResult:
        rules = await self.db.list_evaluator_rules(include_inactive=False)
        prompt = build_judge_prompt(email_thread, agent_response, rules, expected_behavior)

        try:
            result = await self.llm.complete(JUDGE_SYSTEM_PROMPT, [{"role": "user", "content": prompt}])
        except Exception as e:
            raise UpstreamError(f"Failed to evaluate response: {e}") from e

        evaluation = parse_evaluation(result.content)

        missing = [r["name"] for r in rules if r["name"] not in evaluation.rule_checks]
        if missing:
            logger.warning(f"Judge skipped {len(missing)} rule(s): {missing}")

        logger.info(
            f"Evaluation complete: score={evaluation.score}, "
            f"failed={[n for n, c in evaluation.rule_checks.items() if not c.passed]}"
        )
        return evaluation
