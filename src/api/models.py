import json
import logging
from typing import List, Dict, Any, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


def _decode_json(value, default):
    """SQLite hands JSON columns back as text; decode them for the models.

    A corrupt column decodes to the default so one bad row cannot break a listing.
    """
    if value is None:
        return default
    if isinstance(value, (bytes, str)):
        if not value:
            return default
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupt JSON column, using default: {e}")
            return default
    return value


class CamelModel(BaseModel):
    """Wire models for the playground endpoints, which speak camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Knowledge Base ==========


class KnowledgeEntry(BaseModel):
    id: int
    category: str
    key: str
    value: str
    display_title: Optional[str] = None
    sort_order: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class KnowledgeEntryCreate(BaseModel):
    category: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None
    display_title: Optional[str] = None
    sort_order: Optional[int] = None


class KnowledgeEntryUpdate(BaseModel):
    category: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None
    display_title: Optional[str] = None
    sort_order: Optional[int] = None


class WizardStep(BaseModel):
    id: int
    title: str
    category: str
    sort_order: int = 0


class WizardStepCreate(BaseModel):
    title: Optional[str] = None
    category: Optional[str] = None
    sort_order: Optional[int] = None


# ========== Prompt Versions ==========


class PromptVersion(BaseModel):
    id: int
    name: str
    system_prompt: str
    user_prompt: str
    is_active: bool = False
    notes: Optional[str] = None
    created_at: Optional[str] = None


class PromptVersionCreate(BaseModel):
    name: Optional[str] = None
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    is_active: bool = False
    notes: Optional[str] = None


class PromptVersionUpdate(BaseModel):
    name: Optional[str] = None
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None


# ========== Test Cases ==========


class TestCase(BaseModel):
    id: int
    name: str
    email_thread: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    subject: Optional[str] = None
    order_number: Optional[str] = None
    expected_behavior: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _decode_tags(cls, value):
        return _decode_json(value, [])


class TestCaseCreate(BaseModel):
    name: Optional[str] = None
    email_thread: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    subject: Optional[str] = None
    order_number: Optional[str] = None
    expected_behavior: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class TestCaseUpdate(BaseModel):
    name: Optional[str] = None
    email_thread: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    subject: Optional[str] = None
    order_number: Optional[str] = None
    expected_behavior: Optional[str] = None
    tags: Optional[List[str]] = None


# ========== Evaluator Rules ==========


class EvaluatorRule(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    check_prompt: str
    priority: int = 0
    is_active: bool = True
    category: Optional[str] = None
    knowledge_base_id: Optional[int] = None
    created_at: Optional[str] = None
    # Provenance for display, filled by the listing join
    kb_category: Optional[str] = None
    kb_key: Optional[str] = None
    kb_display_title: Optional[str] = None
    step_title: Optional[str] = None


class EvaluatorRuleCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    check_prompt: Optional[str] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    category: Optional[str] = None
    knowledge_base_id: Optional[int] = None


class EvaluatorRuleUpdate(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    check_prompt: Optional[str] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    category: Optional[str] = None


# ========== Evaluation ==========


class RuleCheck(BaseModel):
    passed: bool
    reasoning: str = ""


class EvaluationResult(CamelModel):
    score: int = Field(..., ge=0, le=100)
    reasoning: str = ""
    rule_checks: Dict[str, RuleCheck] = Field(default_factory=dict)


class EvaluateRequest(CamelModel):
    email_thread: Optional[str] = None
    agent_response: Optional[str] = None
    expected_behavior: Optional[str] = None


# ========== Test Results ==========


class TestResult(BaseModel):
    id: int
    test_case_id: Optional[int] = None
    prompt_version_id: Optional[int] = None
    agent_response: str
    evaluator_score: Optional[int] = None
    evaluator_reasoning: Optional[str] = None
    rule_checks: Optional[Dict[str, RuleCheck]] = None
    created_at: Optional[str] = None
    test_case_name: Optional[str] = None
    prompt_version_name: Optional[str] = None

    @field_validator("rule_checks", mode="before")
    @classmethod
    def _decode_rule_checks(cls, value):
        return _decode_json(value, None)


class TestResultCreate(BaseModel):
    test_case_id: Optional[int] = None
    prompt_version_id: Optional[int] = None
    agent_response: Optional[str] = None
    evaluator_score: Optional[int] = Field(default=None, ge=0, le=100)
    evaluator_reasoning: Optional[str] = None
    rule_checks: Optional[Dict[str, RuleCheck]] = None


# ========== Generation ==========


class GenerateRequest(CamelModel):
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    email_thread: Optional[str] = None


class CompletionUsage(CamelModel):
    input_tokens: int = 0
    output_tokens: int = 0


class CompletionResult(BaseModel):
    content: str
    model: str
    usage: CompletionUsage = Field(default_factory=CompletionUsage)


class GenerateResponse(CamelModel):
    response: str
    model: str
    usage: CompletionUsage


# ========== Suggestions ==========


class Suggestion(CamelModel):
    id: Optional[str] = None
    type: Literal["add_to_existing", "new_step"]
    step_title: str
    step_category: Optional[str] = None
    question_title: str
    question_value: str
    reasoning: str = ""
    priority: Literal["high", "medium", "low"] = "medium"
    rule_violated: Optional[str] = None


class SuggestionsResponse(CamelModel):
    suggestions: List[Suggestion] = Field(default_factory=list)
    summary: str = ""


class SuggestionsRequest(CamelModel):
    email_thread: Optional[str] = None
    agent_response: Optional[str] = None
    evaluation: Optional[EvaluationResult] = None


class ApplySuggestionRequest(CamelModel):
    type: Literal["add_to_existing", "new_step"] = "add_to_existing"
    step_title: Optional[str] = None
    step_category: Optional[str] = None
    question_title: Optional[str] = None
    question_value: Optional[str] = None
    prompt_version_id: Optional[int] = None


class ApplySuggestionResult(CamelModel):
    entry: KnowledgeEntry
    message: str
    prompt_updated: bool = False


# ========== Wizard ==========


class WizardStepStatus(CamelModel):
    category: str
    title: Optional[str] = None
    total: int = 0
    answered: int = 0
    complete: bool = True


class WizardStatus(CamelModel):
    is_complete: bool = False
    total_steps: int = 0
    completed_steps: int = 0
    total_questions: int = 0
    answered_questions: int = 0
    percent_complete: int = 0
    steps: List[WizardStepStatus] = Field(default_factory=list)


def dump_wire(model: BaseModel) -> Dict[str, Any]:
    """Serialize a model the way the API returns it (aliases applied)."""
    return model.model_dump(mode="json", by_alias=True)
