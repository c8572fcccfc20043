from typing import List, Optional, Dict, Any, Type
from pydantic import BaseModel
from fastapi import APIRouter, Query
import logging

logger = logging.getLogger(__name__)

from .errors import NotFoundError, ValidationError, require_fields
from .models import (
    KnowledgeEntry,
    KnowledgeEntryCreate,
    KnowledgeEntryUpdate,
    WizardStep,
    WizardStepCreate,
    PromptVersion,
    PromptVersionCreate,
    PromptVersionUpdate,
    TestCase,
    TestCaseCreate,
    TestCaseUpdate,
    EvaluatorRule,
    EvaluatorRuleCreate,
    EvaluatorRuleUpdate,
    EvaluateRequest,
    TestResult,
    TestResultCreate,
    GenerateRequest,
    SuggestionsRequest,
    ApplySuggestionRequest,
    dump_wire,
)
from .sqlite_service import get_db_service
from .llm_client import get_llm_client
from .generator_service import GeneratorService
from .evaluator_service import EvaluatorService
from .suggestion_service import SuggestionService
from .knowledge_service import KnowledgeService, slugify_step_title

router = APIRouter(prefix="/api")
db = get_db_service()
llm_client = get_llm_client()


def _one(model: Type[BaseModel], row: Dict[str, Any]) -> Dict[str, Any]:
    return dump_wire(model.model_validate(row))


def _many(model: Type[BaseModel], rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [_one(model, r) for r in rows]


def _supplied(request: BaseModel) -> Dict[str, Any]:
    """Fields the client actually sent, for partial updates."""
    return request.model_dump(exclude_unset=True)


# ===========================================================================
# Knowledge Base
# ===========================================================================

@router.get("/knowledge")
async def list_knowledge(category: Optional[str] = None):
    entries = await db.list_knowledge(category)
    return {"data": _many(KnowledgeEntry, entries)}


@router.post("/knowledge", status_code=201)
async def create_knowledge_entry(request: KnowledgeEntryCreate):
    require_fields({"category": request.category, "key": request.key, "value": request.value})
    entry = await db.create_knowledge_entry(
        category=request.category,
        key=request.key,
        value=request.value,
        display_title=request.display_title,
        sort_order=request.sort_order,
    )
    return {"data": _one(KnowledgeEntry, entry), "message": "Knowledge entry created successfully"}


@router.get("/knowledge/{entry_id}")
async def get_knowledge_entry(entry_id: int):
    entry = await db.get_knowledge_entry(entry_id)
    if not entry:
        raise NotFoundError("Knowledge entry not found")
    return {"data": _one(KnowledgeEntry, entry)}


@router.put("/knowledge/{entry_id}")
async def update_knowledge_entry(entry_id: int, request: KnowledgeEntryUpdate):
    if not await db.get_knowledge_entry(entry_id):
        raise NotFoundError("Knowledge entry not found")
    entry = await db.update_knowledge_entry(entry_id, _supplied(request))
    return {"data": _one(KnowledgeEntry, entry), "message": "Knowledge entry updated successfully"}


@router.delete("/knowledge/{entry_id}")
async def delete_knowledge_entry(entry_id: int):
    if not await db.delete_knowledge_entry(entry_id):
        raise NotFoundError("Knowledge entry not found")
    return {"message": "Knowledge entry deleted successfully"}


# ===========================================================================
# Wizard
# ===========================================================================

@router.get("/wizard-steps")
async def list_wizard_steps():
    steps = await db.list_wizard_steps()
    return {"data": _many(WizardStep, steps)}


@router.post("/wizard-steps", status_code=201)
async def create_wizard_step(request: WizardStepCreate):
    require_fields({"title": request.title, "category": request.category})
    step = await db.create_wizard_step(request.title, request.category, request.sort_order)
    return {"data": _one(WizardStep, step), "message": "Wizard step created successfully"}


@router.get("/wizard/status")
async def get_wizard_status():
    status = await KnowledgeService(db).wizard_status()
    return {"data": dump_wire(status)}


# ===========================================================================
# Prompt Versions
# ===========================================================================

@router.get("/prompts")
async def list_prompt_versions():
    prompts = await db.list_prompt_versions()
    return {"data": _many(PromptVersion, prompts)}


@router.post("/prompts", status_code=201)
async def create_prompt_version(request: PromptVersionCreate):
    require_fields({
        "name": request.name,
        "system_prompt": request.system_prompt,
        "user_prompt": request.user_prompt,
    })
    prompt = await db.create_prompt_version(
        request.name, request.system_prompt, request.user_prompt, request.notes
    )
    if request.is_active:
        await db.set_active_prompt_version(prompt["id"])
        prompt = await db.get_prompt_version(prompt["id"])
    return {"data": _one(PromptVersion, prompt), "message": "Prompt version created successfully"}


@router.get("/prompts/{prompt_id}")
async def get_prompt_version(prompt_id: int):
    prompt = await db.get_prompt_version(prompt_id)
    if not prompt:
        raise NotFoundError("Prompt version not found")
    return {"data": _one(PromptVersion, prompt)}


@router.put("/prompts/{prompt_id}")
async def update_prompt_version(prompt_id: int, request: PromptVersionUpdate):
    if not await db.get_prompt_version(prompt_id):
        raise NotFoundError("Prompt version not found")
    fields = _supplied(request)
    activate = fields.pop("is_active", None)
    prompt = await db.update_prompt_version(prompt_id, fields)
    if activate:
        await db.set_active_prompt_version(prompt_id)
        prompt = await db.get_prompt_version(prompt_id)
    elif activate is False:
        await db.execute("UPDATE prompt_versions SET is_active = 0 WHERE id = ?", (prompt_id,))
        prompt = await db.get_prompt_version(prompt_id)
    return {"data": _one(PromptVersion, prompt), "message": "Prompt version updated successfully"}


@router.delete("/prompts/{prompt_id}")
async def delete_prompt_version(prompt_id: int):
    if not await db.delete_prompt_version(prompt_id):
        raise NotFoundError("Prompt version not found")
    return {"message": "Prompt version deleted successfully"}


@router.post("/prompts/{prompt_id}/activate")
async def activate_prompt_version(prompt_id: int):
    if not await db.set_active_prompt_version(prompt_id):
        raise NotFoundError("Prompt version not found")
    prompt = await db.get_prompt_version(prompt_id)
    return {"data": _one(PromptVersion, prompt), "message": "Prompt version activated successfully"}


# ===========================================================================
# Test Cases
# ===========================================================================

@router.get("/test-cases")
async def list_test_cases(tag: Optional[str] = None):
    test_cases = await db.list_test_cases(tag)
    return {"data": _many(TestCase, test_cases)}


@router.post("/test-cases", status_code=201)
async def create_test_case(request: TestCaseCreate):
    require_fields({"name": request.name, "email_thread": request.email_thread})
    test_case = await db.create_test_case(request.model_dump())
    return {"data": _one(TestCase, test_case), "message": "Test case created successfully"}


@router.get("/test-cases/{test_case_id}")
async def get_test_case(test_case_id: int):
    test_case = await db.get_test_case(test_case_id)
    if not test_case:
        raise NotFoundError("Test case not found")
    return {"data": _one(TestCase, test_case)}


@router.put("/test-cases/{test_case_id}")
async def update_test_case(test_case_id: int, request: TestCaseUpdate):
    if not await db.get_test_case(test_case_id):
        raise NotFoundError("Test case not found")
    test_case = await db.update_test_case(test_case_id, _supplied(request))
    return {"data": _one(TestCase, test_case), "message": "Test case updated successfully"}


@router.delete("/test-cases/{test_case_id}")
async def delete_test_case(test_case_id: int):
    if not await db.delete_test_case(test_case_id):
        raise NotFoundError("Test case not found")
    return {"message": "Test case deleted successfully"}


# ===========================================================================
# Evaluator
# ===========================================================================

@router.get("/evaluator/rules")
async def list_evaluator_rules(include_all: bool = Query(False, alias="all")):
    rules = await db.list_evaluator_rules(include_inactive=include_all)
    return {"data": _many(EvaluatorRule, rules)}


@router.post("/evaluator/rules", status_code=201)
async def create_evaluator_rule(request: EvaluatorRuleCreate):
    if not request.name or not request.check_prompt:
        raise ValidationError("Name and check_prompt are required")
    rule = await db.create_evaluator_rule(
        name=request.name,
        check_prompt=request.check_prompt,
        description=request.description or None,
        priority=5 if request.priority is None else request.priority,
        is_active=True if request.is_active is None else request.is_active,
        category=request.category or None,
        knowledge_base_id=request.knowledge_base_id,
    )
    return {"data": _one(EvaluatorRule, rule), "message": "Rule created successfully"}


@router.put("/evaluator/rules")
async def update_evaluator_rule(request: EvaluatorRuleUpdate):
    if request.id is None:
        raise ValidationError("Rule ID is required")
    fields = _supplied(request)
    fields.pop("id", None)
    if not fields:
        raise ValidationError("No fields to update")
    if not await db.get_evaluator_rule(request.id):
        raise NotFoundError("Evaluator rule not found")
    rule = await db.update_evaluator_rule(request.id, fields)
    return {"data": _one(EvaluatorRule, rule), "message": "Rule updated successfully"}


@router.delete("/evaluator/rules")
async def delete_evaluator_rule(id: Optional[int] = None):
    if id is None:
        raise ValidationError("Rule ID is required")
    await db.delete_evaluator_rule(id)
    return {"message": "Rule deleted successfully"}


@router.post("/evaluator/evaluate")
async def evaluate_response(request: EvaluateRequest):
    require_fields({"emailThread": request.email_thread, "agentResponse": request.agent_response})
    evaluation = await EvaluatorService(db, llm_client).evaluate(
        request.email_thread, request.agent_response, request.expected_behavior
    )
    return {"data": dump_wire(evaluation)}


# ===========================================================================
# Playground: generate → suggest → apply
# ===========================================================================

@router.post("/generator/run")
async def run_generator(request: GenerateRequest):
    require_fields({
        "systemPrompt": request.system_prompt,
        "userPrompt": request.user_prompt,
        "emailThread": request.email_thread,
    })
    result = await GeneratorService(db, llm_client).run(
        request.system_prompt, request.user_prompt, request.email_thread
    )
    return {"data": dump_wire(result)}


@router.post("/suggestions")
async def generate_suggestions(request: SuggestionsRequest):
    require_fields({
        "emailThread": request.email_thread,
        "agentResponse": request.agent_response,
        "evaluation": request.evaluation,
    })
    suggestions = await SuggestionService(db, llm_client).suggest(
        request.email_thread, request.agent_response, request.evaluation
    )
    return {"data": dump_wire(suggestions)}


@router.post("/suggestions/apply")
async def apply_suggestion(request: ApplySuggestionRequest):
    step_category = request.step_category
    if not step_category and request.step_title:
        step_category = slugify_step_title(request.step_title)
    require_fields({
        "stepCategory": step_category,
        "questionTitle": request.question_title,
        "questionValue": request.question_value,
    })
    result = await KnowledgeService(db).apply_suggestion(
        type=request.type,
        step_title=request.step_title,
        step_category=step_category,
        question_title=request.question_title,
        question_value=request.question_value,
        prompt_version_id=request.prompt_version_id,
    )
    return {
        "data": dump_wire(result.entry),
        "message": result.message,
        "promptUpdated": result.prompt_updated,
    }


# ===========================================================================
# Test Results
# ===========================================================================

@router.get("/results")
async def list_test_results(test_case_id: Optional[int] = None, prompt_version_id: Optional[int] = None):
    results = await db.list_test_results(test_case_id, prompt_version_id)
    return {"data": _many(TestResult, results)}


@router.post("/results", status_code=201)
async def create_test_result(request: TestResultCreate):
    require_fields({"agent_response": request.agent_response})
    result = await db.create_test_result(request.model_dump(mode="json"))
    return {"data": _one(TestResult, result), "message": "Test result saved successfully"}


@router.get("/results/{result_id}")
async def get_test_result(result_id: int):
    result = await db.get_test_result(result_id)
    if not result:
        raise NotFoundError("Test result not found")
    return {"data": _one(TestResult, result)}
