"""
Unit Tests for API Controllers/Endpoints

Tests the FastAPI endpoints against a throwaway SQLite database and a
scripted completion client.
"""

import pytest
from fastapi import status

from tests.mocks.fake_llm import FAILING_EVALUATION, PASSING_EVALUATION


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, test_client):
        """Root endpoint should return API info."""
        response = test_client.get("/")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert "message" in data
        assert "docs" in data

    def test_health_endpoint(self, test_client):
        """Health endpoint should return ok status."""
        response = test_client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "ok"


class TestKnowledgeEndpoints:

    def test_create_and_get_entry(self, test_client):
        response = test_client.post("/api/knowledge", json={
            "category": "policies", "key": "returns", "value": "30 days", "display_title": "Returns",
        })

        assert response.status_code == status.HTTP_201_CREATED
        entry = response.json()["data"]
        assert entry["sort_order"] == 0

        fetched = test_client.get(f"/api/knowledge/{entry['id']}")
        assert fetched.status_code == status.HTTP_200_OK
        assert fetched.json()["data"]["value"] == "30 days"

    def test_create_missing_fields(self, test_client):
        response = test_client.post("/api/knowledge", json={"category": "policies"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "Missing required fields: key, value"

    def test_duplicate_entry_is_409(self, test_client):
        body = {"category": "policies", "key": "returns", "value": "30 days"}
        test_client.post("/api/knowledge", json=body)

        response = test_client.post("/api/knowledge", json=body)

        assert response.status_code == status.HTTP_409_CONFLICT
        assert "error" in response.json()

    def test_filter_by_category(self, test_client):
        test_client.post("/api/knowledge", json={"category": "policies", "key": "a", "value": "1"})
        test_client.post("/api/knowledge", json={"category": "tone", "key": "b", "value": "2"})

        response = test_client.get("/api/knowledge", params={"category": "tone"})

        assert [e["key"] for e in response.json()["data"]] == ["b"]

    def test_partial_update(self, test_client):
        entry = test_client.post("/api/knowledge", json={
            "category": "policies", "key": "returns", "value": "30 days",
        }).json()["data"]

        response = test_client.put(f"/api/knowledge/{entry['id']}", json={"value": "60 days"})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["value"] == "60 days"
        assert data["key"] == "returns"
        assert response.json()["message"] == "Knowledge entry updated successfully"

    def test_missing_entry_is_404(self, test_client):
        assert test_client.get("/api/knowledge/999").status_code == status.HTTP_404_NOT_FOUND
        assert test_client.put("/api/knowledge/999", json={"value": "x"}).status_code == status.HTTP_404_NOT_FOUND
        response = test_client.delete("/api/knowledge/999")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"error": "Knowledge entry not found"}


class TestPromptEndpoints:

    def test_create_inactive_by_default(self, test_client, sample_prompt_request):
        response = test_client.post("/api/prompts", json=sample_prompt_request)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["data"]["is_active"] is False

    def test_create_active_deactivates_others(self, test_client, sample_prompt_request):
        first = test_client.post("/api/prompts", json={**sample_prompt_request, "is_active": True}).json()["data"]
        second = test_client.post("/api/prompts", json={**sample_prompt_request, "name": "v2", "is_active": True}).json()["data"]

        prompts = {p["id"]: p for p in test_client.get("/api/prompts").json()["data"]}
        assert prompts[first["id"]]["is_active"] is False
        assert prompts[second["id"]]["is_active"] is True

    def test_activate_endpoint(self, test_client, sample_prompt_request):
        a = test_client.post("/api/prompts", json=sample_prompt_request).json()["data"]
        b = test_client.post("/api/prompts", json={**sample_prompt_request, "name": "v2"}).json()["data"]

        test_client.post(f"/api/prompts/{a['id']}/activate")
        response = test_client.post(f"/api/prompts/{b['id']}/activate")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["message"] == "Prompt version activated successfully"
        active = [p["id"] for p in test_client.get("/api/prompts").json()["data"] if p["is_active"]]
        assert active == [b["id"]]

    def test_activate_missing_is_404(self, test_client):
        response = test_client.post("/api/prompts/999/activate")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_update_and_delete(self, test_client, sample_prompt_request):
        prompt = test_client.post("/api/prompts", json=sample_prompt_request).json()["data"]

        updated = test_client.put(f"/api/prompts/{prompt['id']}", json={"notes": "tweaked"})
        assert updated.json()["data"]["notes"] == "tweaked"
        assert updated.json()["data"]["system_prompt"] == sample_prompt_request["system_prompt"]

        assert test_client.delete(f"/api/prompts/{prompt['id']}").status_code == status.HTTP_200_OK
        assert test_client.get(f"/api/prompts/{prompt['id']}").status_code == status.HTTP_404_NOT_FOUND


class TestTestCaseEndpoints:

    def test_create_with_tags(self, test_client, sample_test_case_request):
        response = test_client.post("/api/test-cases", json=sample_test_case_request)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["data"]["tags"] == ["shipping", "refund"]

    def test_filter_by_tag(self, test_client, sample_test_case_request):
        test_client.post("/api/test-cases", json=sample_test_case_request)
        test_client.post("/api/test-cases", json={"name": "other", "email_thread": "hi", "tags": ["tone"]})

        response = test_client.get("/api/test-cases", params={"tag": "tone"})

        assert [c["name"] for c in response.json()["data"]] == ["other"]

    def test_missing_email_thread(self, test_client):
        response = test_client.post("/api/test-cases", json={"name": "no thread"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_wrong_type_is_400(self, test_client):
        response = test_client.post("/api/test-cases", json={"name": "x", "email_thread": "y", "tags": "refund"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "tags" in response.json()["error"]

    def test_delete_cascades_to_results(self, test_client, sample_test_case_request):
        case = test_client.post("/api/test-cases", json=sample_test_case_request).json()["data"]
        test_client.post("/api/results", json={"test_case_id": case["id"], "agent_response": "Hi"})
        test_client.post("/api/results", json={"test_case_id": case["id"], "agent_response": "Hello"})

        test_client.delete(f"/api/test-cases/{case['id']}")

        assert test_client.get("/api/results").json()["data"] == []


class TestEvaluatorRuleEndpoints:

    def test_create_applies_defaults(self, test_client, sample_rule_request):
        response = test_client.post("/api/evaluator/rules", json=sample_rule_request)

        assert response.status_code == status.HTTP_201_CREATED
        rule = response.json()["data"]
        assert rule["priority"] == 5
        assert rule["is_active"] is True

    def test_create_requires_name_and_check_prompt(self, test_client):
        response = test_client.post("/api/evaluator/rules", json={"name": "x"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "Name and check_prompt are required"}

    def test_duplicate_name_is_409(self, test_client, sample_rule_request):
        test_client.post("/api/evaluator/rules", json=sample_rule_request)
        response = test_client.post("/api/evaluator/rules", json=sample_rule_request)
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_list_active_only_unless_all(self, test_client, sample_rule_request):
        test_client.post("/api/evaluator/rules", json=sample_rule_request)
        test_client.post("/api/evaluator/rules", json={"name": "Off", "check_prompt": "c", "is_active": False})

        assert len(test_client.get("/api/evaluator/rules").json()["data"]) == 1
        assert len(test_client.get("/api/evaluator/rules", params={"all": "true"}).json()["data"]) == 2

    def test_update_requires_id(self, test_client):
        response = test_client.put("/api/evaluator/rules", json={"name": "x"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "Rule ID is required"

    def test_update_requires_a_field(self, test_client, sample_rule_request):
        rule = test_client.post("/api/evaluator/rules", json=sample_rule_request).json()["data"]

        response = test_client.put("/api/evaluator/rules", json={"id": rule["id"]})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "No fields to update"

    def test_update_unknown_id_is_404(self, test_client):
        response = test_client.put("/api/evaluator/rules", json={"id": 999, "priority": 1})
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_update_only_supplied_fields(self, test_client, sample_rule_request):
        rule = test_client.post("/api/evaluator/rules", json=sample_rule_request).json()["data"]

        response = test_client.put("/api/evaluator/rules", json={"id": rule["id"], "is_active": False})

        data = response.json()["data"]
        assert data["is_active"] is False
        assert data["check_prompt"] == sample_rule_request["check_prompt"]
        assert data["priority"] == 5

    def test_delete(self, test_client, sample_rule_request):
        rule = test_client.post("/api/evaluator/rules", json=sample_rule_request).json()["data"]

        response = test_client.delete("/api/evaluator/rules", params={"id": rule["id"]})
        assert response.json() == {"message": "Rule deleted successfully"}

        # deleting again still reports success
        again = test_client.delete("/api/evaluator/rules", params={"id": rule["id"]})
        assert again.status_code == status.HTTP_200_OK

    def test_delete_requires_id(self, test_client):
        assert test_client.delete("/api/evaluator/rules").status_code == status.HTTP_400_BAD_REQUEST


class TestPlaygroundEndpoints:

    def test_generate(self, app_with_mocks, test_client):
        _, db, fake_llm = app_with_mocks
        test_client.post("/api/knowledge", json={"category": "refund_handling", "key": "who", "value": "billing"})
        fake_llm.queue("Dear Jane,\n\nSorry for the delay.\n\nBest,\nAcme")

        response = test_client.post("/api/generator/run", json={
            "systemPrompt": "You are Acme support.",
            "userPrompt": "Reply to this email.",
            "emailThread": "Where is my kettle?",
        })

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["response"].startswith("Dear Jane")
        assert data["model"] == "fake-model"
        assert set(data["usage"]) == {"inputTokens", "outputTokens"}
        assert "### Refund Handling\n- **who**: billing" in fake_llm.last_system_prompt
        assert fake_llm.last_user_message == "Reply to this email.\n\nEmail Thread:\nWhere is my kettle?"

    def test_generate_missing_fields(self, test_client):
        response = test_client.post("/api/generator/run", json={"systemPrompt": "x"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "Missing required fields: userPrompt, emailThread"

    def test_generate_upstream_failure_is_500(self, app_with_mocks, test_client):
        _, _, fake_llm = app_with_mocks
        fake_llm.queue(RuntimeError("model overloaded"))

        response = test_client.post("/api/generator/run", json={
            "systemPrompt": "s", "userPrompt": "u", "emailThread": "t",
        })

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "Failed to generate response: model overloaded"}

    def test_evaluate(self, app_with_mocks, test_client):
        _, _, fake_llm = app_with_mocks
        fake_llm.queue_json(PASSING_EVALUATION)

        response = test_client.post("/api/evaluator/evaluate", json={
            "emailThread": "t", "agentResponse": "r", "expectedBehavior": "escalate",
        })

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["score"] == 92
        assert data["ruleChecks"]["Escalation on Refund Keywords"]["passed"] is True

    def test_evaluate_invalid_judge_reply_is_500(self, app_with_mocks, test_client):
        _, _, fake_llm = app_with_mocks
        fake_llm.queue("not json at all")

        response = test_client.post("/api/evaluator/evaluate", json={"emailThread": "t", "agentResponse": "r"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error"].startswith("Failed to evaluate response")

    def test_evaluate_overflowing_score_is_500(self, app_with_mocks, test_client):
        _, _, fake_llm = app_with_mocks
        fake_llm.queue('{"score": 1e999, "reasoning": "", "ruleChecks": {}}')

        response = test_client.post("/api/evaluator/evaluate", json={"emailThread": "t", "agentResponse": "r"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error"].startswith("Failed to evaluate response")

    def test_suggestions_soft_degrade(self, app_with_mocks, test_client):
        _, _, fake_llm = app_with_mocks
        fake_llm.queue("I think you should add more rules.")

        response = test_client.post("/api/suggestions", json={
            "emailThread": "t", "agentResponse": "r", "evaluation": FAILING_EVALUATION,
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == {
            "suggestions": [], "summary": "Unable to generate suggestions at this time.",
        }

    def test_suggestions_require_evaluation(self, test_client):
        response = test_client.post("/api/suggestions", json={"emailThread": "t", "agentResponse": "r"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "Missing required fields: evaluation"

    def test_apply_requires_fields(self, test_client):
        response = test_client.post("/api/suggestions/apply", json={"type": "add_to_existing"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "Missing required fields: stepCategory, questionTitle, questionValue"

    def test_apply_derives_category_from_title(self, test_client):
        response = test_client.post("/api/suggestions/apply", json={
            "type": "new_step",
            "stepTitle": "Shipping Delays",
            "questionTitle": "Carrier",
            "questionValue": "We only ship with DHL.",
        })

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["data"]["category"] == "shipping_delays"
        assert body["promptUpdated"] is False
        assert body["message"] == 'Created new step "Shipping Delays" with entry "Carrier"'

        steps = test_client.get("/api/wizard-steps").json()["data"]
        assert [s["category"] for s in steps] == ["shipping_delays"]

    def test_wizard_status(self, test_client):
        test_client.post("/api/wizard-steps", json={"title": "Basics", "category": "basics"})
        test_client.post("/api/wizard-steps", json={"title": "Policy", "category": "policy"})
        test_client.post("/api/knowledge", json={"category": "basics", "key": "name", "value": "Acme"})

        response = test_client.get("/api/wizard/status")

        data = response.json()["data"]
        assert data["totalSteps"] == 2
        assert data["completedSteps"] == 2
        assert data["percentComplete"] == 100
        assert data["isComplete"] is True

    def test_duplicate_wizard_step_is_409(self, test_client):
        test_client.post("/api/wizard-steps", json={"title": "Basics", "category": "basics"})
        response = test_client.post("/api/wizard-steps", json={"title": "Other", "category": "basics"})
        assert response.status_code == status.HTTP_409_CONFLICT


class TestResultEndpoints:

    def test_save_and_filter(self, test_client, sample_test_case_request, sample_prompt_request):
        case = test_client.post("/api/test-cases", json=sample_test_case_request).json()["data"]
        prompt = test_client.post("/api/prompts", json=sample_prompt_request).json()["data"]

        saved = test_client.post("/api/results", json={
            "test_case_id": case["id"],
            "prompt_version_id": prompt["id"],
            "agent_response": "Dear Jane, ...",
            "evaluator_score": 72,
            "evaluator_reasoning": "Decent",
            "rule_checks": {"Tone": {"passed": True, "reasoning": "warm"}},
        })

        assert saved.status_code == status.HTTP_201_CREATED
        result = saved.json()["data"]
        assert result["rule_checks"]["Tone"]["passed"] is True
        assert result["test_case_name"] == sample_test_case_request["name"]

        listed = test_client.get("/api/results", params={"prompt_version_id": prompt["id"]}).json()["data"]
        assert [r["id"] for r in listed] == [result["id"]]
        assert test_client.get("/api/results", params={"test_case_id": 999}).json()["data"] == []

    def test_score_out_of_range_is_400(self, test_client):
        response = test_client.post("/api/results", json={"agent_response": "x", "evaluator_score": 101})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_unknown_test_case_is_400(self, test_client):
        response = test_client.post("/api/results", json={"agent_response": "x", "test_case_id": 42})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_get_missing_result_is_404(self, test_client):
        response = test_client.get("/api/results/999")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"error": "Test result not found"}


class TestAPIDocumentation:
    """Tests for API documentation endpoints."""

    def test_openapi_json_available(self, test_client):
        response = test_client.get("/openapi.json")

        assert response.status_code == status.HTTP_200_OK
        paths = response.json()["paths"]
        for path in ("/api/generator/run", "/api/suggestions", "/api/suggestions/apply", "/api/wizard/status"):
            assert path in paths
