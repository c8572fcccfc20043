"""
Pytest Configuration and Fixtures

Provides shared fixtures for both unit and integration tests.
"""

import pytest
from typing import AsyncGenerator
from unittest.mock import patch
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from tests.mocks.fake_llm import FakeCompletionClient


# ==============================================================================
# Database Service
# ==============================================================================

@pytest.fixture
def db_service(tmp_path):
    """A real SQLiteService backed by a throwaway file per test."""
    from src.api.sqlite_service import SQLiteService
    return SQLiteService(db_path=str(tmp_path / "optimizer-test.db"))


@pytest.fixture
def fake_llm():
    """Scripted completion client; queue replies before exercising a pipeline."""
    return FakeCompletionClient()


# ==============================================================================
# FastAPI Test Client Fixtures
# ==============================================================================

@pytest.fixture
def app_with_mocks(db_service, fake_llm):
    """Create a minimal FastAPI app wired to the test database and fake LLM.

    Note: We build a test app instead of importing the main app so the
    startup seeding does not run against the developer's database.
    """
    from fastapi import FastAPI
    from src.api.controllers import router
    from src.api.errors import register_exception_handlers

    with patch('src.api.controllers.db', db_service), \
         patch('src.api.controllers.llm_client', fake_llm):

        test_app = FastAPI(title="Test API")
        register_exception_handlers(test_app)
        test_app.include_router(router)

        @test_app.get("/")
        async def root():
            return {"message": "CS Agent Optimizer API", "docs": "/api/docs"}

        @test_app.get("/health")
        async def health():
            return {"status": "ok"}

        yield test_app, db_service, fake_llm


@pytest.fixture
def test_client(app_with_mocks):
    """Synchronous test client for simple endpoint tests."""
    app, _, _ = app_with_mocks
    with TestClient(app) as client:
        yield client


@pytest.fixture
async def async_client(app_with_mocks) -> AsyncGenerator[AsyncClient, None]:
    """Async test client for async endpoint tests."""
    app, _, _ = app_with_mocks
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ==============================================================================
# Sample Test Data Fixtures
# ==============================================================================

@pytest.fixture
def sample_email_thread():
    return (
        "From: jane@example.com\n"
        "Subject: Where is my order?\n\n"
        "Hi, I ordered a blue kettle two weeks ago and it still hasn't arrived. "
        "If it doesn't show up this week I want a refund."
    )


@pytest.fixture
def sample_prompt_request():
    """Sample prompt version creation request."""
    return {
        "name": "Baseline v1",
        "system_prompt": "You are a friendly support agent for Acme Kettles.",
        "user_prompt": "Write a reply to the customer.",
        "notes": "first draft",
    }


@pytest.fixture
def sample_test_case_request(sample_email_thread):
    """Sample test case creation request."""
    return {
        "name": "Late delivery with refund threat",
        "email_thread": sample_email_thread,
        "customer_email": "jane@example.com",
        "customer_name": "Jane",
        "subject": "Where is my order?",
        "expected_behavior": "Apologize, ask for the order number and escalate the refund request.",
        "tags": ["shipping", "refund"],
    }


@pytest.fixture
def sample_rule_request():
    """Sample evaluator rule creation request."""
    return {
        "name": "Escalation on Refund Keywords",
        "description": "Escalate refund requests",
        "check_prompt": "If the customer mentions a refund, did the agent escalate? PASS/FAIL.",
    }
