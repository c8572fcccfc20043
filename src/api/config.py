"""
Configuration Module

Loads environment variables and provides configuration constants for the API.
Works against a local SQLite file and any OpenAI-compatible chat endpoint
(Ollama, OpenAI, Anthropic's compatibility layer, ...).

==============================================================================
FEATURES CONFIGURED IN THIS MODULE:
==============================================================================

1. COMPLETION ENDPOINT (Feature: playground)
   - LLM_BASE_URL / LLM_API_KEY / LLM_MODEL select the model used for
     generating agent replies, judging them and proposing suggestions
   - LLM_MAX_TOKENS caps each completion

2. DEFAULT DATA (Feature: auto-seed)
   - SEED_DEFAULTS toggles seeding of the built-in evaluator rules and
     wizard steps on startup

==============================================================================
"""

import os
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# SQLite (local database)
SQLITE_DB_PATH = os.getenv("SQLITE_DB_PATH", os.path.join(os.path.dirname(__file__), "..", "..", "data", "optimizer.db"))

# API
API_TITLE = os.getenv("API_TITLE", "CS Agent Optimizer API")
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
API_DEBUG = os.getenv("API_DEBUG", "false").lower() == "true"

# CORS
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# LLM Configuration (local Ollama or any OpenAI-compatible endpoint)
# Key resolution order: LLM_API_KEY → OPENAI_API_KEY → "ollama" (no-auth fallback)
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "http://localhost:11434/v1")
LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or "ollama"
LLM_MODEL = os.getenv("LLM_MODEL", "qwen3-coder:latest")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "4096"))

# Seed built-in evaluator rules and wizard steps on startup
SEED_DEFAULTS = os.getenv("SEED_DEFAULTS", "true").lower() == "true"
