"""
Main FastAPI Application Entry Point

==============================================================================
FEATURES IMPLEMENTED IN THIS MODULE:
==============================================================================

1. SCHEMA BOOTSTRAP ON STARTUP
   - The SQLite schema is created if missing before the first request

2. AUTO-SEED DEFAULT DATA ON STARTUP (Feature: auto-seed)
   - ensure_default_evaluator_rules() seeds the built-in evaluator rules
   - ensure_default_wizard_steps() seeds the built-in wizard steps
   - Both only add rows that are missing; disabled with SEED_DEFAULTS=false
   - A seeding failure is logged and the server still starts

==============================================================================
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import logging
from .controllers import router
from .errors import register_exception_handlers
from . import config
from .sqlite_service import get_db_service

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# ==============================================================================
# LIFESPAN MANAGER (Feature: auto-seed)
# ==============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: initialize the database and seed defaults. Shutdown: log."""
    logger.info("Starting API server...")
    try:
        db = get_db_service()
        await db._ensure_initialized()

        if config.SEED_DEFAULTS:
            rules_seeded = await db.ensure_default_evaluator_rules()
            if rules_seeded > 0:
                logger.info(f"Seeded {rules_seeded} default evaluator rule(s)")

            steps_seeded = await db.ensure_default_wizard_steps()
            if steps_seeded > 0:
                logger.info(f"Seeded {steps_seeded} default wizard step(s)")
    except Exception as e:
        logger.error(f"Error during startup: {str(e)}")

    yield

    logger.info("API server shutting down...")


app = FastAPI(title=config.API_TITLE, docs_url="/api/docs", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(router)

@app.get("/")
async def root():
    return {"message": "CS Agent Optimizer API", "docs": "/api/docs"}

@app.get("/health")
async def health():
    return {"status": "ok"}

if __name__ == "__main__":
    uvicorn.run("src.api.main:app", host=config.API_HOST, port=config.API_PORT, reload=config.API_DEBUG)
