"""
Dependency container for the mission backend.
Centralises environment configuration and the construction of shared services
(judge providers, the verification orchestrator) so blueprints and tasks never
build them ad hoc.
"""

import logging
import os

from dotenv import load_dotenv
from flask import current_app, has_app_context

from claude_service import ClaudeJudge, DEFAULT_CLAUDE_MODEL
from gemini_service import GeminiJudge, DEFAULT_GEMINI_MODEL
from verification import VerificationOrchestrator

load_dotenv()

# --- Environment variables ---
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///ecomission.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", REDIS_URL)

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", DEFAULT_GEMINI_MODEL)
CLAUDE_API_KEY = os.environ.get("CLAUDE_API_KEY")
CLAUDE_MODEL = os.environ.get("CLAUDE_MODEL", DEFAULT_CLAUDE_MODEL)

# Judge calls run inside the submit request, so keep them well under its deadline.
JUDGE_TIMEOUT_SECONDS = min(20.0, max(10.0, float(os.environ.get("JUDGE_TIMEOUT_SECONDS", "15"))))
EVIDENCE_FETCH_TIMEOUT_SECONDS = float(os.environ.get("EVIDENCE_FETCH_TIMEOUT_SECONDS", "10"))

DAILY_MISSION_COUNT = int(os.environ.get("DAILY_MISSION_COUNT", "5"))
STALE_SUBMISSION_MINUTES = int(os.environ.get("STALE_SUBMISSION_MINUTES", "30"))

# --- JWT Secret Key Management with rotation support ---
JWT_SECRET_KEYS = [
    os.environ.get("JWT_SECRET_KEY_CURRENT"),
    os.environ.get("JWT_SECRET_KEY_PREVIOUS"),
]
JWT_SECRET_KEYS = [key for key in JWT_SECRET_KEYS if key]
# Default to single key if rotation not configured
if not JWT_SECRET_KEYS and os.environ.get("JWT_SECRET_KEY"):
    JWT_SECRET_KEYS = [os.environ.get("JWT_SECRET_KEY")]


def build_judges():
    """Judge providers in priority order: Gemini first, Claude as the fallback."""
    judges = []
    if GEMINI_API_KEY:
        judges.append(GeminiJudge(GEMINI_API_KEY, model=GEMINI_MODEL, timeout_seconds=JUDGE_TIMEOUT_SECONDS))
    else:
        logging.warning("GEMINI_API_KEY is not set; primary judge disabled.")
    if CLAUDE_API_KEY:
        judges.append(ClaudeJudge(CLAUDE_API_KEY, model=CLAUDE_MODEL, timeout_seconds=JUDGE_TIMEOUT_SECONDS))
    else:
        logging.warning("CLAUDE_API_KEY is not set; secondary judge disabled.")
    return judges


_orchestrator = None


def get_verification_orchestrator():
    """
    The app-configured orchestrator when one was injected (tests), otherwise a
    process-wide instance built from the environment on first use.
    """
    global _orchestrator
    injected = current_app.config.get("VERIFICATION_ORCHESTRATOR") if has_app_context() else None
    if injected is not None:
        return injected
    if _orchestrator is None:
        _orchestrator = VerificationOrchestrator(build_judges(), fetch_timeout=EVIDENCE_FETCH_TIMEOUT_SECONDS)
        logging.info(f"Verification orchestrator ready with judges: {_orchestrator.provider_names}")
    return _orchestrator


def get_jwt_secret_keys():
    return current_app.config.get("JWT_SECRET_KEYS") or JWT_SECRET_KEYS
