# config.py
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

logger = logging.getLogger(__name__)

load_dotenv(ENV_PATH)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Default LLM models
DIALOGUE_MODEL = os.getenv("DIALOGUE_MODEL", "gpt-4o-mini")   # guest turns + scenario/persona authoring
EVAL_MODEL = os.getenv("EVAL_MODEL", "gpt-4o-mini")           # per-turn ratings
FEEDBACK_MODEL = os.getenv("FEEDBACK_MODEL", "gpt-4o-mini")   # end-of-session assessment

# Seconds before a single model call is abandoned (surfaced as ModelUnavailable)
MODEL_TIMEOUT = float(os.getenv("MODEL_TIMEOUT", "30"))

# Number of most recent turns the model sees
HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "12"))

# Completion defaults for scenarios that don't configure their own
DEFAULT_MAX_TRAINEE_TURNS = int(os.getenv("MAX_TRAINEE_TURNS", "8"))
DEFAULT_SUCCESS_PHRASES = [
    p.strip() for p in os.getenv("SUCCESS_PHRASES", "").split(",") if p.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging(level: str = LOG_LEVEL) -> None:
    """
    Plain console logging for the CLI and the HTTP app.
    """
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s %(name)s :: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def get_chat_model(model: str, temperature: float) -> ChatOpenAI:
    """
    Build a chat model for the workflow. Retries are left to the caller,
    so the client is created with max_retries=0.
    """
    if not OPENAI_API_KEY:
        raise RuntimeError(
            "OPENAI_API_KEY not set.\n"
            "Create a .env file in the project root with:\n"
            "OPENAI_API_KEY=sk-...\n"
        )

    logger.debug("Building chat model %s (temperature=%s)", model, temperature)
    return ChatOpenAI(
        model=model,
        temperature=temperature,
        api_key=OPENAI_API_KEY,
        timeout=MODEL_TIMEOUT,
        max_retries=0,
    )
