"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- Admin auth ---
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "change-me")
JWT_SECRET = os.getenv("JWT_SECRET", "kingdom-quiz-dev-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_HOURS = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))

# --- Participants ---
MIN_NAME_LENGTH = int(os.getenv("MIN_NAME_LENGTH", "2"))
MAX_NAME_LENGTH = int(os.getenv("MAX_NAME_LENGTH", "255"))
MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "4"))
MAX_PASSWORD_LENGTH = 255
LEADERBOARD_SIZE = int(os.getenv("LEADERBOARD_SIZE", "10"))

# --- Questions ---
DEFAULT_QUESTION_POINTS = int(os.getenv("DEFAULT_QUESTION_POINTS", "10"))
QUESTIONS_FILE = os.getenv("QUESTIONS_FILE", "")  # optional JSON seed

# --- Elimination voting ---
VOTING_WINDOW_SECONDS = int(os.getenv("VOTING_WINDOW_SECONDS", "60"))
ELIMINATION_PENALTY = int(os.getenv("ELIMINATION_PENALTY", "1"))

# --- Ranked polls ---
DEFAULT_POLL_TIME_LIMIT = int(os.getenv("DEFAULT_POLL_TIME_LIMIT", "300"))  # seconds
MIN_POLL_TIME_LIMIT = int(os.getenv("MIN_POLL_TIME_LIMIT", "60"))
POLL_ELIMINATION_COUNT = int(os.getenv("POLL_ELIMINATION_COUNT", "3"))
STRICT_POLL_RANKINGS = _env_bool("STRICT_POLL_RANKINGS")

# --- WebSocket ---
MAX_WS_MESSAGE_SIZE = int(os.getenv("MAX_WS_MESSAGE_SIZE", "4096"))  # bytes

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
