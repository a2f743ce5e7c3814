"""Global configuration, logging setup, and shared state."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import re
from datetime import datetime, timezone

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

load_dotenv()
console = Console()

# --- File Paths ---
BASE_DIR = os.getenv("THEME_BALANCER_HOME", "").strip() or os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOG_FILE = os.getenv("LOG_FILE", "").strip() or os.path.join(BASE_DIR, "theme_balancer.jsonl")
STATE_DB_FILE = os.getenv("STATE_DB_FILE", "").strip() or os.path.join(BASE_DIR, "theme_state.db")
TAXONOMY_FILE = os.getenv("TAXONOMY_FILE", "").strip() or os.path.join(BASE_DIR, "taxonomy_themes.json")
LABELS_FILE = os.getenv("LABELS_FILE", "").strip() or os.path.join(BASE_DIR, "raw_labels.jsonl")

# --- Logging ---
# Console gets rich markup; the file gets one JSON object per line with the
# run/record context passed via `extra=`.
_MARKUP_RE = re.compile(r"\[/?[a-z_]+(?:\s[^\]]+)?\]")
_CONTEXT_KEYS = ("run_id", "record_id", "action", "status")


class _RunLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "msg": _MARKUP_RE.sub("", record.getMessage()),
        }
        entry.update({k: getattr(record, k) for k in _CONTEXT_KEYS if getattr(record, k, None) is not None})
        if record.exc_info and record.exc_info[1] is not None:
            entry["error"] = f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return json.dumps(entry, ensure_ascii=False, default=str)


_run_log_handler = logging.handlers.RotatingFileHandler(
    LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=3, encoding="utf-8",
)
_run_log_handler.setFormatter(_RunLogFormatter())

_LOG_LEVEL = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").strip().upper())

logging.basicConfig(
    level=_LOG_LEVEL if isinstance(_LOG_LEVEL, int) else logging.INFO,
    format="%(message)s",
    handlers=[
        RichHandler(console=console, show_path=False, markup=True, rich_tracebacks=True),
        _run_log_handler,
    ],
)
log = logging.getLogger("theme_balancer")

# --- Version ---
__version__ = "1.0.0"

# --- Balancing policy defaults ---
MIN_DIVERSITY = int(os.getenv("MIN_DIVERSITY", "2"))
MAX_CATEGORIES = int(os.getenv("MAX_CATEGORIES", "5"))
OVERUSE_THRESHOLD = int(os.getenv("OVERUSE_THRESHOLD", "10"))
MIN_SUBSTRING_LENGTH = int(os.getenv("MIN_SUBSTRING_LENGTH", "3"))

# --- Worker / Retry ---
COMPUTE_WORKERS = int(os.getenv("COMPUTE_WORKERS", "1"))
LIVE_COMMIT = os.getenv("LIVE_COMMIT", "0").strip().lower() in ("1", "true", "yes", "on")
COMMIT_RETRIES = int(os.getenv("COMMIT_RETRIES", "3"))
COMMIT_BACKOFF_BASE_SEC = float(os.getenv("COMMIT_BACKOFF_BASE_SEC", "0.5"))
COMMIT_BACKOFF_MAX_SEC = float(os.getenv("COMMIT_BACKOFF_MAX_SEC", "10"))
MAX_RETRIES = 3

# --- Story API (PostgREST-compatible backend) ---
STORY_API_URL = os.getenv("STORY_API_URL", "").strip()
STORY_API_KEY = os.getenv("STORY_API_KEY", "").strip()
STORY_API_TIMEOUT = int(os.getenv("STORY_API_TIMEOUT", "30"))

# --- Reporting ---
STATS_TOP_N = int(os.getenv("STATS_TOP_N", "5"))


def _validate_config():
    """Validate configuration at startup and warn about potential issues."""
    warnings = []
    if MAX_CATEGORIES < 1 or MAX_CATEGORIES > 20:
        warnings.append(f"MAX_CATEGORIES={MAX_CATEGORIES} outside sensible range (1-20)")
    if MIN_DIVERSITY < 0 or MIN_DIVERSITY > MAX_CATEGORIES:
        warnings.append(f"MIN_DIVERSITY={MIN_DIVERSITY} must be between 0 and MAX_CATEGORIES={MAX_CATEGORIES}")
    if OVERUSE_THRESHOLD < 0:
        warnings.append(f"OVERUSE_THRESHOLD={OVERUSE_THRESHOLD} must not be negative")
    if COMMIT_RETRIES < 1:
        warnings.append(f"COMMIT_RETRIES={COMMIT_RETRIES} - writes will not be attempted")
    if COMPUTE_WORKERS > 1 and LIVE_COMMIT:
        warnings.append("COMPUTE_WORKERS > 1 has no effect while LIVE_COMMIT is on (live runs are sequential)")
    if STORY_API_URL and not STORY_API_URL.startswith(("http://", "https://")):
        warnings.append(f"STORY_API_URL='{STORY_API_URL}' has no http(s):// prefix")
    for w in warnings:
        log.warning(f"[yellow]Config:[/yellow] {w}")
    return len(warnings) == 0


_validate_config()
