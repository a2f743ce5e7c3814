"""Utility functions: normalization, keyword lookup, retry."""

from __future__ import annotations

import functools
import logging
import random
import re
import time

_log = logging.getLogger("theme_balancer")


# ---------------------------------------------------------------------------
# Robustness utilities
# ---------------------------------------------------------------------------

def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retryable_exceptions: tuple = (ConnectionError, TimeoutError, OSError),
):
    """Decorator: retries a function with exponential backoff on transient errors."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exc = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as exc:
                    last_exc = exc
                    if attempt < max_retries - 1:
                        delay = min(max_delay, base_delay * (2 ** attempt) + random.uniform(0, base_delay))
                        _log.debug("Retry %d/%d for %s after %.1fs: %s",
                                   attempt + 1, max_retries, func.__name__, delay, exc)
                        time.sleep(delay)
                    else:
                        raise
            if last_exc:
                raise last_exc
        return wrapper
    return decorator


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------

def _build_id_name_map(categories) -> dict[int, str]:
    """Build {id: name} lookup dict from a list of categories."""
    return {int(c.id): str(c.name) for c in categories}


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------

def _normalize_text(value: str) -> str:
    return " ".join((value or "").strip().split())


def _normalize_label(value: str) -> str:
    """Case-insensitive comparison key: trimmed, whitespace collapsed, casefolded."""
    return _normalize_text(str(value or "")).casefold()


def _group_key_text(key: str) -> str:
    return _normalize_label(key.replace("_", " "))


@functools.lru_cache(maxsize=512)
def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(_normalize_label(keyword))}")


def _contains_keyword(text: str, keyword: str) -> bool:
    """True if keyword starts a word in the (normalized) text; inflected forms count."""
    if not text or not keyword:
        return False
    return _keyword_pattern(keyword).search(text) is not None


def _dedupe_keep_order(values) -> list:
    seen = set()
    out = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out
