"""Theme taxonomy: canonical categories loaded from taxonomy_themes.json or memory."""

from __future__ import annotations

import hashlib
import json
import os

import requests

from .config import log
from .constants import DEFAULT_TAXONOMY_VERSION, DEFAULT_THEMES
from .exceptions import TaxonomyUnavailable
from .models import CanonicalCategory
from .utils import _normalize_text


def _category_from_entry(entry: dict) -> CanonicalCategory | None:
    """Build a category from a JSON/API row; accepts `group` or `category`, `active` or `status`."""
    name = _normalize_text(str(entry.get("name", "")))
    if not name or entry.get("id") is None:
        return None
    try:
        cat_id = int(entry["id"])
    except (TypeError, ValueError):
        log.warning(f"Theme '{name}' has a non-integer id {entry.get('id')!r} - ignored")
        return None
    if "active" in entry:
        active = bool(entry.get("active"))
    else:
        active = str(entry.get("status", "active")).strip().lower() == "active"
    return CanonicalCategory(
        id=cat_id,
        name=name,
        group=_normalize_text(str(entry.get("group") or entry.get("category") or "")),
        description=_normalize_text(str(entry.get("description") or "")),
        active=active,
    )


class JsonTaxonomyStore:
    """Canonical themes loaded from a taxonomy JSON file."""

    def __init__(self, path: str):
        self.path = path
        self.version = ""
        self.categories: list[CanonicalCategory] = []

    def load(self):
        if not os.path.exists(self.path):
            self.categories = []
            log.warning(f"Taxonomy file not found: {self.path}")
            return
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        entries = data.get("themes", data.get("categories", [])) if isinstance(data, dict) else data
        by_id: dict[int, CanonicalCategory] = {}
        for entry in entries or []:
            if not isinstance(entry, dict):
                continue
            category = _category_from_entry(entry)
            if category is None:
                continue
            if category.id in by_id:
                log.warning(f"Duplicate theme id {category.id} in {self.path} - keeping '{by_id[category.id].name}'")
                continue
            by_id[category.id] = category
        self.version = str(data.get("version", "")) if isinstance(data, dict) else ""
        self.categories = [by_id[k] for k in sorted(by_id)]

    def list_active_categories(self) -> list[CanonicalCategory]:
        self.load()
        return [c for c in self.categories if c.active]


class StaticTaxonomyStore:
    """In-memory taxonomy, e.g. for tests or embedding in another service."""

    def __init__(self, categories):
        built = (c if isinstance(c, CanonicalCategory) else _category_from_entry(c) for c in categories)
        self.categories = sorted((c for c in built if c is not None), key=lambda c: c.id)

    def list_active_categories(self) -> list[CanonicalCategory]:
        return [c for c in self.categories if c.active]


def load_active_categories(store) -> list[CanonicalCategory]:
    """Fetch active categories sorted by id; raise TaxonomyUnavailable if none can be had."""
    try:
        categories = store.list_active_categories()
    except TaxonomyUnavailable:
        raise
    except (OSError, ValueError, requests.exceptions.RequestException) as exc:
        raise TaxonomyUnavailable(f"taxonomy store unreachable: {exc}") from exc

    active = sorted((c for c in categories or [] if c is not None and c.active), key=lambda c: c.id)
    if not active:
        raise TaxonomyUnavailable("taxonomy store returned no active categories")
    return active


def taxonomy_fingerprint(categories) -> str:
    """Stable hash of the category set; a run is bound to exactly one fingerprint."""
    payload = json.dumps(
        [c.to_dict() for c in sorted(categories, key=lambda c: c.id)],
        ensure_ascii=False,
        sort_keys=True,
    )
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


def write_default_taxonomy(path: str, overwrite: bool = False) -> bool:
    """Write the built-in theme taxonomy to path. Returns False if it already exists."""
    if os.path.exists(path) and not overwrite:
        log.info(f"Taxonomy file already exists: {path}")
        return False
    data = {
        "version": DEFAULT_TAXONOMY_VERSION,
        "themes": [dict(entry, active=True) for entry in DEFAULT_THEMES],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    log.info(f"[green]{len(DEFAULT_THEMES)} themes written[/green] to {path}")
    return True
