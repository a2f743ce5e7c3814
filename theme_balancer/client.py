"""REST client for a PostgREST-compatible story backend (themes, labels, assignments)."""

from __future__ import annotations

import random
import time
from datetime import datetime

import requests

from .config import MAX_RETRIES, STORY_API_TIMEOUT, log
from .exceptions import PersistenceWriteFailure
from .labels import _clean_labels
from .models import CanonicalCategory
from .taxonomy import _category_from_entry


class StoryApiClient:
    """Taxonomy store, label source and persistence backed by the story database REST API.

    Tables: `themes` (id, name, category, description, status),
    `theme_labels` (record_id, labels), `theme_assignments`
    (record_id, category_ids, source_labels, run_id, created_at).
    """

    PAGE_SIZE = 1000

    def __init__(self, url: str, api_key: str, timeout: int = STORY_API_TIMEOUT):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def _endpoint(self, table: str) -> str:
        return f"{self.url}/rest/v1/{table}"

    def _get_with_retry(self, url: str, params: dict) -> list:
        last_exc = None
        for attempt in range(MAX_RETRIES):
            try:
                resp = self.session.get(url, params=params, timeout=self.timeout)
                resp.raise_for_status()
                return resp.json()
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                last_exc = exc
                if attempt < MAX_RETRIES - 1:
                    backoff = min(30, (2 ** attempt) + random.uniform(0, 1))
                    log.debug("GET %s failed (%s), retry in %.1fs", url, exc, backoff)
                    time.sleep(backoff)
                    continue
                raise
        if last_exc:
            raise last_exc
        raise RuntimeError(f"GET failed: {url}")

    def _get_all(self, table: str, params: dict) -> list:
        """Load all rows with limit/offset pagination."""
        results = []
        offset = 0
        while True:
            page = self._get_with_retry(
                self._endpoint(table),
                dict(params, limit=self.PAGE_SIZE, offset=offset),
            )
            results.extend(page or [])
            if not page or len(page) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE
        return results

    # --- Taxonomy ---
    def list_active_categories(self) -> list[CanonicalCategory]:
        rows = self._get_all("themes", {
            "select": "id,name,category,description,status",
            "status": "eq.active",
            "order": "id.asc",
        })
        categories = [_category_from_entry(row) for row in rows]
        return [c for c in categories if c is not None and c.active]

    # --- Labels ---
    def list_record_ids(self) -> list[str]:
        rows = self._get_all("theme_labels", {"select": "record_id", "order": "record_id.asc"})
        return [str(row["record_id"]) for row in rows if row.get("record_id") is not None]

    def get_raw_labels(self, record_id: str) -> list[str]:
        rows = self._get_with_retry(self._endpoint("theme_labels"), {
            "select": "labels",
            "record_id": f"eq.{record_id}",
            "limit": 1,
        })
        if not rows:
            return []
        return _clean_labels(rows[0].get("labels"))

    # --- Assignments ---
    def write_assignment(self, record_id: str, category_ids: list[int], source_labels: list[str],
                         run_id: int | None):
        """Upsert on record_id (merge-duplicates), so replays overwrite instead of duplicating."""
        payload = {
            "record_id": str(record_id),
            "category_ids": sorted(int(c) for c in category_ids),
            "source_labels": list(source_labels),
            "run_id": run_id,
            "created_at": datetime.now().isoformat(timespec="seconds"),
        }
        try:
            resp = self.session.post(
                self._endpoint("theme_assignments"),
                params={"on_conflict": "record_id"},
                json=payload,
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise PersistenceWriteFailure(f"could not write assignment for {record_id}: {exc}",
                                          record_id=str(record_id)) from exc

    def read_existing_assignments(self) -> list[dict]:
        rows = self._get_all("theme_assignments", {
            "select": "record_id,category_ids,source_labels",
            "order": "record_id.asc",
        })
        return [
            {
                "record_id": str(row["record_id"]),
                "category_ids": [int(c) for c in row.get("category_ids") or []],
                "source_labels": list(row.get("source_labels") or []),
            }
            for row in rows
            if row.get("record_id") is not None
        ]
