"""Usage ledger: per-category assignment counts across the corpus."""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Iterable

from .config import log
from .models import UsageSnapshot


class UsageLedger:
    """Counts how many assignments reference each category.

    Snapshots are copies and never change; `commit` is the only writer and is
    serialized by a lock. Re-committing a record replaces its old contribution.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_record: dict[str, tuple[int, ...]] = {}
        self._counts: Counter = Counter()

    @classmethod
    def from_assignments(cls, rows: Iterable[dict]) -> UsageLedger:
        """Build from `read_existing_assignments()` rows ({record_id, category_ids, ...})."""
        ledger = cls()
        for row in rows or []:
            record_id = row.get("record_id")
            if record_id is None:
                continue
            ledger._apply(str(record_id), row.get("category_ids") or [])
        log.debug(f"Usage ledger built from {len(ledger._by_record)} assignments")
        return ledger

    def _apply(self, record_id: str, category_ids: Iterable[int]):
        new_ids = tuple(sorted({int(cid) for cid in category_ids}))
        old_ids = self._by_record.get(record_id, ())
        for cid in old_ids:
            self._counts[cid] -= 1
            if self._counts[cid] <= 0:
                del self._counts[cid]
        for cid in new_ids:
            self._counts[cid] += 1
        self._by_record[record_id] = new_ids

    def snapshot(self) -> UsageSnapshot:
        with self._lock:
            return UsageSnapshot(dict(self._counts))

    def commit(self, record_id: str, category_ids: Iterable[int]):
        with self._lock:
            self._apply(str(record_id), category_ids)

    def count(self, category_id: int) -> int:
        with self._lock:
            return self._counts.get(category_id, 0)

    def record_count(self) -> int:
        with self._lock:
            return len(self._by_record)
