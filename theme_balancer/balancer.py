"""Diversity balancing: cap, anti-concentration and deterministic backfill per record."""

from __future__ import annotations

from .models import BalancePolicy, CanonicalCategory, LabelMatch, UsageSnapshot
from .utils import _dedupe_keep_order


class DiversityBalancer:
    """Turns matched candidates into the final category set for one record.

    Steps, in order:
      1. dedupe (emission order) and keep the first `max_categories`
      2. drop overused candidates, except exact matches
      3. backfill up to `min_diversity`, ordered by (usage count, id)
      4. if still empty, keep the first dropped overused candidate
    """

    def __init__(self, categories: list[CanonicalCategory], policy: BalancePolicy | None = None):
        self.categories = sorted((c for c in categories if c.active), key=lambda c: c.id)
        self.active_ids = {c.id for c in self.categories}
        self.policy = policy or BalancePolicy()

    def _backfill_pool(self, selected: list[int], snapshot: UsageSnapshot) -> list[int]:
        threshold = self.policy.overuse_threshold
        remaining = [c.id for c in self.categories if c.id not in selected]
        pool = [cid for cid in remaining if snapshot.count(cid) < threshold]
        if not pool:
            pool = remaining
        return sorted(pool, key=lambda cid: (snapshot.count(cid), cid))

    def balance(self, candidates: list[LabelMatch], snapshot: UsageSnapshot) -> list[int]:
        policy = self.policy

        exact_ids = {m.category_id for m in candidates if m.is_exact}
        ordered = _dedupe_keep_order(m.category_id for m in candidates if m.category_id in self.active_ids)
        ordered = ordered[:policy.max_categories]

        selected = []
        demoted = []
        for cid in ordered:
            if cid not in exact_ids and snapshot.is_overused(cid, policy.overuse_threshold):
                demoted.append(cid)
            else:
                selected.append(cid)

        if len(selected) < policy.min_diversity:
            for cid in self._backfill_pool(selected, snapshot):
                if len(selected) >= policy.min_diversity:
                    break
                selected.append(cid)

        if not selected and demoted:
            selected.append(demoted[0])

        return selected[:policy.max_categories]
