"""Label matching: map one raw theme label onto at most one canonical category.

The cascade is fixed and evaluated in order, first hit wins:

1. exact      - normalized label equals a category name
2. substring  - label inside name/description, or name inside label;
                longest matched substring wins, lowest id on ties
3. group      - a keyword of a semantic group occurs in the label and an
                active category name contains the group key

Everything here is pure: no I/O, no randomness, no dependence on usage counts.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .config import MIN_SUBSTRING_LENGTH
from .constants import SEMANTIC_GROUPS
from .models import CanonicalCategory, LabelMatch
from .utils import _contains_keyword, _group_key_text, _normalize_label

STRATEGY_EXACT = "exact"
STRATEGY_SUBSTRING = "substring"
STRATEGY_GROUP = "group"


def match_exact(label: str, categories: list[CanonicalCategory]) -> LabelMatch | None:
    key = _normalize_label(label)
    if not key:
        return None
    for category in categories:
        if _normalize_label(category.name) == key:
            return LabelMatch(category.id, STRATEGY_EXACT, len(key))
    return None


def _substring_score(key: str, category: CanonicalCategory) -> int:
    name = _normalize_label(category.name)
    description = _normalize_label(category.description)
    score = 0
    if key in name or (description and key in description):
        score = len(key)
    if name and name in key:
        score = max(score, len(name))
    return score


def match_substring(label: str, categories: list[CanonicalCategory],
                    min_length: int = MIN_SUBSTRING_LENGTH) -> LabelMatch | None:
    key = _normalize_label(label)
    if len(key) < max(1, min_length):
        return None
    best: LabelMatch | None = None
    for category in categories:
        score = _substring_score(key, category)
        if score <= 0:
            continue
        if best is None or score > best.score or (score == best.score and category.id < best.category_id):
            best = LabelMatch(category.id, STRATEGY_SUBSTRING, score)
    return best


def match_group(label: str, categories: list[CanonicalCategory],
                groups: Mapping[str, Iterable[str]] = SEMANTIC_GROUPS) -> LabelMatch | None:
    key = _normalize_label(label)
    if not key:
        return None
    for group_key, keywords in groups.items():
        hit = next((kw for kw in keywords if _contains_keyword(key, kw)), None)
        if hit is None:
            continue
        group_text = _group_key_text(group_key)
        target = next(
            (c for c in sorted(categories, key=lambda c: c.id) if group_text in _normalize_label(c.name)),
            None,
        )
        if target is not None:
            return LabelMatch(target.id, STRATEGY_GROUP, len(_normalize_label(hit)))
    return None


class MatchingEngine:
    """Runs the exact -> substring -> group cascade against a fixed category list."""

    def __init__(self, categories: list[CanonicalCategory],
                 min_substring_length: int = MIN_SUBSTRING_LENGTH,
                 groups: Mapping[str, Iterable[str]] = SEMANTIC_GROUPS):
        self.categories = sorted((c for c in categories if c.active), key=lambda c: c.id)
        self.min_substring_length = min_substring_length
        self.groups = groups

    def match_detail(self, label: str) -> LabelMatch | None:
        if not self.categories:
            return None
        return (
            match_exact(label, self.categories)
            or match_substring(label, self.categories, self.min_substring_length)
            or match_group(label, self.categories, self.groups)
        )

    def match(self, label: str) -> int | None:
        result = self.match_detail(label)
        return result.category_id if result else None

    def match_all(self, labels: Iterable[str]) -> list[LabelMatch]:
        """Match every label, in order; unmatched labels contribute nothing."""
        matches = []
        for label in labels or []:
            result = self.match_detail(label)
            if result is not None:
                matches.append(result)
        return matches
