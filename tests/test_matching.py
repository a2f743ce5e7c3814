"""Tests for theme_balancer.matching."""

import pytest

from theme_balancer.matching import (
    STRATEGY_EXACT,
    STRATEGY_GROUP,
    STRATEGY_SUBSTRING,
    MatchingEngine,
    match_exact,
    match_group,
    match_substring,
)
from theme_balancer.models import CanonicalCategory


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def categories():
    return [
        CanonicalCategory(1, "Resilience"),
        CanonicalCategory(2, "Community"),
        CanonicalCategory(3, "Identity", description="Self-discovery and cultural roots"),
        CanonicalCategory(4, "Mental Health"),
        CanonicalCategory(5, "Health"),
    ]


@pytest.fixture
def engine(categories):
    return MatchingEngine(categories)


# ---------------------------------------------------------------------------
# Exact
# ---------------------------------------------------------------------------

class TestMatchExact:
    def test_case_insensitive(self, categories):
        result = match_exact("  RESILIENCE ", categories)
        assert result.category_id == 1
        assert result.strategy == STRATEGY_EXACT
        assert result.is_exact

    def test_whitespace_collapsed(self, categories):
        assert match_exact("mental   health", categories).category_id == 4

    def test_no_match(self, categories):
        assert match_exact("resilient", categories) is None

    def test_empty_label(self, categories):
        assert match_exact("   ", categories) is None


# ---------------------------------------------------------------------------
# Substring
# ---------------------------------------------------------------------------

class TestMatchSubstring:
    def test_name_inside_label(self, categories):
        result = match_substring("community support", categories)
        assert result.category_id == 2
        assert result.strategy == STRATEGY_SUBSTRING
        assert not result.is_exact

    def test_label_inside_name(self, categories):
        assert match_substring("resil", categories).category_id == 1

    def test_label_inside_description(self, categories):
        assert match_substring("cultural roots", categories).category_id == 3

    def test_longest_match_wins(self, categories):
        # "health" (6) and "mental health" (13) both occur in the label
        assert match_substring("mental health struggles", categories).category_id == 4

    def test_tie_goes_to_lowest_id(self):
        cats = [CanonicalCategory(7, "Hope"), CanonicalCategory(3, "Home")]
        assert match_substring("ho", cats, min_length=2).category_id == 3

    def test_short_label_skipped(self, categories):
        assert match_substring("co", categories) is None

    def test_min_length_configurable(self, categories):
        assert match_substring("co", categories, min_length=2).category_id == 2

    def test_no_match(self, categories):
        assert match_substring("xyz-unmatched", categories) is None


# ---------------------------------------------------------------------------
# Semantic groups
# ---------------------------------------------------------------------------

class TestMatchGroup:
    def test_keyword_maps_to_group_category(self, categories):
        result = match_group("inner strength", categories)
        assert result.category_id == 1
        assert result.strategy == STRATEGY_GROUP

    def test_underscore_group_key(self, categories):
        assert match_group("anxiety attacks", categories).category_id == 4

    def test_keyword_must_start_a_word(self, categories):
        groups = {"identity": ("self",)}
        assert match_group("by herself", categories, groups) is None
        assert match_group("finding my self", categories, groups).category_id == 3

    def test_inflected_keyword(self):
        engine = MatchingEngine([CanonicalCategory(1, "Resilience"), CanonicalCategory(2, "Community")])
        assert engine.match("strengthening bonds") == 1
        assert engine.match("supportive neighbours") == 2
        assert engine.match_detail("supportive neighbours").strategy == STRATEGY_GROUP

    def test_group_without_category_falls_through(self, categories):
        groups = {"creativity": ("art",), "community": ("neighborhood",)}
        assert match_group("art in the neighborhood", categories, groups).category_id == 2

    def test_groups_evaluated_in_order(self, categories):
        groups = {"community": ("support",), "resilience": ("support",)}
        assert match_group("support", categories, groups).category_id == 2

    def test_no_keyword(self, categories):
        assert match_group("totally unrelated phrase", categories) is None


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------

class TestMatchingEngine:
    def test_exact_before_substring(self, engine):
        # "health" is an exact name and also a substring of "mental health"
        result = engine.match_detail("Health")
        assert result.category_id == 5
        assert result.is_exact

    def test_substring_before_group(self, engine):
        # "support" is a community group keyword; the substring hit on Resilience wins
        assert engine.match_detail("resilience support").strategy == STRATEGY_SUBSTRING
        assert engine.match("resilience support") == 1

    def test_unmatched_returns_none(self, engine):
        assert engine.match("xyz-unmatched") is None

    def test_match_all_drops_unmatched(self, engine):
        matches = engine.match_all(["Resilience", "community support", "xyz-unmatched"])
        assert [m.category_id for m in matches] == [1, 2]
        assert [m.strategy for m in matches] == [STRATEGY_EXACT, STRATEGY_SUBSTRING]

    def test_inactive_categories_ignored(self):
        cats = [CanonicalCategory(1, "Resilience", active=False), CanonicalCategory(2, "Community")]
        engine = MatchingEngine(cats)
        assert engine.match("Resilience") is None

    def test_empty_taxonomy(self):
        assert MatchingEngine([]).match_all(["Resilience"]) == []

    def test_deterministic(self, engine):
        labels = ["strength", "Community", "mental health", "cultural roots"]
        assert engine.match_all(labels) == engine.match_all(list(labels))
