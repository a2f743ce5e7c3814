"""Tests for theme_balancer.taxonomy."""

import json

import pytest
import requests

from theme_balancer.constants import DEFAULT_THEMES
from theme_balancer.exceptions import TaxonomyUnavailable
from theme_balancer.models import CanonicalCategory
from theme_balancer.taxonomy import (
    JsonTaxonomyStore,
    StaticTaxonomyStore,
    _category_from_entry,
    load_active_categories,
    taxonomy_fingerprint,
    write_default_taxonomy,
)


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


class TestCategoryFromEntry:
    def test_basic(self):
        cat = _category_from_entry({"id": "4", "name": " Healing ", "group": "wellbeing"})
        assert cat == CanonicalCategory(4, "Healing", group="wellbeing")

    def test_status_field(self):
        assert not _category_from_entry({"id": 1, "name": "Old", "status": "retired"}).active
        assert _category_from_entry({"id": 1, "name": "New", "status": "Active"}).active

    def test_category_alias_for_group(self):
        assert _category_from_entry({"id": 1, "name": "Joy", "category": "emotion"}).group == "emotion"

    def test_invalid_entries(self):
        assert _category_from_entry({"id": 1, "name": ""}) is None
        assert _category_from_entry({"name": "No id"}) is None
        assert _category_from_entry({"id": "abc", "name": "Bad id"}) is None


class TestJsonTaxonomyStore:
    def test_load_active(self, tmp_path):
        path = _write(tmp_path / "tax.json", {
            "version": "3",
            "themes": [
                {"id": 2, "name": "Community"},
                {"id": 1, "name": "Resilience"},
                {"id": 3, "name": "Retired", "active": False},
            ],
        })
        store = JsonTaxonomyStore(path)
        active = store.list_active_categories()
        assert [c.id for c in active] == [1, 2]
        assert store.version == "3"

    def test_plain_list(self, tmp_path):
        path = _write(tmp_path / "tax.json", [{"id": 1, "name": "Hope"}])
        assert [c.name for c in JsonTaxonomyStore(path).list_active_categories()] == ["Hope"]

    def test_duplicate_ids_keep_first(self, tmp_path):
        path = _write(tmp_path / "tax.json", {"themes": [{"id": 1, "name": "A"}, {"id": 1, "name": "B"}]})
        assert [c.name for c in JsonTaxonomyStore(path).list_active_categories()] == ["A"]

    def test_reloads_on_every_call(self, tmp_path):
        path = _write(tmp_path / "tax.json", {"themes": [{"id": 1, "name": "A"}]})
        store = JsonTaxonomyStore(path)
        assert len(store.list_active_categories()) == 1
        _write(tmp_path / "tax.json", {"themes": [{"id": 1, "name": "A"}, {"id": 2, "name": "B"}]})
        assert len(store.list_active_categories()) == 2

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonTaxonomyStore(str(tmp_path / "missing.json")).list_active_categories() == []


class TestLoadActiveCategories:
    def test_sorted_and_filtered(self):
        store = StaticTaxonomyStore([
            CanonicalCategory(5, "E"), CanonicalCategory(1, "A"), CanonicalCategory(3, "C", active=False),
        ])
        assert [c.id for c in load_active_categories(store)] == [1, 5]

    def test_empty_taxonomy_unavailable(self):
        with pytest.raises(TaxonomyUnavailable):
            load_active_categories(StaticTaxonomyStore([]))

    def test_missing_file_unavailable(self, tmp_path):
        with pytest.raises(TaxonomyUnavailable):
            load_active_categories(JsonTaxonomyStore(str(tmp_path / "missing.json")))

    def test_invalid_json_unavailable(self, tmp_path):
        path = tmp_path / "tax.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(TaxonomyUnavailable):
            load_active_categories(JsonTaxonomyStore(str(path)))

    def test_network_error_unavailable(self):
        class Unreachable:
            def list_active_categories(self):
                raise requests.exceptions.ConnectionError("down")

        with pytest.raises(TaxonomyUnavailable, match="unreachable"):
            load_active_categories(Unreachable())


class TestFingerprint:
    def test_order_independent(self):
        a = [CanonicalCategory(1, "A"), CanonicalCategory(2, "B")]
        assert taxonomy_fingerprint(a) == taxonomy_fingerprint(list(reversed(a)))

    def test_changes_with_name(self):
        a = [CanonicalCategory(1, "A")]
        b = [CanonicalCategory(1, "A2")]
        assert taxonomy_fingerprint(a) != taxonomy_fingerprint(b)


class TestWriteDefaultTaxonomy:
    def test_writes_defaults(self, tmp_path):
        path = str(tmp_path / "tax.json")
        assert write_default_taxonomy(path) is True
        active = load_active_categories(JsonTaxonomyStore(path))
        assert len(active) == len(DEFAULT_THEMES)
        assert active[0].name == "Resilience"

    def test_does_not_overwrite(self, tmp_path):
        path = _write(tmp_path / "tax.json", {"themes": [{"id": 1, "name": "Custom"}]})
        assert write_default_taxonomy(path) is False
        assert [c.name for c in JsonTaxonomyStore(path).list_active_categories()] == ["Custom"]

    def test_overwrite(self, tmp_path):
        path = _write(tmp_path / "tax.json", {"themes": [{"id": 1, "name": "Custom"}]})
        assert write_default_taxonomy(path, overwrite=True) is True
        assert len(JsonTaxonomyStore(path).list_active_categories()) == len(DEFAULT_THEMES)

    def test_default_ids_unique(self):
        ids = [t["id"] for t in DEFAULT_THEMES]
        assert len(ids) == len(set(ids))
