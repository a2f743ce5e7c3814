"""Tests for theme_balancer.db (LocalStateDB)."""

import sqlite3

import pytest

from theme_balancer.db import LocalStateDB
from theme_balancer.exceptions import PersistenceWriteFailure


@pytest.fixture
def db(tmp_path):
    """Create a fresh LocalStateDB in a temp directory."""
    db_path = str(tmp_path / "test_state.db")
    return LocalStateDB(db_path)


def _start(db, mode="fresh", dry_run=False):
    return db.start_run(mode, dry_run, False, {"min_diversity": 2}, "abc123", "2024.1", {"1": 4})


def _row(db, record_id):
    return next((r for r in db.read_existing_assignments() if r["record_id"] == record_id), None)


# ---------------------------------------------------------------------------
# Schema & indexes
# ---------------------------------------------------------------------------

class TestSchema:
    def test_tables_created(self, db):
        conn = sqlite3.connect(db.db_path)
        tables = {row[0] for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()}
        conn.close()
        assert "runs" in tables
        assert "assignments" in tables
        assert "record_events" in tables

    def test_indexes_created(self, db):
        conn = sqlite3.connect(db.db_path)
        indexes = {row[1] for row in conn.execute(
            "SELECT * FROM sqlite_master WHERE type='index'"
        ).fetchall()}
        conn.close()
        expected = {
            "idx_assignments_run_id",
            "idx_record_events_run_id", "idx_record_events_record_id", "idx_record_events_status",
        }
        assert expected.issubset(indexes)

    def test_reopen_keeps_data(self, db):
        db.write_assignment("r1", [1], ["a"], None)
        again = LocalStateDB(db.db_path)
        assert _row(again, "r1")["category_ids"] == [1]


# ---------------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------------

class TestRuns:
    def test_start_and_finish(self, db):
        run_id = _start(db, dry_run=True)
        assert isinstance(run_id, int)
        assert run_id > 0

        db.finish_run(run_id, {"processed": 5})
        run = db.get_run(run_id)
        assert run["mode"] == "fresh"
        assert run["dry_run"] == 1
        assert run["status"] == "completed"
        assert run["ended_at"] is not None
        assert run["summary"] == {"processed": 5}

    def test_stored_context_decoded(self, db):
        run = db.get_run(_start(db))
        assert run["policy"] == {"min_diversity": 2}
        assert run["snapshot"] == {"1": 4}
        assert run["taxonomy_fingerprint"] == "abc123"
        assert run["groups_version"] == "2024.1"
        assert run["status"] == "running"
        assert run["summary"] == {}

    def test_multiple_runs(self, db):
        id1 = _start(db)
        id2 = _start(db, mode="reassign")
        assert id2 > id1

    def test_list_runs_newest_first(self, db):
        id1 = _start(db)
        id2 = _start(db)
        db.finish_run(id1, {"processed": 3}, status="interrupted")
        runs = db.list_runs(limit=10)
        assert [r["id"] for r in runs] == [id2, id1]
        assert runs[1]["status"] == "interrupted"
        assert runs[1]["summary"]["processed"] == 3

    def test_list_runs_limit(self, db):
        for _ in range(5):
            _start(db)
        assert len(db.list_runs(limit=2)) == 2

    def test_unknown_run(self, db):
        assert db.get_run(999) is None

    def test_checkpoint(self, db):
        run_id = _start(db)
        db.save_checkpoint(run_id, "r1")
        db.save_checkpoint(run_id, "r2")
        assert db.get_run(run_id)["last_committed_record"] == "r2"


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

class TestAssignments:
    def test_write_and_read(self, db):
        db.write_assignment("r1", [3, 1], ["hope", "grief"], 7)
        row = _row(db, "r1")
        assert row["category_ids"] == [1, 3]
        assert row["source_labels"] == ["hope", "grief"]
        assert row["run_id"] == 7

    def test_upsert_replaces(self, db):
        db.write_assignment("r1", [1, 2], ["a"], 1)
        db.write_assignment("r1", [5], ["b"], 2)
        rows = db.read_existing_assignments()
        assert len(rows) == 1
        assert rows[0]["category_ids"] == [5]
        assert rows[0]["run_id"] == 2

    def test_replay_is_idempotent(self, db):
        for _ in range(3):
            db.write_assignment("r1", [1, 2], ["a"], 1)
        assert len(db.read_existing_assignments()) == 1

    def test_empty_category_set(self, db):
        db.write_assignment("r1", [], ["a"], None)
        assert _row(db, "r1")["category_ids"] == []

    def test_read_existing_ordered(self, db):
        for record_id in ("c", "a", "b"):
            db.write_assignment(record_id, [1], [], None)
        assert [r["record_id"] for r in db.read_existing_assignments()] == ["a", "b", "c"]

    def test_missing_assignment(self, db):
        assert _row(db, "nope") is None

    def test_unicode_labels(self, db):
        db.write_assignment("r1", [1], ["Übergang", "家族"], None)
        assert _row(db, "r1")["source_labels"] == ["Übergang", "家族"]

    def test_sqlite_error_becomes_write_failure(self, db):
        conn = sqlite3.connect(db.db_path)
        conn.execute("DROP TABLE assignments")
        conn.commit()
        conn.close()
        with pytest.raises(PersistenceWriteFailure) as exc_info:
            db.write_assignment("r1", [1], [], None)
        assert exc_info.value.record_id == "r1"


# ---------------------------------------------------------------------------
# Record outcomes
# ---------------------------------------------------------------------------

class TestOutcomes:
    def test_record_and_list(self, db):
        run_id = _start(db)
        db.record_outcome(run_id, "r1", "assigned", [2, 1])
        db.record_outcome(run_id, "r2", "failed", error="boom")
        outcomes = db.list_outcomes(run_id)
        assert [o["record_id"] for o in outcomes] == ["r1", "r2"]
        assert outcomes[0]["category_ids"] == [1, 2]
        assert outcomes[1]["status"] == "failed"
        assert outcomes[1]["error_text"] == "boom"

    def test_outcomes_scoped_to_run(self, db):
        id1 = _start(db)
        id2 = _start(db)
        db.record_outcome(id1, "r1", "assigned", [1])
        assert db.list_outcomes(id2) == []

    def test_long_error_truncated(self, db):
        run_id = _start(db)
        db.record_outcome(run_id, "r1", "failed", error="x" * 2000)
        assert len(db.list_outcomes(run_id)[0]["error_text"]) == 500
