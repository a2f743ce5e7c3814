"""Local SQLite storage for assignments and run history."""

from __future__ import annotations

import json
import os
import sqlite3
import threading
from datetime import datetime

from .config import log
from .exceptions import PersistenceWriteFailure


class LocalStateDB:
    """SQLite-backed persistence: assignments, run log, per-record outcomes, checkpoints."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._init_db()
        self._harden_permissions()

    def _connect(self):
        return sqlite3.connect(self.db_path)

    def _harden_permissions(self):
        try:
            if os.path.exists(self.db_path):
                os.chmod(self.db_path, 0o600)
        except OSError as exc:
            log.debug("Could not restrict permissions on %s: %s", self.db_path, exc)

    def _init_db(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    started_at TEXT NOT NULL,
                    ended_at TEXT,
                    mode TEXT NOT NULL,
                    dry_run INTEGER NOT NULL,
                    live_commit INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'running',
                    policy_json TEXT,
                    taxonomy_fingerprint TEXT,
                    groups_version TEXT,
                    snapshot_json TEXT,
                    last_committed_record TEXT,
                    summary_json TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS assignments (
                    record_id TEXT PRIMARY KEY,
                    category_ids TEXT NOT NULL,
                    source_labels TEXT NOT NULL,
                    run_id INTEGER,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(run_id) REFERENCES runs(id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS record_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id INTEGER NOT NULL,
                    record_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    category_ids TEXT,
                    error_text TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(run_id) REFERENCES runs(id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_assignments_run_id ON assignments (run_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_record_events_run_id ON record_events (run_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_record_events_record_id ON record_events (record_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_record_events_status ON record_events (status)")

    # --- Assignments (persistence collaborator) ---

    def write_assignment(self, record_id: str, category_ids: list[int], source_labels: list[str],
                         run_id: int | None):
        """Idempotent upsert keyed by record_id; one transaction per record."""
        now = datetime.now().isoformat(timespec="seconds")
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO assignments (record_id, category_ids, source_labels, run_id, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(record_id) DO UPDATE SET
                        category_ids = excluded.category_ids,
                        source_labels = excluded.source_labels,
                        run_id = excluded.run_id,
                        created_at = excluded.created_at
                    """,
                    (
                        str(record_id),
                        json.dumps(sorted(int(c) for c in category_ids)),
                        json.dumps(list(source_labels), ensure_ascii=False),
                        run_id,
                        now,
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceWriteFailure(f"could not write assignment for {record_id}: {exc}",
                                          record_id=str(record_id)) from exc

    @staticmethod
    def _assignment_row(row: sqlite3.Row) -> dict:
        return {
            "record_id": row["record_id"],
            "category_ids": json.loads(row["category_ids"] or "[]"),
            "source_labels": json.loads(row["source_labels"] or "[]"),
            "run_id": row["run_id"],
            "created_at": row["created_at"],
        }

    def read_existing_assignments(self) -> list[dict]:
        with self._lock, self._connect() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT record_id, category_ids, source_labels, run_id, created_at "
                "FROM assignments ORDER BY record_id"
            ).fetchall()
            return [self._assignment_row(row) for row in rows]

    # --- Run log ---

    def start_run(self, mode: str, dry_run: bool, live_commit: bool, policy: dict,
                  taxonomy_fingerprint: str, groups_version: str, snapshot: dict) -> int:
        now = datetime.now().isoformat(timespec="seconds")
        with self._lock, self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO runs (started_at, mode, dry_run, live_commit, policy_json,
                                  taxonomy_fingerprint, groups_version, snapshot_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    now, mode, int(dry_run), int(live_commit), json.dumps(policy),
                    taxonomy_fingerprint, groups_version, json.dumps(snapshot),
                ),
            )
            return int(cur.lastrowid)

    def save_checkpoint(self, run_id: int, record_id: str):
        with self._lock, self._connect() as conn:
            conn.execute(
                "UPDATE runs SET last_committed_record = ? WHERE id = ?",
                (str(record_id), run_id),
            )

    def finish_run(self, run_id: int, summary: dict, status: str = "completed"):
        with self._lock, self._connect() as conn:
            conn.execute(
                "UPDATE runs SET ended_at = ?, status = ?, summary_json = ? WHERE id = ?",
                (
                    datetime.now().isoformat(timespec="seconds"),
                    status,
                    json.dumps(summary, ensure_ascii=False),
                    run_id,
                ),
            )

    def get_run(self, run_id: int) -> dict | None:
        with self._lock, self._connect() as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
            if not row:
                return None
            run = dict(row)
        for key in ("policy_json", "snapshot_json", "summary_json"):
            raw = run.pop(key)
            run[key[:-5]] = json.loads(raw) if raw else {}
        return run

    def list_runs(self, limit: int = 20) -> list[dict]:
        with self._lock, self._connect() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                """
                SELECT id, started_at, ended_at, mode, dry_run, status, last_committed_record, summary_json
                FROM runs ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
        runs = []
        for row in rows:
            run = dict(row)
            raw = run.pop("summary_json")
            run["summary"] = json.loads(raw) if raw else {}
            runs.append(run)
        return runs

    def record_outcome(self, run_id: int, record_id: str, status: str,
                       category_ids: list[int] | None = None, error: str = ""):
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO record_events (run_id, record_id, status, category_ids, error_text, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    str(record_id),
                    status,
                    json.dumps(sorted(category_ids or [])),
                    error[:500],
                    datetime.now().isoformat(timespec="seconds"),
                ),
            )

    def list_outcomes(self, run_id: int) -> list[dict]:
        with self._lock, self._connect() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT record_id, status, category_ids, error_text, created_at "
                "FROM record_events WHERE run_id = ? ORDER BY id",
                (run_id,),
            ).fetchall()
        outcomes = []
        for row in rows:
            item = dict(row)
            item["category_ids"] = json.loads(item["category_ids"] or "[]")
            outcomes.append(item)
        return outcomes
