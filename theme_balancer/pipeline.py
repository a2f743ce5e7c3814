"""Assignment pipeline: read phase, compute phase (matching + balancing), commit phase."""

from __future__ import annotations

import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

import requests

from .balancer import DiversityBalancer
from .config import (
    COMMIT_BACKOFF_BASE_SEC,
    COMMIT_BACKOFF_MAX_SEC,
    COMMIT_RETRIES,
    COMPUTE_WORKERS,
    LIVE_COMMIT,
    MAX_CATEGORIES,
    MIN_DIVERSITY,
    OVERUSE_THRESHOLD,
    log,
)
from .constants import (
    RUN_MODES,
    SEMANTIC_GROUPS_VERSION,
    STATUS_ASSIGNED,
    STATUS_EMPTY,
    STATUS_EXISTING,
    STATUS_FAILED,
    STATUS_NO_LABELS,
)
from .exceptions import (
    BalancerError,
    ConfigError,
    EmptyResultAfterBalancing,
    NoLabelsError,
    PersistenceUnavailable,
    PersistenceWriteFailure,
    ResumeError,
)
from .ledger import UsageLedger
from .matching import MatchingEngine
from .models import BalancePolicy, RecordOutcome, Run, RunReport, UsageSnapshot
from .taxonomy import load_active_categories, taxonomy_fingerprint
from .utils import retry_with_backoff


def load_existing_assignments(persistence) -> list[dict]:
    """Read persisted assignments; raise PersistenceUnavailable if the backend cannot be read."""
    try:
        return list(persistence.read_existing_assignments() or [])
    except (OSError, ValueError, sqlite3.Error, requests.exceptions.RequestException) as exc:
        raise PersistenceUnavailable(f"could not read existing assignments: {exc}") from exc


@dataclass
class RecordJob:
    """One record to compute: its id and the raw labels it is assigned from."""
    record_id: str
    labels: list[str] = field(default_factory=list)


class AssignmentPipeline:
    """Runs matching + balancing for a batch of records against one frozen snapshot.

    Collaborators are passed in explicitly: a taxonomy store, a persistence
    backend (write/read assignments), an optional label source (fresh mode) and
    an optional run log (LocalStateDB) for run rows, outcomes and checkpoints.
    """

    def __init__(self, taxonomy_store, persistence, label_source=None, run_db=None,
                 policy: BalancePolicy | None = None, ledger: UsageLedger | None = None,
                 workers: int = COMPUTE_WORKERS, live_commit: bool = LIVE_COMMIT,
                 commit_retries: int = COMMIT_RETRIES,
                 backoff_base: float = COMMIT_BACKOFF_BASE_SEC,
                 backoff_max: float = COMMIT_BACKOFF_MAX_SEC):
        if commit_retries < 1:
            raise ConfigError(f"commit_retries must be >= 1, got {commit_retries}")
        self.taxonomy_store = taxonomy_store
        self.persistence = persistence
        self.label_source = label_source
        self.run_db = run_db
        self.policy = policy or BalancePolicy()
        self.ledger = ledger
        self.workers = max(1, int(workers or 1))
        self.live_commit = live_commit
        self.commit_retries = commit_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.last_report: RunReport | None = None
        self.last_run: Run | None = None
        self._existing: dict[str, dict] = {}
        self._checkpoint: str | None = None

    # ------------------------------------------------------------------
    # Phase 1: read
    # ------------------------------------------------------------------

    def begin_run(self, mode: str = "fresh", dry_run: bool = False,
                  resume_run_id: int | None = None) -> Run:
        """Load taxonomy and usage once and freeze them for the whole run."""
        if mode not in RUN_MODES:
            raise ConfigError(f"unknown run mode '{mode}' (expected one of {', '.join(RUN_MODES)})")

        categories = load_active_categories(self.taxonomy_store)
        fingerprint = taxonomy_fingerprint(categories)

        self._existing = {str(row["record_id"]): row for row in load_existing_assignments(self.persistence)}
        if self.ledger is None:
            self.ledger = UsageLedger.from_assignments(self._existing.values())

        self._checkpoint = None
        if resume_run_id is not None:
            return self._resume_run(resume_run_id, categories, fingerprint, dry_run)

        snapshot = self.ledger.snapshot()
        run_id = None
        if self.run_db is not None:
            try:
                run_id = self.run_db.start_run(
                    mode, dry_run, self.live_commit, self.policy.to_dict(),
                    fingerprint, SEMANTIC_GROUPS_VERSION, snapshot.to_dict(),
                )
            except sqlite3.Error as exc:
                raise PersistenceUnavailable(f"could not register run in the run log: {exc}") from exc
        log.info(
            f"[bold]RUN {run_id if run_id is not None else '-'}[/bold] ({mode}) - "
            f"{len(categories)} active themes, {self.ledger.record_count()} existing assignments",
            extra={"run_id": run_id, "action": "begin_run"},
        )
        return Run(
            run_id=run_id,
            mode=mode,
            policy=self.policy,
            categories=categories,
            snapshot=snapshot,
            taxonomy_fingerprint=fingerprint,
            groups_version=SEMANTIC_GROUPS_VERSION,
            dry_run=dry_run,
            live_commit=self.live_commit,
        )

    def _resume_run(self, run_id: int, categories, fingerprint: str, dry_run: bool) -> Run:
        if self.run_db is None:
            raise ResumeError("resuming a run needs a run log (state database)")
        stored = self.run_db.get_run(run_id)
        if stored is None:
            raise ResumeError(f"run {run_id} not found")
        if stored.get("taxonomy_fingerprint") != fingerprint:
            raise ResumeError(f"taxonomy changed since run {run_id} started - start a new run instead")
        if stored.get("groups_version") != SEMANTIC_GROUPS_VERSION:
            raise ResumeError(
                f"semantic groups changed since run {run_id} ({stored.get('groups_version')} -> "
                f"{SEMANTIC_GROUPS_VERSION}) - start a new run instead"
            )
        self._checkpoint = stored.get("last_committed_record")
        log.info(
            f"[bold]RESUME RUN {run_id}[/bold] ({stored['mode']}) after record {self._checkpoint or '-'}",
            extra={"run_id": run_id, "action": "resume_run"},
        )
        return Run(
            run_id=run_id,
            mode=stored["mode"],
            policy=BalancePolicy.from_dict(stored.get("policy") or {}),
            categories=categories,
            snapshot=UsageSnapshot.from_dict(stored.get("snapshot") or {}, taken_at=stored.get("started_at", "")),
            taxonomy_fingerprint=fingerprint,
            groups_version=SEMANTIC_GROUPS_VERSION,
            dry_run=dry_run or bool(stored.get("dry_run")),
            live_commit=bool(stored.get("live_commit")),
            started_at=stored.get("started_at", ""),
        )

    def collect_jobs(self, run: Run, record_ids: list | None = None,
                     force: bool = False) -> tuple[list[RecordJob], list[RecordOutcome]]:
        """Records to compute, in order, plus outcomes for records skipped up front."""
        skipped: list[RecordOutcome] = []
        jobs: list[RecordJob] = []

        if run.mode == "reassign":
            ids = [str(r) for r in record_ids] if record_ids is not None else list(self._existing)
            for record_id in dict.fromkeys(ids):
                row = self._existing.get(record_id)
                if row is None:
                    skipped.append(RecordOutcome(record_id, STATUS_FAILED, error="no existing assignment to replace"))
                    continue
                jobs.append(RecordJob(record_id, list(row.get("source_labels") or [])))
        else:
            if self.label_source is None:
                raise ConfigError("fresh runs need a label source")
            ids = [str(r) for r in record_ids] if record_ids is not None else self.label_source.list_record_ids()
            for record_id in dict.fromkeys(str(r) for r in ids):
                if not force and record_id in self._existing:
                    skipped.append(RecordOutcome(record_id, STATUS_EXISTING,
                                                 category_ids=list(self._existing[record_id]["category_ids"])))
                    continue
                try:
                    labels = self.label_source.get_raw_labels(record_id)
                except (OSError, requests.exceptions.RequestException) as exc:
                    skipped.append(RecordOutcome(record_id, STATUS_FAILED, error=f"label fetch failed: {exc}"))
                    continue
                jobs.append(RecordJob(record_id, list(labels or [])))

        if self._checkpoint is not None:
            position = next((i for i, job in enumerate(jobs) if job.record_id == self._checkpoint), None)
            if position is not None:
                log.info(f"  {position + 1} records already committed - skipped")
                jobs = jobs[position + 1:]
        return jobs, skipped

    # ------------------------------------------------------------------
    # Phase 2: compute
    # ------------------------------------------------------------------

    def _tools(self, run: Run) -> tuple[MatchingEngine, DiversityBalancer]:
        engine = MatchingEngine(run.categories, min_substring_length=run.policy.min_substring_length)
        balancer = DiversityBalancer(run.categories, run.policy)
        return engine, balancer

    @staticmethod
    def _assign(engine: MatchingEngine, balancer: DiversityBalancer, job: RecordJob,
                snapshot: UsageSnapshot) -> RecordOutcome:
        if not job.labels:
            raise NoLabelsError(job.record_id)
        matches = engine.match_all(job.labels)
        category_ids = balancer.balance(matches, snapshot)
        status = STATUS_ASSIGNED if category_ids else STATUS_EMPTY
        return RecordOutcome(job.record_id, status, category_ids=category_ids, source_labels=list(job.labels))

    def assign_record(self, run: Run, record_id: str, labels: list[str],
                      snapshot: UsageSnapshot | None = None) -> RecordOutcome:
        """Match and balance a single record. Pure: nothing is written."""
        engine, balancer = self._tools(run)
        return self._compute_one(engine, balancer, RecordJob(str(record_id), list(labels or [])),
                                 snapshot or run.snapshot)

    def _compute_one(self, engine, balancer, job: RecordJob, snapshot: UsageSnapshot) -> RecordOutcome:
        try:
            return self._assign(engine, balancer, job, snapshot)
        except NoLabelsError:
            log.info(f"  Record {job.record_id}: no raw labels - skipped",
                     extra={"record_id": job.record_id, "status": STATUS_NO_LABELS})
            return RecordOutcome(job.record_id, STATUS_NO_LABELS)

    def compute(self, run: Run, jobs: list[RecordJob]) -> list[RecordOutcome]:
        """Match + balance every job against the run's frozen snapshot; result in job order."""
        engine, balancer = self._tools(run)
        if self.workers <= 1 or len(jobs) <= 1:
            return [self._compute_one(engine, balancer, job, run.snapshot) for job in jobs]

        log.info(f"[bold]PARALLEL[/bold] Starting {self.workers} compute workers")
        results: dict[str, RecordOutcome] = {}
        aborted = False
        pool = ThreadPoolExecutor(max_workers=self.workers)
        try:
            futures = {
                pool.submit(self._compute_one, engine, balancer, job, run.snapshot): job.record_id
                for job in jobs
            }
            for future in as_completed(futures):
                record_id = futures[future]
                try:
                    results[record_id] = future.result()
                except Exception as e:
                    log.error(f"Error computing record {record_id}: {e}", extra={"record_id": record_id})
                    results[record_id] = RecordOutcome(record_id, STATUS_FAILED, error=str(e))
        except KeyboardInterrupt:
            aborted = True
            log.warning("Compute phase interrupted by user")
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        finally:
            if not aborted:
                pool.shutdown(wait=True, cancel_futures=False)
        return [results[job.record_id] for job in jobs]

    # ------------------------------------------------------------------
    # Phase 3: commit
    # ------------------------------------------------------------------

    def _write_with_retry(self, run: Run, outcome: RecordOutcome):
        write = retry_with_backoff(
            max_retries=self.commit_retries,
            base_delay=self.backoff_base,
            max_delay=self.backoff_max,
            retryable_exceptions=(PersistenceWriteFailure,),
        )(self.persistence.write_assignment)
        try:
            write(outcome.record_id, outcome.category_ids, outcome.source_labels, run.run_id)
        except PersistenceWriteFailure as exc:
            raise PersistenceWriteFailure(
                f"giving up after {self.commit_retries} attempts: {exc}",
                record_id=outcome.record_id,
                attempts=self.commit_retries,
            ) from exc

    def _commit_one(self, run: Run, outcome: RecordOutcome, report: RunReport) -> RecordOutcome:
        if outcome.is_staged and not run.dry_run:
            try:
                self._write_with_retry(run, outcome)
            except PersistenceWriteFailure as exc:
                log.error(f"Record {outcome.record_id}: write failed - {exc}",
                          extra={"record_id": outcome.record_id, "run_id": run.run_id, "status": STATUS_FAILED})
                outcome = RecordOutcome(outcome.record_id, STATUS_FAILED, source_labels=outcome.source_labels,
                                        error=str(exc))
            else:
                self.ledger.commit(outcome.record_id, outcome.category_ids)
                report.last_committed_record = outcome.record_id
                if self.run_db is not None and run.run_id is not None:
                    self.run_db.save_checkpoint(run.run_id, outcome.record_id)

        if outcome.status == STATUS_EMPTY:
            warning = EmptyResultAfterBalancing(outcome.record_id)
            log.warning(f"[yellow]Data quality:[/yellow] {warning}",
                        extra={"record_id": outcome.record_id, "run_id": run.run_id, "status": STATUS_EMPTY})
            outcome.error = str(warning)
        elif outcome.status == STATUS_ASSIGNED:
            log.info(f"  Record {outcome.record_id}: {outcome.category_ids}",
                     extra={"record_id": outcome.record_id, "run_id": run.run_id, "status": STATUS_ASSIGNED})

        report.add(outcome)
        if self.run_db is not None and run.run_id is not None:
            self.run_db.record_outcome(run.run_id, outcome.record_id, outcome.status,
                                       outcome.category_ids, outcome.error)
        return outcome

    def commit(self, run: Run, outcomes: list[RecordOutcome], report: RunReport) -> RunReport:
        """Write staged assignments sequentially, in order; failures are reported, not raised."""
        for outcome in outcomes:
            self._commit_one(run, outcome, report)
        return report

    def _run_live(self, run: Run, jobs: list[RecordJob], report: RunReport):
        """Compute and commit record by record, each against the latest counts."""
        engine, balancer = self._tools(run)
        for job in jobs:
            snapshot = run.snapshot if run.dry_run else self.ledger.snapshot()
            self._commit_one(run, self._compute_one(engine, balancer, job, snapshot), report)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, mode: str = "fresh", record_ids: list | None = None, force: bool = False,
            dry_run: bool = False, resume_run_id: int | None = None) -> RunReport:
        """Execute one run. TaxonomyUnavailable aborts before any record is touched."""
        batch_start = time.perf_counter()
        run = self.begin_run(mode, dry_run=dry_run, resume_run_id=resume_run_id)
        self.last_run = run
        report = RunReport(run_id=run.run_id, mode=run.mode, dry_run=run.dry_run)
        self.last_report = report
        status = "completed"
        try:
            jobs, skipped = self.collect_jobs(run, record_ids=record_ids, force=force)
            for outcome in skipped:
                self._commit_one(run, outcome, report)
            log.info(f"  {len(jobs)} records to process, {len(skipped)} skipped up front")

            if run.live_commit:
                if self.workers > 1:
                    log.warning("[yellow]Live commit: records are processed sequentially, "
                                f"ignoring workers={self.workers}[/yellow]")
                self._run_live(run, jobs, report)
            else:
                outcomes = self.compute(run, jobs)
                self.commit(run, outcomes, report)
        except KeyboardInterrupt:
            status = "interrupted"
            report.interrupted = True
            log.warning(f"Run {run.run_id} interrupted after record {report.last_committed_record or '-'}")
            raise
        except BalancerError:
            status = "aborted"
            raise
        finally:
            report.elapsed_sec = round(time.perf_counter() - batch_start, 2)
            if self.run_db is not None and run.run_id is not None:
                self.run_db.finish_run(run.run_id, report.to_dict(), status)

        log.info(
            f"[bold]RUN FINISHED[/bold] - {report.processed} assigned, {report.skipped_no_labels} without labels, "
            f"{report.skipped_existing} already assigned, {report.failed} failed, {report.elapsed_sec:.1f}s",
            extra={"run_id": run.run_id, "action": "finish_run", "status": status},
        )
        if report.failed:
            log.warning(f"[yellow]{report.failed} records failed[/yellow] - see run report")
        return report


def run(mode: str = "fresh", min_diversity: int = MIN_DIVERSITY, max_categories: int = MAX_CATEGORIES,
        overuse_threshold: int = OVERUSE_THRESHOLD, *, taxonomy_store, persistence,
        label_source=None, run_db=None, **options) -> RunReport:
    """Batch entry point: build a pipeline for the given policy and run it once."""
    policy = BalancePolicy(
        min_diversity=min_diversity,
        max_categories=max_categories,
        overuse_threshold=overuse_threshold,
    )
    run_options = {k: options.pop(k) for k in ("record_ids", "force", "dry_run", "resume_run_id") if k in options}
    pipeline = AssignmentPipeline(taxonomy_store, persistence, label_source=label_source, run_db=run_db,
                                  policy=policy, **options)
    return pipeline.run(mode, **run_options)
