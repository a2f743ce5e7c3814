"""Data models and dataclasses."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from .config import MAX_CATEGORIES, MIN_DIVERSITY, MIN_SUBSTRING_LENGTH, OVERUSE_THRESHOLD
from .constants import STATUS_ASSIGNED, STATUS_EMPTY, STATUS_EXISTING, STATUS_FAILED, STATUS_NO_LABELS
from .exceptions import ConfigError


@dataclass(frozen=True)
class CanonicalCategory:
    """One entry of the curated theme taxonomy."""
    id: int
    name: str
    group: str = ""
    description: str = ""
    active: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "group": self.group,
            "description": self.description,
            "active": self.active,
        }


@dataclass(frozen=True)
class LabelMatch:
    """Result of matching one raw label: the category and the strategy that hit."""
    category_id: int
    strategy: str
    score: int = 0

    @property
    def is_exact(self) -> bool:
        return self.strategy == "exact"


@dataclass(frozen=True)
class BalancePolicy:
    min_diversity: int = MIN_DIVERSITY
    max_categories: int = MAX_CATEGORIES
    overuse_threshold: int = OVERUSE_THRESHOLD
    min_substring_length: int = MIN_SUBSTRING_LENGTH

    def __post_init__(self):
        if self.max_categories < 1:
            raise ConfigError(f"max_categories must be >= 1, got {self.max_categories}")
        if self.min_diversity < 0 or self.min_diversity > self.max_categories:
            raise ConfigError(
                f"min_diversity must be between 0 and max_categories ({self.max_categories}), "
                f"got {self.min_diversity}"
            )
        if self.overuse_threshold < 0:
            raise ConfigError(f"overuse_threshold must be >= 0, got {self.overuse_threshold}")
        if self.min_substring_length < 1:
            raise ConfigError(f"min_substring_length must be >= 1, got {self.min_substring_length}")

    def to_dict(self) -> dict:
        return {
            "min_diversity": self.min_diversity,
            "max_categories": self.max_categories,
            "overuse_threshold": self.overuse_threshold,
            "min_substring_length": self.min_substring_length,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> BalancePolicy:
        defaults = cls()
        return cls(
            min_diversity=int(data.get("min_diversity", defaults.min_diversity)),
            max_categories=int(data.get("max_categories", defaults.max_categories)),
            overuse_threshold=int(data.get("overuse_threshold", defaults.overuse_threshold)),
            min_substring_length=int(data.get("min_substring_length", defaults.min_substring_length)),
        )


class UsageSnapshot:
    """Frozen per-category usage counts, taken once per run."""

    __slots__ = ("_counts", "taken_at")

    def __init__(self, counts: Mapping[int, int] | None = None, taken_at: str = ""):
        cleaned = {int(k): int(v) for k, v in (counts or {}).items() if int(v) > 0}
        self._counts = MappingProxyType(cleaned)
        self.taken_at = taken_at or datetime.now().isoformat(timespec="seconds")

    @property
    def counts(self) -> Mapping[int, int]:
        return self._counts

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def count(self, category_id: int) -> int:
        return self._counts.get(category_id, 0)

    def is_overused(self, category_id: int, threshold: int) -> bool:
        return self.count(category_id) > threshold

    def to_dict(self) -> dict:
        return {str(k): v for k, v in sorted(self._counts.items())}

    @classmethod
    def from_dict(cls, data: Mapping, taken_at: str = "") -> UsageSnapshot:
        return cls({int(k): int(v) for k, v in (data or {}).items()}, taken_at=taken_at)

    def __eq__(self, other) -> bool:
        if not isinstance(other, UsageSnapshot):
            return NotImplemented
        return dict(self._counts) == dict(other._counts)

    def __repr__(self) -> str:
        return f"UsageSnapshot({dict(self._counts)!r})"


@dataclass
class Run:
    """Context for one batch execution: frozen taxonomy, snapshot and policy."""
    run_id: int | None
    mode: str
    policy: BalancePolicy
    categories: list[CanonicalCategory]
    snapshot: UsageSnapshot
    taxonomy_fingerprint: str
    groups_version: str
    dry_run: bool = False
    live_commit: bool = False
    started_at: str = field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))


@dataclass
class RecordOutcome:
    record_id: str
    status: str
    category_ids: list[int] = field(default_factory=list)
    source_labels: list[str] = field(default_factory=list)
    error: str = ""

    @property
    def is_staged(self) -> bool:
        """True when the record has an assignment waiting to be written."""
        return self.status in (STATUS_ASSIGNED, STATUS_EMPTY)


@dataclass
class RunReport:
    run_id: int | None
    mode: str
    dry_run: bool = False
    processed: int = 0
    skipped_no_labels: int = 0
    skipped_existing: int = 0
    failed: int = 0
    empty_results: int = 0
    category_distribution: dict[int, int] = field(default_factory=dict)
    outcomes: list[RecordOutcome] = field(default_factory=list)
    interrupted: bool = False
    last_committed_record: str | None = None
    elapsed_sec: float = 0.0

    def add(self, outcome: RecordOutcome):
        self.outcomes.append(outcome)
        if outcome.status in (STATUS_ASSIGNED, STATUS_EMPTY):
            self.processed += 1
            for cid in outcome.category_ids:
                self.category_distribution[cid] = self.category_distribution.get(cid, 0) + 1
            if outcome.status == STATUS_EMPTY:
                self.empty_results += 1
        elif outcome.status == STATUS_NO_LABELS:
            self.skipped_no_labels += 1
        elif outcome.status == STATUS_EXISTING:
            self.skipped_existing += 1
        elif outcome.status == STATUS_FAILED:
            self.failed += 1

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "dry_run": self.dry_run,
            "processed": self.processed,
            "skipped_no_labels": self.skipped_no_labels,
            "skipped_existing": self.skipped_existing,
            "failed": self.failed,
            "empty_results": self.empty_results,
            "category_distribution": {str(k): v for k, v in sorted(self.category_distribution.items())},
            "interrupted": self.interrupted,
            "last_committed_record": self.last_committed_record,
            "elapsed_sec": self.elapsed_sec,
        }
