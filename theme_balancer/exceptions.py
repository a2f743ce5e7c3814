"""Custom exceptions for the theme balancer."""

from __future__ import annotations


class BalancerError(Exception):
    """Base exception for all theme balancer errors."""


class ConfigError(BalancerError):
    """Configuration or balancing policy is invalid."""


class TaxonomyUnavailable(BalancerError):
    """Taxonomy store is unreachable or has no active categories. Fatal for a run."""


class NoLabelsError(BalancerError):
    """A record has no raw labels; it is skipped, never assigned."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"record {record_id} has no raw labels")


class PersistenceWriteFailure(BalancerError):
    """Writing a single record's assignment failed."""

    def __init__(self, message: str, record_id: str | None = None, attempts: int = 0):
        self.record_id = record_id
        self.attempts = attempts
        super().__init__(message)


class EmptyResultAfterBalancing(BalancerError):
    """Balancing produced no category for a record (data-quality warning)."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"record {record_id} ended up with no categories")


class ResumeError(BalancerError):
    """A run cannot be resumed (unknown run id or taxonomy changed)."""


class PersistenceUnavailable(BalancerError):
    """Existing assignments could not be read. Fatal for a run, raised before any record."""
