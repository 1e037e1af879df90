"""Value objects exchanged between the sync engine and its callers.

Holds only:
- run options and their bounds
- per-run, per-record and pending-sync result objects
- match outcomes produced by identity lookup
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from licensesync.domain.model import License

DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 500


class SyncInProgressError(RuntimeError):
    """Raised when a sync is requested while another one is still running."""

    def __init__(self) -> None:
        super().__init__("A license sync is already in progress")


@dataclass(slots=True, frozen=True, kw_only=True)
class SyncOptions:
    force: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    dry_run: bool = False
    bidirectional: bool = False
    comprehensive: bool = False
    detect_duplicates: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.batch_size, bool) or not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")

    @property
    def duplicate_detection(self) -> bool:
        return self.detect_duplicates or self.comprehensive


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True, kw_only=True)
class SyncResult:
    """Outcome of one reconciliation run; only the latest is retained."""

    success: bool = False
    total_fetched: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list[str])
    external_duplicates: int = 0
    internal_duplicates: int = 0
    cross_system_duplicates: int = 0
    consolidated: int = 0
    flagged_for_review: int = 0
    pushed: int = 0
    push_failed: int = 0
    dry_run: bool = False
    aborted: bool = False
    duration_seconds: float = 0.0
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.unchanged + self.failed

    def summary(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "duration": self.duration_seconds,
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "success": self.success,
        }

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


@dataclass(slots=True, kw_only=True)
class SingleSyncResult:
    success: bool
    appid: str
    action: RecordAction | None = None
    license_id: UUID | None = None
    error: str | None = None


@dataclass(slots=True, kw_only=True)
class PendingSyncResult:
    processed: int = 0
    synced: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list[str])


@dataclass(slots=True, frozen=True)
class SyncStatus:
    sync_in_progress: bool
    last_result: SyncResult | None
    last_completed_at: datetime | None = None


class RecordAction(StrEnum):
    """What reconciling one external record did to the internal store."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FLAGGED = "flagged"
    FAILED = "failed"


class MatchOutcome(StrEnum):
    NEW = "new"
    MATCHED = "matched"
    CROSS_SYSTEM_DUPLICATE = "cross_system_duplicate"


class MatchedBy(StrEnum):
    APPID = "appid"
    EMAIL = "email"
    COUNTID = "countid"


@dataclass(slots=True, frozen=True, kw_only=True)
class LicenseMatch:
    """Result of looking an external record up in the internal store."""

    outcome: MatchOutcome
    target: License | None = None
    candidates: tuple[License, ...] = ()
    matched_by: MatchedBy | None = None

    def __post_init__(self) -> None:
        if self.outcome is MatchOutcome.MATCHED and self.target is None:
            raise ValueError("A matched outcome requires a target license")
        if self.outcome is MatchOutcome.CROSS_SYSTEM_DUPLICATE and len(self.candidates) < 2:
            raise ValueError("A cross-system duplicate needs at least two candidates")
