"""Reconciliation of external license records with the internal store."""

from __future__ import annotations

from .contracts import (
    DEFAULT_BATCH_SIZE,
    MAX_BATCH_SIZE,
    LicenseMatch,
    MatchedBy,
    MatchOutcome,
    PendingSyncResult,
    RecordAction,
    SingleSyncResult,
    SyncInProgressError,
    SyncOptions,
    SyncResult,
    SyncStatus,
)
from .duplicates import (
    ConsolidationPlan,
    DuplicateGroup,
    ExternalDuplicateTracker,
    group_internal_duplicates,
    plan_consolidation,
)
from .engine import LicenseSyncEngine
from .matching import match_license
from .merge import build_license, generate_license_key, plan_update, push_payload

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "MAX_BATCH_SIZE",
    "ConsolidationPlan",
    "DuplicateGroup",
    "ExternalDuplicateTracker",
    "LicenseMatch",
    "LicenseSyncEngine",
    "MatchOutcome",
    "MatchedBy",
    "PendingSyncResult",
    "RecordAction",
    "SingleSyncResult",
    "SyncInProgressError",
    "SyncOptions",
    "SyncResult",
    "SyncStatus",
    "build_license",
    "generate_license_key",
    "group_internal_duplicates",
    "match_license",
    "plan_consolidation",
    "plan_update",
    "push_payload",
]
