"""Pull external licenses, reconcile them with the internal store and report the run."""

from __future__ import annotations

import time
from collections.abc import Mapping
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from licensesync.domain.caching import invalidate_all_licenses
from licensesync.domain.monitoring import RunStats
from licensesync.domain.ports.external_api import ExternalApiError
from licensesync.domain.validation import ValidationOptions, validate_license

from .contracts import (
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
    ExternalDuplicateTracker,
    absorb_identifiers,
    group_internal_duplicates,
    plan_consolidation,
)
from .matching import match_license
from .merge import apply_update, build_license, plan_update, push_payload

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Sequence
    from uuid import UUID

    from licensesync.domain.model import License
    from licensesync.domain.monitoring import Monitor, SyncContext
    from licensesync.domain.ports.cache import Cache
    from licensesync.domain.ports.external_api import (
        ExternalLicenseRecord,
        ExternalLicenseSource,
    )
    from licensesync.domain.ports.notifications import SyncEventPublisher
    from licensesync.domain.ports.unit_of_work import LicenseUnitOfWork
    from licensesync.domain.validation import SanitizedLicense

log = getLogger(__name__)

SYNC_OPERATION = "license_sync"
SINGLE_SYNC_OPERATION = "license_sync_single"
PENDING_SYNC_OPERATION = "license_sync_pending"
EVENT_SOURCE = "external_sync"
LICENSE_TABLE = "license"

MAX_CONSECUTIVE_PAGE_FAILURES = 3
DEFAULT_PENDING_LIMIT = 100
DEFAULT_PENDING_BATCH_SIZE = 20


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _record_label(raw: object) -> str:
    if isinstance(raw, Mapping):
        countid = raw.get("countid")  # pyright: ignore[reportUnknownMemberType]
        appid = raw.get("appid")  # pyright: ignore[reportUnknownMemberType]
        return f"countid={countid!r} appid={appid!r}"
    return f"{type(raw).__name__} record"


@dataclass(slots=True)
class _RunState:
    options: SyncOptions
    now: datetime
    result: SyncResult
    external: ExternalDuplicateTracker = field(default_factory=ExternalDuplicateTracker)
    touched: dict[UUID, License] = field(default_factory=dict["UUID", "License"])
    flagged_ids: set[UUID] = field(default_factory=set["UUID"])
    retired_ids: set[UUID] = field(default_factory=set["UUID"])
    changed_ids: list[UUID] = field(default_factory=list["UUID"])
    fatal_error: ExternalApiError | None = None

    @property
    def dry_run(self) -> bool:
        return self.options.dry_run


class LicenseSyncEngine:
    """Reconciliation of the external system of record with the internal store.

    One engine instance owns the "one run at a time" guard, the incremental
    checkpoint (completion time of the last successful run) and the latest
    :class:`SyncResult`.
    """

    def __init__(
        self,
        *,
        source: ExternalLicenseSource,
        unit_of_work_factory: Callable[[], LicenseUnitOfWork],
        validation: ValidationOptions | None = None,
        monitor: Monitor | None = None,
        cache: Cache | None = None,
        events: SyncEventPublisher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source = source
        self._uow_factory = unit_of_work_factory
        self._validation = validation or ValidationOptions()
        self._monitor = monitor
        self._cache = cache
        self._events = events
        self._clock = clock
        self._in_progress = False
        self._last_result: SyncResult | None = None
        self._last_completed_at: datetime | None = None

    @property
    def sync_in_progress(self) -> bool:
        return self._in_progress

    @property
    def last_result(self) -> SyncResult | None:
        return self._last_result

    def status(self) -> SyncStatus:
        return SyncStatus(
            sync_in_progress=self._in_progress,
            last_result=self._last_result,
            last_completed_at=self._last_completed_at,
        )

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if self._in_progress:
            raise SyncInProgressError
        self._in_progress = True
        try:
            yield
        finally:
            self._in_progress = False

    # full sync -----------------------------------------------------------------

    async def execute(self, options: SyncOptions | None = None) -> SyncResult:
        opts = options or SyncOptions()
        with self._exclusive():
            run = _RunState(
                options=opts,
                now=self._clock(),
                result=SyncResult(dry_run=opts.dry_run, timestamp=self._clock()),
            )
            context = self._start(SYNC_OPERATION, **asdict(opts))
            log.info(
                f"Starting license sync: batch_size={opts.batch_size}, force={opts.force}, "
                f"dry_run={opts.dry_run}, duplicates={opts.duplicate_detection}"
            )
            started = time.monotonic()
            try:
                await self._reconcile(run)
            except Exception as exc:
                run.result.duration_seconds = time.monotonic() - started
                self._finish(context, run.result, error=exc)
                raise

            result = run.result
            result.success = not result.aborted
            result.duration_seconds = time.monotonic() - started
            self._complete(run)
            self._finish(context, result, error=run.fatal_error)
            self._last_result = result
            if result.success and not opts.dry_run:
                self._last_completed_at = run.now
            log.info(
                f"License sync finished: fetched={result.total_fetched}, "
                f"created={result.created}, updated={result.updated}, "
                f"unchanged={result.unchanged}, failed={result.failed}, "
                f"flagged={result.flagged_for_review}, aborted={result.aborted}"
            )
            return result

    async def _reconcile(self, run: _RunState) -> None:
        with self._uow_factory() as uow:
            await self._pull(uow, run)
            if run.options.duplicate_detection and not run.result.aborted:
                self._consolidate(uow, run)
            if not run.dry_run:
                uow.commit()
            if run.options.bidirectional and not run.dry_run and not run.result.aborted:
                await self._push(uow, run)

    async def _pull(self, uow: LicenseUnitOfWork, run: _RunState) -> None:
        batch_size = run.options.batch_size
        since = None if run.options.force else self._last_completed_at
        page = 1
        total_pages: int | None = None
        failures = 0
        while True:
            try:
                fetched = await self._source.fetch_page(page, batch_size, updated_since=since)
            except ExternalApiError as exc:
                run.result.errors.append(f"Page {page}: {exc}")
                if exc.kind.is_fatal:
                    log.error(f"Aborting license sync on page {page}: {exc}")
                    run.result.aborted = True
                    run.fatal_error = exc
                    return
                log.warning(f"Skipping page {page} after {exc.kind} error: {exc}")
                failures += 1
                if total_pages is not None:
                    if page >= total_pages:
                        return
                elif failures >= MAX_CONSECUTIVE_PAGE_FAILURES:
                    log.error(f"Stopping pagination after {failures} consecutive failed pages")
                    return
                page += 1
                continue

            failures = 0
            if fetched.total_pages is not None:
                total_pages = fetched.total_pages
            run.result.total_fetched += len(fetched.records)
            self._reconcile_page(uow, fetched.records, run)
            if not run.dry_run:
                uow.commit()

            if total_pages is not None:
                done = page >= total_pages
            else:
                done = len(fetched.records) < batch_size
            if done:
                return
            page += 1

    def _reconcile_page(
        self,
        uow: LicenseUnitOfWork,
        records: Sequence[ExternalLicenseRecord],
        run: _RunState,
    ) -> None:
        result = run.result
        for raw in records:
            record = self._validated(raw, result)
            if record is None:
                continue
            if run.options.duplicate_detection and run.external.is_duplicate(record):
                result.external_duplicates += 1
                log.debug(f"Skipping duplicate external record countid={record.countid}")
                continue
            action, _ = self._reconcile_record(uow, record, run)
            match action:
                case RecordAction.CREATED:
                    result.created += 1
                case RecordAction.UPDATED:
                    result.updated += 1
                case RecordAction.UNCHANGED:
                    result.unchanged += 1
                case RecordAction.FAILED:
                    result.failed += 1
                case RecordAction.FLAGGED:
                    pass

    def _validated(self, raw: object, result: SyncResult) -> SanitizedLicense | None:
        validation = validate_license(raw, options=self._validation)
        if self._monitor is not None:
            error_type = "invalid" if not validation.is_valid else "sanitized"
            for name in validation.failed_fields:
                self._monitor.record_validation_error(name, error_type)
        if not validation.is_valid or validation.sanitized is None:
            result.failed += 1
            result.errors.append(f"License {_record_label(raw)}: {'; '.join(validation.errors)}")
            return None
        for warning in validation.warnings:
            log.debug(f"License {_record_label(raw)}: {warning}")
        return validation.sanitized

    def _reconcile_record(
        self,
        uow: LicenseUnitOfWork,
        record: SanitizedLicense,
        run: _RunState,
    ) -> tuple[RecordAction, License | None]:
        repository = uow.repositories.licenses
        match = match_license(record, repository, excluded=run.retired_ids)

        if match.outcome is MatchOutcome.CROSS_SYSTEM_DUPLICATE:
            run.result.cross_system_duplicates += 1
            run.result.flagged_for_review += 1
            run.flagged_ids.update(candidate.id for candidate in match.candidates)
            log.warning(
                f"External license countid={record.countid} matches "
                f"{len(match.candidates)} internal licenses by {match.matched_by}; "
                "flagged for manual review"
            )
            return RecordAction.FLAGGED, None

        if match.target is None:
            created = build_license(record, now=run.now)
            if run.dry_run:
                return RecordAction.CREATED, created
            if not self._write(uow, "insert", lambda: repository.add(created), record, run):
                return RecordAction.FAILED, None
            run.touched[created.id] = created
            run.changed_ids.append(created.id)
            return RecordAction.CREATED, created

        target = match.target
        run.touched[target.id] = target
        changes = plan_update(target, record)
        if not changes:
            return RecordAction.UNCHANGED, target
        if run.dry_run:
            return RecordAction.UPDATED, target
        if not self._write(
            uow, "update", lambda: apply_update(target, changes, now=run.now), record, run
        ):
            return RecordAction.FAILED, target
        run.changed_ids.append(target.id)
        return RecordAction.UPDATED, target

    def _write(
        self,
        uow: LicenseUnitOfWork,
        operation: str,
        apply: Callable[[], None],
        record: SanitizedLicense,
        run: _RunState,
    ) -> bool:
        started = time.monotonic()
        try:
            with uow.savepoint():
                apply()
        except Exception as exc:
            log.exception(f"Failed to {operation} license countid={record.countid}")
            run.result.errors.append(f"License countid={record.countid}: {exc}")
            self._record_db(operation, started, success=False)
            return False
        self._record_db(operation, started, success=True)
        return True

    def _record_db(self, operation: str, started: float, *, success: bool) -> None:
        if self._monitor is not None:
            self._monitor.record_database_operation(
                operation, LICENSE_TABLE, time.monotonic() - started, success=success
            )

    def _consolidate(self, uow: LicenseUnitOfWork, run: _RunState) -> None:
        repository = uow.repositories.licenses
        if run.options.comprehensive:
            pool: Iterable[License] = repository.list_all()
        else:
            pool = self._neighbourhood(uow, run.touched.values())
        groups = group_internal_duplicates(pool)
        if not run.options.comprehensive:
            groups = [group for group in groups if group.member_ids & run.touched.keys()]

        result = run.result
        for group in groups:
            if group.member_ids & run.flagged_ids:
                log.info(f"Leaving internal duplicates {group.key} for manual review")
                continue
            plan = plan_consolidation(group, retired_ids=run.retired_ids)
            if plan is None:
                continue
            result.internal_duplicates += len(plan.retired)
            if not run.dry_run:
                started = time.monotonic()
                try:
                    with uow.savepoint():
                        absorb_identifiers(plan.survivor, plan.retired)
                        for other in plan.retired:
                            repository.remove(other)
                        plan.survivor.touch(run.now)
                except Exception:
                    log.exception(f"Failed to consolidate internal duplicates {group.key}")
                    result.errors.append(f"Consolidation {group.key[0]}={group.key[1]} failed")
                    self._record_db("consolidate", started, success=False)
                    continue
                self._record_db("consolidate", started, success=True)
                run.changed_ids.append(plan.survivor.id)
            run.retired_ids.update(other.id for other in plan.retired)
            result.consolidated += len(plan.retired)
            log.info(
                f"Consolidated {len(plan.retired)} duplicate(s) of {group.key[0]}="
                f"{group.key[1]} into license {plan.survivor.id}"
            )

    @staticmethod
    def _neighbourhood(uow: LicenseUnitOfWork, licenses: Iterable[License]) -> list[License]:
        repository = uow.repositories.licenses
        pool: dict[UUID, License] = {}
        for license_ in licenses:
            pool[license_.id] = license_
            neighbours: list[License] = []
            if license_.email_license:
                neighbours.extend(repository.find_by_email(license_.email_license))
            if license_.countid is not None:
                neighbours.extend(repository.find_by_countid(license_.countid))
            for neighbour in neighbours:
                pool.setdefault(neighbour.id, neighbour)
        return list(pool.values())

    async def _push(self, uow: LicenseUnitOfWork, run: _RunState) -> None:
        result = run.result
        for license_ in uow.repositories.licenses.list_linked():
            payload = push_payload(license_)
            try:
                if license_.appid:
                    await self._source.update_by_appid(license_.appid, payload)
                elif license_.email_license:
                    await self._source.update_by_email(license_.email_license, payload)
                else:
                    continue
            except ExternalApiError as exc:
                result.push_failed += 1
                log.warning(f"Failed to push license {license_.id} to external system: {exc}")
                continue
            result.pushed += 1
        log.info(f"Pushed {result.pushed} licenses to external system, {result.push_failed} failed")

    def _complete(self, run: _RunState) -> None:
        if run.dry_run:
            return
        if self._cache is not None:
            invalidate_all_licenses(self._cache)
        if self._events is not None:
            if run.changed_ids:
                self._events.emit_data_changed(EVENT_SOURCE, run.changed_ids)
            self._events.emit_sync_complete(run.result.summary())

    # monitor brackets --------------------------------------------------------

    def _start(self, operation: str, **options: object) -> SyncContext | None:
        if self._monitor is None:
            return None
        return self._monitor.record_sync_start(operation, **options)

    def _finish(
        self,
        context: SyncContext | None,
        result: SyncResult | PendingSyncResult,
        *,
        error: BaseException | None,
    ) -> None:
        if self._monitor is None or context is None:
            return
        operation = context.operation_type
        if isinstance(result, SyncResult):
            for action, count in (
                ("created", result.created),
                ("updated", result.updated),
                ("failed", result.failed),
            ):
                self._monitor.record_data_processed(operation, count, action=action)
            stats = RunStats(processed=result.processed, failed=result.failed)
            success = error is None and not result.aborted
        else:
            self._monitor.record_data_processed(operation, result.synced, action="updated")
            self._monitor.record_data_processed(operation, result.failed, action="failed")
            stats = RunStats(processed=result.processed, failed=result.failed)
            success = error is None
        self._monitor.record_sync_end(context, success=success, error=error, stats=stats)

    # single record -------------------------------------------------------------

    async def sync_single(self, appid: str) -> SingleSyncResult:
        """Re-fetch one external license by appid and reconcile it."""

        with self._exclusive():
            context = self._start(SINGLE_SYNC_OPERATION, appid=appid)
            outcome = SyncResult()
            try:
                single = await self._sync_single(appid, outcome)
            except Exception as exc:
                self._finish(context, outcome, error=exc)
                raise
            self._finish(context, outcome, error=None)
            return single

    async def _sync_single(self, appid: str, outcome: SyncResult) -> SingleSyncResult:
        try:
            raw = await self._source.fetch_by_appid(appid)
        except ExternalApiError as exc:
            return self._single_failed(appid, str(exc), outcome)
        if raw is None:
            missing = f"License {appid} not found in external system"
            return self._single_failed(appid, missing, outcome)
        outcome.total_fetched = 1

        validation = validate_license(raw, options=self._validation)
        if not validation.is_valid or validation.sanitized is None:
            return self._single_failed(appid, "; ".join(validation.errors), outcome)

        run = _RunState(options=SyncOptions(), now=self._clock(), result=outcome)
        with self._uow_factory() as uow:
            action, license_ = self._reconcile_record(uow, validation.sanitized, run)
            uow.commit()

        match action:
            case RecordAction.FLAGGED:
                return self._single_failed(
                    appid, "Matches several internal licenses; flagged for manual review", outcome
                )
            case RecordAction.FAILED:
                return self._single_failed(appid, outcome.errors[-1], outcome)
            case RecordAction.CREATED:
                outcome.created = 1
            case RecordAction.UPDATED:
                outcome.updated = 1
            case RecordAction.UNCHANGED:
                outcome.unchanged = 1
        if run.changed_ids:
            self._after_write(run.changed_ids)
        log.info(f"Synced external license {appid}: {action}")
        return SingleSyncResult(
            success=True,
            appid=appid,
            action=action,
            license_id=license_.id if license_ is not None else None,
        )

    def _single_failed(self, appid: str, error: str, outcome: SyncResult) -> SingleSyncResult:
        log.warning(f"Single license sync failed for {appid}: {error}")
        outcome.failed += 1
        with self._uow_factory() as uow:
            linked = uow.repositories.licenses.find_by_appid(appid)
            for license_ in linked:
                license_.mark_sync_failed(error, self._clock())
            if linked:
                uow.commit()
        return SingleSyncResult(success=False, appid=appid, error=error)

    # pending records -----------------------------------------------------------

    async def sync_pending(
        self,
        *,
        limit: int = DEFAULT_PENDING_LIMIT,
        batch_size: int = DEFAULT_PENDING_BATCH_SIZE,
    ) -> PendingSyncResult:
        """Retry linked licenses whose last sync is pending or failed."""

        if limit < 1 or batch_size < 1:
            raise ValueError("limit and batch_size must be positive")
        with self._exclusive():
            context = self._start(PENDING_SYNC_OPERATION, limit=limit, batch_size=batch_size)
            result = PendingSyncResult()
            try:
                changed = await self._sync_pending(result, limit=limit, batch_size=batch_size)
            except Exception as exc:
                self._finish(context, result, error=exc)
                raise
            if changed:
                self._after_write(changed)
            self._finish(context, result, error=None)
            log.info(
                f"Pending license sync: processed={result.processed}, synced={result.synced}, "
                f"failed={result.failed}"
            )
            return result

    async def _sync_pending(
        self, result: PendingSyncResult, *, limit: int, batch_size: int
    ) -> list[UUID]:
        changed: list[UUID] = []
        with self._uow_factory() as uow:
            pending = list(uow.repositories.licenses.list_needing_sync(limit=limit))
            for start in range(0, len(pending), batch_size):
                for license_ in pending[start : start + batch_size]:
                    result.processed += 1
                    error = await self._refresh(license_)
                    if error is None:
                        result.synced += 1
                    else:
                        result.failed += 1
                        label = license_.appid or license_.countid
                        result.errors.append(f"License {label}: {error}")
                        license_.mark_sync_failed(error, self._clock())
                    changed.append(license_.id)
                uow.commit()
        return changed

    async def _refresh(self, license_: License) -> str | None:
        try:
            if license_.appid:
                raw = await self._source.fetch_by_appid(license_.appid)
            elif license_.countid is not None:
                raw = await self._source.fetch_by_countid(license_.countid)
            else:
                return "License has no external identifier"
        except ExternalApiError as exc:
            return str(exc)
        if raw is None:
            return "License not found in external system"
        validation = validate_license(raw, options=self._validation)
        if not validation.is_valid or validation.sanitized is None:
            return "; ".join(validation.errors)
        apply_update(license_, plan_update(license_, validation.sanitized), now=self._clock())
        return None

    def _after_write(self, ids: Sequence[UUID]) -> None:
        if self._cache is not None:
            invalidate_all_licenses(self._cache)
        if self._events is not None:
            self._events.emit_data_changed(EVENT_SOURCE, ids)
