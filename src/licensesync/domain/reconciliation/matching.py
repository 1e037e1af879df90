"""Identity lookup of external records against the internal store.

Identifiers are tried in priority order (appid, linked email, countid); the first
identifier that finds anything decides. Finding more than one distinct internal
license through that identifier is a cross-system duplicate and is never resolved
automatically.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .contracts import LicenseMatch, MatchedBy, MatchOutcome

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Sequence
    from uuid import UUID

    from licensesync.domain.model import License
    from licensesync.domain.ports.persistence import LicenseRepository
    from licensesync.domain.validation import SanitizedLicense


def _lookups(
    record: SanitizedLicense, repository: LicenseRepository
) -> list[tuple[MatchedBy, Callable[[], Sequence[License]]]]:
    lookups: list[tuple[MatchedBy, Callable[[], Sequence[License]]]] = []
    appid = record.appid
    if isinstance(appid, str) and appid:
        lookups.append((MatchedBy.APPID, lambda: repository.find_by_appid(appid)))
    email = record.email_license
    if isinstance(email, str) and email:
        lookups.append((MatchedBy.EMAIL, lambda: repository.find_by_email(email)))
    countid = record.countid
    lookups.append((MatchedBy.COUNTID, lambda: repository.find_by_countid(countid)))
    return lookups


def match_license(
    record: SanitizedLicense,
    repository: LicenseRepository,
    *,
    excluded: Collection[UUID] = (),
) -> LicenseMatch:
    """Find the internal license an external record refers to."""

    for matched_by, lookup in _lookups(record, repository):
        candidates = _distinct(lookup(), excluded)
        if not candidates:
            continue
        if len(candidates) > 1:
            return LicenseMatch(
                outcome=MatchOutcome.CROSS_SYSTEM_DUPLICATE,
                candidates=candidates,
                matched_by=matched_by,
            )
        return LicenseMatch(
            outcome=MatchOutcome.MATCHED,
            target=candidates[0],
            candidates=candidates,
            matched_by=matched_by,
        )
    return LicenseMatch(outcome=MatchOutcome.NEW)


def _distinct(found: Sequence[License], excluded: Collection[UUID]) -> tuple[License, ...]:
    seen: dict[UUID, License] = {}
    for license_ in found:
        if license_.id in excluded:
            continue
        seen.setdefault(license_.id, license_)
    return tuple(seen.values())
