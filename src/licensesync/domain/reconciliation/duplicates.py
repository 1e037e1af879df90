"""Duplicate detection within the external fetch and within the internal store.

Responsibilities of this stage:
- remember which ``countid``/email values a run has already reconciled
- group internal licenses sharing an email or ``countid``
- pick the surviving license of a group and fold identifiers into it

Cross-system ambiguity is detected by :mod:`.matching`, not here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable
    from uuid import UUID

    from licensesync.domain.model import License
    from licensesync.domain.validation import SanitizedLicense

type GroupKey = tuple[str, str]

_EPOCH = datetime.min.replace(tzinfo=UTC)

# identifiers a retired license hands to the survivor when the survivor has none
_ABSORBED_FIELDS = ("appid", "countid", "email_license", "mid", "sendbat_workspace")


def _normalized_email(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip().lower()
    return None


@dataclass(slots=True)
class ExternalDuplicateTracker:
    """First occurrence of a ``countid`` or email wins; later ones are duplicates."""

    seen_countids: set[int] = field(default_factory=set[int])
    seen_emails: set[str] = field(default_factory=set[str])

    def is_duplicate(self, record: SanitizedLicense) -> bool:
        email = _normalized_email(record.email_license)
        if record.countid in self.seen_countids or (email and email in self.seen_emails):
            return True
        self.seen_countids.add(record.countid)
        if email:
            self.seen_emails.add(email)
        return False


@dataclass(slots=True, frozen=True)
class DuplicateGroup:
    key: GroupKey
    members: tuple[License, ...]

    @property
    def member_ids(self) -> frozenset[UUID]:
        return frozenset(member.id for member in self.members)


@dataclass(slots=True, frozen=True)
class ConsolidationPlan:
    survivor: License
    retired: tuple[License, ...]


def group_internal_duplicates(licenses: Iterable[License]) -> list[DuplicateGroup]:
    """Groups of two or more distinct licenses sharing a normalized email or countid."""

    buckets: dict[GroupKey, dict[UUID, License]] = {}
    for license_ in licenses:
        if (email := _normalized_email(license_.email_license)) is not None:
            buckets.setdefault(("email", email), {})[license_.id] = license_
        if license_.countid is not None:
            buckets.setdefault(("countid", str(license_.countid)), {})[license_.id] = license_
    return [
        DuplicateGroup(key=key, members=tuple(members.values()))
        for key, members in sorted(buckets.items())
        if len(members) > 1
    ]


def _activity_rank(license_: License) -> tuple[datetime, datetime]:
    return (license_.last_active or _EPOCH, license_.updated_at or _EPOCH)


def plan_consolidation(
    group: DuplicateGroup, *, retired_ids: Collection[UUID] = ()
) -> ConsolidationPlan | None:
    """Keep the most recently active member; ``None`` when nothing is left to merge."""

    remaining = [member for member in group.members if member.id not in retired_ids]
    if len(remaining) < 2:
        return None
    survivor = max(remaining, key=_activity_rank)
    return ConsolidationPlan(
        survivor=survivor,
        retired=tuple(member for member in remaining if member is not survivor),
    )


def absorb_identifiers(survivor: License, retired: Iterable[License]) -> None:
    for other in retired:
        for name in _ABSORBED_FIELDS:
            if getattr(survivor, name) is None and getattr(other, name) is not None:
                setattr(survivor, name, getattr(other, name))
