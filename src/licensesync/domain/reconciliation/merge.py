"""Turning sanitized external records into internal license changes.

Only sync-owned fields are ever written by an update; administrative fields
(notes, payments, plan, product, term, seats, key and an already set start date)
belong to the back office. Values kept from a lenient validation may have the
wrong type; those are ignored rather than written.
"""

from __future__ import annotations

import secrets
import string
from datetime import date, datetime
from typing import TYPE_CHECKING

from licensesync.domain.model import ExternalSyncStatus, License, LicenseStatus

if TYPE_CHECKING:
    from licensesync.domain.validation import SanitizedLicense

DEFAULT_PRODUCT = "ABC Business Suite"
DEFAULT_PLAN = "Basic"
DEFAULT_TERM = "monthly"
FALLBACK_DBA = "External License"

_KEY_ALPHABET = string.ascii_uppercase + string.digits
_KEY_SUFFIX_LENGTH = 6


def _text(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def _number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def _day(value: object) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value if isinstance(value, date) else None


def _moment(value: object) -> datetime | None:
    return value if isinstance(value, datetime) else None


def _container(value: object) -> dict[str, object] | list[object] | None:
    if isinstance(value, dict | list):
        return value  # pyright: ignore[reportUnknownVariableType]
    return None


def _status_fields(record: SanitizedLicense) -> dict[str, object]:
    match record.status:
        case 1:
            return {"status": LicenseStatus.ACTIVE}
        case 0:
            fields: dict[str, object] = {"status": LicenseStatus.CANCEL}
            last_active = _moment(record.last_active)
            if last_active is not None:
                fields["cancel_date"] = last_active.date()
            return fields
        case _:
            return {}


def generate_license_key(record: SanitizedLicense, now: datetime) -> str:
    if appid := _text(record.appid):
        stem = appid
    elif record.countid is not None:
        stem = f"C{record.countid}"
    else:
        stem = str(int(now.timestamp() * 1000))
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(_KEY_SUFFIX_LENGTH))
    return f"EXT-{stem}-{suffix}"


def build_license(record: SanitizedLicense, *, now: datetime) -> License:
    """Create path: a new internal license linked to ``record``."""

    email = _text(record.email_license)
    status_fields = _status_fields(record)
    status = status_fields.get("status", LicenseStatus.CANCEL)
    cancel_date = status_fields.get("cancel_date")
    return License(
        key=generate_license_key(record, now),
        product=DEFAULT_PRODUCT,
        plan=DEFAULT_PLAN,
        term=DEFAULT_TERM,
        status=status,  # pyright: ignore[reportArgumentType]
        seats_total=1,
        seats_used=0,
        dba=_text(record.dba) or email or FALLBACK_DBA,
        zip=_text(record.zip),
        email_license=email,
        notes=_text(record.note),
        last_payment=_number(record.monthly_fee) or 0.0,
        sms_purchased=_number(record.sms_purchased) or 0.0,
        sms_balance=_number(record.sms_balance) or 0.0,
        starts_at=_day(record.activate_date) or now.date(),
        expires_at=_day(record.coming_expired),
        cancel_date=cancel_date if isinstance(cancel_date, date) else None,
        last_active=_moment(record.last_active),
        appid=_text(record.appid),
        countid=record.countid,
        external_sync_status=ExternalSyncStatus.SYNCED,
        last_external_sync=now,
        mid=_text(record.mid),
        license_type=_text(record.license_type),
        package_data=_container(record.package),
        sendbat_workspace=_text(record.sendbat_workspace),
        created_at=now,
        updated_at=now,
    )


def _incoming_fields(record: SanitizedLicense) -> dict[str, object]:
    incoming: dict[str, object] = {
        "appid": _text(record.appid),
        "countid": record.countid,
        "dba": _text(record.dba),
        "zip": _text(record.zip),
        "last_active": _moment(record.last_active),
        "sms_balance": _number(record.sms_balance),
        "expires_at": _day(record.coming_expired),
        "mid": _text(record.mid),
        "license_type": _text(record.license_type),
        "package_data": _container(record.package),
        "sendbat_workspace": _text(record.sendbat_workspace),
        **_status_fields(record),
    }
    return {name: value for name, value in incoming.items() if value is not None}


def plan_update(target: License, record: SanitizedLicense) -> dict[str, object]:
    """Sync-owned fields of ``target`` that differ from ``record``; empty means no-op."""

    changes = {
        name: value
        for name, value in _incoming_fields(record).items()
        if getattr(target, name) != value
    }
    if target.starts_at is None and (activated := _day(record.activate_date)) is not None:
        changes["starts_at"] = activated
    if target.external_sync_status != ExternalSyncStatus.SYNCED:
        changes["external_sync_status"] = ExternalSyncStatus.SYNCED
    if target.external_sync_error is not None:
        changes["external_sync_error"] = None
    return changes


def apply_update(target: License, changes: dict[str, object], *, now: datetime) -> None:
    for name, value in changes.items():
        setattr(target, name, value)
    target.mark_synced(now)


def push_payload(license_: License) -> dict[str, object]:
    """Fields the back office owns and pushes back to the external system."""

    return {
        "dba": license_.dba,
        "zip": license_.zip,
        "status": 1 if license_.status == LicenseStatus.ACTIVE else 0,
        "monthlyFee": license_.last_payment,
        "smsBalance": license_.sms_balance,
        "Note": license_.notes,
    }
