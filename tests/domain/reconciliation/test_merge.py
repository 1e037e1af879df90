from __future__ import annotations

from datetime import UTC, date, datetime

from licensesync.domain.model import ExternalSyncStatus, LicenseStatus
from licensesync.domain.reconciliation.merge import (
    FALLBACK_DBA,
    apply_update,
    build_license,
    generate_license_key,
    plan_update,
    push_payload,
)
from licensesync.domain.validation import SanitizedLicense
from tests.helpers.licenses import make_license

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def _record(**fields: object) -> SanitizedLicense:
    fields.setdefault("countid", 1)
    return SanitizedLicense(**fields)  # pyright: ignore[reportArgumentType]


def test_key_uses_appid_then_countid_then_timestamp() -> None:
    by_appid = generate_license_key(_record(appid="APP-1"), NOW)
    by_countid = generate_license_key(_record(countid=42), NOW)

    assert by_appid.startswith("EXT-APP-1-")
    assert by_countid.startswith("EXT-C42-")
    suffix = by_appid.rsplit("-", 1)[1]
    assert len(suffix) == 6
    assert suffix.isalnum()
    assert suffix.upper() == suffix


def test_generated_keys_differ() -> None:
    keys = {generate_license_key(_record(appid="APP-1"), NOW) for _ in range(20)}

    assert len(keys) > 1


def test_build_license_defaults_missing_values() -> None:
    created = build_license(_record(countid=5), now=NOW)

    assert created.dba == FALLBACK_DBA
    assert created.status is LicenseStatus.CANCEL
    assert created.starts_at == NOW.date()
    assert created.last_payment == 0.0
    assert created.external_sync_status is ExternalSyncStatus.SYNCED
    assert (created.created_at, created.updated_at) == (NOW, NOW)


def test_build_license_ignores_values_of_the_wrong_type() -> None:
    created = build_license(
        _record(dba=12, monthly_fee="lots", package="modules", activate_date="soon"),
        now=NOW,
    )

    assert created.dba == FALLBACK_DBA
    assert created.last_payment == 0.0
    assert created.package_data is None
    assert created.starts_at == NOW.date()


def test_plan_update_is_empty_for_matching_license() -> None:
    record = _record(appid="APP-1", dba="Salon", status=1, sms_balance=10.0)
    target = make_license(
        appid="APP-1",
        countid=1,
        dba="Salon",
        sms_balance=10.0,
        starts_at=date(2024, 1, 1),
        external_sync_status=ExternalSyncStatus.SYNCED,
    )

    assert plan_update(target, record) == {}


def test_plan_update_skips_absent_values_and_admin_fields() -> None:
    record = _record(dba=None, note="from external", monthly_fee=99.0, sms_purchased=5.0)
    target = make_license(countid=1, dba="Keep", notes="internal", last_payment=1.0)

    changes = plan_update(target, record)

    assert "dba" not in changes
    assert "notes" not in changes
    assert "last_payment" not in changes
    assert "sms_purchased" not in changes
    assert changes["external_sync_status"] is ExternalSyncStatus.SYNCED


def test_plan_update_only_fills_missing_start_date() -> None:
    record = _record(activate_date=date(2024, 2, 1))

    unset = plan_update(make_license(countid=1), record)
    kept = plan_update(make_license(countid=1, starts_at=date(2023, 1, 1)), record)

    assert unset["starts_at"] == date(2024, 2, 1)
    assert "starts_at" not in kept


def test_plan_update_cancels_with_last_active_date() -> None:
    record = _record(status=0, last_active=datetime(2024, 5, 2, 8, 0, tzinfo=UTC))

    changes = plan_update(make_license(countid=1), record)

    assert changes["status"] is LicenseStatus.CANCEL
    assert changes["cancel_date"] == date(2024, 5, 2)


def test_apply_update_marks_license_synced() -> None:
    target = make_license(
        countid=1,
        external_sync_status=ExternalSyncStatus.FAILED,
        external_sync_error="boom",
    )

    apply_update(target, {"dba": "Fresh"}, now=NOW)

    assert target.dba == "Fresh"
    assert target.external_sync_status is ExternalSyncStatus.SYNCED
    assert target.external_sync_error is None
    assert target.last_external_sync == NOW
    assert target.updated_at == NOW


def test_push_payload_uses_external_names() -> None:
    license_ = make_license(
        dba="Salon",
        zip="12345",
        status=LicenseStatus.EXPIRED,
        last_payment=30.0,
        sms_balance=4.0,
        notes="note",
    )

    assert push_payload(license_) == {
        "dba": "Salon",
        "zip": "12345",
        "status": 0,
        "monthlyFee": 30.0,
        "smsBalance": 4.0,
        "Note": "note",
    }
