"""Validation and sanitization of raw external license records.

The external system mixes key casings for the same logical field and is loose about
types (numbers arrive as strings, dates as ISO strings with or without time). This
module turns one raw mapping into a :class:`SanitizedLicense` or a list of errors:

- keys are normalized to canonical snake_case names first
- each present field is sanitized by a rule from ``_FIELD_RULES``
- business rules run on the sanitized values

In lenient mode (the default) a field that fails its rule is reported as a warning
and keeps the original value; strict mode turns the same failure into an error.
Nothing here performs I/O.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

log = getLogger(__name__)

DEFAULT_MAX_FIELD_LENGTH = 1000
DEFAULT_ALLOWED_LICENSE_TYPES = ("demo", "product")

ZIP_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# canonical name -> accepted source spellings, first match wins
_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "countid": ("countid", "countId", "CountId"),
    "appid": ("appid", "appId", "AppId"),
    "dba": ("dba", "DBA", "Dba"),
    "zip": ("zip", "Zip", "ZIP"),
    "email_license": ("email_license", "emailLicense", "Email_license", "email"),
    "license_type": ("license_type", "licenseType", "License_type"),
    "status": ("status", "Status"),
    "monthly_fee": ("monthly_fee", "monthlyFee", "MonthlyFee"),
    "sms_balance": ("sms_balance", "smsBalance", "SmsBalance"),
    "sms_purchased": ("sms_purchased", "smsPurchased", "SmsPurchased"),
    "activate_date": ("activate_date", "activateDate", "ActivateDate"),
    "coming_expired": ("coming_expired", "comingExpired", "Coming_expired", "expiresAt"),
    "last_active": ("last_active", "lastActive", "LastActive"),
    "mid": ("mid", "Mid", "MID"),
    "note": ("note", "Note", "notes"),
    "sendbat_workspace": ("sendbat_workspace", "sendbatWorkspace", "Sendbat_workspace"),
    "package": ("package", "Package"),
}


@dataclass(slots=True, frozen=True, kw_only=True)
class ValidationOptions:
    strict_mode: bool = False
    max_field_length: int = DEFAULT_MAX_FIELD_LENGTH
    allowed_license_types: tuple[str, ...] = DEFAULT_ALLOWED_LICENSE_TYPES


@dataclass(slots=True, frozen=True, kw_only=True)
class SanitizedLicense:
    """Validated external record with canonical names; ``None`` marks absent fields."""

    countid: int
    appid: str | None = None
    dba: str | None = None
    zip: str | None = None
    email_license: str | None = None
    license_type: str | None = None
    status: int | None = None
    monthly_fee: float | None = None
    sms_balance: float | None = None
    sms_purchased: float | None = None
    activate_date: date | None = None
    coming_expired: date | None = None
    last_active: datetime | None = None
    mid: str | None = None
    note: str | None = None
    sendbat_workspace: str | None = None
    package: object | None = None


@dataclass(slots=True)
class LicenseValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list[str])
    warnings: list[str] = field(default_factory=list[str])
    sanitized: SanitizedLicense | None = None
    failed_fields: list[str] = field(default_factory=list[str])


@dataclass(slots=True, frozen=True)
class InvalidLicense:
    index: int
    data: object
    errors: tuple[str, ...]


@dataclass(slots=True)
class BulkValidationResult:
    total: int
    valid: int = 0
    invalid: int = 0
    valid_licenses: list[SanitizedLicense] = field(default_factory=list[SanitizedLicense])
    invalid_licenses: list[InvalidLicense] = field(default_factory=list[InvalidLicense])
    errors: list[str] = field(default_factory=list[str])
    warnings: list[str] = field(default_factory=list[str])


class FieldValidationError(ValueError):
    """Raised by a field rule when a value cannot be sanitized."""


type FieldRule = Callable[[object, ValidationOptions], object]


def normalize_keys(raw: Mapping[str, object]) -> dict[str, object]:
    """Map mixed external key casings onto canonical field names."""

    normalized: dict[str, object] = {}
    for canonical, aliases in _KEY_ALIASES.items():
        for alias in aliases:
            if alias in raw and raw[alias] is not None:
                normalized[canonical] = raw[alias]
                break
    return normalized


# field rules -------------------------------------------------------------------


def _string(*, min_length: int = 0, length_factor: int = 1) -> FieldRule:
    def rule(value: object, options: ValidationOptions) -> str:
        if isinstance(value, bool) or not isinstance(value, str | int | float):
            raise FieldValidationError("must be a string")
        text = str(value).strip()
        max_length = options.max_field_length * length_factor
        if len(text) < min_length:
            raise FieldValidationError(f"must be at least {min_length} characters")
        if len(text) > max_length:
            raise FieldValidationError(f"must be at most {max_length} characters")
        return text

    return rule


def _zip(value: object, options: ValidationOptions) -> str:
    text = _string()(value, options)
    if not ZIP_PATTERN.match(text):
        raise FieldValidationError("must be a 5-digit ZIP code or ZIP+4")
    return text


def _email(value: object, options: ValidationOptions) -> str:
    text = _string()(value, options)
    if not EMAIL_PATTERN.match(text):
        raise FieldValidationError("must be a valid email address")
    return text


def _to_number(value: object) -> float:
    if isinstance(value, bool):
        raise FieldValidationError("must be a number")
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise FieldValidationError("must be a number") from None
    else:
        raise FieldValidationError("must be a number")
    if math.isnan(number) or math.isinf(number):
        raise FieldValidationError("must be a finite number")
    return number


def _non_negative(value: object, options: ValidationOptions) -> float:
    _ = options
    number = _to_number(value)
    if number < 0:
        raise FieldValidationError("must be greater than or equal to 0")
    return number


def _status(value: object, options: ValidationOptions) -> int:
    _ = options
    number = _to_number(value)
    if number not in {0.0, 1.0}:
        raise FieldValidationError("must be one of [0, 1]")
    return int(number)


def _license_type(value: object, options: ValidationOptions) -> str:
    text = _string(min_length=1)(value, options)
    if text not in options.allowed_license_types:
        allowed = ", ".join(options.allowed_license_types)
        raise FieldValidationError(f"must be one of [{allowed}]")
    return text


def _parse_iso(text: str) -> datetime:
    normalized = text.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        raise FieldValidationError("must be an ISO 8601 date") from None


def _date(value: object, options: ValidationOptions) -> date:
    _ = options
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return _parse_iso(value).date()
    raise FieldValidationError("must be an ISO 8601 date")


def _datetime(value: object, options: ValidationOptions) -> datetime:
    _ = options
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        moment = _parse_iso(value)
    else:
        raise FieldValidationError("must be an ISO 8601 date-time")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def _container(value: object, options: ValidationOptions) -> object:
    _ = options
    if not isinstance(value, Mapping | list):
        raise FieldValidationError("must be an object or array")
    return value


_FIELD_RULES: dict[str, FieldRule] = {
    "appid": _string(min_length=1),
    "dba": _string(min_length=1),
    "zip": _zip,
    "email_license": _email,
    "license_type": _license_type,
    "status": _status,
    "monthly_fee": _non_negative,
    "sms_balance": _non_negative,
    "sms_purchased": _non_negative,
    "activate_date": _date,
    "coming_expired": _date,
    "last_active": _datetime,
    "mid": _string(),
    "note": _string(length_factor=2),
    "sendbat_workspace": _string(),
    "package": _container,
}


def _is_absent(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _check_countid(value: object, errors: list[str]) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        errors.append("countid is required and must be a number")
        return None
    if isinstance(value, float) and not value.is_integer():
        errors.append("countid must be an integer")
        return None
    countid = int(value)
    if countid < 1:
        errors.append("countid must be greater than or equal to 1")
        return None
    return countid


def _check_business_rules(
    values: Mapping[str, object],
    errors: list[str],
    warnings: list[str],
) -> None:
    if values.get("status") == 1:
        if values.get("activate_date") is None:
            warnings.append("Active license should have an activation date")
        if values.get("last_active") is None:
            warnings.append("Active license should have a last active timestamp")

    balance = values.get("sms_balance")
    purchased = values.get("sms_purchased")
    if isinstance(balance, float) and isinstance(purchased, float) and balance > purchased:
        warnings.append("SMS balance should not exceed purchased amount")

    activated = values.get("activate_date")
    expires = values.get("coming_expired")
    if isinstance(activated, date) and isinstance(expires, date) and expires <= activated:
        errors.append("Expiration date must be after activation date")


def validate_license(
    raw: object,
    *,
    options: ValidationOptions | None = None,
) -> LicenseValidationResult:
    """Validate one raw external record."""

    opts = options or ValidationOptions()
    if not isinstance(raw, Mapping):
        return LicenseValidationResult(
            is_valid=False,
            errors=["License data must be a valid object"],
            failed_fields=["record"],
        )

    normalized = normalize_keys(raw)  # pyright: ignore[reportUnknownArgumentType]
    errors: list[str] = []
    warnings: list[str] = []
    failed_fields: list[str] = []

    countid = _check_countid(normalized.get("countid"), errors)
    if countid is None:
        failed_fields.append("countid")

    values: dict[str, object] = {}
    for name, rule in _FIELD_RULES.items():
        value = normalized.get(name)
        if _is_absent(value):
            continue
        try:
            values[name] = rule(value, opts)
        except FieldValidationError as exc:
            failed_fields.append(name)
            if opts.strict_mode:
                errors.append(f"{name}: {exc}")
            else:
                warnings.append(f"{name}: {exc} (using original value)")
                values[name] = value

    errors_before_rules = len(errors)
    _check_business_rules(values, errors, warnings)
    if len(errors) > errors_before_rules:
        failed_fields.append("coming_expired")

    if errors:
        log.warning(
            f"License validation failed for countid={normalized.get('countid')!r} "
            f"appid={normalized.get('appid')!r}: {'; '.join(errors[:5])}"
        )
        return LicenseValidationResult(
            is_valid=False, errors=errors, warnings=warnings, failed_fields=failed_fields
        )

    assert countid is not None
    sanitized = SanitizedLicense(countid=countid, **values)  # pyright: ignore[reportArgumentType]
    return LicenseValidationResult(
        is_valid=True,
        errors=errors,
        warnings=warnings,
        sanitized=sanitized,
        failed_fields=failed_fields,
    )


def validate_licenses(
    raws: Sequence[object],
    *,
    options: ValidationOptions | None = None,
    continue_on_error: bool = True,
) -> BulkValidationResult:
    """Validate a batch; failing records are collected instead of aborting the batch."""

    result = BulkValidationResult(total=len(raws))
    for index, raw in enumerate(raws):
        validation = validate_license(raw, options=options)
        if validation.is_valid and validation.sanitized is not None:
            result.valid += 1
            result.valid_licenses.append(validation.sanitized)
        else:
            result.invalid += 1
            result.invalid_licenses.append(
                InvalidLicense(index=index, data=raw, errors=tuple(validation.errors))
            )
            result.errors.extend(f"License {index}: {error}" for error in validation.errors)
        result.warnings.extend(f"License {index}: {warning}" for warning in validation.warnings)

        if not validation.is_valid and not continue_on_error:
            break

    log.debug(f"Validated {result.total} licenses: valid={result.valid}, invalid={result.invalid}")
    return result
