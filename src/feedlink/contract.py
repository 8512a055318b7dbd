"""Message contract validation and coercion.

A feed's message contract declares the fields a message carries. On the send
side the validator checks completeness, coerces loosely-typed values toward
the declared field types and enforces numeric bounds. On the receive side
date fields are re-hydrated from epoch milliseconds.

Coercion is table-driven: each field type maps to a function returning a
Coercion result. Nothing here raises for a bad message; callers get a
ValidationResult.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from .types import FieldDescriptor, FieldType

logger = logging.getLogger(__name__)

CONTRACT_NOT_HONORED = "Message contract not honored."
MESSAGE_INCOMPLETE = f"{CONTRACT_NOT_HONORED} Message incomplete"
CANNOT_PARSE = f"{CONTRACT_NOT_HONORED} Cannot parse message to JSON"
FIELDS_WITH_ERRORS = f"{CONTRACT_NOT_HONORED} Fields with errors : "

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


# =============================================================================
# Date helpers
# =============================================================================


def to_epoch_millis(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_epoch_millis(value: int | float | str) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=int(value))


def encode_dates(message: Any) -> Any:
    """Replace top-level datetime values with epoch milliseconds for the wire."""
    if not isinstance(message, Mapping):
        return message
    return {
        key: to_epoch_millis(value) if isinstance(value, datetime) else value
        for key, value in message.items()
    }


def rehydrate_dates(message: dict[str, Any], date_fields: Sequence[str] | None) -> dict[str, Any]:
    """Rewrite epoch-millisecond date fields into datetimes, in place.

    Fields missing from the message are left alone.
    """
    for name in date_fields or ():
        if name not in message:
            continue
        value = message[name]
        if isinstance(value, datetime) or value is None:
            continue
        try:
            message[name] = from_epoch_millis(value)
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"Date field {name!r} is not epoch milliseconds: {value!r}")
    return message


def parse_message(message: Any) -> tuple[bool, Any]:
    """Parse serialized JSON text into structured form.

    Non-text values are returned unchanged.

    Returns:
        (ok, value) where ok is False if the text was not valid JSON
    """
    if isinstance(message, bytes | bytearray):
        message = message.decode("utf-8")
    if not isinstance(message, str):
        return True, message
    try:
        return True, json.loads(message)
    except json.JSONDecodeError:
        return False, None


# =============================================================================
# Coercion table
# =============================================================================


@dataclass(frozen=True)
class Coercion:
    """Outcome of coercing one value toward a field type."""

    ok: bool
    value: Any = None


_REJECT = Coercion(ok=False)


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never counts as a number here
    return isinstance(value, int | float) and not isinstance(value, bool)


def _number_from_text(text: str) -> int | float | None:
    text = text.strip()
    # int() and float() accept digit separators, the wire format does not
    if not text or "_" in text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def coerce_number(value: Any) -> Coercion:
    if _is_number(value):
        if isinstance(value, float) and not math.isfinite(value):
            return _REJECT
        return Coercion(True, value)
    if isinstance(value, str):
        number = _number_from_text(value)
        return _REJECT if number is None else Coercion(True, number)
    return _REJECT


def coerce_string(value: Any) -> Coercion:
    if isinstance(value, str):
        return Coercion(True, value)
    if isinstance(value, bool) or _is_number(value):
        return Coercion(True, json.dumps(value))
    return _REJECT


def coerce_date(value: Any) -> Coercion:
    if isinstance(value, datetime):
        return Coercion(True, to_epoch_millis(value))
    if isinstance(value, int) and not isinstance(value, bool):
        return Coercion(True, value)
    if isinstance(value, float) and value.is_integer():
        return Coercion(True, int(value))
    if isinstance(value, str):
        number = _number_from_text(value)
        if isinstance(number, int):
            return Coercion(True, number)
        if isinstance(number, float) and number.is_integer():
            return Coercion(True, int(number))
    return _REJECT


def coerce_boolean(value: Any) -> Coercion:
    return Coercion(True, value) if isinstance(value, bool) else _REJECT


COERCERS: dict[FieldType, Callable[[Any], Coercion]] = {
    FieldType.NUMBER: coerce_number,
    FieldType.STRING: coerce_string,
    FieldType.DATE: coerce_date,
    FieldType.BOOLEAN: coerce_boolean,
}


def _within_bounds(descriptor: FieldDescriptor, value: int | float) -> bool:
    if descriptor.min_value is not None and value < descriptor.min_value:
        return False
    return not (descriptor.max_value is not None and value > descriptor.max_value)


# =============================================================================
# Validator
# =============================================================================


@dataclass
class ValidationResult:
    """Result of validating one message against a contract."""

    ok: bool
    message: Any = None
    error: str | None = None
    fields: list[str] = field(default_factory=list)

    @classmethod
    def accepted(cls, message: Any) -> ValidationResult:
        return cls(ok=True, message=message)

    @classmethod
    def rejected(cls, error: str, fields: list[str] | None = None) -> ValidationResult:
        return cls(ok=False, error=error, fields=fields or [])


class MessageContractValidator:
    """Validates outbound messages against a feed's message contract.

    Validation can be switched off as a whole; when off, messages pass
    through untouched and the contract is not consulted.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def validate(
        self,
        contract: Sequence[FieldDescriptor] | None,
        message: Any,
    ) -> ValidationResult:
        """Check a parsed message against a contract.

        Args:
            contract: Ordered field descriptors (None or empty means no contract)
            message: Candidate message, already parsed from JSON text

        Returns:
            ValidationResult carrying the coerced message on success, or a
            single aggregate error text on failure
        """
        if not self.enabled or not contract:
            return ValidationResult.accepted(message)

        if not isinstance(message, Mapping):
            return ValidationResult.rejected(CANNOT_PARSE)

        for descriptor in contract:
            if descriptor.required and message.get(descriptor.field_name) is None:
                return ValidationResult.rejected(MESSAGE_INCOMPLETE)

        coerced = dict(message)
        failed: list[str] = []
        for descriptor in contract:
            name = descriptor.field_name
            if coerced.get(name) is None:
                continue

            result = COERCERS[descriptor.field_type](coerced[name])
            if not result.ok:
                failed.append(name)
                continue

            if descriptor.field_type == FieldType.NUMBER and not _within_bounds(
                descriptor, result.value
            ):
                failed.append(name)
                continue

            coerced[name] = result.value

        if failed:
            return ValidationResult.rejected(FIELDS_WITH_ERRORS + ", ".join(failed), failed)
        return ValidationResult.accepted(coerced)
