"""Unit tests for message contract validation and coercion."""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta, timezone

import pytest

from feedlink.contract import (
    CANNOT_PARSE,
    MESSAGE_INCOMPLETE,
    MessageContractValidator,
    coerce_boolean,
    coerce_date,
    coerce_number,
    coerce_string,
    encode_dates,
    from_epoch_millis,
    parse_message,
    rehydrate_dates,
    to_epoch_millis,
)
from feedlink.types import FieldDescriptor, FieldType


def contract(*fields: tuple[str, str], **options) -> list[FieldDescriptor]:
    required = options.get("required", ())
    return [
        FieldDescriptor(fieldName=name, fieldType=ftype, required=name in required)
        for name, ftype in fields
    ]


# =============================================================================
# Coercion table
# =============================================================================


class TestCoerceNumber:
    """Number fields accept numbers and numeric text only."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(100, 100), (1.5, 1.5), ("100", 100), ("1.5", 1.5), (" 7 ", 7), ("-3", -3)],
    )
    def test_accepts(self, value, expected):
        """Numbers and numeric text coerce to numbers."""
        result = coerce_number(value)

        assert result.ok
        assert result.value == expected
        assert type(result.value) is type(expected)

    @pytest.mark.parametrize(
        "value",
        [True, False, "abc", "", {}, {"a": 1}, [], [1], math.nan, math.inf, "inf", "1_000", "1_0.5"],
    )
    def test_rejects(self, value):
        """Bools, objects, arrays, other text and non-finite values are rejected."""
        assert not coerce_number(value).ok

    def test_large_integer(self):
        """Integers beyond float range are still valid numbers."""
        result = coerce_number(10**400)

        assert result.ok
        assert result.value == 10**400


class TestCoerceString:
    """String fields accept text, bools and numbers."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("x", "x"), ("", ""), (True, "true"), (False, "false"), (100, "100"), (1.5, "1.5")],
    )
    def test_accepts(self, value, expected):
        """Scalars coerce to their JSON text."""
        result = coerce_string(value)

        assert result.ok
        assert result.value == expected

    @pytest.mark.parametrize("value", [{}, {"a": 1}, [], ["x"]])
    def test_rejects(self, value):
        """Objects and arrays are rejected."""
        assert not coerce_string(value).ok


class TestCoerceDate:
    """Date fields accept datetimes and epoch milliseconds."""

    def test_datetime_becomes_epoch_millis(self):
        """A datetime is sent as epoch milliseconds."""
        when = datetime(2012, 8, 1, 6, 57, 26, 698000, tzinfo=UTC)

        result = coerce_date(when)

        assert result.ok
        assert result.value == 1343804246698

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(1343805046698, 1343805046698), (1343805046698.0, 1343805046698), ("1343805046698", 1343805046698)],
    )
    def test_accepts_epoch_millis(self, value, expected):
        """Integral numbers and numeric text are taken as epoch milliseconds."""
        result = coerce_date(value)

        assert result.ok
        assert result.value == expected

    @pytest.mark.parametrize("value", [True, 1.5, "1.5", "tomorrow", {}, [], [1]])
    def test_rejects(self, value):
        """Bools, fractional values, other text, objects and arrays are rejected."""
        assert not coerce_date(value).ok


class TestCoerceBoolean:
    """Boolean fields accept native bools only."""

    def test_accepts_bools(self):
        assert coerce_boolean(True).value is True
        assert coerce_boolean(False).ok

    @pytest.mark.parametrize("value", [1, 0, "true", None, {}, []])
    def test_rejects(self, value):
        assert not coerce_boolean(value).ok


# =============================================================================
# Validator
# =============================================================================


class TestMessageContractValidator:
    """Test whole-message validation."""

    def test_no_contract_accepts_as_is(self):
        """Without a contract every message passes untouched."""
        msg = {"anything": [1, 2]}

        result = MessageContractValidator().validate(None, msg)

        assert result.ok
        assert result.message is msg

    def test_missing_required_field(self):
        """A missing required field is reported as an incomplete message."""
        fields = contract(("s", "S"), ("n", "N"), required=("s",))

        result = MessageContractValidator().validate(fields, {"n": 1})

        assert not result.ok
        assert result.error == "Message contract not honored. Message incomplete"
        assert result.error == MESSAGE_INCOMPLETE

    def test_null_required_field(self):
        """A null required field counts as missing."""
        fields = contract(("s", "S"), required=("s",))

        result = MessageContractValidator().validate(fields, {"s": None})

        assert result.error == MESSAGE_INCOMPLETE

    def test_incomplete_wins_over_field_errors(self):
        """Completeness is checked before any field."""
        fields = contract(("s", "S"), ("n", "N"), required=("s",))

        result = MessageContractValidator().validate(fields, {"n": "abc"})

        assert result.error == MESSAGE_INCOMPLETE

    def test_coerces_loose_values(self):
        """Accepted values are rewritten to the declared type."""
        fields = contract(("s", "S"), ("n", "N"), ("b", "B"))

        result = MessageContractValidator().validate(fields, {"s": 5, "n": "100", "b": True})

        assert result.ok
        assert result.message == {"s": "5", "n": 100, "b": True}

    def test_does_not_mutate_input(self):
        """The caller's message is left as it was."""
        fields = contract(("n", "N"))
        msg = {"n": "100"}

        MessageContractValidator().validate(fields, msg)

        assert msg == {"n": "100"}

    def test_field_errors_aggregate_in_contract_order(self):
        """All failing fields are listed in one error, in contract order."""
        fields = contract(("a", "N"), ("b", "S"), ("c", "B"))

        result = MessageContractValidator().validate(fields, {"c": "yes", "a": {}, "b": "ok"})

        assert not result.ok
        assert result.error == "Message contract not honored. Fields with errors : a, c"
        assert result.fields == ["a", "c"]

    def test_boolean_is_string_not_number(self):
        """A bool passes as a string field but fails a number field."""
        fields = contract(("s", "S"), ("n", "N"))

        result = MessageContractValidator().validate(fields, {"s": True, "n": False})

        assert result.fields == ["n"]

    @pytest.mark.parametrize(("value", "ok"), [(0, True), (1000, True), (-1, False), (1001, False), ("500", True)])
    def test_range_is_inclusive(self, value, ok):
        """Number fields must fall within [min, max]."""
        fields = [FieldDescriptor(fieldName="n", fieldType="N", min=0, max=1000)]

        result = MessageContractValidator().validate(fields, {"n": value})

        assert result.ok is ok
        if not ok:
            assert "n" in result.error

    def test_large_integer_checked_against_bounds(self):
        """Huge integers validate, and are compared exactly against bounds."""
        unbounded = contract(("n", "N"))
        bounded = [FieldDescriptor(fieldName="n", fieldType="N", min=0, max=1000)]

        assert MessageContractValidator().validate(unbounded, {"n": 10**400}).message == {"n": 10**400}
        assert MessageContractValidator().validate(bounded, {"n": 10**400}).fields == ["n"]

    def test_range_only_applies_to_numbers(self):
        """min/max on a string field are ignored."""
        fields = [FieldDescriptor(fieldName="s", fieldType=FieldType.STRING, min=0, max=1)]

        result = MessageContractValidator().validate(fields, {"s": "long text"})

        assert result.ok

    def test_extra_fields_pass_through(self):
        """Fields outside the contract are kept untouched."""
        fields = contract(("n", "N"))

        result = MessageContractValidator().validate(fields, {"n": 1, "extra": {"x": [1]}})

        assert result.message["extra"] == {"x": [1]}

    def test_optional_absent_fields_skipped(self):
        """Absent optional fields are neither checked nor added."""
        fields = contract(("n", "N"), ("d", "D"))

        result = MessageContractValidator().validate(fields, {})

        assert result.ok
        assert result.message == {}

    def test_non_mapping_rejected(self):
        """A message that is not an object cannot satisfy a contract."""
        result = MessageContractValidator().validate(contract(("n", "N")), [1, 2])

        assert result.error == CANNOT_PARSE

    def test_disabled_skips_everything(self):
        """With validation off, nothing is checked or coerced."""
        fields = contract(("n", "N"), required=("s",))
        msg = {"n": "not a number"}

        result = MessageContractValidator(enabled=False).validate(fields, msg)

        assert result.ok
        assert result.message == {"n": "not a number"}


# =============================================================================
# Parsing and dates
# =============================================================================


class TestParseMessage:
    """Test JSON text parsing."""

    def test_parses_text(self):
        assert parse_message('{"a": 1}') == (True, {"a": 1})

    def test_parses_bytes(self):
        assert parse_message(b'{"a": 1}') == (True, {"a": 1})

    def test_structured_passes_through(self):
        msg = {"a": 1}

        assert parse_message(msg) == (True, msg)

    def test_invalid_text(self):
        """Non-JSON text fails to parse."""
        assert parse_message("{not json") == (False, None)


class TestDates:
    """Test epoch-millisecond conversion helpers."""

    def test_round_trip_is_millisecond_equal(self):
        """datetime -> epoch ms -> datetime keeps millisecond precision."""
        when = datetime(2024, 2, 29, 23, 59, 59, 123000, tzinfo=UTC)

        assert from_epoch_millis(to_epoch_millis(when)) == when

    def test_naive_datetime_is_utc(self):
        """Naive datetimes are read as UTC."""
        assert to_epoch_millis(datetime(1970, 1, 1, 0, 0, 1)) == 1000

    def test_offset_datetime(self):
        """Aware datetimes in other zones convert by their instant."""
        when = datetime(1970, 1, 1, 1, 0, tzinfo=timezone(timedelta(hours=1)))

        assert to_epoch_millis(when) == 0

    def test_encode_dates(self):
        """Top-level datetimes are encoded, other values kept."""
        msg = {"d": datetime(1970, 1, 1, tzinfo=UTC), "s": "x"}

        assert encode_dates(msg) == {"d": 0, "s": "x"}

    def test_rehydrate_dates(self):
        """Listed date fields come back as aware UTC datetimes."""
        msg = {"d": 1343805046698, "n": 5}

        rehydrate_dates(msg, ["d", "missing"])

        assert msg["d"] == datetime(2012, 8, 1, 7, 10, 46, 698000, tzinfo=UTC)
        assert msg["n"] == 5
        assert "missing" not in msg

    def test_rehydrate_leaves_bad_values(self):
        """Values that are not epoch ms are left as they were."""
        msg = {"d": "soon"}

        rehydrate_dates(msg, ["d"])

        assert msg == {"d": "soon"}
