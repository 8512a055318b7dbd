"""Feed type definitions.

Wire shapes exchanged with the feed service. Field names follow the
service's camelCase keys through aliases; Python code uses snake_case.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FeedState(str, Enum):
    """Feed lifecycle state."""

    OPEN = "open"
    CLOSED = "closed"
    ERROR = "error"


class FeedType(str, Enum):
    """Direction of a feed relative to its processor."""

    INPUT = "IN"
    OUTPUT = "OUT"
    UNPROCESSED = "THRU"


class FieldType(str, Enum):
    """Declared type of a message contract field."""

    STRING = "S"
    NUMBER = "N"
    BOOLEAN = "B"
    DATE = "D"


class FieldDescriptor(BaseModel):
    """One field of a message contract."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    field_name: str = Field(alias="fieldName")
    field_type: FieldType = Field(alias="fieldType")
    required: bool = False
    min_value: float | None = Field(default=None, alias="min")
    max_value: float | None = Field(default=None, alias="max")


class FeedSettings(BaseModel):
    """Settings of a feed, as declared by the caller and resolved by the server.

    The server answers a create-session command with the authoritative
    settings (feed key, feed type, message contract). Keys the client does
    not know about are kept so they round-trip on reopen.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )

    state: FeedState = FeedState.CLOSED
    feed_key: str | None = Field(default=None, alias="feedKey")
    proc_id: int | str = Field(alias="procId")
    filters: dict[str, Any] | None = None
    feed_type: FeedType | None = Field(default=None, alias="feedType")
    template_type: str | None = Field(default=None, alias="templateType")
    active_user_fields: list[Any] | None = Field(default=None, alias="activeUserFields")
    msg_contract: list[FieldDescriptor] | None = Field(default=None, alias="msgContract")
    active_user_cycle: int | None = Field(default=None, alias="activeUserCycle")  # secs
    active_user_flag: bool | None = Field(default=None, alias="activeUserFlag")
    go_inactive_time: int | None = Field(default=None, alias="goInactiveTime")  # secs

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the service's key names."""
        return self.model_dump(by_alias=True, mode="json")

    def date_field_names(self) -> list[str]:
        """Names of date-typed contract fields, in contract order."""
        return [
            f.field_name for f in (self.msg_contract or []) if f.field_type == FieldType.DATE
        ]
