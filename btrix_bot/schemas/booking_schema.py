"""Booking confirmation records delivered by the calendar integration."""

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

CONFIRMED_STATUS = "confirmed"


class BookingConfirmation(BaseModel):
    """A confirmation record for a scheduled demo.

    All four fields must be present, and ``status`` must be ``"confirmed"``,
    before the conversation is allowed to say the demo is booked.
    Calendar payloads may carry numeric ids or datetime objects; both are
    normalised to stripped strings.
    """

    booking_id: Optional[str] = None
    start_datetime: Optional[str] = None
    timezone: Optional[str] = None
    status: Optional[str] = None

    @field_validator("booking_id", "start_datetime", "timezone", "status", mode="before")
    @classmethod
    def normalize_field(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if isinstance(v, (datetime, date)):
            return v.isoformat()
        if isinstance(v, (str, int, float)) and not isinstance(v, bool):
            return str(v).strip()
        raise ValueError(f"expected a string, number or datetime, got {type(v).__name__}")

    def is_confirmed(self) -> bool:
        return bool(
            self.booking_id
            and self.start_datetime
            and self.timezone
            and self.status == CONFIRMED_STATUS
        )
