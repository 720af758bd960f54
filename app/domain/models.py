"""
In-process value types for the pass update subsystem.

Rows come back from Supabase as plain dicts; repositories convert them
into these frozen dataclasses at the boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone


def parse_datetime(dt_value) -> datetime | None:
    """Parse a datetime value from the database (could be string or datetime)."""
    if dt_value is None:
        return None
    if isinstance(dt_value, datetime):
        if dt_value.tzinfo is None:
            return dt_value.replace(tzinfo=timezone.utc)
        return dt_value
    if isinstance(dt_value, str):
        try:
            # Handle ISO format with timezone
            dt = datetime.fromisoformat(dt_value.replace("Z", "+00:00"))
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt
        except ValueError:
            return None
    return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def row_timestamp(row: dict) -> datetime | None:
    """updated_at, or created_at for rows that were never updated."""
    return parse_datetime(row.get("updated_at")) or parse_datetime(row.get("created_at"))


@dataclass(frozen=True)
class PassIdentity:
    pass_type_identifier: str
    serial_number: str
    authentication_token: str
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "PassIdentity":
        return cls(
            pass_type_identifier=row["pass_type_identifier"],
            serial_number=row["serial_number"],
            authentication_token=row["authentication_token"],
            updated_at=row_timestamp(row),
        )


@dataclass(frozen=True)
class DeviceRegistration:
    device_library_identifier: str
    pass_type_identifier: str
    serial_number: str
    push_token: str
    authentication_token: str | None
    updated_at: datetime

    @classmethod
    def from_row(cls, row: dict) -> "DeviceRegistration":
        return cls(
            device_library_identifier=row["device_library_identifier"],
            pass_type_identifier=row["pass_type_identifier"],
            serial_number=row["serial_number"],
            push_token=row["push_token"],
            authentication_token=row.get("authentication_token"),
            updated_at=row_timestamp(row) or datetime.fromtimestamp(0, tz=timezone.utc),
        )


@dataclass(frozen=True)
class LoyaltyCardSnapshot:
    card_number: str
    customer_id: str
    current_points: int = 0
    current_stamps: int = 0
    updated_at: datetime | None = None
    row: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_row(cls, row: dict) -> "LoyaltyCardSnapshot":
        return cls(
            card_number=row["card_number"],
            customer_id=row["customer_id"],
            current_points=int(row.get("current_points") or 0),
            current_stamps=int(row.get("current_stamps") or 0),
            updated_at=row_timestamp(row),
            row=dict(row),
        )


@dataclass(frozen=True)
class PassContext:
    """Everything the regeneration pipeline reads from the data store."""

    identity: PassIdentity
    card: LoyaltyCardSnapshot
    customer: dict
    config: dict

    @property
    def last_modified(self) -> datetime | None:
        timestamps = [
            t for t in (
                self.identity.updated_at,
                self.card.updated_at,
                row_timestamp(self.config),
            )
            if t is not None
        ]
        return max(timestamps) if timestamps else None


@dataclass(frozen=True)
class GeneratedPass:
    content: bytes
    last_modified: datetime | None


@dataclass(frozen=True)
class PushJob:
    push_token: str
    topic: str
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryOutcome:
    push_token: str
    success: bool
    status: str | None = None
    description: str | None = None


@dataclass
class DispatchReport:
    serial_number: str
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def success(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def no_devices(self) -> bool:
        return not self.outcomes
