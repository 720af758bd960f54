"""
Update feed: which of a device's passes changed since a given instant.
"""

import logging
import re
from datetime import datetime, timezone

from app.domain.models import parse_datetime
from app.domain.schemas import SerialNumbersResponse
from app.repositories.device import DeviceRepository

logger = logging.getLogger(__name__)

LAST_UPDATED_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# An unencoded "+" in the query string arrives as a space
DECODED_OFFSET = re.compile(r" (\d{2}:?\d{2})$")


def parse_updated_since(value: str | None) -> datetime | None:
    """Parse passesUpdatedSince: ISO-8601, or epoch seconds as older passes send."""
    value = (value or "").strip()
    if not value:
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        pass
    parsed = parse_datetime(DECODED_OFFSET.sub(r"+\1", value))
    if parsed is None:
        logger.warning(f"Ignoring unparseable passesUpdatedSince: {value!r}")
    return parsed


def format_last_updated(value: datetime) -> str:
    # Full precision, so echoing it back as passesUpdatedSince excludes the same rows.
    # Zulu suffix keeps the tag free of "+", which survives an unencoded query string.
    return value.astimezone(timezone.utc).strftime(LAST_UPDATED_FORMAT)


def resolve_updates(
    device_library_id: str,
    pass_type_id: str,
    passes_updated_since: str | None = None,
) -> SerialNumbersResponse | None:
    """Resolve the serial numbers updated after `passes_updated_since`.

    Returns None when nothing changed (the caller answers 204).
    """
    since = parse_updated_since(passes_updated_since)
    registrations = DeviceRepository.feed_since(device_library_id, pass_type_id, since)

    if since is not None:
        # Strict >, whatever precision the store compared at
        registrations = [r for r in registrations if r.updated_at > since]

    if not registrations:
        return None

    last_updated = max(r.updated_at for r in registrations)
    serial_numbers = list(dict.fromkeys(r.serial_number for r in registrations))

    return SerialNumbersResponse(
        lastUpdated=format_last_updated(last_updated),
        serialNumbers=serial_numbers,
    )
