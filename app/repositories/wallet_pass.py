import secrets
from datetime import datetime

from database.connection import get_db, older_than, with_retry
from app.domain.models import PassIdentity, utcnow


def issue_token() -> str:
    """Random ApplePass authentication token (43 URL-safe characters)."""
    return secrets.token_urlsafe(32)


class WalletPassRepository:
    """Pass identities (wallet_passes table): serial number, type and auth token."""

    @staticmethod
    @with_retry()
    def get_by_serial(serial_number: str) -> PassIdentity | None:
        """Get a pass identity by serial number."""
        db = get_db()
        result = db.table("wallet_passes").select("*").eq(
            "serial_number", serial_number
        ).limit(1).execute()
        return PassIdentity.from_row(result.data[0]) if result and result.data else None

    @staticmethod
    @with_retry()
    def touch(serial_number: str, at: datetime | None = None) -> None:
        """Advance updated_at (or set it, if unset) so Last-Modified reflects the pending update."""
        at = at or utcnow()
        db = get_db()
        db.table("wallet_passes").update({
            "updated_at": at.isoformat(),
        }).eq("serial_number", serial_number).or_(older_than(at)).execute()

    @staticmethod
    @with_retry()
    def create(serial_number: str, pass_type_id: str, auth_token: str) -> PassIdentity:
        """Create a pass identity, keeping the existing one if the serial is taken.

        Two concurrent issuances for the same card both end up with the
        identity that was written first.
        """
        now = utcnow().isoformat()
        db = get_db()
        db.table("wallet_passes").upsert({
            "serial_number": serial_number,
            "pass_type_identifier": pass_type_id,
            "authentication_token": auth_token,
            "created_at": now,
            "updated_at": now,
        }, on_conflict="serial_number", ignore_duplicates=True).execute()
        result = db.table("wallet_passes").select("*").eq(
            "serial_number", serial_number
        ).limit(1).execute()
        return PassIdentity.from_row(result.data[0])
