from datetime import datetime

from database.connection import get_db, older_than, with_retry
from app.domain.models import DeviceRegistration, utcnow

REGISTRATION_KEY = "device_library_identifier,pass_type_identifier,serial_number"


class DeviceRepository:
    """Repository for Apple Wallet device registrations (wallet_devices table)."""

    @staticmethod
    @with_retry()
    def register(
        device_library_id: str,
        pass_type_id: str,
        serial_number: str,
        push_token: str,
        auth_token: str,
    ) -> None:
        """Register a device for push notifications.

        Upserts on the composite key, so re-registering the same device/pass
        pair replaces its push token instead of adding a second row.
        """
        db = get_db()
        db.table("wallet_devices").upsert({
            "device_library_identifier": device_library_id,
            "pass_type_identifier": pass_type_id,
            "serial_number": serial_number,
            "push_token": push_token,
            "authentication_token": auth_token,
            "updated_at": utcnow().isoformat(),
        }, on_conflict=REGISTRATION_KEY).execute()

    @staticmethod
    @with_retry()
    def unregister(device_library_id: str, pass_type_id: str, serial_number: str) -> None:
        """Unregister a device. Deleting a missing registration is not an error."""
        db = get_db()
        db.table("wallet_devices").delete().eq(
            "device_library_identifier", device_library_id
        ).eq("pass_type_identifier", pass_type_id).eq(
            "serial_number", serial_number
        ).execute()

    @staticmethod
    @with_retry()
    def list_push_tokens(serial_number: str) -> list[str]:
        """Get all push tokens registered for a pass."""
        db = get_db()
        result = db.table("wallet_devices").select("push_token").eq(
            "serial_number", serial_number
        ).execute()
        return [row["push_token"] for row in result.data if row.get("push_token")]

    @staticmethod
    @with_retry()
    def feed_since(
        device_library_id: str,
        pass_type_id: str,
        since: datetime | None = None,
    ) -> list[DeviceRegistration]:
        """Get the registrations of a device for a pass type.

        When `since` is given only rows with updated_at strictly after it
        are returned.
        """
        db = get_db()
        query = db.table("wallet_devices").select("*").eq(
            "device_library_identifier", device_library_id
        ).eq("pass_type_identifier", pass_type_id)
        if since is not None:
            query = query.gt("updated_at", since.isoformat())
        result = query.execute()
        return [DeviceRegistration.from_row(row) for row in result.data]

    @staticmethod
    @with_retry()
    def mark_serial_updated(serial_number: str, at: datetime | None = None) -> int:
        """Advance updated_at for every registration of a pass.

        Rows already newer than `at` are left alone so the timestamp never
        moves backwards. Rows that never had one are stamped. Returns the number of rows touched.
        """
        at = at or utcnow()
        db = get_db()
        result = db.table("wallet_devices").update({
            "updated_at": at.isoformat(),
        }).eq("serial_number", serial_number).or_(older_than(at)).execute()
        return len(result.data or [])
