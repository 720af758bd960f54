from database.connection import get_db, with_retry
from app.domain.models import LoyaltyCardSnapshot


class LoyaltyCardRepository:
    """Read-only access to loyalty state. Never cached: every pass build re-reads it."""

    @staticmethod
    @with_retry()
    def get_snapshot(card_number: str) -> LoyaltyCardSnapshot | None:
        """Get the current loyalty card state by card number (= pass serial)."""
        db = get_db()
        result = db.table("loyalty_cards").select("*").eq(
            "card_number", card_number
        ).limit(1).execute()
        return LoyaltyCardSnapshot.from_row(result.data[0]) if result and result.data else None

    @staticmethod
    @with_retry()
    def get_customer(customer_id: str) -> dict | None:
        """Get the customer a loyalty card belongs to."""
        db = get_db()
        result = db.table("customers").select("*").eq("id", customer_id).limit(1).execute()
        return result.data[0] if result and result.data else None
