from database.connection import get_db, with_retry


class PasskitConfigRepository:

    @staticmethod
    @with_retry()
    def get_active(business_id: str) -> dict | None:
        """Get the active pass rendering configuration for a business."""
        db = get_db()
        result = db.table("passkit_configs").select("*").eq(
            "business_id", business_id
        ).eq("is_active", True).limit(1).execute()
        return result.data[0] if result and result.data else None
