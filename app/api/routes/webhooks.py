"""Supabase database webhook: loyalty card changes trigger pass updates."""

import hmac
import logging

from fastapi import APIRouter, Body, Depends, Header

from app.api.deps import get_push_dispatcher
from app.core.config import settings
from app.core.errors import AuthenticationError
from app.domain.schemas import DatabaseWebhookEvent, WebhookResponse
from app.services.apns import PushDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()

LOYALTY_TABLE = "loyalty_cards"
UPDATE_EVENTS = {"INSERT", "UPDATE"}


def verify_webhook_secret(x_webhook_secret: str | None = Header(None)) -> None:
    """Reject callers without the shared secret, when one is configured."""
    expected = settings.webhook_secret
    if not expected:
        return
    if not x_webhook_secret or not hmac.compare_digest(
        x_webhook_secret.encode("utf-8"), expected.encode("utf-8")
    ):
        raise AuthenticationError("Invalid webhook secret")


@router.post("/supabase", response_model=WebhookResponse, dependencies=[Depends(verify_webhook_secret)])
async def supabase_webhook(
    event: DatabaseWebhookEvent | None = Body(None),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
):
    """Push a pass update when a loyalty card row is inserted or updated."""
    event = event or DatabaseWebhookEvent()
    record = event.record or {}
    card_number = str(record.get("card_number") or "").strip()

    if event.table != LOYALTY_TABLE or event.type not in UPDATE_EVENTS or not card_number:
        logger.debug(f"Webhook event ignored: {event.type} on {event.table}")
        return WebhookResponse(success=True, message="Event received")

    report = await dispatcher.notify_pass_update(card_number)

    logger.info(
        f"Webhook {event.type} on {event.table} for card {card_number[:8]}...: "
        f"{report.success} of {len(report.outcomes)} devices notified"
    )

    return WebhookResponse(
        success=True,
        message="Wallet notification triggered",
        serialNumber=card_number,
        devices=len(report.outcomes),
    )
