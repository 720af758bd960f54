"""Apple Wallet web service endpoints (pass update protocol v1)."""

import logging
from datetime import datetime, timezone
from email.utils import formatdate, parsedate_to_datetime

from fastapi import APIRouter, Header, Body, Response, Depends
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_pass_regenerator
from app.core.errors import NotFoundError, ValidationError
from app.core.security import authenticate_pass
from app.domain.models import PassIdentity
from app.domain.schemas import WalletLogRequest
from app.repositories.device import DeviceRepository
from app.services.feed import resolve_updates
from app.services.pass_bundle import PKPASS_MEDIA_TYPE
from app.services.pass_generator import PassRegenerator

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_pass_type(identity: PassIdentity, pass_type_id: str) -> None:
    if identity.pass_type_identifier != pass_type_id:
        raise NotFoundError("Pass not found")


def _not_modified(last_modified: datetime | None, if_modified_since: str | None) -> bool:
    """Compare at HTTP-date (whole second) precision."""
    if not if_modified_since or not last_modified:
        return False
    try:
        client_date = parsedate_to_datetime(if_modified_since)
    except (ValueError, TypeError):
        return False  # Invalid header format, continue with full response
    if client_date.tzinfo is None:
        client_date = client_date.replace(tzinfo=timezone.utc)
    return last_modified.replace(microsecond=0) <= client_date


@router.post("/v1/devices/{device_library_id}/registrations/{pass_type_id}/{serial_number}")
def register_device_endpoint(
    device_library_id: str,
    pass_type_id: str,
    serial_number: str,
    authorization: str | None = Header(None),
    body: dict | None = Body(None),
):
    """Register a device for push notifications."""
    identity = authenticate_pass(serial_number, authorization)
    _require_pass_type(identity, pass_type_id)

    push_token = (body or {}).get("pushToken")
    if not push_token:
        raise ValidationError("pushToken required")

    DeviceRepository.register(
        device_library_id,
        pass_type_id,
        serial_number,
        push_token,
        identity.authentication_token,
    )

    logger.info(f"Device registered: {device_library_id[:20]}... for pass {serial_number[:8]}...")

    return Response(status_code=201)


@router.delete("/v1/devices/{device_library_id}/registrations/{pass_type_id}/{serial_number}")
def unregister_device_endpoint(
    device_library_id: str,
    pass_type_id: str,
    serial_number: str,
    authorization: str | None = Header(None),
):
    """Unregister a device from push notifications."""
    authenticate_pass(serial_number, authorization)

    DeviceRepository.unregister(device_library_id, pass_type_id, serial_number)

    logger.info(f"Device unregistered: {device_library_id[:20]}... for pass {serial_number[:8]}...")

    return Response(status_code=200)


@router.get("/v1/devices/{device_library_id}/registrations/{pass_type_id}")
def get_serial_numbers(
    device_library_id: str,
    pass_type_id: str,
    passesUpdatedSince: str | None = None,  # noqa: N803 - Apple Wallet API requirement
):
    """Get list of passes registered to this device that have been updated."""
    updates = resolve_updates(device_library_id, pass_type_id, passesUpdatedSince)

    if updates is None:
        return Response(status_code=204)

    return updates


@router.get("/v1/passes/{pass_type_id}/{serial_number}")
async def get_latest_pass(
    pass_type_id: str,
    serial_number: str,
    authorization: str | None = Header(None),
    if_modified_since: str | None = Header(None, alias="If-Modified-Since"),
    regenerator: PassRegenerator = Depends(get_pass_regenerator),
):
    """Download the latest version of a pass."""
    identity = await run_in_threadpool(authenticate_pass, serial_number, authorization)
    _require_pass_type(identity, pass_type_id)

    context = await regenerator.load_context(serial_number, identity)

    if _not_modified(context.last_modified, if_modified_since):
        return Response(status_code=304)

    generated = await regenerator.build(context)

    headers = {}
    if generated.last_modified:
        headers["Last-Modified"] = formatdate(generated.last_modified.timestamp(), usegmt=True)

    return Response(
        content=generated.content,
        media_type=PKPASS_MEDIA_TYPE,
        headers=headers,
    )


@router.post("/v1/log")
def receive_logs(body: WalletLogRequest):
    """Receive error logs from Apple Wallet."""
    for log in body.logs:
        logger.warning(f"Wallet log: {log}")
    return Response(status_code=200)
