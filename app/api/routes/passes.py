"""Pass issuance for the loyalty front end."""

import logging

from fastapi import APIRouter, Body, Depends, Response

from app.api.deps import get_pass_regenerator
from app.core.errors import NotFoundError, ValidationError
from app.domain.schemas import GeneratePassRequest, PassInfoResponse
from app.repositories.device import DeviceRepository
from app.repositories.wallet_pass import WalletPassRepository
from app.services.feed import format_last_updated
from app.services.pass_bundle import PKPASS_MEDIA_TYPE
from app.services.pass_generator import PassRegenerator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate")
async def generate_pass(
    body: GeneratePassRequest | None = Body(None),
    regenerator: PassRegenerator = Depends(get_pass_regenerator),
):
    """Issue the Apple Wallet pass of a loyalty card and return the .pkpass file."""
    card_number = (body.cardNumber or "").strip() if body else ""
    if not card_number:
        raise ValidationError("cardNumber required")

    generated = await regenerator.issue(card_number)

    logger.info(f"Pass generated for card {card_number[:8]}...")

    return Response(
        content=generated.content,
        media_type=PKPASS_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{card_number}.pkpass"'},
    )


@router.get("/{serial_number}", response_model=PassInfoResponse)
def get_pass_info(serial_number: str):
    """Get issuance details of a pass. The authentication token is never returned."""
    identity = WalletPassRepository.get_by_serial(serial_number)
    if identity is None:
        raise NotFoundError("Pass not found")

    devices = DeviceRepository.list_push_tokens(serial_number)

    return PassInfoResponse(
        serialNumber=identity.serial_number,
        passTypeIdentifier=identity.pass_type_identifier,
        lastUpdated=format_last_updated(identity.updated_at) if identity.updated_at else None,
        devices=len(devices),
    )
