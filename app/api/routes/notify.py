from fastapi import APIRouter, Body, Depends

from app.api.deps import get_push_dispatcher
from app.core.errors import ValidationError
from app.domain.schemas import NotifyUpdateRequest, NotifyUpdateResponse
from app.services.apns import PushDispatcher

router = APIRouter()


@router.post("/notify-update", response_model=NotifyUpdateResponse)
async def notify_update(
    body: NotifyUpdateRequest | None = Body(None),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
):
    """Mark a pass as changed and push to every device holding it."""
    serial_number = (body.serialNumber or "").strip() if body else ""
    if not serial_number:
        raise ValidationError("serialNumber required")

    report = await dispatcher.notify_pass_update(serial_number)

    if report.no_devices:
        message = "No devices registered for this pass"
    else:
        message = f"Update notification sent to {report.success} of {len(report.outcomes)} devices"

    return NotifyUpdateResponse(
        message=message,
        serialNumber=serial_number,
        success=report.success,
        failed=report.failed,
    )
