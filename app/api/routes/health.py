from fastapi import APIRouter, Depends

from app.api.deps import get_push_provider
from app.domain.schemas import HealthResponse
from app.services.apns import PushProvider

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health_check(provider: PushProvider = Depends(get_push_provider)):
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        service="wallet-pass-updates",
        push_enabled=provider.running,
    )
