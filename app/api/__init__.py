from fastapi import APIRouter

from .routes import (
    health,
    notify,
    passes,
    wallet,
    webhooks,
)

api_router = APIRouter()

# Health check
api_router.include_router(health.router, tags=["health"])

# Apple Wallet web service (webServiceURL points at the API root)
api_router.include_router(wallet.router, tags=["wallet"])

# Internal trigger for pass updates
api_router.include_router(notify.router, tags=["notify"])

# Pass issuance for the loyalty front end
api_router.include_router(passes.router, prefix="/api/passes", tags=["passes"])

# Database webhook (loyalty card changes)
api_router.include_router(webhooks.router, prefix="/api/webhook", tags=["webhooks"])
