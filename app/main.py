import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api import api_router
from app.api.deps import get_push_provider
from app.core.config import settings
from app.core.errors import WalletServiceError
from database.connection import init_db

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    provider = get_push_provider()
    provider.start()
    yield
    # Shutdown
    provider.stop()


async def wallet_error_handler(request: Request, exc: WalletServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Wallet Pass Updates",
        description="Apple Wallet pass update web service",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(WalletServiceError, wallet_error_handler)

    # Include all routes
    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
