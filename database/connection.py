import functools
import logging
import time
from datetime import datetime
from typing import Callable, TypeVar

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from app.core.config import settings
from app.core.errors import UpstreamDataError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def init_db():
    """Verify the Supabase connection at startup.

    Note: Schema is managed via Supabase migrations, not here.
    """
    if not settings.supabase_url or not settings.supabase_secret_key:
        logger.warning("Supabase credentials not configured. Database features disabled.")
        return

    try:
        from .supabase_client import get_supabase_client
        client = get_supabase_client()
        client.table("wallet_passes").select("serial_number").limit(1).execute()
        logger.info("Supabase connection verified")
    except Exception as e:
        logger.warning(f"Supabase connection check failed: {e}")


def get_db() -> Client:
    """Get database client - Supabase compatible."""
    from .supabase_client import get_supabase_client
    return get_supabase_client()


def with_retry(max_retries: int = 2, delay: float = 0.1) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator that retries database operations on connection errors.

    Handles transient HTTP connection errors like "Server disconnected" by
    resetting the connection and retrying. Errors that survive the retries,
    and any PostgREST error, are raised as UpstreamDataError.

    Args:
        max_retries: Maximum number of retry attempts (default 2)
        delay: Delay in seconds between retries (default 0.1)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            from .supabase_client import reset_supabase_client

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except (httpx.RemoteProtocolError, httpx.ConnectError) as e:
                    if attempt < max_retries:
                        logger.warning(
                            f"Connection error in {func.__name__}, retrying ({attempt + 1}/{max_retries}): {e}"
                        )
                        reset_supabase_client()
                        time.sleep(delay)
                    else:
                        logger.error(f"Connection error in {func.__name__} after {max_retries} retries: {e}")
                        raise UpstreamDataError(f"Data store unreachable ({func.__name__})") from e
                except APIError as e:
                    logger.error(f"Data store error in {func.__name__}: {e}")
                    raise UpstreamDataError(f"Data store error ({func.__name__})") from e
            raise UpstreamDataError(f"Data store unreachable ({func.__name__})")
        return wrapper
    return decorator


def older_than(at: datetime, column: str = "updated_at") -> str:
    """PostgREST `or` filter matching rows whose column is unset or before `at`."""
    return f"{column}.is.null,{column}.lt.{at.isoformat()}"
