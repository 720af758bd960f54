"""
Supabase client, one per worker thread.

Repository calls are synchronous and reach this module from FastAPI's
threadpool (sync endpoints and run_in_threadpool in the async ones).
"""

import threading

from supabase import create_client, Client

from app.core.config import settings
from app.core.errors import UpstreamDataError

_thread_local = threading.local()


def get_supabase_client() -> Client:
    """Return the calling worker thread's Supabase client, creating it on first use.

    Pass downloads, registrations and push fan-out hit the store from
    different threadpool workers at once. Each worker holding its own
    client means one worker's dropped connection is never picked up by
    another mid-request.

    Raises:
        UpstreamDataError: If SUPABASE_URL or SUPABASE_SECRET_KEY is unset.
    """
    if not settings.supabase_url or not settings.supabase_secret_key:
        raise UpstreamDataError("Data store not configured (SUPABASE_URL, SUPABASE_SECRET_KEY)")

    client = getattr(_thread_local, "client", None)
    if client is None:
        client = create_client(settings.supabase_url, settings.supabase_secret_key)
        _thread_local.client = client
    return client


def reset_supabase_client() -> None:
    """Drop this worker's client. with_retry calls it before retrying a failed connection."""
    _thread_local.__dict__.pop("client", None)
