"""Supabase async client management."""

import logging
from typing import Any

from supabase import AsyncClient, AsyncClientOptions, acreate_client

from src.comeback.config import settings

logger = logging.getLogger(__name__)

# Initialized in main.py lifespan
_supabase_client: AsyncClient | None = None
_supabase_admin_client: AsyncClient | None = None


async def init_supabase_clients() -> None:
    """
    Create the anon and service-role clients.

    Called once during application startup. The anon client backs a client
    runtime; the service-role client is used for server-side data access.
    """
    global _supabase_client, _supabase_admin_client

    server_options = AsyncClientOptions(
        auto_refresh_token=False,
        persist_session=False,
    )
    _supabase_client = await acreate_client(settings.supabase_url, settings.supabase_anon_key)
    _supabase_admin_client = await acreate_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
        options=server_options,
    )
    logger.info("Supabase clients initialized", extra={"supabase_url": settings.supabase_url})


def set_supabase_clients(
    client: AsyncClient | None, admin_client: AsyncClient | None = None
) -> None:
    """
    Replace the global clients.

    Used by tests to inject mocks, and to reset state on shutdown.
    """
    global _supabase_client, _supabase_admin_client
    _supabase_client = client
    _supabase_admin_client = admin_client if admin_client is not None else client


def get_supabase_client() -> AsyncClient:
    """
    Get Supabase client instance with anon key.

    Use this for a client runtime that owns a single session. Request handlers
    running an OAuth flow use create_flow_client() instead.

    Raises:
        RuntimeError: If clients were not initialized at startup
    """
    if _supabase_client is None:
        raise RuntimeError(
            "Supabase client not initialized. "
            "Ensure application startup calls init_supabase_clients()."
        )
    return _supabase_client


def get_supabase_admin_client() -> AsyncClient:
    """
    Get Supabase admin client with service role key.

    This client bypasses Row-Level Security (RLS) policies and should be used
    for server-side operations that have their own authentication/authorization.

    ⚠️ WARNING: This client has full database access. Only use for trusted server-side operations.
    """
    if _supabase_admin_client is None:
        raise RuntimeError(
            "Supabase admin client not initialized. "
            "Ensure application startup calls init_supabase_clients()."
        )
    return _supabase_admin_client


async def create_flow_client(storage: Any) -> AsyncClient:
    """
    Create an anon-key client with auth storage of its own.

    One is built per OAuth request, so a visitor's PKCE verifier and session
    never live on a client shared with other visitors.

    Args:
        storage: Async auth storage (get_item/set_item/remove_item)
    """
    options = AsyncClientOptions(
        auto_refresh_token=False,
        persist_session=False,
        storage=storage,
        flow_type="pkce",
    )
    return await acreate_client(settings.supabase_url, settings.supabase_anon_key, options=options)
