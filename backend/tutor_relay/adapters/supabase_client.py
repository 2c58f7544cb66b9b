"""Supabase client for backend operations."""

import logging

from supabase import AsyncClient, acreate_client

logger = logging.getLogger(__name__)


async def create_supabase_client(url: str, service_role_key: str) -> AsyncClient:
    """Create an async Supabase client with the service role key.

    Raises:
        ValueError: If URL or key is missing
    """
    if not url or not service_role_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in environment")

    client = await acreate_client(url, service_role_key)
    logger.info(f"Supabase client ready: {url}")
    return client
