"""Supabase Auth adapter for caller identity verification."""

import logging

import httpx
from supabase import AsyncClient, AuthError, PostgrestAPIError

from tutor_relay.domain.value_objects.identity import UserIdentity
from tutor_relay.ports.identity import UnauthorizedError

logger = logging.getLogger(__name__)

PROFILES_TABLE = "user_profiles"


class SupabaseIdentityVerifier:
    """IdentityVerifier backed by Supabase Auth (remote token check)."""

    def __init__(self, client: AsyncClient):
        self._client = client

    async def verify(self, token: str) -> UserIdentity:
        if not token:
            raise UnauthorizedError("Missing token")

        try:
            response = await self._client.auth.get_user(token)
        except (AuthError, httpx.HTTPError) as e:
            raise UnauthorizedError(f"Token rejected: {e}") from e

        if response is None or response.user is None:
            raise UnauthorizedError("Invalid or expired token")

        user = response.user
        return UserIdentity(
            user_id=user.id,
            email=user.email,
            first_name=await self._get_first_name(user.id),
        )

    async def _get_first_name(self, user_id: str) -> str | None:
        """Profile lookup for the greeting; a missing profile is not an error."""
        try:
            result = (
                await self._client.table(PROFILES_TABLE)
                .select("first_name")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except (PostgrestAPIError, httpx.HTTPError) as e:
            logger.warning(f"Profile lookup failed for {user_id}: {e}")
            return None
        return result.data[0].get("first_name") if result.data else None
