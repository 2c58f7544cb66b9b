"""Classroom (LiveKit) token route."""

import logging
import re
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field

from tutor_relay.api.dependencies import (
    CLASSROOM_TOKEN_ENDPOINT,
    IdentityVerifierDep,
    TokenSignerDep,
    rate_limit,
)
from tutor_relay.ports.identity import UnauthorizedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/classroom", tags=["classroom"])

ROOM_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{1,128}$")


class ClassroomTokenRequest(BaseModel):
    """Request body for classroom token generation."""

    room_name: str = Field(..., min_length=1, max_length=128)
    display_name: str | None = Field(None, max_length=100)


class ClassroomTokenResponse(BaseModel):
    """Response containing a classroom access token."""

    token: str
    url: str
    identity: str


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": {"code": "UNAUTHORIZED", "message": message}},
    )


@router.post("/token", response_model=ClassroomTokenResponse)
async def classroom_token(
    request: ClassroomTokenRequest,
    identity_verifier: IdentityVerifierDep,
    token_signer: TokenSignerDep,
    _: Annotated[None, Depends(rate_limit(CLASSROOM_TOKEN_ENDPOINT))],
    authorization: Annotated[str | None, Header()] = None,
) -> ClassroomTokenResponse:
    """Mint a classroom access token for the authenticated caller.

    The participant identity is always the verified user ID, never a
    client-supplied name.
    """
    scheme, _sep, credentials = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        raise _unauthorized("Missing authentication token")

    try:
        user = await identity_verifier.verify(credentials.strip())
    except UnauthorizedError as e:
        logger.warning(f"Classroom token refused: {e}")
        raise _unauthorized("Unauthorized") from e

    if not ROOM_NAME_PATTERN.match(request.room_name):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": {
                    "code": "INVALID_ROOM_NAME",
                    "message": "Room names may contain letters, digits, '-' and '_' only",
                }
            },
        )

    token = token_signer.sign(
        identity=user.user_id,
        room=request.room_name,
        display_name=request.display_name or user.first_name,
    )
    return ClassroomTokenResponse(token=token, url=token_signer.server_url, identity=user.user_id)
