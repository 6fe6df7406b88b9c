"""
Authentication dependencies.

Resolves the caller from the ``Authorization: Bearer <jwt>`` header. The
token is verified with the data API's signing secret (HS256); the decoded
``sub`` claim is the student/user id and the raw token is kept so store
calls can pass it through under the user-token credential mode.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header, Request

from learnhub.common.error_handling import AuthenticationError, AuthorizationError, StoreError
from learnhub.common.store.base import TableClient
from learnhub.common.store.query import StoreQuery

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller."""
    user_id: str
    email: Optional[str] = None
    access_token: Optional[str] = None


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token of a ``Bearer`` authorization header."""
    if not authorization:
        raise AuthenticationError("Missing authorization header")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid authorization header format")
    return parts[1]


def decode_identity(
    token: str,
    secret: Optional[str],
    audience: Optional[str] = None,
    allow_unverified: bool = False
) -> Identity:
    """
    Decode a bearer token into an identity.

    Args:
        token: Raw JWT
        secret: HS256 signing secret; required unless ``allow_unverified``
        audience: Expected ``aud`` claim, if any
        allow_unverified: Skip signature checks (local development only)

    Raises:
        AuthenticationError: Invalid, expired or subject-less token
    """
    try:
        if secret:
            options: Dict[str, Any] = {"verify_aud": bool(audience)}
            claims = jwt.decode(token, secret, algorithms=["HS256"], audience=audience, options=options)
        elif allow_unverified:
            claims = jwt.decode(token, options={"verify_signature": False})
        else:
            raise AuthenticationError("Token verification is not configured")
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token has expired", cause=e)
    except jwt.PyJWTError as e:
        raise AuthenticationError("Invalid token", cause=e)

    subject = claims.get("sub")
    if not subject:
        raise AuthenticationError("Token has no subject")
    return Identity(user_id=str(subject), email=claims.get("email"), access_token=token)


async def get_current_identity(request: Request, authorization: Optional[str] = Header(None)) -> Identity:
    """FastAPI dependency resolving the authenticated caller."""
    settings = request.app.state.settings
    return decode_identity(
        bearer_token(authorization),
        settings.JWT_SECRET,
        audience=settings.JWT_AUDIENCE,
        allow_unverified=settings.ALLOW_DEV_UNVERIFIED_JWT,
    )


async def fetch_role(client: TableClient, user_id: str, user_token: Optional[str] = None) -> Optional[str]:
    """Role recorded on the user's profile, if any."""
    query = StoreQuery("profiles").select("id", "role").eq("id", user_id)
    row = await client.select_one(query, user_token=user_token)
    return row.get("role") if row else None


async def require_admin(request: Request, identity: Identity = Depends(get_current_identity)) -> Identity:
    """
    FastAPI dependency admitting only callers whose profile role is admin.

    Lookup failures deny access.
    """
    try:
        role = await fetch_role(request.app.state.store_client, identity.user_id, user_token=identity.access_token)
    except StoreError as e:
        logger.error(f"Role lookup failed for {identity.user_id}: {e}")
        raise AuthorizationError("Admin access required", cause=e)

    if role != ADMIN_ROLE:
        logger.warning(f"Admin access denied for {identity.user_id}")
        raise AuthorizationError("Admin access required")
    return identity
