"""
Authentication and account scoping for the FrameLedger API.

Every order, inventory item and email row carries the account_id of the
practice it was ingested for. The account id is the Supabase user id from
the bearer token, so authenticating a request and scoping it are one step.

Tokens are verified in-process with python-jose when SUPABASE_JWT_SECRET is
set and through the Supabase Auth API otherwise. Only user sessions are
accepted: anon and service-role keys carry no account and are rejected.

Environment variables
---------------------
SUPABASE_JWT_SECRET   Project Settings > API > JWT Secret. Optional.
"""

import logging
import os
from typing import Optional

from fastapi import HTTPException, Header
from jose import ExpiredSignatureError, JWTError, jwt

from app.db import supabase, supabase_admin

logger = logging.getLogger(__name__)

SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None

SESSION_ROLE = "authenticated"


def _unauthorized(detail: str = "Invalid token") -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise _unauthorized("Not authenticated")
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token or " " in token:
        raise _unauthorized("Invalid authentication credentials")
    return token


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency: the account id of the caller.

    Raises:
        HTTPException 401 for a missing or malformed header, or a token that
        is expired, invalid or not a user session.
    """
    token = _bearer_token(authorization)
    if SUPABASE_JWT_SECRET:
        return _account_from_local_jwt(token)
    return await _account_from_auth_api(token)


def _account_from_local_jwt(token: str) -> str:
    try:
        claims = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            # Supabase sessions carry aud="authenticated"; the role claim is checked instead
            options={"verify_aud": False},
        )
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized()

    role = claims.get("role")
    if role is not None and role != SESSION_ROLE:
        logger.warning(f"Rejected token with role {role!r}")
        raise _unauthorized()

    account_id = claims.get("sub")
    if not account_id:
        raise _unauthorized()
    return account_id


async def _account_from_auth_api(token: str) -> str:
    """Fallback when no JWT secret is configured."""
    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        raise _unauthorized("Token expired" if "expired" in str(e).lower() else "Invalid token")

    if not response.user:
        raise _unauthorized()
    return response.user.id


def _owned_row(table: str, row_id: str, account_id: str, label: str, foreign_status: int) -> dict:
    """
    Fetch one row by id and check it belongs to account_id.

    Missing rows are 404 and database failures 500. Rows of another account
    get foreign_status.
    """
    try:
        result = supabase_admin.table(table).select("*").eq("id", row_id).execute()
    except Exception as e:
        logger.error(f"Ownership lookup on {table} failed for {row_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to verify ownership")

    if not result.data:
        raise HTTPException(status_code=404, detail=f"{label} not found")

    row = result.data[0]
    if row.get("account_id") != account_id:
        if foreign_status == 404:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        raise HTTPException(
            status_code=foreign_status,
            detail=f"You are not authorized to access this {label.lower()}",
        )
    return row


async def verify_order_ownership(order_id: str, user_id: str) -> dict:
    """
    Return the order row when user_id's account owns it.

    Raises:
        HTTPException 404 (no such order), 403 (another account's order) or
        500 (database error).
    """
    return _owned_row("orders", order_id, user_id, "Order", foreign_status=403)


async def verify_email_ownership(email_id: str, user_id: str) -> dict:
    """
    Return the emails row when user_id's account owns it.

    Another account's email is reported as missing (404): inbound emails
    reveal which vendors a practice buys from.
    """
    return _owned_row("emails", email_id, user_id, "Email", foreign_status=404)
