"""Shared FastAPI dependencies — operator authentication, metering provider."""

from __future__ import annotations

import secrets
from collections.abc import AsyncGenerator

from fastapi import Header, HTTPException, status

from meterwise.config import settings
from meterwise.providers.base import MeteringProvider
from meterwise.providers.stripe import StripeMeteringProvider


async def require_operator(
    authorization: str = Header(..., alias="Authorization"),
) -> None:
    """Validate the ``Authorization: Bearer <admin token>`` header.

    Raises 401 if the header is malformed or the token does not match.
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must start with 'Bearer '.",
        )

    token = authorization.removeprefix("Bearer ").strip()
    if not secrets.compare_digest(token, settings.admin_api_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid operator token.",
        )


async def get_provider() -> AsyncGenerator[MeteringProvider, None]:
    """Yield a Stripe provider client for the duration of one request."""
    async with StripeMeteringProvider.from_settings() as provider:
        yield provider
