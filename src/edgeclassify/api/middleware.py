"""Request guards shared by every route: optional bearer-token check."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from edgeclassify.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def get_settings_from_request(request: Request) -> Settings:
    """Settings stored on the app by the lifespan hook."""
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject classification and status calls that lack the service token.

    The check is off until EDGECLASSIFY_API_KEY is set. Tokens are compared in
    constant time; a missing or wrong token yields 401.
    """
    api_key = get_settings_from_request(request).api_key
    if api_key is None:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials.encode(), api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
