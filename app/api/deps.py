"""
app/api/deps.py

Purpose: Shared router helpers

- Admin key dependency
- ActionResult to HTTP response mapping
"""

from typing import Optional
from fastapi import Header
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
import secrets

from app.core.config import settings
from app.core.exceptions import AuthenticationError, ResourceNotFoundError
from app.schemas.response import ActionResult


async def require_admin(x_admin_key: Optional[str] = Header(default=None)):
    """Rejects requests without the configured X-Admin-Key."""
    if not settings.ADMIN_API_KEY:
        raise AuthenticationError("Admin access is not configured")

    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise AuthenticationError("Invalid admin key")


def action_response(result: ActionResult, error_status: int = 400) -> JSONResponse:
    """
    Serializes a workflow result.

    Failures use error_status. A failure reporting a missing record is
    raised as ResourceNotFoundError and rendered by the error handlers.
    """
    if result.success:
        status_code = 200
    elif (result.message or "").lower().endswith("not found"):
        raise ResourceNotFoundError(result.message)
    else:
        status_code = error_status

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(result.model_dump(exclude_none=True)),
    )
