from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from pg_exporter.core.config import Settings
from pg_exporter.services.exporter import Exporter

logger = logging.getLogger(__name__)


def get_exporter(request: Request) -> Exporter:
    return request.app.state.exporter


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_api_key(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Demand ``Authorization: Bearer <EXPORTER_API_KEY>``.

    With no key configured the protected routes are closed, not open:
    exposing database statistics by accident is worse than a 403.
    """
    if settings.api_key is None:
        logger.warning("No EXPORTER_API_KEY set; rejecting %s", request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    auth_header = request.headers.get("authorization", "")
    expected = f"Bearer {settings.api_key}"

    # Constant-time comparison so response timing does not leak the key.
    if not hmac.compare_digest(auth_header.encode(), expected.encode()):
        logger.warning("Invalid or missing bearer token for %s", request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
