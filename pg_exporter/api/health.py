"""Health, readiness and configuration endpoints.

  /healthz, /livez (liveness):
    "Is the process alive?"  Always OK if Python can answer.  A failing
    database must not get the exporter restarted; that is what
    pg_scrape_success is for.

  /readyz (readiness):
    "Can every configured database be reached right now?"  Runs
    ``SELECT 1`` on each target in configuration order and reports the
    first one that fails.

  /configz (bearer auth):
    The target names and the custom metric definitions that were accepted
    at startup.  Connection details are never included.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from pg_exporter.api.dependencies import get_exporter, require_api_key
from pg_exporter.services.exporter import Exporter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/healthz", response_class=PlainTextResponse)
async def healthz() -> str:
    return "OK"


@router.get("/livez", response_class=PlainTextResponse)
async def livez() -> str:
    return "OK"


@router.get("/readyz", response_class=PlainTextResponse)
async def readyz(
    exporter: Annotated[Exporter, Depends(get_exporter)],
) -> PlainTextResponse:
    for target in exporter.targets:
        try:
            await target.connector.ping()
        except Exception as exc:
            logger.error(
                "Database %s not ready: %s", target.name, exc, extra={"db": target.name}
            )
            return PlainTextResponse(f"Not Ready: {target.name}", status_code=500)
    return PlainTextResponse("OK")


@router.get("/configz", dependencies=[Depends(require_api_key)])
async def configz(
    exporter: Annotated[Exporter, Depends(get_exporter)],
) -> dict:
    return {
        "databases": exporter.targets.names(),
        "customMetrics": [
            bound.definition.to_dict() for bound in exporter.orchestrator.custom_metrics
        ],
    }
