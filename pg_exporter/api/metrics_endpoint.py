"""Prometheus scrape endpoint.

Each GET runs one full collection cycle and returns the registry in
Prometheus text exposition format:

  # HELP pg_active_connections Number of active PostgreSQL connections
  # TYPE pg_active_connections gauge
  pg_active_connections{db="primary"} 3.0

Failure responses are comment-only exposition text with a non-2xx status,
so a scraper records "scrape failed" instead of "healthy, no data":

  503  # Scrape already in progress   (single-flight gate; overloaded)
  500  # Exporter scrape failed        (orchestration itself broke)
  500  # Exporter output failure       (rendering broke after collection)

A target that cannot be reached does NOT fail the request; it is reported
in-band as pg_scrape_success{db="..."} 0.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response

from pg_exporter.api.dependencies import get_exporter, require_api_key
from pg_exporter.api.ratelimit import require_rate_limit
from pg_exporter.core.errors import CollectionFailed, RenderFailed, ScrapeBusy
from pg_exporter.services.exporter import Exporter

router = APIRouter(tags=["observability"])


@router.get(
    "/metrics",
    include_in_schema=False,
    dependencies=[Depends(require_api_key), Depends(require_rate_limit)],
)
async def metrics(
    request: Request,
    exporter: Annotated[Exporter, Depends(get_exporter)],
) -> Response:
    """Collect from every target and expose all metrics."""
    headers = getattr(request.state, "rate_limit_headers", None)

    try:
        body, content_type = await exporter.orchestrator.scrape()
    except ScrapeBusy:
        return PlainTextResponse(
            "# Scrape already in progress\n", status_code=503, headers=headers
        )
    except CollectionFailed:
        return PlainTextResponse(
            "# Exporter scrape failed\n", status_code=500, headers=headers
        )
    except RenderFailed:
        return PlainTextResponse(
            "# Exporter output failure\n", status_code=500, headers=headers
        )

    return Response(content=body, media_type=content_type, headers=headers)
