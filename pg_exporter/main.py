from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pg_exporter.api.health import router as health_router
from pg_exporter.api.metrics_endpoint import router as metrics_router
from pg_exporter.core.config import SETTINGS, Settings
from pg_exporter.core.logging import setup_logging
from pg_exporter.services.exporter import Exporter, build_exporter
from pg_exporter.services.rate_limiter import FixedWindowRateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)


async def _http_error_as_text(
    _request: Request, exc: StarletteHTTPException
) -> PlainTextResponse:
    # Scrapers parse every body as exposition text; a comment line is the
    # only error body that is still valid there.
    return PlainTextResponse(
        f"# {exc.detail}\n",
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


def create_app(
    settings: Settings | None = None,
    *,
    exporter: Exporter | None = None,
) -> FastAPI:
    """Build the exporter application.

    Without an explicit ``exporter`` this loads the databases and queries
    files named in ``settings``; any ConfigurationError propagates so the
    process never starts half-configured.
    """
    settings = settings or SETTINGS
    if exporter is None:
        exporter = build_exporter(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        try:
            yield
        finally:
            await exporter.close()
            logger.info("Exporter shut down")

    app = FastAPI(
        title="pg-exporter",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
    )
    app.state.settings = settings
    app.state.exporter = exporter
    app.state.rate_limiter = FixedWindowRateLimiter(
        RateLimitConfig(
            max_requests=settings.scrape_rate_limit,
            window_seconds=settings.scrape_rate_window,
        )
    )

    app.add_exception_handler(StarletteHTTPException, _http_error_as_text)  # type: ignore[arg-type]

    app.include_router(metrics_router)
    app.include_router(health_router)

    logger.info(
        "pg-exporter ready  env=%s targets=%s custom_metrics=%d auth=%s",
        settings.app_env,
        exporter.targets.names(),
        len(exporter.orchestrator.custom_metrics),
        "on" if settings.auth_enabled else "off",
    )
    return app


def run() -> None:
    """Console entry point: configure logging, build the app, serve."""
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    logger.info(
        "Exporter starting on port %d  databases=%s queries=%s",
        SETTINGS.port,
        SETTINGS.dbs_config_file,
        SETTINGS.queries_file or "-",
    )
    app = create_app(SETTINGS)
    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port, log_config=None)


if __name__ == "__main__":
    run()
