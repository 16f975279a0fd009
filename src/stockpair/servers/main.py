"""Starlette application setup for the pairing server."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from stockpair.device_auth.clock import Clock, default_clock
from stockpair.device_auth.codes import CodeGenerator
from stockpair.device_auth.credentials import CredentialVerifier, InMemoryAccountDirectory
from stockpair.device_auth.service import PairingCoordinator, QrEncoder
from stockpair.device_auth.store import PairingStore, build_store
from stockpair.device_auth.sweeper import ExpirySweeper
from stockpair.device_auth.tokens import TokenIssuer
from stockpair.utils.environment import PairingSettings
from stockpair.utils.logging import setup_logging

from .context import AppContext
from .correlation import CorrelationIdMiddleware
from .pairing import pairing_routes

logger = logging.getLogger("stockpair.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def build_context(
    settings: PairingSettings,
    *,
    store: PairingStore | None = None,
    credentials: CredentialVerifier | None = None,
    qr_encoder: QrEncoder | None = None,
    clock: Clock = default_clock,
) -> AppContext:
    """Wire store, token issuer, credentials and coordinator from *settings*."""
    if store is None:
        store = build_store(settings.store, settings.store_path)
    coordinator = PairingCoordinator(
        store,
        tokens=TokenIssuer(
            settings.jwt_secret,
            lifetime_seconds=settings.jwt_expires_in_seconds,
            clock=clock,
        ),
        credentials=credentials if credentials is not None else InMemoryAccountDirectory(),
        generator=CodeGenerator(),
        code_length=settings.code_length,
        ttl_seconds=settings.code_ttl_seconds,
        poll_interval_ms=settings.poll_interval_ms,
        max_attempts=settings.max_generation_attempts,
        activate_url=settings.activate_url,
        qr_encoder=qr_encoder,
        clock=clock,
    )
    sweeper = (
        ExpirySweeper(store, interval_seconds=settings.sweep_interval_seconds, clock=clock)
        if settings.sweeper_enabled
        else None
    )
    return AppContext(settings=settings, coordinator=coordinator, sweeper=sweeper)


def create_app(
    settings: PairingSettings | None = None,
    *,
    store: PairingStore | None = None,
    credentials: CredentialVerifier | None = None,
    qr_encoder: QrEncoder | None = None,
    clock: Clock = default_clock,
) -> Starlette:
    """Build the ASGI app. ``settings`` defaults to :meth:`PairingSettings.from_env`."""
    settings = settings or PairingSettings.from_env()
    context = build_context(
        settings, store=store, credentials=credentials, qr_encoder=qr_encoder, clock=clock
    )

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Pairing server lifespan starting (store=%s)...", settings.store)
        if context.sweeper is not None:
            context.sweeper.start()
        try:
            yield
        finally:
            logger.info("Pairing server lifespan shutting down...")
            if context.sweeper is not None:
                await context.sweeper.stop()
            logger.info("Pairing server lifespan shutdown complete.")

    routes = [Route("/healthz", health_check, methods=["GET"])]
    routes.extend(pairing_routes(context.coordinator))
    app = Starlette(
        routes=routes,
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    app.state.context = context
    return app


def main() -> None:
    """Console entry point: configure logging from the environment and serve."""
    settings = PairingSettings.from_env()
    setup_logging(settings.log_level)
    app = create_app(settings)
    logger.info("Starting pairing server on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
