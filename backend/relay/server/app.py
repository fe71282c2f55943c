from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from relay.messaging.router import MessageRouter
from relay.server.settings import RelaySettings
from relay.server.websocket import websocket_endpoint
from relay.session.broker import Broker
from relay.session.reaper import StaleConnectionReaper
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request
    from starlette.websockets import WebSocket


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def status(request: Request) -> JSONResponse:
    broker: Broker = request.app.state.broker
    return JSONResponse(
        {
            "status": "ok",
            "rooms": broker.state.room_count,
            "connections": broker.state.connection_count,
        },
    )


def create_app(
    settings: RelaySettings | None = None,
    broker: Broker | None = None,
    message_router: MessageRouter | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = RelaySettings()

    if broker is None:
        broker = Broker()

    if message_router is None:
        message_router = MessageRouter(broker, max_message_bytes=settings.max_message_bytes)

    reaper = StaleConnectionReaper(broker, interval=settings.reaper_interval_seconds)

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, message_router)

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        reaper.start()
        logger.info("signaling relay ready")
        try:
            yield
        finally:
            await reaper.stop()
            await broker.shutdown()
            logger.info("signaling relay stopped")

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/status", status, methods=["GET"]),
        WebSocketRoute("/", ws_endpoint),
        WebSocketRoute("/ws", ws_endpoint),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.broker = broker
    app.state.reaper = reaper
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    settings = RelaySettings()
    setup_logging(log_dir=settings.log_dir)
    return create_app(settings=settings)
