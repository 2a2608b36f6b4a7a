"""FastAPI relay service: health endpoints plus the WebSocket event stream."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI, WebSocket

from event_relay.core.config import Settings, get_settings
from event_relay.core.logging import configure_logging
from event_relay.evm.client import connect_client
from event_relay.evm.scanner import BatchScanner
from event_relay.evm.schemas import build_event_schemas
from event_relay.services.relay.hub import BroadcastHub, Subscriber, SubscriberSession
from event_relay.services.relay.poller import BlockWindow, PollDriver

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Subscriber transport writing text frames to an accepted WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send_text(self, data: str) -> None:
        await self._websocket.send_text(data)

    async def close(self) -> None:
        await self._websocket.close()


def build_poller(settings: Settings, hub: BroadcastHub) -> PollDriver:
    """Wire the schema set, scanner and block window from settings."""

    scanner = BatchScanner(
        build_event_schemas(),
        partial(connect_client, settings.ETH_RPC_URL, settings.scan_timeout_s()),
        max_concurrency=settings.SCAN_MAX_CONCURRENCY,
        timeout_s=settings.scan_timeout_s(),
    )
    from_block, to_block = settings.initial_window()
    return PollDriver(
        scanner,
        hub,
        settings.contract_addresses(),
        BlockWindow(from_block=from_block, to_block=to_block),
        block_step=settings.block_step(),
        interval_s=settings.SCAN_INTERVAL_S,
        window_policy=settings.window_policy(),
    )


async def _watch_disconnect(websocket: WebSocket, hub: BroadcastHub, subscriber: Subscriber) -> None:
    # Inbound frames carry nothing; the read side only detects the peer going away.
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except RuntimeError:
        pass
    hub.unregister(subscriber)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the relay app; the hub and poller live for the app's lifespan."""

    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        hub = BroadcastHub()
        hub.start()
        app.state.hub = hub

        shutdown_event = asyncio.Event()
        poller_task: asyncio.Task[None] | None = None
        if settings.SCAN_ENABLED:
            poller = build_poller(settings, hub)
            poller_task = asyncio.create_task(poller.run(shutdown_event), name="poll-driver")

        logger.info(
            "api_startup",
            extra={
                "service": "api",
                "env": settings.ENV,
                "version": settings.VERSION,
                "ws_path": settings.WS_PATH,
                "scan_enabled": settings.SCAN_ENABLED,
            },
        )
        try:
            yield
        finally:
            shutdown_event.set()
            if poller_task is not None:
                await poller_task
            await hub.stop()
            logger.info("api_shutdown")

    app = FastAPI(title=settings.APP_NAME, version=settings.VERSION, lifespan=lifespan)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Return process liveness status."""

        return {"status": "ok"}

    @app.get("/version")
    def version() -> dict[str, str]:
        """Return application metadata from shared settings."""

        return {
            "name": settings.APP_NAME,
            "version": settings.VERSION,
            "env": settings.ENV,
        }

    @app.websocket(settings.WS_PATH)
    async def subscribe(websocket: WebSocket) -> None:
        hub: BroadcastHub = websocket.app.state.hub
        subscriber = Subscriber.with_queue_size(settings.SUBSCRIBER_QUEUE_SIZE)
        await hub.register(subscriber)
        await websocket.accept()

        session = SubscriberSession(hub, subscriber, WebSocketTransport(websocket))
        watcher = asyncio.create_task(_watch_disconnect(websocket, hub, subscriber))
        try:
            await session.run()
        finally:
            watcher.cancel()

    return app


app = create_app()
