"""Broadcast hub actor and per-connection subscriber sessions.

The hub is a single control task that owns the subscriber registry and every
subscriber's outbound queue. Other tasks reach it only through its inbox, so
the registry needs no locking. Delivery never blocks the hub: a subscriber
whose queue is full is dropped on the spot.
"""

import asyncio
import json
import logging
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Protocol

from event_relay.core.types import Event

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256


class OutboundQueue:
    """Bounded FIFO of serialized messages that can be closed by its owner.

    Messages buffered before `close()` are still handed out; once the buffer
    is empty a closed queue yields None.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.maxsize = max(1, maxsize)
        self._items: deque[str] = deque()
        self._closed = False
        self._wakeup = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return len(self._items)

    def full(self) -> bool:
        return len(self._items) >= self.maxsize

    def put_nowait(self, message: str) -> bool:
        """Append without blocking; returns False when the queue is full or closed."""

        if self._closed or self.full():
            return False
        self._items.append(message)
        self._wakeup.set()
        return True

    def close(self) -> None:
        self._closed = True
        self._wakeup.set()

    async def get(self) -> str | None:
        while not self._items:
            if self._closed:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
        return self._items.popleft()


@dataclass(eq=False, slots=True)
class Subscriber:
    """A connected client: identity plus its private outbound queue."""

    queue: OutboundQueue = field(default_factory=OutboundQueue)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def with_queue_size(cls, size: int) -> "Subscriber":
        return cls(queue=OutboundQueue(size))


@dataclass(frozen=True, slots=True)
class _Register:
    subscriber: Subscriber


@dataclass(frozen=True, slots=True)
class _Unregister:
    subscriber: Subscriber


@dataclass(frozen=True, slots=True)
class _Publish:
    event: Event


@dataclass(frozen=True, slots=True)
class _Snapshot:
    reply: "asyncio.Future[frozenset[Subscriber]]"


@dataclass(frozen=True, slots=True)
class _Stop:
    pass


def encode_event(event: Event) -> str:
    return json.dumps(asdict(event), ensure_ascii=True, separators=(",", ":"))


class BroadcastHub:
    """Process-wide fan-out actor for serialized events."""

    def __init__(self) -> None:
        self._inbox: asyncio.Queue[object] = asyncio.Queue()
        self._clients: dict[Subscriber, bool] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run(), name="broadcast-hub")

    async def stop(self) -> None:
        """Ask the control task to close every subscriber and exit, then wait for it."""

        if self._task is None:
            return
        self._inbox.put_nowait(_Stop())
        await self._task
        self._task = None

    async def register(self, subscriber: Subscriber) -> None:
        await self._inbox.put(_Register(subscriber))

    def unregister(self, subscriber: Subscriber) -> None:
        """Request removal; safe to call any number of times."""

        self._inbox.put_nowait(_Unregister(subscriber))

    async def publish(self, event: Event) -> None:
        await self._inbox.put(_Publish(event))

    async def subscribers(self) -> frozenset[Subscriber]:
        """Return the registry as seen by the control task after all earlier requests."""

        reply: asyncio.Future[frozenset[Subscriber]] = asyncio.get_running_loop().create_future()
        await self._inbox.put(_Snapshot(reply))
        return await reply

    async def run(self) -> None:
        logger.info("hub_started")
        while True:
            command = await self._inbox.get()
            if isinstance(command, _Register):
                self._add(command.subscriber)
            elif isinstance(command, _Unregister):
                self._remove(command.subscriber)
            elif isinstance(command, _Publish):
                self._broadcast(command.event)
            elif isinstance(command, _Snapshot):
                if not command.reply.done():
                    command.reply.set_result(frozenset(self._clients))
            elif isinstance(command, _Stop):
                break

        for subscriber in list(self._clients):
            subscriber.queue.close()
        self._clients.clear()
        logger.info("hub_stopped")

    def _add(self, subscriber: Subscriber) -> None:
        if subscriber.queue.closed:
            logger.info("hub_register_ignored_closed", extra={"subscriber": subscriber.id})
            return
        self._clients[subscriber] = True
        logger.info(
            "hub_client_connected",
            extra={"subscriber": subscriber.id, "client_count": len(self._clients)},
        )

    def _remove(self, subscriber: Subscriber) -> None:
        if self._clients.pop(subscriber, None) is None:
            return
        subscriber.queue.close()
        logger.info(
            "hub_client_disconnected",
            extra={"subscriber": subscriber.id, "client_count": len(self._clients)},
        )

    def _broadcast(self, event: Event) -> None:
        try:
            data = encode_event(event)
        except (TypeError, ValueError) as exc:
            logger.error("hub_event_encode_failed", extra={"event": event.event, "error": str(exc)})
            return

        dropped = 0
        for subscriber in list(self._clients):
            if subscriber.queue.put_nowait(data):
                continue
            subscriber.queue.close()
            del self._clients[subscriber]
            dropped += 1
            logger.warning(
                "hub_subscriber_dropped",
                extra={"subscriber": subscriber.id, "queue_size": subscriber.queue.maxsize},
            )

        logger.debug(
            "hub_event_published",
            extra={"event": event.event, "delivered": len(self._clients), "dropped": dropped},
        )


class Transport(Protocol):
    """Write side of a subscriber connection."""

    async def send_text(self, data: str) -> None:
        ...

    async def close(self) -> None:
        ...


class SubscriberSession:
    """Drains one subscriber's queue to its transport until the queue closes."""

    def __init__(self, hub: BroadcastHub, subscriber: Subscriber, transport: Transport) -> None:
        self.hub = hub
        self.subscriber = subscriber
        self.transport = transport

    async def run(self) -> None:
        try:
            await self._pump()
            await self._close_transport()
        finally:
            self.hub.unregister(self.subscriber)

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except Exception as exc:  # noqa: BLE001
            logger.debug(
                "session_close_failed",
                extra={"subscriber": self.subscriber.id, "error": str(exc)},
            )

    async def _pump(self) -> None:
        while True:
            message = await self.subscriber.queue.get()
            if message is None:
                return

            try:
                await self.transport.send_text(message)
            except Exception as exc:  # noqa: BLE001
                logger.info(
                    "session_write_failed",
                    extra={"subscriber": self.subscriber.id, "error": str(exc)},
                )
                return
