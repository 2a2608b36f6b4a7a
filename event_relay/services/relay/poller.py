"""Poll driver that scans a rolling block window and publishes each result to the hub."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from event_relay.core.config import WINDOW_POLICY_ADVANCE, WINDOW_POLICY_RETRY_ON_FAILURE
from event_relay.core.errors import ChainConnectionError, SerializationError
from event_relay.core.time_utils import rfc3339_now
from event_relay.core.types import Event, EventsData
from event_relay.evm.scanner import BatchScanner
from event_relay.services.relay.hub import BroadcastHub

SCAN_TICK_EVENT = "cron_tick"
EMPTY_PAYLOAD = "{}"


@dataclass(slots=True)
class BlockWindow:
    """Mutable `[from_block, to_block)` cursor owned by the poll loop."""

    from_block: int
    to_block: int

    def advance(self, step: int) -> None:
        self.from_block = self.to_block
        self.to_block = self.from_block + step


def serialize_events_data(events_data: EventsData, logger: logging.Logger) -> str:
    """Return the envelope JSON, or an empty object when it cannot be encoded."""

    try:
        return events_data.to_json()
    except SerializationError as exc:
        logger.error("poller_serialize_failed", extra={"error": str(exc)})
        return EMPTY_PAYLOAD


class PollDriver:
    """Periodically scans the configured contracts and forwards results as `cron_tick` events."""

    def __init__(
        self,
        scanner: BatchScanner,
        hub: BroadcastHub,
        contract_addresses: Sequence[str],
        window: BlockWindow,
        *,
        block_step: int,
        interval_s: float,
        window_policy: str = WINDOW_POLICY_ADVANCE,
    ) -> None:
        self.scanner = scanner
        self.hub = hub
        self.contract_addresses = tuple(contract_addresses)
        self.window = window
        self.block_step = max(1, block_step)
        self.interval_s = max(0.0, interval_s)
        self.window_policy = window_policy
        self._logger = logging.getLogger(__name__)

    async def tick(self) -> EventsData:
        """Run one scan cycle over the current window and publish its result."""

        from_block, to_block = self.window.from_block, self.window.to_block
        failed = False
        try:
            transfer_events, approval_events = await self.scanner.scan_contracts(
                self.contract_addresses, from_block, to_block
            )
        except ChainConnectionError as exc:
            failed = True
            transfer_events, approval_events = [], []
            self._logger.warning(
                "poller_scan_failed",
                extra={"from_block": from_block, "to_block": to_block, "error": str(exc)},
            )

        if failed and self.window_policy == WINDOW_POLICY_RETRY_ON_FAILURE:
            self._logger.info(
                "poller_window_retained",
                extra={"from_block": from_block, "to_block": to_block},
            )
        else:
            self.window.advance(self.block_step)

        events_data = EventsData(
            transfer_events=tuple(transfer_events),
            approval_events=tuple(approval_events),
            timestamp=rfc3339_now(),
        )
        message = serialize_events_data(events_data, self._logger)
        await self.hub.publish(Event(event=SCAN_TICK_EVENT, message=message))

        self._logger.info(
            "poller_tick",
            extra={
                "from_block": from_block,
                "to_block": to_block,
                "transfer_count": len(events_data.transfer_events),
                "approval_count": len(events_data.approval_events),
                "next_from_block": self.window.from_block,
            },
        )
        return events_data

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Tick until shutdown is requested; an in-flight tick always completes."""

        self._logger.info(
            "poller_startup",
            extra={
                "contracts": list(self.contract_addresses),
                "from_block": self.window.from_block,
                "to_block": self.window.to_block,
                "block_step": self.block_step,
                "interval_s": self.interval_s,
                "window_policy": self.window_policy,
            },
        )
        while not shutdown_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                self._logger.exception("poller_tick_failed")
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass

        self._logger.info("poller_shutdown", extra={"next_from_block": self.window.from_block})
