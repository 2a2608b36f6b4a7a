"""Concurrent log scanning: per-event scanners fanned out over a worker pool.

`batch_scan` turns N contracts x M event schemas into scan jobs, runs them on
a bounded pool of workers that all write decoded events into one shared
output queue, and drains that queue into two collections. A completion
tracker waits for every worker before ending the queue, so the fan-in side
needs no other coordination. Result order follows decode completion, not
block order.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from event_relay.core.errors import DecodeFailure, QueryError
from event_relay.core.types import ApprovalEvent, LogQuery, TransferEvent
from event_relay.evm.client import ChainClient
from event_relay.evm.decoder import decode_log
from event_relay.evm.schemas import EventSchema, EventSchemaSet

logger = logging.getLogger(__name__)

EVENTS_PER_PAIR_BUFFER = 100

_END_OF_SCAN = object()

ClientFactory = Callable[[], Awaitable[ChainClient]]


@dataclass(frozen=True, slots=True)
class ContractEventConfig:
    """Schemas to scan for one contract over `[from_block, to_block)`; `to_block=None` is latest."""

    contract_address: str
    event_schemas: tuple[EventSchema, ...]
    from_block: int
    to_block: int | None = None


@dataclass(frozen=True, slots=True)
class _ScanJob:
    contract_address: str
    schema: EventSchema
    from_block: int
    to_block: int | None


async def scan_for_event(
    client: ChainClient,
    contract_address: str,
    schema: EventSchema,
    from_block: int,
    to_block: int | None,
    output: "asyncio.Queue[object]",
    timeout_s: float | None = None,
) -> int:
    """Query one (contract, event) pair and push each decoded event onto `output`.

    Query failures and timeouts are logged and yield zero events; they are
    never raised. Logs that fail to decode are skipped one by one. Returns
    the number of events emitted.
    """

    if to_block is not None and to_block <= from_block:
        logger.debug(
            "scan_empty_range",
            extra={"contract": contract_address, "event": schema.name, "from_block": from_block},
        )
        return 0

    query = LogQuery(
        address=contract_address,
        topic0=schema.topic0,
        from_block=from_block,
        to_block=None if to_block is None else to_block - 1,
    )
    try:
        logs = await asyncio.wait_for(client.get_logs(query), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning(
            "scan_query_timeout",
            extra={"contract": contract_address, "event": schema.name, "timeout_s": timeout_s},
        )
        return 0
    except QueryError as exc:
        logger.warning(
            "scan_query_failed",
            extra={"contract": contract_address, "event": schema.name, "error": str(exc)},
        )
        return 0

    logger.info(
        "scan_logs_found",
        extra={"contract": contract_address, "event": schema.name, "log_count": len(logs)},
    )

    emitted = 0
    for raw_log in logs:
        try:
            event = decode_log(schema, raw_log)
        except DecodeFailure as exc:
            logger.warning(
                "scan_log_decode_failed",
                extra={
                    "contract": contract_address,
                    "event": schema.name,
                    "tx_hash": raw_log.transaction_hash,
                    "reason": type(exc).__name__,
                    "error": str(exc),
                },
            )
            continue
        await output.put(event)
        emitted += 1
    return emitted


class BatchScanner:
    """Scan orchestrator sharing one chain client and one schema set per batch."""

    def __init__(
        self,
        schemas: EventSchemaSet,
        connect: ClientFactory,
        *,
        max_concurrency: int = 8,
        timeout_s: float | None = None,
    ) -> None:
        self.schemas = schemas
        self._connect = connect
        self._max_concurrency = max(1, max_concurrency)
        self._timeout_s = timeout_s

    def build_configs(
        self,
        contract_addresses: Sequence[str],
        from_block: int,
        to_block: int | None,
    ) -> list[ContractEventConfig]:
        """One config per contract, scanning every schema in the set."""

        return [
            ContractEventConfig(
                contract_address=address,
                event_schemas=tuple(self.schemas),
                from_block=from_block,
                to_block=to_block,
            )
            for address in contract_addresses
        ]

    async def scan_contracts(
        self,
        contract_addresses: Sequence[str],
        from_block: int,
        to_block: int | None,
    ) -> tuple[list[TransferEvent], list[ApprovalEvent]]:
        return await self.batch_scan(self.build_configs(contract_addresses, from_block, to_block))

    async def batch_scan(
        self, configs: Sequence[ContractEventConfig]
    ) -> tuple[list[TransferEvent], list[ApprovalEvent]]:
        """Scan every (contract, schema) pair concurrently.

        Raises ChainConnectionError when the client cannot be built; every
        other failure is contained inside the scanner that hit it, so an
        empty result may mean either no matches or failed scanners.
        """

        client = await self._connect()
        try:
            return await self._run_batch(client, configs)
        finally:
            await client.aclose()

    async def _run_batch(
        self, client: ChainClient, configs: Sequence[ContractEventConfig]
    ) -> tuple[list[TransferEvent], list[ApprovalEvent]]:
        jobs: "asyncio.Queue[_ScanJob]" = asyncio.Queue()
        for config in configs:
            for schema in config.event_schemas:
                jobs.put_nowait(
                    _ScanJob(
                        contract_address=config.contract_address,
                        schema=schema,
                        from_block=config.from_block,
                        to_block=config.to_block,
                    )
                )

        total_pairs = jobs.qsize()
        if total_pairs == 0:
            return [], []

        output: "asyncio.Queue[object]" = asyncio.Queue(maxsize=total_pairs * EVENTS_PER_PAIR_BUFFER)
        worker_count = min(self._max_concurrency, total_pairs)
        workers = [
            asyncio.create_task(self._worker(client, jobs, output)) for _ in range(worker_count)
        ]
        tracker = asyncio.create_task(self._close_when_done(workers, output))
        logger.debug(
            "scan_batch_started",
            extra={"pairs": total_pairs, "workers": worker_count, "buffer": output.maxsize},
        )

        try:
            transfer_events, approval_events = await self._collect(output)
            await tracker
        finally:
            for task in (*workers, tracker):
                if not task.done():
                    task.cancel()

        logger.info(
            "scan_batch_completed",
            extra={
                "pairs": total_pairs,
                "transfer_count": len(transfer_events),
                "approval_count": len(approval_events),
            },
        )
        return transfer_events, approval_events

    async def _worker(
        self,
        client: ChainClient,
        jobs: "asyncio.Queue[_ScanJob]",
        output: "asyncio.Queue[object]",
    ) -> None:
        while True:
            try:
                job = jobs.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await scan_for_event(
                    client,
                    job.contract_address,
                    job.schema,
                    job.from_block,
                    job.to_block,
                    output,
                    timeout_s=self._timeout_s,
                )
            except Exception:  # noqa: BLE001
                logger.exception(
                    "scan_failed",
                    extra={"contract": job.contract_address, "event": job.schema.name},
                )

    @staticmethod
    async def _close_when_done(
        workers: list["asyncio.Task[None]"], output: "asyncio.Queue[object]"
    ) -> None:
        try:
            await asyncio.gather(*workers)
        finally:
            await output.put(_END_OF_SCAN)

    @staticmethod
    async def _collect(
        output: "asyncio.Queue[object]",
    ) -> tuple[list[TransferEvent], list[ApprovalEvent]]:
        transfer_events: list[TransferEvent] = []
        approval_events: list[ApprovalEvent] = []

        while True:
            item = await output.get()
            if item is _END_OF_SCAN:
                break
            if isinstance(item, TransferEvent):
                transfer_events.append(item)
            elif isinstance(item, ApprovalEvent):
                approval_events.append(item)

        return transfer_events, approval_events
