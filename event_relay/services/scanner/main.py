"""One-shot scan of a single contract that prints the result envelope as a JSON line."""

import argparse
import asyncio
import logging
import signal
import sys
from functools import partial

from event_relay.core.config import get_settings
from event_relay.core.errors import ChainConnectionError
from event_relay.core.logging import configure_logging
from event_relay.core.time_utils import rfc3339_now
from event_relay.core.types import EventsData
from event_relay.evm.client import connect_client
from event_relay.evm.scanner import BatchScanner
from event_relay.evm.schemas import build_event_schemas
from event_relay.services.relay.poller import serialize_events_data


def _block_arg(value: str) -> int:
    block = int(value)
    if block < 0:
        raise argparse.ArgumentTypeError("block numbers must be non-negative")
    return block


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m event_relay.services.scanner.main",
        description="Scan Transfer and Approval logs for one contract over [from_block, to_block).",
    )
    parser.add_argument("contract", help="contract address")
    parser.add_argument("from_block", nargs="?", type=_block_arg, default=0)
    parser.add_argument(
        "to_block",
        nargs="?",
        type=_block_arg,
        default=None,
        help="exclusive end block; omit to scan up to the latest block",
    )
    return parser.parse_args(argv)


def _emit(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    logger = logging.getLogger(__name__)

    timeout_s = settings.scan_timeout_s()
    scanner = BatchScanner(
        build_event_schemas(),
        partial(connect_client, settings.ETH_RPC_URL, timeout_s),
        max_concurrency=settings.SCAN_MAX_CONCURRENCY,
        timeout_s=timeout_s,
    )

    try:
        transfer_events, approval_events = await scanner.scan_contracts(
            [args.contract], args.from_block, args.to_block
        )
    except ChainConnectionError as exc:
        logger.error("scanner_connection_failed", extra={"error": str(exc)})
        return 1

    events_data = EventsData(
        transfer_events=tuple(transfer_events),
        approval_events=tuple(approval_events),
        timestamp=rfc3339_now(),
    )
    _emit(serialize_events_data(events_data, logger))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run a single scan and exit."""

    args = _parse_args(argv)
    # Ctrl-C and SIGTERM both abandon the scan without a traceback.
    signal.signal(signal.SIGTERM, signal.default_int_handler)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
