"""Shared fixtures: an in-memory chain client and raw log builders."""

import asyncio
from typing import Awaitable, Callable

import pytest
from eth_abi import encode as abi_encode
from eth_utils import to_checksum_address

from event_relay.core.errors import QueryError
from event_relay.core.types import LogQuery, RawLogEntry
from event_relay.evm.schemas import EventSchema

CONTRACT_A = to_checksum_address("0x" + "aa" * 20)
CONTRACT_B = to_checksum_address("0x" + "bb" * 20)


def pad_address(address_hex: str) -> bytes:
    return bytes.fromhex(address_hex.removeprefix("0x").rjust(64, "0"))


def make_log(
    schema: EventSchema,
    first: str,
    second: str,
    value: int,
    *,
    contract: str = CONTRACT_A,
    block_number: int = 10,
    tx_index: int = 1,
) -> RawLogEntry:
    return RawLogEntry(
        address=contract,
        block_number=block_number,
        transaction_hash="0x" + f"{tx_index:064x}",
        topics=(schema.topic0, pad_address(first), pad_address(second)),
        data=abi_encode(["uint256"], [value]),
    )


class FakeChainClient:
    """Chain client serving canned logs keyed by (contract, topic0)."""

    def __init__(self) -> None:
        self.logs: dict[tuple[str, bytes], list[RawLogEntry]] = {}
        self.failures: set[tuple[str, bytes]] = set()
        self.stalled: set[tuple[str, bytes]] = set()
        self.queries: list[LogQuery] = []
        self.closed = False

    def add(self, schema: EventSchema, *entries: RawLogEntry, contract: str = CONTRACT_A) -> None:
        self.logs.setdefault((contract, schema.topic0), []).extend(entries)

    def fail(self, schema: EventSchema, contract: str = CONTRACT_A) -> None:
        self.failures.add((contract, schema.topic0))

    def stall(self, schema: EventSchema, contract: str = CONTRACT_A) -> None:
        self.stalled.add((contract, schema.topic0))

    async def get_logs(self, query: LogQuery) -> list[RawLogEntry]:
        self.queries.append(query)
        key = (query.address, query.topic0)
        await asyncio.sleep(0)
        if key in self.stalled:
            await asyncio.Event().wait()
        if key in self.failures:
            raise QueryError("execution reverted")
        return list(self.logs.get(key, []))

    async def aclose(self) -> None:
        self.closed = True


class ChecksummingChainClient(FakeChainClient):
    """Validates the contract address the way a real node client must before querying."""

    async def get_logs(self, query: LogQuery) -> list[RawLogEntry]:
        to_checksum_address(query.address)
        return await super().get_logs(query)


@pytest.fixture
def chain_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def connect_to(chain_client: FakeChainClient) -> Callable[[], Awaitable[FakeChainClient]]:
    async def connect() -> FakeChainClient:
        return chain_client

    return connect
