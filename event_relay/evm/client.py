"""Chain client port and its web3.py-backed implementation."""

import logging
from typing import Any, Protocol
from urllib.parse import urlparse

import aiohttp
from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import Web3Exception

from event_relay.core.errors import ChainConnectionError, QueryError
from event_relay.core.types import LogQuery, RawLogEntry

logger = logging.getLogger(__name__)

_SUPPORTED_SCHEMES = ("http", "https")


class ChainClient(Protocol):
    """Read-only log access shared by every scanner of a batch."""

    async def get_logs(self, query: LogQuery) -> list[RawLogEntry]:
        """Return logs matching the query in the order the node reports them."""

    async def aclose(self) -> None:
        """Release transport resources."""


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return bytes(value)


def _as_hash(value: Any) -> str:
    return "0x" + _as_bytes(value).hex()


def _to_raw_log(entry: Any) -> RawLogEntry:
    return RawLogEntry(
        address=to_checksum_address(entry["address"]),
        block_number=int(entry["blockNumber"]),
        transaction_hash=_as_hash(entry["transactionHash"]),
        topics=tuple(_as_bytes(topic) for topic in entry["topics"]),
        data=_as_bytes(entry["data"]),
    )


class Web3ChainClient:
    """`eth_getLogs` over an async web3 HTTP provider."""

    def __init__(self, w3: AsyncWeb3) -> None:
        self._w3 = w3

    async def get_logs(self, query: LogQuery) -> list[RawLogEntry]:
        try:
            params: dict[str, Any] = {
                "address": to_checksum_address(query.address),
                "topics": ["0x" + query.topic0.hex()],
                "fromBlock": query.from_block,
                "toBlock": "latest" if query.to_block is None else query.to_block,
            }
            logs = await self._w3.eth.get_logs(params)
            return [_to_raw_log(entry) for entry in logs]
        except (Web3Exception, aiohttp.ClientError, OSError, KeyError, ValueError) as exc:
            raise QueryError(str(exc)) from exc

    async def aclose(self) -> None:
        await self._w3.provider.disconnect()


async def connect_client(rpc_url: str, timeout_s: float | None = None) -> Web3ChainClient:
    """Build a client for the endpoint and verify it answers, or raise ChainConnectionError."""

    url = rpc_url.strip()
    if not url:
        raise ChainConnectionError("ETH_RPC_URL is not set")
    if urlparse(url).scheme not in _SUPPORTED_SCHEMES:
        raise ChainConnectionError(f"unsupported RPC endpoint scheme: {url}")

    request_kwargs: dict[str, Any] = {}
    if timeout_s is not None:
        request_kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_s)

    w3 = AsyncWeb3(AsyncHTTPProvider(url, request_kwargs=request_kwargs))
    if not await w3.is_connected():
        await w3.provider.disconnect()
        raise ChainConnectionError(f"failed to connect to the Ethereum client at {url}")

    logger.debug("chain_client_connected", extra={"url": url})
    return Web3ChainClient(w3)
