"""Shared lightweight types to keep module interfaces explicit and typed."""

import json
from dataclasses import dataclass
from typing import Any, Union

from event_relay.core.errors import SerializationError


def _dump(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=True, separators=(",", ":"))


@dataclass(frozen=True, slots=True)
class Event:
    """Outbound wire message; `message` carries an already-serialized payload."""

    event: str
    message: str


@dataclass(frozen=True, slots=True)
class RawLogEntry:
    """Undecoded log record as returned by the chain client."""

    address: str
    block_number: int
    transaction_hash: str
    topics: tuple[bytes, ...]
    data: bytes


@dataclass(frozen=True, slots=True)
class LogQuery:
    """Log filter for one contract and one event signature; `to_block` is inclusive."""

    address: str
    topic0: bytes
    from_block: int
    to_block: int | None


@dataclass(frozen=True, slots=True)
class TransferEvent:
    """Decoded `Transfer(address,address,uint256)` log."""

    from_address: str
    to_address: str
    value: int
    block_number: int
    transaction_hash: str
    contract_address: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "blockNumber": self.block_number,
            "txHash": self.transaction_hash,
            "contract": self.contract_address,
        }


@dataclass(frozen=True, slots=True)
class ApprovalEvent:
    """Decoded `Approval(address,address,uint256)` log."""

    owner: str
    spender: str
    value: int
    block_number: int
    transaction_hash: str
    contract_address: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "spender": self.spender,
            "value": self.value,
            "blockNumber": self.block_number,
            "txHash": self.transaction_hash,
            "contract": self.contract_address,
        }


TypedEvent = Union[TransferEvent, ApprovalEvent]


@dataclass(frozen=True, slots=True)
class EventsData:
    """Per-cycle scan result envelope published to subscribers."""

    transfer_events: tuple[TransferEvent, ...]
    approval_events: tuple[ApprovalEvent, ...]
    timestamp: str

    def to_json(self) -> str:
        """Encode the envelope as compact JSON, raising SerializationError on failure."""

        payload = {
            "transferEvents": [event.to_payload() for event in self.transfer_events],
            "approvalEvents": [event.to_payload() for event in self.approval_events],
            "timestamp": self.timestamp,
        }
        try:
            return _dump(payload)
        except (TypeError, ValueError) as exc:
            raise SerializationError(str(exc)) from exc
