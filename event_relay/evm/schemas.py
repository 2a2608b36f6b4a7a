"""Event schemas for the ERC-20 logs the relay understands.

Schemas are plain immutable values. The closed set is built once by
`build_event_schemas()` during startup and handed to the scanner; nothing in
the process mutates or rebuilds it afterwards, which is what lets every
concurrent scanner share it without coordination.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from eth_utils import keccak


class EventKind(str, Enum):
    TRANSFER = "Transfer"
    APPROVAL = "Approval"


@dataclass(frozen=True, slots=True)
class EventParam:
    """One declared event input."""

    name: str
    abi_type: str
    indexed: bool


@dataclass(frozen=True, slots=True)
class EventSchema:
    """Named event signature with its indexed and data-encoded parameters."""

    kind: EventKind
    inputs: tuple[EventParam, ...]

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def signature(self) -> str:
        types = ",".join(param.abi_type for param in self.inputs)
        return f"{self.name}({types})"

    @property
    def topic0(self) -> bytes:
        return keccak(text=self.signature)

    @property
    def indexed_params(self) -> tuple[EventParam, ...]:
        return tuple(param for param in self.inputs if param.indexed)

    @property
    def data_params(self) -> tuple[EventParam, ...]:
        return tuple(param for param in self.inputs if not param.indexed)


TRANSFER_SCHEMA = EventSchema(
    kind=EventKind.TRANSFER,
    inputs=(
        EventParam("from", "address", indexed=True),
        EventParam("to", "address", indexed=True),
        EventParam("value", "uint256", indexed=False),
    ),
)

APPROVAL_SCHEMA = EventSchema(
    kind=EventKind.APPROVAL,
    inputs=(
        EventParam("owner", "address", indexed=True),
        EventParam("spender", "address", indexed=True),
        EventParam("value", "uint256", indexed=False),
    ),
)


@dataclass(frozen=True, slots=True)
class EventSchemaSet:
    """Closed, read-only collection of schemas keyed by event kind."""

    schemas: tuple[EventSchema, ...]

    def __iter__(self) -> Iterator[EventSchema]:
        return iter(self.schemas)

    def __len__(self) -> int:
        return len(self.schemas)

    def get(self, kind: EventKind) -> EventSchema:
        for schema in self.schemas:
            if schema.kind is kind:
                return schema
        raise KeyError(kind)


def build_event_schemas() -> EventSchemaSet:
    """Return the startup schema set (Transfer, Approval)."""

    return EventSchemaSet(schemas=(TRANSFER_SCHEMA, APPROVAL_SCHEMA))
