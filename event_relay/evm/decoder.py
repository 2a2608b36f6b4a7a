"""Pure decoding of raw logs into typed events."""

from typing import Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from event_relay.core.errors import EncodingError, MalformedLog
from event_relay.core.types import ApprovalEvent, RawLogEntry, TransferEvent, TypedEvent
from event_relay.evm.schemas import EventKind, EventSchema

_WORD_SIZE = 32
_ADDRESS_SIZE = 20


def _topic_value(abi_type: str, topic: bytes) -> Any:
    if len(topic) > _WORD_SIZE:
        raise MalformedLog(f"topic is {len(topic)} bytes, expected at most {_WORD_SIZE}")

    word = topic.rjust(_WORD_SIZE, b"\x00")
    if abi_type == "address":
        return to_checksum_address("0x" + word[-_ADDRESS_SIZE:].hex())

    try:
        return abi_decode([abi_type], word)[0]
    except DecodingError as exc:
        raise MalformedLog(f"cannot read indexed {abi_type}: {exc}") from exc


def _decode_fields(schema: EventSchema, raw_log: RawLogEntry) -> dict[str, Any]:
    indexed = schema.indexed_params
    expected_topics = 1 + len(indexed)
    if len(raw_log.topics) != expected_topics:
        raise MalformedLog(
            f"{schema.name} expects {expected_topics} topics, got {len(raw_log.topics)}"
        )

    fields: dict[str, Any] = {}
    for param, topic in zip(indexed, raw_log.topics[1:]):
        fields[param.name] = _topic_value(param.abi_type, topic)

    data_params = schema.data_params
    try:
        values = abi_decode([param.abi_type for param in data_params], raw_log.data)
    except DecodingError as exc:
        raise EncodingError(f"cannot decode {schema.name} data: {exc}") from exc

    for param, value in zip(data_params, values):
        fields[param.name] = value
    return fields


def decode_log(schema: EventSchema, raw_log: RawLogEntry) -> TypedEvent:
    """Decode one raw log against its schema.

    Raises MalformedLog when the topics do not match the schema's indexed
    parameters and EncodingError when the data payload cannot be decoded.
    Provenance always comes from the raw log itself.
    """

    fields = _decode_fields(schema, raw_log)
    if schema.kind is EventKind.TRANSFER:
        return TransferEvent(
            from_address=fields["from"],
            to_address=fields["to"],
            value=fields["value"],
            block_number=raw_log.block_number,
            transaction_hash=raw_log.transaction_hash,
            contract_address=raw_log.address,
        )
    return ApprovalEvent(
        owner=fields["owner"],
        spender=fields["spender"],
        value=fields["value"],
        block_number=raw_log.block_number,
        transaction_hash=raw_log.transaction_hash,
        contract_address=raw_log.address,
    )
