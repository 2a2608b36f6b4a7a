"""Poll driver window advancement and publishing."""

import asyncio
import json

import pytest
import pytest_asyncio
from conftest import CONTRACT_A, ChecksummingChainClient, FakeChainClient, make_log

from event_relay.core.config import WINDOW_POLICY_RETRY_ON_FAILURE
from event_relay.core.errors import ChainConnectionError, SerializationError
from event_relay.core.types import EventsData
from event_relay.evm.scanner import BatchScanner
from event_relay.evm.schemas import TRANSFER_SCHEMA, build_event_schemas
from event_relay.services.relay.hub import BroadcastHub, Subscriber
from event_relay.services.relay.poller import BlockWindow, PollDriver


@pytest_asyncio.fixture
async def subscribed_hub():
    hub = BroadcastHub()
    hub.start()
    subscriber = Subscriber()
    await hub.register(subscriber)
    yield hub, subscriber
    await hub.stop()


async def _refuse() -> FakeChainClient:
    raise ChainConnectionError("failed to connect")


def _driver(hub: BroadcastHub, connect, **kwargs) -> PollDriver:
    return PollDriver(
        BatchScanner(build_event_schemas(), connect),
        hub,
        [CONTRACT_A],
        BlockWindow(from_block=0, to_block=1000),
        block_step=1000,
        interval_s=0.01,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_tick_publishes_envelope_and_advances(
    subscribed_hub, chain_client: FakeChainClient, connect_to
) -> None:
    hub, subscriber = subscribed_hub
    chain_client.add(TRANSFER_SCHEMA, make_log(TRANSFER_SCHEMA, "0x01", "0x02", 500, block_number=12))
    driver = _driver(hub, connect_to)

    await driver.tick()

    assert (driver.window.from_block, driver.window.to_block) == (1000, 2000)
    wire = json.loads(await subscriber.queue.get())
    assert wire["event"] == "cron_tick"
    envelope = json.loads(wire["message"])
    assert envelope["approvalEvents"] == []
    [transfer] = envelope["transferEvents"]
    assert transfer["value"] == 500
    assert transfer["blockNumber"] == 12
    assert transfer["contract"] == CONTRACT_A
    assert envelope["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_connection_error_still_publishes_and_advances(subscribed_hub) -> None:
    """The default policy moves past a failed window and sends an empty envelope."""

    hub, subscriber = subscribed_hub
    driver = _driver(hub, _refuse)

    events_data = await driver.tick()

    assert events_data.transfer_events == () and events_data.approval_events == ()
    assert (driver.window.from_block, driver.window.to_block) == (1000, 2000)
    envelope = json.loads(json.loads(await subscriber.queue.get())["message"])
    assert envelope["transferEvents"] == [] and envelope["approvalEvents"] == []


@pytest.mark.asyncio
async def test_retry_policy_keeps_failed_window(subscribed_hub) -> None:
    hub, _ = subscribed_hub
    driver = _driver(hub, _refuse, window_policy=WINDOW_POLICY_RETRY_ON_FAILURE)

    await driver.tick()
    await driver.tick()

    assert (driver.window.from_block, driver.window.to_block) == (0, 1000)


@pytest.mark.asyncio
async def test_retry_policy_advances_after_success(subscribed_hub, connect_to) -> None:
    hub, _ = subscribed_hub
    driver = _driver(hub, connect_to, window_policy=WINDOW_POLICY_RETRY_ON_FAILURE)

    await driver.tick()

    assert driver.window.from_block == 1000


@pytest.mark.asyncio
async def test_serialization_failure_publishes_placeholder(
    subscribed_hub, connect_to, monkeypatch: pytest.MonkeyPatch
) -> None:
    hub, subscriber = subscribed_hub

    def broken(self: EventsData) -> str:
        raise SerializationError("unsupported value")

    monkeypatch.setattr(EventsData, "to_json", broken)
    driver = _driver(hub, connect_to)

    await driver.tick()

    assert json.loads(await subscriber.queue.get()) == {"event": "cron_tick", "message": "{}"}


@pytest.mark.asyncio
async def test_run_stops_on_shutdown(subscribed_hub, chain_client: FakeChainClient, connect_to) -> None:
    hub, subscriber = subscribed_hub
    driver = _driver(hub, connect_to)
    shutdown_event = asyncio.Event()

    task = asyncio.create_task(driver.run(shutdown_event))
    await asyncio.wait_for(subscriber.queue.get(), timeout=1)
    shutdown_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert driver.window.from_block >= 1000
    assert chain_client.closed


@pytest.mark.asyncio
async def test_bad_contract_address_does_not_stall_window(subscribed_hub) -> None:
    hub, subscriber = subscribed_hub
    client = ChecksummingChainClient()
    client.add(TRANSFER_SCHEMA, make_log(TRANSFER_SCHEMA, "0x01", "0x02", 500))

    async def connect() -> FakeChainClient:
        return client

    driver = PollDriver(
        BatchScanner(build_event_schemas(), connect),
        hub,
        [CONTRACT_A, "0xnot-an-address"],
        BlockWindow(from_block=0, to_block=100),
        block_step=100,
        interval_s=0.01,
    )

    await driver.tick()

    assert (driver.window.from_block, driver.window.to_block) == (100, 200)
    envelope = json.loads(json.loads(await subscriber.queue.get())["message"])
    assert [transfer["value"] for transfer in envelope["transferEvents"]] == [500]
