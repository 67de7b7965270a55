import asyncio

import pytest
from asyncua import ua

from ua_tag_monitor import session
from ua_tag_monitor.config import load_config
from ua_tag_monitor.dispatcher import SubscriptionHandler, ValueDispatcher
from ua_tag_monitor.exceptions import SessionError, SubscriptionError
from ua_tag_monitor.main import main


class Recorder:
    def __init__(self, expected: int) -> None:
        self.items = []
        self.expected = expected
        self.done = asyncio.Event()

    async def send(self, item) -> None:
        self.items.append(item)
        if len(self.items) >= self.expected:
            self.done.set()


@pytest.mark.asyncio
async def test_monitor_receives_values_from_local_server(ua_server, environ, capsys) -> None:
    assert ua_server.idx == 2
    config = load_config(environ)
    recorder = Recorder(expected=2)
    stop_event = asyncio.Event()

    client = await session.connect(config)
    try:
        handler = SubscriptionHandler(ValueDispatcher([recorder]), stop_event)
        await session.subscribe(client, config, handler)
        await asyncio.wait_for(recorder.done.wait(), timeout=10)

        values = {item.tag: item.value.value for item in recorder.items}
        assert values == {"Temperature": 42, "Pressure": 1.5}

        # Several publishing cycles without writes must not repeat the initial values
        await asyncio.sleep(3 * config.publishing_interval / 1000)
        assert len(recorder.items) == 2

        recorder.done.clear()
        recorder.expected = 3
        await ua_server.temperature.write_value(ua.Variant(43, ua.VariantType.Int64))
        await asyncio.wait_for(recorder.done.wait(), timeout=10)

        stop_event.set()
        state = await asyncio.wait_for(session.run(client, config, stop_event), timeout=5)
        assert state is session.SessionState.TERMINATED
    finally:
        await session.disconnect(client)

    out = capsys.readouterr().out
    assert 'Item "ns=2;s=Temperature", Value = 42' in out
    assert 'Item "ns=2;s=Pressure", Value = 1.5' in out
    assert 'Item "ns=2;s=Temperature", Value = 43' in out


@pytest.mark.asyncio
async def test_unknown_tag_is_rejected(ua_server, environ, capsys) -> None:
    config = load_config({**environ, "MONITORED_TAGS": "Temperature, DoesNotExist"})

    client = await session.connect(config)
    try:
        with pytest.raises(SubscriptionError):
            await session.subscribe(client, config, SubscriptionHandler(ValueDispatcher()))
    finally:
        await session.disconnect(client)


@pytest.mark.asyncio
async def test_main_reports_subscription_failure(ua_server, environ, capsys) -> None:
    code = await main({**environ, "MONITORED_TAGS": "DoesNotExist"}, asyncio.Event())

    assert code == 1
    assert "Error creating subscription" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_connect_fails_without_server(environ) -> None:
    config = load_config({**environ, "OPCUA_SESSION_RETRY_LIMIT": "2"})

    with pytest.raises(SessionError):
        await session.connect(config)


@pytest.mark.asyncio
async def test_run_terminates_when_server_stops(ua_server, environ) -> None:
    config = load_config(environ)
    recorder = Recorder(expected=2)
    stop_event = asyncio.Event()

    client = await session.connect(config)
    try:
        handler = SubscriptionHandler(ValueDispatcher([recorder]), stop_event)
        await session.subscribe(client, config, handler)
        await asyncio.wait_for(recorder.done.wait(), timeout=10)

        running = asyncio.create_task(session.run(client, config, stop_event))
        await asyncio.sleep(3 * config.watchdog_interval)
        assert not running.done()

        await ua_server.stop()
        state = await asyncio.wait_for(running, timeout=20)
        assert state is session.SessionState.TERMINATED
    finally:
        await session.disconnect(client)
