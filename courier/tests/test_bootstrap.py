import asyncio
import json

import pytest

from courier import bootstrap
from courier.config import ChannelSettings
from courier.network.transport.dummy import DummyTransport
from courier.service import resolve_transport_class
from courier.network.transport.websocket import WebSocketTransport


def _settings() -> ChannelSettings:
    return ChannelSettings(
        auth_data=json.dumps({"creds": {}}),
        transport="dummy",
        open_timeout_seconds=1.0,
    )


def test_transport_is_resolved_from_settings():
    assert resolve_transport_class(_settings()) is DummyTransport
    assert resolve_transport_class(ChannelSettings(transport="websocket")) is WebSocketTransport


def test_build_service_registers_logging_handler():
    service = bootstrap.build_service(_settings())

    assert len(service._router) == 1
    assert not service.is_running


@pytest.mark.asyncio
async def test_serve_forever_runs_until_cancelled():
    task = asyncio.create_task(bootstrap.serve_forever(_settings()))

    for _ in range(100):
        if bootstrap._service is not None and bootstrap._service.is_running:
            break
        await asyncio.sleep(0.01)
    service = bootstrap._service
    assert service is not None and service.is_running

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not service.is_running
    assert bootstrap._service is None
