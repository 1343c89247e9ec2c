import asyncio
import contextlib
import json

import pytest
from websockets.asyncio.server import serve

from courier.config import ChannelSettings
from courier.errors import SendFailed
from courier.models import AuthState
from courier.network.session_state import SessionState
from courier.network.transport import websocket as websocket_module
from courier.network.transport.websocket import WebSocketTransport
from courier.service import ChannelService

AUTH = json.dumps({"creds": {"me": {"id": "100@s.whatsapp.net"}}, "keys": {}})
OPEN = {"event": "connection.update", "connection": "open"}


def _upsert(msg_id: str, text: str = "ping") -> dict:
    return {
        "event": "messages.upsert",
        "type": "notify",
        "messages": [
            {
                "key": {"remoteJid": "1@s.whatsapp.net", "fromMe": False, "id": msg_id},
                "message": {"conversation": text},
                "messageTimestamp": 1706745600,
            }
        ],
    }


class _Bridge:
    """Minimal bridge: pushes ``script`` after auth and acks requests per ``ack_mode``."""

    def __init__(self, script=(), *, ack_mode: str = "ok", hang_up: bool = False) -> None:
        self.script = list(script)
        self.ack_mode = ack_mode
        self.hang_up = hang_up
        self.frames = []
        self.requests = []
        self.connections = 0

    async def handler(self, ws) -> None:
        self.connections += 1
        async for raw in ws:
            frame = json.loads(raw)
            self.frames.append(frame)
            if frame["op"] == "auth":
                for item in self.script:
                    await ws.send(item if isinstance(item, (str, bytes)) else json.dumps(item))
                if self.hang_up:
                    await ws.close()
                    return
                continue
            self.requests.append(frame)
            if self.ack_mode == "ok":
                await ws.send(json.dumps(self._ack(frame)))
            elif self.ack_mode == "error":
                await ws.send(json.dumps({"op": "ack", "ref": frame["ref"], "error": "not-on-whatsapp"}))
            elif self.ack_mode == "reverse" and len(self.requests) == 2:
                for pending in reversed(self.requests):
                    await ws.send(json.dumps(self._ack(pending)))

    @staticmethod
    def _ack(frame: dict) -> dict:
        return {
            "op": "ack",
            "ref": frame["ref"],
            "result": {"key": {"id": f"srv-{frame['ref']}"}, "messageTimestamp": 1706745600},
        }


@contextlib.asynccontextmanager
async def _running(bridge: _Bridge):
    async with serve(bridge.handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        yield ChannelSettings(
            auth_data=AUTH,
            transport="websocket",
            bridge_ws_url=f"ws://127.0.0.1:{port}",
            open_timeout_seconds=2.0,
            reconnect={"max_retries": 1, "delay_ms": 10},
        )


async def _wait_for(predicate, *, timeout: float = 2.0, interval: float = 0.01) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.mark.asyncio
async def test_sends_auth_then_correlates_acks_by_ref():
    bridge = _Bridge(ack_mode="reverse")
    async with _running(bridge) as settings:
        transport = WebSocketTransport(settings)
        await transport.connect(AuthState(creds={"me": {"id": "100@s.whatsapp.net"}}))

        first, second = await asyncio.gather(
            transport.send_message("1@s.whatsapp.net", {"text": "a"}),
            transport.send_message("2@s.whatsapp.net", {"text": "b"}, {"quoted": {"key": {"id": "q"}}}),
        )
        await transport.close()

    assert bridge.frames[0]["op"] == "auth"
    assert bridge.frames[0]["auth"]["creds"] == {"me": {"id": "100@s.whatsapp.net"}}
    assert [frame["ref"] for frame in bridge.requests] == ["1", "2"]
    assert first["key"]["id"] == "srv-1"
    assert second["key"]["id"] == "srv-2"
    assert bridge.requests[1]["options"] == {"quoted": {"key": {"id": "q"}}}


@pytest.mark.asyncio
async def test_error_ack_rejects_request():
    bridge = _Bridge(ack_mode="error")
    async with _running(bridge) as settings:
        transport = WebSocketTransport(settings)
        await transport.connect(AuthState(creds={}))

        with pytest.raises(RuntimeError, match="not-on-whatsapp"):
            await transport.send_presence("1@s.whatsapp.net", "composing")
        await transport.close()

    assert bridge.requests[0]["op"] == "presence"
    assert bridge.requests[0]["state"] == "composing"


@pytest.mark.asyncio
async def test_close_fails_pending_requests():
    bridge = _Bridge(ack_mode="none")
    async with _running(bridge) as settings:
        transport = WebSocketTransport(settings)
        await transport.connect(AuthState(creds={}))

        pending = asyncio.create_task(transport.send_message("1@s.whatsapp.net", {"text": "a"}))
        assert await _wait_for(lambda: len(bridge.requests) == 1)
        await transport.close()

        with pytest.raises(ConnectionError):
            await pending


@pytest.mark.asyncio
async def test_malformed_and_non_object_frames_are_skipped(caplog):
    bridge = _Bridge(["{bad", b"\xff\xfe", "[1, 2]", "42", OPEN])
    async with _running(bridge) as settings:
        transport = WebSocketTransport(settings)
        await transport.connect(AuthState(creds={}))

        with caplog.at_level("WARNING", logger="courier.network.transport.websocket"):
            event = await asyncio.wait_for(transport.receive(), timeout=2.0)
        await transport.close()

    assert event == OPEN
    assert "Dropping malformed bridge frame" in caplog.text
    assert "Ignoring non-object bridge frame" in caplog.text


@pytest.mark.asyncio
async def test_receive_raises_once_bridge_hangs_up():
    bridge = _Bridge([OPEN], hang_up=True)
    async with _running(bridge) as settings:
        transport = WebSocketTransport(settings)
        await transport.connect(AuthState(creds={}))

        assert await asyncio.wait_for(transport.receive(), timeout=2.0) == OPEN
        with pytest.raises(ConnectionError):
            await asyncio.wait_for(transport.receive(), timeout=2.0)
        with pytest.raises(ConnectionError):
            await asyncio.wait_for(transport.receive(), timeout=2.0)
        await transport.close()


@pytest.mark.asyncio
async def test_handler_can_reply_through_the_bridge(monkeypatch):
    monkeypatch.setattr(websocket_module, "ACK_TIMEOUT_SECONDS", 1.0)
    bridge = _Bridge([OPEN, _upsert("m1")])
    replies = []
    failures = []
    done = asyncio.Event()

    async with _running(bridge) as settings:
        service = ChannelService(settings)

        async def reply(message):
            try:
                replies.append(await service.send_message(message.conversation_id, "pong"))
            except SendFailed as exc:
                failures.append(exc)
            done.set()

        service.on_message(reply)
        await service.initialize()
        await asyncio.wait_for(done.wait(), timeout=2.0)
        await service.shutdown()

    assert failures == []
    assert replies[0].id == "srv-1"
    assert replies[0].timestamp == 1706745600
    assert bridge.requests[0]["content"] == {"text": "pong"}
    assert bridge.requests[0]["jid"] == "1@s.whatsapp.net"


@pytest.mark.asyncio
async def test_bad_frame_does_not_drop_the_session():
    bridge = _Bridge([OPEN, "{bad", _upsert("m2", "still here")])
    received = []

    async with _running(bridge) as settings:
        service = ChannelService(settings)
        service.on_message(received.append)
        await service.initialize()
        assert await _wait_for(lambda: len(received) == 1)

        assert service.state is SessionState.CONNECTED
        assert service.session.connect_attempts == 1
        assert service.session.retry_count == 0
        assert bridge.connections == 1
        await service.shutdown()

    assert received[0].text == "still here"
