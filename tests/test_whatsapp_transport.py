"""Tests for the WhatsApp bridge transport - frame handling over a fake websocket."""

import asyncio
import json

import pytest

from relaybot.bus.events import InboundMessage, PairingArtifact, StateChange
from relaybot.config.schema import BridgeConfig
from relaybot.errors import PairingTimeoutError, TransportError
from relaybot.transport.whatsapp import WhatsAppBridgeTransport, strip_data_url
from tests.conftest import wait_until


# ── Helpers ────────────────────────────────────────────────


class FakeWebSocket:
    """In-memory websocket: frames are fed by the test, sends are recorded."""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed = False

    def feed(self, **frame) -> None:
        self.incoming.put_nowait(json.dumps(frame))

    def disconnect(self) -> None:
        self.incoming.put_nowait(None)

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self.incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class _Transport(WhatsAppBridgeTransport):
    def __init__(self, config: BridgeConfig, ws: FakeWebSocket):
        super().__init__(config)
        self.ws = ws

    async def _connect(self):
        return self.ws


async def _open_connected(config: BridgeConfig | None = None):
    ws = FakeWebSocket()
    events = []

    async def sink(event):
        events.append(event)

    transport = _Transport(config or BridgeConfig(), ws)
    opening = asyncio.create_task(transport.open("s1", sink))
    ws.feed(type="status", status="CONNECTED")
    handle = await asyncio.wait_for(opening, timeout=1.0)
    return handle, ws, events


# ── Pairing ────────────────────────────────────────────────


class TestPairing:
    def test_strip_data_url(self):
        assert strip_data_url("data:image/png;base64,AAAA") == "AAAA"
        assert strip_data_url("AAAA") == "AAAA"

    @pytest.mark.asyncio
    async def test_open_reports_qr_and_completes(self):
        ws = FakeWebSocket()
        events = []

        async def sink(event):
            events.append(event)

        transport = _Transport(BridgeConfig(token="secret"), ws)
        opening = asyncio.create_task(transport.open("s1", sink))

        ws.feed(type="qr", qr="data:image/png;base64,QRDATA")
        ws.feed(type="status", status="qrReadSuccess")
        ws.feed(type="status", status="CONNECTED")
        handle = await asyncio.wait_for(opening, timeout=1.0)

        assert ws.sent[:2] == [
            {"type": "auth", "token": "secret"},
            {"type": "open", "session": "s1"},
        ]
        assert events == [PairingArtifact("s1", "QRDATA")]
        assert handle.session_id == "s1"
        await handle.close()
        assert ws.closed

    @pytest.mark.asyncio
    async def test_no_auth_frame_without_token(self):
        handle, ws, _ = await _open_connected()
        assert ws.sent == [{"type": "open", "session": "s1"}]
        await handle.close()

    @pytest.mark.asyncio
    async def test_pairing_timeout(self):
        ws = FakeWebSocket()

        async def sink(event):
            pass

        transport = _Transport(BridgeConfig(pairing_timeout_s=0.05), ws)
        with pytest.raises(PairingTimeoutError):
            await transport.open("s1", sink)
        assert ws.closed

    @pytest.mark.asyncio
    async def test_bridge_error_during_pairing(self):
        ws = FakeWebSocket()

        async def sink(event):
            pass

        transport = _Transport(BridgeConfig(), ws)
        opening = asyncio.create_task(transport.open("s1", sink))
        ws.feed(type="error", error="browser failed to launch")

        with pytest.raises(TransportError, match="browser failed to launch"):
            await asyncio.wait_for(opening, timeout=1.0)
        assert ws.closed

    @pytest.mark.asyncio
    async def test_connection_lost_during_pairing(self):
        ws = FakeWebSocket()

        async def sink(event):
            pass

        transport = _Transport(BridgeConfig(), ws)
        opening = asyncio.create_task(transport.open("s1", sink))
        ws.disconnect()

        with pytest.raises(TransportError):
            await asyncio.wait_for(opening, timeout=1.0)

    @pytest.mark.asyncio
    async def test_unreachable_bridge(self):
        class _Unreachable(WhatsAppBridgeTransport):
            async def _connect(self):
                raise OSError("connection refused")

        async def sink(event):
            pass

        with pytest.raises(TransportError, match="Cannot reach"):
            await _Unreachable(BridgeConfig()).open("s1", sink)


# ── After pairing ──────────────────────────────────────────


class TestConnected:
    @pytest.mark.asyncio
    async def test_message_becomes_inbound_event(self):
        handle, ws, events = await _open_connected()

        ws.feed(type="message", id="m1", sender="123@lid", pn="15551234567@s.whatsapp.net",
                content="hello", timestamp=1700000000, isGroup=False)
        await wait_until(lambda: len(events) == 1)

        msg = events[0]
        assert isinstance(msg, InboundMessage)
        assert msg.peer_id == "123@lid"
        assert msg.text == "hello"
        assert msg.metadata["message_id"] == "m1"
        await handle.close()

    @pytest.mark.asyncio
    async def test_allow_from_filters_senders(self):
        handle, ws, events = await _open_connected(BridgeConfig(allow_from=["15551234567"]))

        ws.feed(type="message", sender="999@s.whatsapp.net", content="spam")
        ws.feed(type="message", sender="15551234567@s.whatsapp.net", content="hi")
        await wait_until(lambda: len(events) == 1)

        assert events[0].text == "hi"
        await handle.close()

    @pytest.mark.asyncio
    async def test_status_becomes_state_change(self):
        handle, ws, events = await _open_connected()

        ws.feed(type="status", status="CONFLICT")
        await wait_until(lambda: events == [StateChange("s1", "CONFLICT")])
        await handle.close()

    @pytest.mark.asyncio
    async def test_disconnect_reported(self):
        handle, ws, events = await _open_connected()

        ws.disconnect()
        await wait_until(lambda: events == [StateChange("s1", "DISCONNECTED")])
        await handle.close()

    @pytest.mark.asyncio
    async def test_send_waits_for_ack(self):
        handle, ws, _ = await _open_connected()

        sending = asyncio.create_task(handle.send("p@c.us", "hi"))
        await wait_until(lambda: len(ws.sent) == 2)
        assert ws.sent[-1] == {"type": "send", "id": "1", "to": "p@c.us", "text": "hi"}
        assert not sending.done()

        ws.feed(type="sent", id="1", ok=True)
        await asyncio.wait_for(sending, timeout=1.0)
        await handle.close()

    @pytest.mark.asyncio
    async def test_send_failure_ack(self):
        handle, ws, _ = await _open_connected()

        sending = asyncio.create_task(handle.send("p@c.us", "hi"))
        await wait_until(lambda: len(ws.sent) == 2)
        ws.feed(type="sent", id="1", ok=False, error="chat not found")

        with pytest.raises(TransportError, match="chat not found"):
            await asyncio.wait_for(sending, timeout=1.0)
        await handle.close()

    @pytest.mark.asyncio
    async def test_send_times_out(self):
        handle, _, _ = await _open_connected(BridgeConfig(send_timeout_s=0.05))
        with pytest.raises(TransportError):
            await handle.send("p@c.us", "hi")
        await handle.close()

    @pytest.mark.asyncio
    async def test_reclaim_and_logout_frames(self):
        handle, ws, _ = await _open_connected()

        await handle.reclaim()
        await handle.logout()
        assert ws.sent[-2:] == [{"type": "reclaim"}, {"type": "logout"}]

        await handle.close()
        with pytest.raises(TransportError):
            await handle.reclaim()
