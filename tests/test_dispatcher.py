"""Tests for PeerDispatcher - per-peer ordering, cross-peer parallelism."""

import asyncio

import pytest

from relaybot.bus.events import InboundMessage
from relaybot.bus.queue import PeerDispatcher
from tests.conftest import wait_until


def _msg(peer: str, text: str) -> InboundMessage:
    return InboundMessage(session_id="s1", peer_id=peer, text=text)


class TestPeerDispatcher:
    @pytest.mark.asyncio
    async def test_same_peer_is_serialized(self):
        active = 0
        max_active = 0
        handled = []

        async def handler(msg):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            handled.append(msg.text)
            active -= 1

        dispatcher = PeerDispatcher(handler)
        dispatcher.start()
        for n in range(5):
            await dispatcher.publish(_msg("a", str(n)))

        await wait_until(lambda: len(handled) == 5)
        assert handled == ["0", "1", "2", "3", "4"]
        assert max_active == 1
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_different_peers_run_in_parallel(self):
        release = asyncio.Event()
        started = []

        async def handler(msg):
            started.append(msg.peer_id)
            await release.wait()

        dispatcher = PeerDispatcher(handler)
        dispatcher.start()
        await dispatcher.publish(_msg("a", "x"))
        await dispatcher.publish(_msg("b", "y"))

        await wait_until(lambda: sorted(started) == ["a", "b"])
        assert dispatcher.active_lanes == 2

        release.set()
        await wait_until(lambda: dispatcher.active_lanes == 0)
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_lane(self):
        handled = []

        async def handler(msg):
            if msg.text == "bad":
                raise RuntimeError("boom")
            handled.append(msg.text)

        dispatcher = PeerDispatcher(handler)
        dispatcher.start()
        await dispatcher.publish(_msg("a", "bad"))
        await dispatcher.publish(_msg("a", "good"))

        await wait_until(lambda: handled == ["good"])
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_stop_drops_queued_and_lets_inflight_finish(self):
        release = asyncio.Event()
        handled = []

        async def handler(msg):
            await release.wait()
            handled.append(msg.text)

        dispatcher = PeerDispatcher(handler)
        dispatcher.start()
        await dispatcher.publish(_msg("a", "first"))
        await dispatcher.publish(_msg("a", "second"))
        await wait_until(lambda: dispatcher.active_lanes == 1 and dispatcher.pending == 0)

        stopping = asyncio.create_task(dispatcher.stop())
        await asyncio.sleep(0)
        release.set()
        await stopping
        await asyncio.sleep(0.02)

        assert handled == ["first"]
        await dispatcher.publish(_msg("a", "after"))
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_stop_can_cancel_inflight(self):
        async def handler(msg):
            await asyncio.sleep(10)

        dispatcher = PeerDispatcher(handler)
        dispatcher.start()
        await dispatcher.publish(_msg("a", "x"))
        await wait_until(lambda: dispatcher.active_lanes == 1)

        await asyncio.wait_for(dispatcher.stop(cancel_inflight=True), timeout=1.0)
        assert dispatcher.active_lanes == 0

    @pytest.mark.asyncio
    async def test_publish_blocks_while_handlers_are_busy(self):
        gate = asyncio.Event()
        started = []

        async def handler(msg):
            started.append(msg.text)
            await gate.wait()

        dispatcher = PeerDispatcher(handler, maxsize=2)
        dispatcher.start()
        # the router moves everything into lanes, so only held slots can push back
        await dispatcher.publish(_msg("a", "1"))
        await dispatcher.publish(_msg("b", "2"))
        await wait_until(lambda: len(started) == 2)
        assert dispatcher.pending == 0
        assert dispatcher.outstanding == 2

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(dispatcher.publish(_msg("a", "3")), timeout=0.05)
        assert dispatcher.outstanding == 2

        gate.set()
        await asyncio.wait_for(dispatcher.publish(_msg("c", "4")), timeout=1.0)
        await wait_until(lambda: dispatcher.outstanding == 0)
        assert sorted(started) == ["1", "2", "4"]
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_stop_returns_slots_of_dropped_messages(self):
        gate = asyncio.Event()

        async def handler(msg):
            await gate.wait()

        dispatcher = PeerDispatcher(handler, maxsize=3)
        dispatcher.start()
        for n in range(3):
            await dispatcher.publish(_msg("a", str(n)))
        await wait_until(lambda: dispatcher.pending == 0)

        await dispatcher.stop(cancel_inflight=True)
        assert dispatcher.outstanding == 0

    @pytest.mark.asyncio
    async def test_publisher_waiting_for_a_slot_is_dropped_on_stop(self):
        gate = asyncio.Event()

        async def handler(msg):
            await gate.wait()

        dispatcher = PeerDispatcher(handler, maxsize=1)
        dispatcher.start()
        await dispatcher.publish(_msg("a", "1"))
        waiting = asyncio.create_task(dispatcher.publish(_msg("a", "2")))
        await asyncio.sleep(0.01)
        assert not waiting.done()

        await dispatcher.stop(cancel_inflight=True)
        await asyncio.wait_for(waiting, timeout=1.0)
        assert dispatcher.pending == 0
        assert dispatcher.outstanding == 0

    @pytest.mark.asyncio
    async def test_inflight_handler_kept_alive_after_stop(self):
        gate = asyncio.Event()
        handled = []

        async def handler(msg):
            await gate.wait()
            handled.append(msg.text)

        dispatcher = PeerDispatcher(handler)
        dispatcher.start()
        await dispatcher.publish(_msg("a", "inflight"))
        await wait_until(lambda: dispatcher.active_lanes == 1)

        await dispatcher.stop()
        assert dispatcher.active_lanes == 0
        assert len(dispatcher._detached) == 1

        gate.set()
        await wait_until(lambda: handled == ["inflight"])
        await wait_until(lambda: not dispatcher._detached)
        assert dispatcher.outstanding == 0
