"""
Shared fixtures for relaybot tests.

Provides a scripted in-memory transport, a recording connection handle and a
canned completion provider, so the session core can be exercised without a
WhatsApp bridge or a completion API.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from relaybot.agent.responder import ResponderGateway
from relaybot.bus.events import EventSink, PairingArtifact
from relaybot.config.schema import AIProfile, SessionsConfig
from relaybot.config.store import AIProfileStore
from relaybot.providers.base import LLMProvider, LLMResponse
from relaybot.session.lifecycle import SessionLifecycleController
from relaybot.session.manager import SessionRegistry
from relaybot.transport.base import BaseTransport, ConnectionHandle


# ── Transport fakes ────────────────────────────────────────


class FakeHandle(ConnectionHandle):
    """Connection handle that records every call."""

    def __init__(self, session_id: str, send_error: Exception | None = None):
        super().__init__(session_id)
        self.sent: list[tuple[str, str]] = []
        self.send_error = send_error
        self.reclaim_error: Exception | None = None
        self.reclaims = 0
        self.logged_out = False
        self.closed = False
        self.calls: list[str] = []

    async def send(self, peer_id: str, text: str) -> None:
        self.calls.append("send")
        if self.send_error:
            raise self.send_error
        self.sent.append((peer_id, text))

    async def reclaim(self) -> None:
        self.calls.append("reclaim")
        self.reclaims += 1
        if self.reclaim_error:
            raise self.reclaim_error

    async def logout(self) -> None:
        self.calls.append("logout")
        self.logged_out = True

    async def close(self) -> None:
        self.calls.append("close")
        self.closed = True


class FakeTransport(BaseTransport):
    """
    Scripted transport.

    open() reports a QR artifact (unless artifact is None), then either raises
    `fail`, waits on `gate` (when set) or completes immediately with a FakeHandle.
    """

    name = "fake"

    def __init__(
        self,
        artifact: str | None = "qr-payload",
        fail: Exception | None = None,
        gate: asyncio.Event | None = None,
    ):
        super().__init__(None)
        self.artifact = artifact
        self.fail = fail
        self.gate = gate
        self.sinks: dict[str, EventSink] = {}
        self.handles: dict[str, FakeHandle] = {}

    async def open(self, session_id: str, sink: EventSink) -> ConnectionHandle:
        self.sinks[session_id] = sink
        if self.artifact is not None:
            await sink(PairingArtifact(session_id, self.artifact))
        if self.fail:
            raise self.fail
        if self.gate is not None:
            await self.gate.wait()
        handle = FakeHandle(session_id)
        self.handles[session_id] = handle
        return handle


# ── Provider fake ──────────────────────────────────────────


class FakeProvider(LLMProvider):
    """
    Completion provider returning canned responses.

    `reply` may be a string, an LLMResponse, or a callable taking the message
    list and returning either.
    """

    def __init__(self, reply: str | LLMResponse | Callable[[list], Any] = "Hi there!"):
        super().__init__(api_key="test-key")
        self.reply = reply
        self.calls: list[list[dict[str, Any]]] = []

    async def chat(self, messages, model=None, max_tokens=1024, temperature=0.7) -> LLMResponse:
        self.calls.append([dict(m) for m in messages])
        reply = self.reply(messages) if callable(self.reply) else self.reply
        if isinstance(reply, LLMResponse):
            return reply
        return LLMResponse(content=reply)

    def get_default_model(self) -> str:
        return "fake-model"


class GatedProvider(FakeProvider):
    """FakeProvider whose chat() waits on `gate` before answering."""

    def __init__(self, reply: str | LLMResponse = "Hi there!"):
        super().__init__(reply)
        self.gate = asyncio.Event()

    async def chat(self, messages, model=None, max_tokens=1024, temperature=0.7) -> LLMResponse:
        self.calls.append([dict(m) for m in messages])
        await self.gate.wait()
        reply = self.reply
        if isinstance(reply, LLMResponse):
            return reply
        return LLMResponse(content=reply)


# ── Helpers ────────────────────────────────────────────────


COMPLETE_PROFILE = AIProfile(
    business_name="Acme Bakery",
    industry="bakery",
    instructions="Be brief.",
)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll the event loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(0.01)


def make_registry(
    transport: BaseTransport | None = None,
    provider: LLMProvider | None = None,
    profile: AIProfile | None = COMPLETE_PROFILE,
    settings: SessionsConfig | None = None,
    logout_on_close: bool = True,
    completion_detector=None,
) -> tuple[SessionRegistry, SessionLifecycleController, AIProfileStore]:
    """Wire a registry over fakes. Must be called inside a running event loop."""
    profiles = AIProfileStore(profile)
    controller = SessionLifecycleController(
        transport=transport or FakeTransport(),
        responder=ResponderGateway(provider or FakeProvider()),
        profiles=profiles,
        settings=settings,
        logout_on_close=logout_on_close,
        completion_detector=completion_detector,
    )
    return SessionRegistry(controller), controller, profiles


# ── Fixtures ───────────────────────────────────────────────


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def profiles():
    return AIProfileStore(COMPLETE_PROFILE)


@pytest.fixture
def responder(provider):
    return ResponderGateway(provider)
