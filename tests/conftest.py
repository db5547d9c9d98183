"""pytest configuration and shared fakes for printer client tests."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from printer_client.config import ClientConfig
from printer_client.http_client import RequestResult
from printer_client.printer import Printer
from printer_client.pubsub import PubSubSession, SubscriptionResult
from printer_client.registrant import Registrant
from printer_client.state import DeviceState


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


# ── Fakes ─────────────────────────────────────────────────────────


class FakeHttpClient:
    """Records POSTs and replays scripted results per endpoint."""

    def __init__(self):
        self.posts: list[tuple[str, object]] = []
        self.responses: dict[str, list[RequestResult]] = {}
        self.gate: asyncio.Event | None = None

    def queue(self, endpoint: str, status: int = 200, body: object = "{}") -> None:
        text = body if isinstance(body, str) else json.dumps(body)
        error = None if 200 <= status < 300 else f"HTTP {status}"
        self.responses.setdefault(endpoint, []).append(
            RequestResult(endpoint=endpoint, status=status, body=text, error=error)
        )

    async def post(self, endpoint, body=None):
        self.posts.append((endpoint, body))
        queued = self.responses.get(endpoint)
        result = queued.pop(0) if queued else RequestResult(endpoint=endpoint, status=200, body="{}")
        if self.gate is not None:
            gate, self.gate = self.gate, None
            await gate.wait()
        return result

    @property
    def endpoints(self) -> list[str]:
        return [endpoint for endpoint, _ in self.posts]

    def bodies(self, endpoint: str) -> list[object]:
        return [body for e, body in self.posts if e == endpoint]


class FakeSession(PubSubSession):
    connected = True

    def __init__(self, endpoint: str, fail_channels: set[str] | None = None):
        self.endpoint = endpoint
        self.fail_channels = fail_channels or set()
        self.extensions = []
        self.subscribed: dict = {}
        self.unsubscribed: list[str] = []
        self.disconnected = False

    def add_extension(self, extension):
        self.extensions.append(extension)

    async def subscribe(self, channel, on_message):
        if channel in self.fail_channels:
            return SubscriptionResult(channel=channel, ok=False, error="rejected")
        self.subscribed[channel] = on_message
        return SubscriptionResult(channel=channel, ok=True)

    async def unsubscribe(self, channel):
        self.unsubscribed.append(channel)
        self.subscribed.pop(channel, None)

    async def disconnect(self):
        self.disconnected = True
        self.connected = False


class FakeBroker:
    """Minimal fake websocket that answers Bayeux meta messages."""

    def __init__(self, reject: set[str] | None = None, handshake_ok: bool = True):
        self.reject = reject or set()
        self.handshake_ok = handshake_ok
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, raw: str) -> None:
        for message in json.loads(raw):
            self.sent.append(message)
            reply = self._reply(message)
            if reply is not None:
                await self._incoming.put(json.dumps([reply]))

    def _reply(self, message: dict) -> dict | None:
        channel = message["channel"]
        if channel == "/meta/handshake":
            if not self.handshake_ok:
                return {"channel": channel, "id": message["id"], "successful": False, "error": "403::denied"}
            return {"channel": channel, "id": message["id"], "successful": True, "clientId": "client-1"}
        if channel == "/meta/subscribe":
            if message["subscription"] in self.reject:
                return {"channel": channel, "id": message["id"], "successful": False, "error": "403::forbidden"}
            return {"channel": channel, "id": message["id"], "successful": True}
        if channel == "/meta/unsubscribe":
            return {"channel": channel, "id": message["id"], "successful": True}
        # /meta/connect is held open by the broker until it has something to say
        return None

    def push(self, message: dict) -> None:
        self.push_raw(json.dumps([message]))

    def push_raw(self, raw: str) -> None:
        self._incoming.put_nowait(raw)

    def channels_sent(self) -> list[str]:
        return [m["channel"] for m in self.sent]

    async def close(self) -> None:
        self.closed = True
        await self._incoming.put(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


async def drain() -> None:
    """Let queued broker frames reach the session listener."""
    for _ in range(5):
        await asyncio.sleep(0)


class FakeTimer:
    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.callback(*self.args)


class FakeTimerLoop:
    """Stands in for the event loop's timer API."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def armed(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


class SessionFactory:
    def __init__(self):
        self.sessions: list[FakeSession] = []
        self.fail_channels: set[str] = set()

    def __call__(self, endpoint):
        session = FakeSession(endpoint, set(self.fail_channels))
        self.sessions.append(session)
        return session

    @property
    def last(self) -> FakeSession:
        return self.sessions[-1]


# ── Fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def config(tmp_path):
    return ClientConfig(
        server_url="http://print.test",
        firmware_version="1.2.3",
        client_retry_interval=5.0,
        state_path=str(tmp_path / "state.json"),
        status_path=str(tmp_path / "status.json"),
        command_pipe=str(tmp_path / "command_pipe"),
        registration_info_path=str(tmp_path / "registration_info.json"),
    )


@pytest.fixture
def printer(config):
    printer = Printer(config.status_path, config.command_pipe, config.registration_info_path)
    set_printer_state(printer, "HomeState")
    printer.command_pipe.touch()
    return printer


def set_printer_state(printer: Printer, state: str, substate: str = "") -> None:
    printer.status_path.write_text(json.dumps({"state": state, "substate": substate, "temperature": 21}))


def sent_commands(printer: Printer) -> list[str]:
    return printer.command_pipe.read_text().splitlines()


@pytest.fixture
def http():
    return FakeHttpClient()


@pytest.fixture
def sessions():
    return SessionFactory()


@pytest.fixture
def timers():
    return FakeTimerLoop()


@pytest.fixture
def interpreter():
    interpreter = MagicMock()
    interpreter.interpret = AsyncMock()
    return interpreter


@pytest.fixture
def device_state():
    return DeviceState()


@pytest.fixture
def registrant(config, device_state, http, printer, interpreter, sessions, timers):
    return Registrant(
        config,
        device_state,
        http,
        printer,
        interpreter,
        session_factory=sessions,
        loop=timers,
    )
