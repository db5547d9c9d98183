"""Publish/subscribe session with the print service's message broker.

The registrant depends only on :class:`PubSubSession`. :class:`BayeuxSession`
is the production adapter: it speaks the Bayeux handshake / connect /
subscribe exchange over a single websocket.

  Client → Broker: /meta/handshake, /meta/connect, /meta/subscribe,
                   /meta/unsubscribe, /meta/disconnect
  Broker → Client: replies to the above (matched by ``id``), channel messages
"""

from __future__ import annotations

import abc
import asyncio
import enum
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

import websockets
from websockets.asyncio.client import ClientConnection

from .errors import SubscriptionFailure

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Union[None, Awaitable[None]]]


class SubscriptionState(enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"


@dataclass
class Subscription:
    channel: str
    on_message: MessageHandler
    state: SubscriptionState = SubscriptionState.PENDING


@dataclass(frozen=True)
class SubscriptionResult:
    channel: str
    ok: bool
    error: Optional[str] = None


class AuthenticationExtension:
    """Stamps the printer's auth token into every outgoing message."""

    def __init__(self, auth_token: Optional[str]):
        self.auth_token = auth_token

    def outgoing(self, message: dict) -> dict:
        ext = message.setdefault("ext", {})
        ext["authentication_token"] = self.auth_token
        return message


class PubSubSession(abc.ABC):
    """One connection to the broker."""

    @property
    @abc.abstractmethod
    def connected(self) -> bool:
        """False once the broker connection is gone."""

    @abc.abstractmethod
    def add_extension(self, extension: AuthenticationExtension) -> None:
        """Register an extension applied to every outgoing message."""

    @abc.abstractmethod
    async def subscribe(self, channel: str, on_message: MessageHandler) -> SubscriptionResult:
        """Subscribe to *channel*; resolves once the broker answers."""

    @abc.abstractmethod
    async def unsubscribe(self, channel: str) -> None:
        ...

    @abc.abstractmethod
    async def disconnect(self) -> None:
        ...


class BayeuxSession(PubSubSession):
    """Bayeux client over a websocket.

    The connection is opened lazily by the first :meth:`subscribe`.
    """

    def __init__(self, endpoint: str, timeout: float = 10.0):
        self.endpoint = endpoint
        self.timeout = timeout

        self._ws: Optional[ClientConnection] = None
        self._client_id: Optional[str] = None
        self._extensions: list[AuthenticationExtension] = []
        self._handlers: dict[str, MessageHandler] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._listener: Optional[asyncio.Task] = None
        self._connect_lock = asyncio.Lock()
        self._msg_id = 0
        self._closed = False

    def add_extension(self, extension: AuthenticationExtension) -> None:
        self._extensions.append(extension)

    @property
    def connected(self) -> bool:
        return self._client_id is not None

    async def subscribe(self, channel: str, on_message: MessageHandler) -> SubscriptionResult:
        if self._closed:
            return SubscriptionResult(channel=channel, ok=False, error="session disconnected")
        try:
            await self._ensure_connected()
            reply = await self._request({
                "channel": "/meta/subscribe",
                "clientId": self._client_id,
                "subscription": channel,
            })
            if not reply.get("successful"):
                raise SubscriptionFailure(channel, reply.get("error", "rejected by broker"))
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException, SubscriptionFailure) as exc:
            logger.warning("Subscribe to %s failed: %s", channel, exc)
            return SubscriptionResult(channel=channel, ok=False, error=str(exc) or type(exc).__name__)

        self._handlers[channel] = on_message
        return SubscriptionResult(channel=channel, ok=True)

    async def unsubscribe(self, channel: str) -> None:
        self._handlers.pop(channel, None)
        if not self.connected:
            return
        try:
            await self._request({
                "channel": "/meta/unsubscribe",
                "clientId": self._client_id,
                "subscription": channel,
            })
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException):
            logger.debug("Unsubscribe from %s not acknowledged", channel)

    async def disconnect(self) -> None:
        self._closed = True
        if self._ws is not None and self._client_id is not None:
            try:
                await self._send({"channel": "/meta/disconnect", "clientId": self._client_id})
            except (OSError, websockets.WebSocketException):
                logger.debug("Broker gone before disconnect was sent")
        await self._teardown()

    # ── Internals ─────────────────────────────────────────────────

    async def _teardown(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.error("Broker listener ended with error: %s", exc)
            self._listener = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._client_id = None
        self._handlers.clear()
        self._fail_pending(ConnectionError("session disconnected"))

    async def _ensure_connected(self) -> None:
        async with self._connect_lock:
            if self.connected:
                return
            if self._ws is not None:
                await self._teardown()
            self._ws = await websockets.connect(
                self.endpoint,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=5,
            )
            self._listener = asyncio.ensure_future(self._listen())
            reply = await self._request({
                "channel": "/meta/handshake",
                "version": "1.0",
                "supportedConnectionTypes": ["websocket"],
            })
            if not reply.get("successful") or not reply.get("clientId"):
                raise SubscriptionFailure("/meta/handshake", reply.get("error", "handshake rejected"))
            self._client_id = reply["clientId"]
            logger.info("Connected to broker %s (client: %s)", self.endpoint, self._client_id)
            await self._send_connect()

    def _next_id(self) -> str:
        self._msg_id += 1
        return str(self._msg_id)

    async def _send(self, message: dict) -> None:
        for extension in self._extensions:
            message = extension.outgoing(message)
        await self._ws.send(json.dumps([message]))

    async def _send_connect(self) -> None:
        await self._send({
            "channel": "/meta/connect",
            "clientId": self._client_id,
            "connectionType": "websocket",
            "id": self._next_id(),
        })

    async def _request(self, message: dict) -> dict:
        msg_id = self._next_id()
        message["id"] = msg_id
        future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            await self._send(message)
            return await asyncio.wait_for(future, timeout=self.timeout)
        finally:
            self._pending.pop(msg_id, None)

    async def _listen(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    decoded = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring undecodable broker frame: %r", raw)
                    continue
                for message in decoded if isinstance(decoded, list) else [decoded]:
                    if not isinstance(message, dict):
                        logger.warning("Ignoring malformed broker message: %r", message)
                        continue
                    await self._handle_message(message)
        except websockets.ConnectionClosed:
            logger.info("Broker connection closed")
        except Exception:
            logger.exception("Unexpected broker listener error")
        finally:
            self._client_id = None
            self._fail_pending(ConnectionError("broker connection closed"))

    async def _handle_message(self, message: dict) -> None:
        channel = message.get("channel", "")
        future = self._pending.get(str(message.get("id")))
        if future is not None and not future.done():
            future.set_result(message)
            return

        if channel == "/meta/connect":
            # Long-poll style: every connect reply is answered with a new connect
            if message.get("successful") and self._client_id:
                await self._send_connect()
            return
        if channel.startswith("/meta/"):
            return

        handler = self._handlers.get(channel)
        if handler is None:
            logger.debug("Message on unsubscribed channel %s", channel)
            return
        try:
            outcome = handler(message.get("data"))
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Handler error for %s", channel)

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()
