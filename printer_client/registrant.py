"""Registration coordinator: identifies the printer with the print service
and keeps its pub/sub channels open.

States: UNREGISTERED → AWAITING_RESPONSE → AWAITING_CODE_SUBSCRIPTION → SESSION_ACTIVE
                                        ↘                            ↗
                                         ───────────────────────────
  No auth token: printer must be at HOME_STATE before the first POST
  Response with registration code: wait for a user to enter the code
  Response without code: printer already registered, go straight to active
  Any failure (except 403) → UNREGISTERED + retry after client_retry_interval

Every attempt bumps a generation counter. Responses and retry timers that
belong to an older generation are dropped, and at most one retry timer is
armed at a time.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from .commands import CommandInterpreter
from .config import ClientConfig
from .errors import MalformedResponseError
from .http_client import HttpClient, RequestResult
from .printer import (
    CMD_REGISTERED,
    CMD_REGISTRATION_CODE,
    HOME_STATE,
    REGISTRATION_CODE_KEY,
    REGISTRATION_URL_KEY,
    Printer,
    PrinterError,
    PrinterInvalidState,
)
from .pubsub import (
    AuthenticationExtension,
    BayeuxSession,
    MessageHandler,
    PubSubSession,
    Subscription,
    SubscriptionResult,
    SubscriptionState,
)
from .state import DeviceState
from .urls import Urls

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str], PubSubSession]


class RegistrationState(enum.Enum):
    UNREGISTERED = "unregistered"
    AWAITING_RESPONSE = "awaiting_response"
    AWAITING_CODE_SUBSCRIPTION = "awaiting_code_subscription"
    SESSION_ACTIVE = "session_active"


class Registrant:
    """Drives registration and owns the pub/sub session."""

    def __init__(
        self,
        config: ClientConfig,
        state: DeviceState,
        http_client: HttpClient,
        printer: Printer,
        command_interpreter: CommandInterpreter,
        urls: Optional[Urls] = None,
        session_factory: Optional[SessionFactory] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.config = config
        self.state = state
        self.http_client = http_client
        self.printer = printer
        self.command_interpreter = command_interpreter
        self.urls = urls or Urls(config, state)
        self.session_factory = session_factory or (
            lambda endpoint: BayeuxSession(endpoint, timeout=config.http_timeout)
        )
        self.registration_state = RegistrationState.UNREGISTERED
        self.subscriptions: dict[str, Subscription] = {}

        self._loop = loop
        self._session: Optional[PubSubSession] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def session(self) -> Optional[PubSubSession]:
        return self._session

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    @property
    def failed_subscriptions(self) -> list[Subscription]:
        # A dropped broker connection takes every active subscription with it
        if self._session is not None and not self._session.connected:
            for subscription in self.subscriptions.values():
                if subscription.state is SubscriptionState.ACTIVE:
                    subscription.state = SubscriptionState.FAILED
        return [s for s in self.subscriptions.values() if s.state is SubscriptionState.FAILED]

    # ── Operations ────────────────────────────────────────────────

    async def attempt_registration(self) -> None:
        self._generation += 1
        generation = self._generation
        self._cancel_retry()

        # Printer state only matters for primary registration
        if self.state.auth_token is None:
            logger.info("Beginning registration without auth token")
            try:
                self.printer.validate_state(lambda state, substate: state == HOME_STATE)
            except PrinterInvalidState as exc:
                logger.warning(
                    "Printer not ready for registration (%s), retrying in %ss",
                    exc, self.config.client_retry_interval,
                )
                self.registration_state = RegistrationState.UNREGISTERED
                self._schedule_retry()
                return
        else:
            logger.info("Beginning registration with auth token for printer %s", self.state.printer_id)

        endpoint = self.urls.registration_endpoint
        logger.info("Attempting registration with %s", endpoint)
        self.registration_state = RegistrationState.AWAITING_RESPONSE
        result = await self.http_client.post(endpoint, {"auth_token": self.state.auth_token})

        if generation != self._generation:
            logger.debug("Dropping registration response from superseded attempt %d", generation)
            return
        if not result.ok:
            self._registration_request_failed(result)
            return

        try:
            response = self._parse_response(result.body)
        except MalformedResponseError as exc:
            logger.error(
                "Malformed registration response from %s (%s), retrying in %ss",
                endpoint, exc, self.config.client_retry_interval,
            )
            self.registration_state = RegistrationState.UNREGISTERED
            self._schedule_retry()
            return

        await self._registration_request_successful(response, generation)

    async def disconnect(self, callback: Optional[Callable[[], Any]] = None) -> None:
        """Tear down the pub/sub session, if any.

        Completion is signalled on the next loop tick whether or not a
        session existed: *callback* is scheduled with ``call_soon`` and the
        coroutine yields once before returning.
        """
        session, self._session = self._session, None
        self.subscriptions = {}
        if session is not None:
            logger.info("Disconnecting pub/sub session")
            await session.disconnect()
        if callback is not None:
            asyncio.get_running_loop().call_soon(callback)
        await asyncio.sleep(0)

    async def reregister(self) -> None:
        """Forget the current identity and register from scratch."""
        logger.info("Clearing printer id and auth token for re-registration")
        try:
            self.state.update(printer_id=None, auth_token=None)
        except OSError as exc:
            logger.error(
                "Could not clear printer identity (%s), retrying in %ss",
                exc, self.config.client_retry_interval,
            )
            self._schedule_retry(self.reregister)
            return
        self.registration_state = RegistrationState.UNREGISTERED
        await self.disconnect()
        await self.attempt_registration()

    async def restart_session(self) -> None:
        """Reconnect the pub/sub session, keeping the current identity."""
        logger.info("Restarting pub/sub session for printer %s", self.state.printer_id)
        await self.disconnect()
        await self.attempt_registration()

    def retry_later(self) -> None:
        """Arm the retry timer for the current attempt."""
        logger.info("Retrying registration in %ss", self.config.client_retry_interval)
        self._schedule_retry()

    def cancel(self) -> None:
        """Disarm the retry timer and cancel background tasks."""
        self._generation += 1
        self._cancel_retry()
        for task in list(self._tasks):
            task.cancel()

    async def registration_notification_received(self, payload: Any) -> None:
        """A user entered the registration code on the service."""
        logger.info("Received notification on %s: %s", self.urls.registration_channel, payload)
        self._send_printer_command(CMD_REGISTERED)
        self.registration_state = RegistrationState.SESSION_ACTIVE

        # The notification channel is only needed once
        channel = self.urls.registration_channel
        self.subscriptions.pop(channel, None)
        if self._session is not None:
            self._spawn(self._session.unsubscribe(channel))

        await self._post_health_check()

    # ── Request handling ──────────────────────────────────────────

    def _registration_request_failed(self, result: RequestResult) -> None:
        self.registration_state = RegistrationState.UNREGISTERED
        # On 403 the http client has already triggered recovery
        if result.status == 403:
            logger.warning("Registration rejected by %s (403)", result.endpoint)
            return
        logger.warning(
            "Registration request to %s failed (%s), retrying in %ss",
            self.config.server_url, result.error, self.config.client_retry_interval,
        )
        self._schedule_retry()

    @staticmethod
    def _parse_response(body: str) -> dict[str, Any]:
        try:
            response = json.loads(body)
        except ValueError as exc:
            raise MalformedResponseError(f"invalid JSON: {exc}") from exc
        if not isinstance(response, dict):
            raise MalformedResponseError("expected a JSON object")
        missing = []
        if not response.get("auth_token"):
            missing.append("auth_token")
        if response.get("id") is None:
            missing.append("id")
        if missing:
            raise MalformedResponseError(f"missing {', '.join(missing)}")
        return response

    async def _registration_request_successful(self, response: dict[str, Any], generation: int) -> None:
        logger.info("Received registration response for printer %s", response["id"])
        self._cancel_retry()
        try:
            self.state.update(auth_token=response["auth_token"], printer_id=response["id"])
        except OSError as exc:
            logger.error(
                "Could not save printer identity (%s), retrying in %ss",
                exc, self.config.client_retry_interval,
            )
            self.registration_state = RegistrationState.UNREGISTERED
            self._schedule_retry()
            return

        if self._session is not None:
            await self.disconnect()
            if generation != self._generation:
                return
        session = self.session_factory(self.urls.client_endpoint)
        session.add_extension(AuthenticationExtension(self.state.auth_token))
        self._session = session

        pending = []
        if response.get(REGISTRATION_CODE_KEY):
            self.registration_state = RegistrationState.AWAITING_CODE_SUBSCRIPTION
            pending.append(self._subscribe_registration_channel(session, response))
        else:
            # Already registered: the notification flow will not refresh the
            # service's view of this printer, so push status and health now
            self.registration_state = RegistrationState.SESSION_ACTIVE
            await self._post_status()
            await self._post_health_check()

        pending.append(self._subscribe_command_channel(session))
        await asyncio.gather(*pending)

    # ── Subscriptions ─────────────────────────────────────────────

    async def _subscribe(
        self, session: PubSubSession, channel: str, on_message: MessageHandler
    ) -> SubscriptionResult:
        subscription = Subscription(channel=channel, on_message=on_message)
        if session is self._session:
            self.subscriptions[channel] = subscription
        result = await session.subscribe(channel, on_message)
        subscription.state = SubscriptionState.ACTIVE if result.ok else SubscriptionState.FAILED
        if result.ok:
            logger.info("Subscribed to %s", channel)
        else:
            logger.error("Subscription to %s failed: %s", channel, result.error)
        return result

    async def _subscribe_registration_channel(self, session: PubSubSession, response: dict[str, Any]) -> None:
        result = await self._subscribe(
            session, self.urls.registration_channel, self.registration_notification_received
        )
        if not result.ok:
            return
        try:
            self.printer.write_registration_info_file({
                REGISTRATION_CODE_KEY: response.get(REGISTRATION_CODE_KEY),
                REGISTRATION_URL_KEY: response.get(REGISTRATION_URL_KEY),
            })
        except OSError:
            logger.exception("Could not write registration info file %s", self.printer.registration_info_path)
            return
        self._send_printer_command(CMD_REGISTRATION_CODE)

    async def _subscribe_command_channel(self, session: PubSubSession) -> None:
        await self._subscribe(session, self.urls.command_channel, self.command_interpreter.interpret)

    # ── Service updates ───────────────────────────────────────────

    async def _post_status(self) -> None:
        try:
            status = self.printer.get_status()
        except PrinterError as exc:
            logger.error("Not sending status to %s: %s", self.urls.status_endpoint, exc)
            return
        await self.http_client.post(self.urls.status_endpoint, status)

    async def _post_health_check(self) -> None:
        await self.http_client.post(
            self.urls.health_check_endpoint,
            {"firmware_version": self.config.firmware_version},
        )

    def _send_printer_command(self, command: str) -> None:
        try:
            self.printer.send_command(command)
        except PrinterError as exc:
            logger.error("Could not send %r to printer: %s", command, exc)

    # ── Timers and tasks ──────────────────────────────────────────

    def _schedule_retry(self, operation: Optional[Callable[[], Awaitable[None]]] = None) -> None:
        self._cancel_retry()
        loop = self._loop or asyncio.get_running_loop()
        self._retry_handle = loop.call_later(
            self.config.client_retry_interval,
            self._retry,
            self._generation,
            operation,
        )

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _retry(self, generation: int, operation: Optional[Callable[[], Awaitable[None]]]) -> None:
        self._retry_handle = None
        if generation != self._generation:
            return
        self._spawn((operation or self.attempt_registration)())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed", exc_info=task.exception())
