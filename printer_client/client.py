"""Printer client runner: wires the collaborators together and supervises
the registrant for the life of the process."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from . import __version__
from .commands import CommandInterpreter
from .config import ClientConfig
from .http_client import HttpClient
from .printer import Printer
from .registrant import Registrant, SessionFactory
from .state import DeviceState
from .urls import Urls

logger = logging.getLogger(__name__)


class PrinterClient:
    """Owns one registrant and everything it talks to."""

    def __init__(
        self,
        config: ClientConfig,
        state: Optional[DeviceState] = None,
        session_factory: Optional[SessionFactory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.state = state if state is not None else DeviceState.load(config.state_path)
        self.urls = Urls(config, self.state)
        self.http_client = HttpClient(
            self.state,
            timeout=config.http_timeout,
            on_unauthorized=self._on_unauthorized,
            transport=transport,
        )
        self.printer = Printer(
            status_path=config.status_path,
            command_pipe=config.command_pipe,
            registration_info_path=config.registration_info_path,
        )
        self.command_interpreter = CommandInterpreter(self.printer, self.http_client, self.urls)
        self.registrant = Registrant(
            config,
            self.state,
            self.http_client,
            self.printer,
            self.command_interpreter,
            urls=self.urls,
            session_factory=session_factory,
        )
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Register and supervise until :meth:`stop` is called."""
        logger.info("=== Printer Client v%s ===", __version__)
        logger.info("Server: %s | Printer: %s", self.config.server_url, self.state.printer_id or "unregistered")

        self._running = True
        self._stopped.clear()
        await self.registrant.attempt_registration()
        await self._supervise()

    async def stop(self) -> None:
        """Gracefully shut down."""
        if self._stopped.is_set():
            return
        logger.info("Shutting down printer client...")
        self._running = False
        self._stopped.set()
        self.registrant.cancel()
        await self.registrant.disconnect()
        await self.http_client.aclose()

    async def check_subscriptions(self) -> bool:
        """Restart the session if any subscription failed. Returns True if it did."""
        failed = self.registrant.failed_subscriptions
        if not failed:
            return False
        logger.warning(
            "Subscription to %s failed, restarting session",
            ", ".join(s.channel for s in failed),
        )
        await self.registrant.restart_session()
        return True

    async def _on_unauthorized(self) -> None:
        if self.state.auth_token is not None:
            await self.registrant.reregister()
        else:
            # Nothing to clear; back off instead of hammering the server
            self.registrant.retry_later()

    async def _supervise(self) -> None:
        interval = self.config.subscription_check_interval
        while self._running:
            if interval <= 0:
                await self._stopped.wait()
                break
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                try:
                    await self.check_subscriptions()
                except Exception:
                    logger.exception("Subscription check failed")
