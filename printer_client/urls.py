"""Endpoint and channel names derived from configuration."""

from __future__ import annotations

from .config import ClientConfig
from .state import DeviceState

_API_PREFIX = "/api/v1/print/printers"


class Urls:
    """Resolves the service endpoints for the current printer.

    Channel names depend on the printer id, so they are computed on every
    access from the live :class:`DeviceState`.
    """

    def __init__(self, config: ClientConfig, state: DeviceState) -> None:
        self.config = config
        self.state = state

    @property
    def server_url(self) -> str:
        return self.config.server_url.rstrip("/")

    @property
    def registration_endpoint(self) -> str:
        return f"{self.server_url}{_API_PREFIX}"

    @property
    def status_endpoint(self) -> str:
        return f"{self.server_url}{_API_PREFIX}/status"

    @property
    def health_check_endpoint(self) -> str:
        return f"{self.server_url}{_API_PREFIX}/health_check"

    @property
    def command_ack_endpoint(self) -> str:
        return f"{self.server_url}{_API_PREFIX}/acknowledge"

    @property
    def client_endpoint(self) -> str:
        """Websocket URL of the pub/sub broker."""
        base = self.server_url
        if base.startswith("https://"):
            return "wss://" + base[len("https://"):] + "/faye"
        if base.startswith("http://"):
            return "ws://" + base[len("http://"):] + "/faye"
        return base + "/faye"

    @property
    def registration_channel(self) -> str:
        return self.config.registration_channel.format(printer_id=self.state.printer_id)

    @property
    def command_channel(self) -> str:
        return self.config.command_channel.format(printer_id=self.state.printer_id)
