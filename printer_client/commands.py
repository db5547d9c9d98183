"""Command interpreter: executes payloads pushed on the command channel.

Payload shape::

    {"command": "pause", "task_id": "abc123"}

Every command is acknowledged to the service as ``received`` and then
``completed`` or ``failed``. Nothing raises back into the pub/sub session.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .http_client import HttpClient
from .printer import (
    CMD_CANCEL,
    CMD_PAUSE,
    CMD_RESET,
    CMD_RESUME,
    CMD_START_PRINT,
    Printer,
    PrinterError,
)
from .urls import Urls

logger = logging.getLogger(__name__)

RECEIVED = "received"
COMPLETED = "completed"
FAILED = "failed"

# Service command name → firmware command
PRINTER_COMMANDS = {
    "start": CMD_START_PRINT,
    "cancel": CMD_CANCEL,
    "pause": CMD_PAUSE,
    "resume": CMD_RESUME,
    "reset": CMD_RESET,
}


class CommandInterpreter:
    def __init__(self, printer: Printer, http_client: HttpClient, urls: Urls):
        self.printer = printer
        self.http_client = http_client
        self.urls = urls

    async def interpret(self, payload: Any) -> None:
        logger.info("Received command payload: %s", payload)
        if not isinstance(payload, dict) or not isinstance(payload.get("command"), str):
            logger.error("Malformed command payload: %r", payload)
            return

        command = payload["command"]
        task_id = payload.get("task_id")
        await self._acknowledge(command, RECEIVED, task_id)

        if command == "ping":
            await self._acknowledge(command, COMPLETED, task_id)
            return

        firmware_command = PRINTER_COMMANDS.get(command)
        if firmware_command is None:
            logger.warning("Unknown command: %s", command)
            await self._acknowledge(command, FAILED, task_id, message=f"Unknown command {command!r}")
            return

        try:
            self.printer.send_command(firmware_command)
        except PrinterError as exc:
            logger.error("Command %s failed: %s", command, exc)
            await self._acknowledge(command, FAILED, task_id, message=str(exc))
            return
        await self._acknowledge(command, COMPLETED, task_id)

    async def _acknowledge(
        self,
        command: str,
        state: str,
        task_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        body: dict[str, Any] = {"command": command, "state": state}
        if task_id is not None:
            body["task_id"] = task_id
        if message:
            body["message"] = message
        await self.http_client.post(self.urls.command_ack_endpoint, body)
