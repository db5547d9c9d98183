"""Printer facade: status, readiness checks and commands.

The firmware publishes its status as a JSON file and reads commands, one
per line, from a named pipe. Both paths come from configuration.
"""

from __future__ import annotations

import errno
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable

from .errors import LocalPreconditionError

logger = logging.getLogger(__name__)

HOME_STATE = "HomeState"

STATE_KEY = "state"
SUBSTATE_KEY = "substate"

CMD_REGISTRATION_CODE = "displaycode"
CMD_REGISTERED = "registered"
CMD_START_PRINT = "start"
CMD_CANCEL = "cancel"
CMD_PAUSE = "pause"
CMD_RESUME = "resume"
CMD_RESET = "reset"

REGISTRATION_CODE_KEY = "registration_code"
REGISTRATION_URL_KEY = "registration_url"


class PrinterInvalidState(LocalPreconditionError):
    """The printer is not in the state required for an operation."""


class PrinterError(Exception):
    """The printer's status or command files could not be used."""


class Printer:
    def __init__(self, status_path: str | Path, command_pipe: str | Path, registration_info_path: str | Path):
        self.status_path = Path(status_path)
        self.command_pipe = Path(command_pipe)
        self.registration_info_path = Path(registration_info_path)

    def get_status(self) -> dict[str, Any]:
        """Return the latest status published by the firmware."""
        try:
            with open(self.status_path) as f:
                status = json.load(f)
        except (OSError, ValueError) as exc:
            raise PrinterError(f"Cannot read printer status from {self.status_path}: {exc}") from exc
        if not isinstance(status, dict):
            raise PrinterError(f"Printer status in {self.status_path} is not an object")
        return status

    def validate_state(self, predicate: Callable[[str, str], bool]) -> None:
        """Raise :class:`PrinterInvalidState` unless ``predicate(state, substate)`` holds.

        An unreadable status counts as an invalid state.
        """
        try:
            status = self.get_status()
        except PrinterError as exc:
            raise PrinterInvalidState(str(exc)) from exc
        state = status.get(STATE_KEY, "")
        substate = status.get(SUBSTATE_KEY, "")
        if not predicate(state, substate):
            raise PrinterInvalidState(f"Printer in state {state!r} (substate {substate!r})")

    def send_command(self, command: str) -> None:
        """Write *command* to the firmware's command pipe."""
        logger.debug("Sending command %r to %s", command, self.command_pipe)
        try:
            # Non-blocking so a firmware that is not reading the pipe cannot stall the loop
            fd = os.open(self.command_pipe, os.O_WRONLY | os.O_APPEND | os.O_NONBLOCK)
        except OSError as exc:
            if exc.errno == errno.ENXIO:
                raise PrinterError(f"No reader on command pipe {self.command_pipe}") from exc
            raise PrinterError(f"Cannot open command pipe {self.command_pipe}: {exc}") from exc
        try:
            with os.fdopen(fd, "w") as pipe:
                pipe.write(command + "\n")
        except OSError as exc:
            raise PrinterError(f"Cannot write to command pipe {self.command_pipe}: {exc}") from exc

    def write_registration_info_file(self, info: dict[str, Any]) -> None:
        """Write the registration code and URL for the front panel to display."""
        self.registration_info_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.registration_info_path, "w") as f:
            json.dump(info, f)
