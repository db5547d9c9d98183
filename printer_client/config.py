"""Configuration for the printer client."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path

from . import __version__

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    """Printer client configuration, loaded from config.json."""

    server_url: str = "http://localhost:3000"
    firmware_version: str = __version__

    # Seconds to wait before re-attempting registration after a failure
    client_retry_interval: float = 15.0
    http_timeout: float = 10.0
    # Seconds between subscription health checks (0 disables supervision)
    subscription_check_interval: float = 60.0

    # Channel templates, formatted with the printer id
    registration_channel: str = "/printers/{printer_id}/users"
    command_channel: str = "/printers/{printer_id}/command"

    # Files shared with the printer firmware
    state_path: str = "/var/lib/printer-client/state.json"
    status_path: str = "/tmp/PrinterStatus.json"
    command_pipe: str = "/tmp/CommandPipe"
    registration_info_path: str = "/tmp/RegistrationInfo.json"

    @classmethod
    def load(cls, path: str | Path) -> ClientConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {f.name for f in fields(cls)}
            unknown = sorted(set(data) - known)
            if unknown:
                logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(unknown))
            return cls(**{k: v for k, v in data.items() if k in known})
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    def overrides(self) -> dict[str, object]:
        """Settings that differ from the built-in defaults."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) != f.default
        }

    def save(self, path: str | Path) -> None:
        """Write only the overridden settings so future default changes still apply."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.overrides(), f, indent=2, sort_keys=True)
