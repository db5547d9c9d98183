"""Device state store: the printer id and auth token issued by the server.

The registrant is the only writer. All writes go through :meth:`DeviceState.update`,
which validates every field before touching any of them so other readers
never observe a half-applied update.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FIELDS = ("printer_id", "auth_token")


class DeviceState:
    """Identity of this printer as known by the print service."""

    def __init__(
        self,
        printer_id: Optional[str] = None,
        auth_token: Optional[str] = None,
        path: str | Path | None = None,
    ) -> None:
        self._printer_id = printer_id
        self._auth_token = auth_token
        self._path = Path(path) if path else None

    @classmethod
    def load(cls, path: str | Path) -> DeviceState:
        """Restore state from *path*; missing or unreadable files give an empty state."""
        path = Path(path)
        data: dict[str, Any] = {}
        if path.exists():
            try:
                with open(path) as f:
                    data = json.load(f)
            except (OSError, ValueError):
                logger.exception("Could not read state file %s, starting unregistered", path)
                data = {}
        if not isinstance(data, dict):
            data = {}
        return cls(
            printer_id=data.get("printer_id"),
            auth_token=data.get("auth_token"),
            path=path,
        )

    @property
    def printer_id(self) -> Optional[str]:
        return self._printer_id

    @property
    def auth_token(self) -> Optional[str]:
        return self._auth_token

    def update(self, **fields: Any) -> None:
        """Atomically set any of ``printer_id`` / ``auth_token``.

        Unknown field names raise :class:`ValueError` before anything changes.
        """
        unknown = set(fields) - set(_FIELDS)
        if unknown:
            raise ValueError(f"Unknown state fields: {', '.join(sorted(unknown))}")

        printer_id = fields.get("printer_id", self._printer_id)
        auth_token = fields.get("auth_token", self._auth_token)
        if self._path:
            self._write(printer_id, auth_token)
        self._printer_id = printer_id
        self._auth_token = auth_token

    def as_dict(self) -> dict[str, Optional[str]]:
        return {"printer_id": self._printer_id, "auth_token": self._auth_token}

    def _write(self, printer_id: Optional[str], auth_token: Optional[str]) -> None:
        # Write to a temp file and rename so a crash never leaves a torn file
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".state-")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump({"printer_id": printer_id, "auth_token": auth_token}, f)
            os.replace(tmp, self._path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def __repr__(self) -> str:
        return f"DeviceState(printer_id={self._printer_id!r}, auth_token={'set' if self._auth_token else None})"
