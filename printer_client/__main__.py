"""Printer client entry point.

Usage:
    python -m printer_client [--config CONFIG_PATH] [--server URL] [--debug]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from .client import PrinterClient
from .config import ClientConfig

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Printer registration client")
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config.json (default: /etc/printer-client/config.json)",
    )
    parser.add_argument(
        "--server",
        default=None,
        help="Print service base URL (overrides config)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    config_path = Path(args.config or "/etc/printer-client/config.json")
    config = ClientConfig.load(config_path)
    if args.server:
        config.server_url = args.server

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    client = PrinterClient(config)
    runner = loop.create_task(client.start())

    def _shutdown(sig: int) -> None:
        logger.info("Received signal %d, shutting down", sig)
        runner.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)

    try:
        loop.run_until_complete(runner)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        loop.run_until_complete(client.stop())
        loop.close()


if __name__ == "__main__":
    main()
