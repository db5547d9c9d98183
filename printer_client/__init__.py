"""Printer client: registers a printer with the print service and keeps
its command channel alive."""

__version__ = "0.1.0"
