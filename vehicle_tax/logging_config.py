"""Logging setup for the vehicle tax engine."""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAMESPACE = "vehicle_tax"


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``vehicle_tax`` namespace."""
    if name.startswith(LOGGER_NAMESPACE):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def configure_logging(level: str = "INFO", console: Optional[Console] = None) -> None:
    """Route engine logs through a rich handler. Safe to call repeatedly."""
    root = logging.getLogger(LOGGER_NAMESPACE)
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.propagate = False
