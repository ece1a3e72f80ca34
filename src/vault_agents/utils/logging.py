"""Logging utilities with Rich integration."""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: int = logging.INFO) -> None:
    """Configure standard logging with a Rich handler writing to stderr."""

    console = Console(stderr=True)
    handler = RichHandler(console=console, show_time=True, show_path=False, rich_tracebacks=True)
    logging.basicConfig(level=level, handlers=[handler], format="%(message)s")


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger namespaced under ``vault_agents``."""

    if name and not name.startswith("vault_agents"):
        name = f"vault_agents.{name}"
    return logging.getLogger(name or "vault_agents")


__all__ = ["configure_logging", "get_logger"]
