"""Logging utilities for Globalping MCP."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the globalping_mcp namespace.

    Args:
        name: the name of the logger, which will be prefixed with 'globalping_mcp.'

    Returns:
        a configured logger instance
    """
    if name.startswith("globalping_mcp."):
        return logging.getLogger(name=name)
    return logging.getLogger(name=f"globalping_mcp.{name}")


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] | int = "INFO",
    logger: logging.Logger | None = None,
    enable_rich_tracebacks: bool = True,
) -> None:
    """
    Configure logging for Globalping MCP.

    Args:
        logger: the logger to configure
        level: the log level to use
    """
    if logger is None:
        logger = logging.getLogger("globalping_mcp")

    # Only configure the globalping_mcp logger namespace
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=enable_rich_tracebacks,
    )
    formatter = logging.Formatter("%(message)s")
    handler.setFormatter(formatter)

    logger.setLevel(level)

    # Remove any existing handlers to avoid duplicates on reconfiguration
    for hdlr in logger.handlers[:]:
        logger.removeHandler(hdlr)

    logger.addHandler(handler)

    # Don't propagate to the root logger
    logger.propagate = False
