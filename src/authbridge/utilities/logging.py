"""Logging utilities for AuthBridge."""

import logging
from collections.abc import Mapping
from typing import Any, Literal

from rich.console import Console
from rich.logging import RichHandler

SENSITIVE_FIELDS = frozenset(
    {
        "access_token",
        "client_secret",
        "code",
        "code_verifier",
        "id_token",
        "refresh_token",
    }
)


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under AuthBridge namespace.

    Args:
        name: the name of the logger, which will be prefixed with 'AuthBridge.'

    Returns:
        a configured logger instance
    """
    return logging.getLogger(f"AuthBridge.{name}")


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] | int = "INFO",
    logger: logging.Logger | None = None,
    enable_rich_tracebacks: bool = True,
) -> None:
    """
    Configure logging for AuthBridge.

    Args:
        logger: the logger to configure
        level: the log level to use
    """
    if logger is None:
        logger = logging.getLogger("AuthBridge")

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


def redact(value: str | None, keep: int = 8) -> str:
    """Shorten a secret to a prefix that is safe to log."""
    if not value:
        return "none"
    return value[:keep] + "..."


def redact_fields(data: Mapping[str, Any]) -> dict[str, str]:
    """Redact the credential-bearing members of a request body."""
    return {
        k: redact(str(v)) if k in SENSITIVE_FIELDS and v else str(v)
        for k, v in data.items()
    }
