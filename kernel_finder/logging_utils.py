"""
Logging Utilities for kernel_finder

Server URLs routinely carry access tokens (``?token=...``); every URL that
reaches a log line goes through :func:`mask_secrets` first.
"""

import logging
import re
from enum import Enum
from typing import Optional, Union


class LogLevel(str, Enum):
    """Log levels accepted in configuration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# Patterns for secret masking (query tokens, headers, inline credentials)
SECRET_PATTERNS = [
    (re.compile(r"([?&](?:token|access_token|api_key)=)[^&#\s]+", re.I), r"\1***"),
    (re.compile(r"(Bearer|token)\s+([a-zA-Z0-9_\-\.]+)", re.I), r"\1 ***"),
    (re.compile(r"(://[^:/@\s]+:)[^@/\s]+@"), r"\1***@"),
]

DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def mask_secrets(text: str) -> str:
    """
    Mask secrets in text before logging.

    Args:
        text: Raw text that may contain secrets

    Returns:
        Text with secrets replaced by ***
    """
    masked = text
    for pattern, replacement in SECRET_PATTERNS:
        masked = pattern.sub(replacement, masked)
    return masked


def setup_logging(level: Union[str, LogLevel, int] = LogLevel.INFO, fmt: Optional[str] = None) -> None:
    """Configure root logging for command-line use."""
    if isinstance(level, LogLevel):
        level = level.value
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt or DEFAULT_FORMAT)
