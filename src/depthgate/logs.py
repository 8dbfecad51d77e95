"""Logging setup with secret masking.

The attribution dev key travels in query strings and push tokens travel
in request bodies; both end up in httpx and gate log lines. MaskingFilter
rewrites them before any handler formats the record.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from rich.logging import RichHandler

DEVKEY_PATTERN = re.compile(r"(devkey=)[^&\s\"']+")
PUSH_TOKEN_PATTERN = re.compile(r"(['\"]?push_token['\"]?\s*[:=]\s*['\"]?)[^'\",\s}&]+")
MASK = "****MASKED****"


def scrub_secrets(text: str, secrets: Iterable[str] = ()) -> str:
    """Replace known secrets, dev keys and push tokens in text."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, MASK)
    text = DEVKEY_PATTERN.sub(rf"\g<1>{MASK}", text)
    return PUSH_TOKEN_PATTERN.sub(rf"\g<1>{MASK}", text)


class MaskingFilter(logging.Filter):
    """Log filter that masks secrets in the rendered message."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self._secrets = tuple(s for s in secrets if s)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        scrubbed = scrub_secrets(message, self._secrets)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = ()
        return True


def install_masking(secrets: Iterable[str] = ()) -> None:
    """Attach a MaskingFilter to root handlers and the uvicorn loggers."""
    masking = MaskingFilter(secrets)
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.addFilter(masking)
    for name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        logging.getLogger(name).addFilter(masking)


def setup_logging(level: str = "INFO", secrets: Iterable[str] = ()) -> None:
    """Configure console logging through rich, with masking."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    if not any(isinstance(h, RichHandler) for h in root_logger.handlers):
        root_logger.addHandler(RichHandler(show_path=False, rich_tracebacks=True))
    install_masking(secrets)
