"""Remote validation check.

A single read of a remote record. The gate proceeds only if the record
holds a usable URL. Every failure mode answers False: the check fails
closed and is never retried.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

if TYPE_CHECKING:
    from depthgate.config import Settings

logger = logging.getLogger(__name__)


def is_valid_url(value: Any) -> bool:
    """True for a non-empty string with a scheme and host."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


class RemoteValidator:
    """Checks the remote validation record."""

    def __init__(
        self,
        settings: "Settings",
        *,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = settings.validation_url
        self._timeout = httpx.Timeout(
            settings.total_timeout_seconds,
            connect=settings.connect_timeout_seconds,
        )
        self._client = client

    async def validate(self) -> bool:
        """Read the record once; True iff it holds a valid URL string."""
        if not self._url:
            logger.warning("No validation URL configured, failing closed")
            return False

        try:
            if self._client is not None:
                response = await self._client.get(self._url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self._url)
        except httpx.HTTPError as e:
            logger.warning(f"Validation request failed: {e}")
            return False

        if not response.is_success:
            logger.warning(f"Validation record returned HTTP {response.status_code}")
            return False

        try:
            value = response.json()
        except ValueError:
            logger.warning("Validation record is not JSON")
            return False

        valid = is_valid_url(value)
        logger.info(f"Validation {'passed' if valid else 'failed'}")
        return valid
