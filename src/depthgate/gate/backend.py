"""HTTP client for the attribution and endpoint-resolution backends.

fetch_tracking() is a single attempt. fetch_endpoint() retries on the
configured delay schedule (5s/10s/20s by default); HTTP 429 waits
delay * attempt_number instead of the plain delay.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

import httpx

from depthgate.gate.validator import is_valid_url

if TYPE_CHECKING:
    from depthgate.config import Settings

logger = logging.getLogger(__name__)

PLATFORM_OS = "iOS"


class BackendError(Exception):
    """Base class for backend failures."""

    pass


class InvalidURLError(BackendError):
    """Configured backend URL is unusable."""

    pass


class RequestFailedError(BackendError):
    """Transport failure or non-2xx response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(RequestFailedError):
    """Backend kept answering HTTP 429."""

    def __init__(self, message: str = "Rate limited by backend"):
        super().__init__(message, status_code=429)


class DecodingFailedError(BackendError):
    """Response body is not the expected JSON shape."""

    pass


class BackendClient:
    """Remote calls used by the gate's endpoint resolution."""

    def __init__(
        self,
        settings: "Settings",
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._settings = settings
        self._client = client
        self._sleep = sleep
        self._timeout = httpx.Timeout(
            settings.total_timeout_seconds,
            connect=settings.connect_timeout_seconds,
        )

    # --- Transport ---

    async def _send(self, request: httpx.Request) -> httpx.Response:
        """Send with the connect/total timeout budget."""
        total = self._settings.total_timeout_seconds
        try:
            if self._client is not None:
                return await asyncio.wait_for(self._client.send(request), timeout=total)
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await asyncio.wait_for(client.send(request), timeout=total)
        except asyncio.TimeoutError as e:
            raise RequestFailedError(f"Request exceeded {total}s budget") from e
        except httpx.HTTPError as e:
            raise RequestFailedError(f"Request failed: {e}") from e

    # --- Attribution ---

    def tracking_url(self) -> str:
        base = self._settings.attribution_base_url.rstrip("/")
        return f"{base}/id{self._settings.app_id}"

    async def fetch_tracking(self, device_id: str) -> dict[str, Any]:
        """Fetch install attribution for this device. Single attempt.

        Raises:
            InvalidURLError: If the attribution base URL is unusable
            RequestFailedError: On transport failure or non-2xx
            DecodingFailedError: If the body is not a JSON object
        """
        url = self.tracking_url()
        if not is_valid_url(url):
            raise InvalidURLError(f"Invalid attribution URL: {url!r}")

        request = httpx.Request(
            "GET",
            url,
            params={"devkey": self._settings.dev_key, "device_id": device_id},
            headers={"Accept": "application/json"},
            extensions={"timeout": self._timeout.as_dict()},
        )
        response = await self._send(request)

        if not response.is_success:
            raise RequestFailedError(
                f"Attribution fetch returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise DecodingFailedError("Attribution response is not JSON") from e
        if not isinstance(data, dict):
            raise DecodingFailedError("Attribution response is not a JSON object")

        logger.info(f"Fetched attribution record with {len(data)} fields")
        return data

    # --- Endpoint resolution ---

    def build_endpoint_payload(
        self,
        tracking: Mapping[str, Any],
        *,
        device_id: str,
        push_token: str | None = None,
    ) -> dict[str, Any]:
        """Tracking fields enriched with device, platform and locale metadata."""
        settings = self._settings
        payload = dict(tracking)
        payload["os"] = PLATFORM_OS
        payload["af_id"] = device_id
        payload["bundle_id"] = settings.bundle_id
        payload["firebase_project_id"] = settings.firebase_project_id or None
        payload["store_id"] = f"id{settings.app_id}"
        payload["push_token"] = push_token
        payload["locale"] = (settings.locale or "EN")[:2].upper()
        return payload

    async def fetch_endpoint(
        self,
        tracking: Mapping[str, Any],
        *,
        device_id: str,
        push_token: str | None = None,
    ) -> str:
        """Resolve the remote endpoint for this install.

        Raises:
            InvalidURLError: If the config URL is unusable
            RateLimitedError: If the last attempt was answered with 429
            RequestFailedError: On transport failure or non-2xx after retries
            DecodingFailedError: If the last body lacked ok/url
        """
        settings = self._settings
        if not is_valid_url(settings.config_url):
            raise InvalidURLError(f"Invalid config URL: {settings.config_url!r}")

        payload = self.build_endpoint_payload(
            tracking, device_id=device_id, push_token=push_token
        )
        delays = settings.retry_delays
        last_error: BackendError | None = None

        for index, delay in enumerate(delays):
            is_last = index == len(delays) - 1
            request = httpx.Request(
                "POST",
                settings.config_url,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": settings.user_agent,
                    "Cache-Control": "no-cache",
                    "Pragma": "no-cache",
                },
                extensions={"timeout": self._timeout.as_dict()},
            )

            try:
                response = await self._send(request)

                if response.status_code == 429:
                    last_error = RateLimitedError()
                    backoff = delay * (index + 1)
                    logger.warning(
                        f"Endpoint resolution rate limited (attempt {index + 1}/{len(delays)})"
                    )
                    if not is_last:
                        await self._sleep(backoff)
                    continue

                if not response.is_success:
                    raise RequestFailedError(
                        f"Endpoint resolution returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                endpoint = _parse_endpoint(response)
                logger.info(f"Endpoint resolved on attempt {index + 1}")
                return endpoint

            except BackendError as e:
                last_error = e
                logger.warning(
                    f"Endpoint resolution attempt {index + 1}/{len(delays)} failed: {e}"
                )
                if not is_last:
                    await self._sleep(delay)

        raise last_error or RequestFailedError("Endpoint resolution failed")


def _parse_endpoint(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError as e:
        raise DecodingFailedError("Endpoint response is not JSON") from e
    if not isinstance(body, dict) or body.get("ok") is not True:
        raise DecodingFailedError("Endpoint response missing ok=true")
    url = body.get("url")
    if not isinstance(url, str) or not url:
        raise DecodingFailedError("Endpoint response missing url")
    return url
