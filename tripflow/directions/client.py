"""HTTP client for the Google Directions JSON API."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
import pydantic

from common import settings

from .models import DirectionsRequest, DirectionsResponse

logger = logging.getLogger(__name__)

DIRECTIONS_URL = 'https://maps.googleapis.com/maps/api/directions/json'

# Seconds.
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 15.0


class ProviderError(Exception):
    """The directions provider could not produce a usable route.

    ``reason`` is a short machine-readable tag: the provider status (for
    example ``'ZERO_RESULTS'``), ``'timeout'``, ``'http_error'``,
    ``'transport'`` or ``'invalid_response'``.
    """

    def __init__(self, reason: str, message: str = '') -> None:
        super().__init__(f'{reason}: {message}' if message else reason)
        self.reason = reason
        self.message = message


class DirectionsProvider(Protocol):
    """Anything that can answer a :class:`DirectionsRequest`."""

    async def directions(self, request: DirectionsRequest) -> DirectionsResponse: ...


class DirectionsClient:
    """Async directions client with mandatory connect and read timeouts."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DIRECTIONS_URL,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.GOOGLE_DIRECTIONS_API_KEY
        self.base_url = base_url
        self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._transport = transport

    async def directions(self, request: DirectionsRequest) -> DirectionsResponse:
        """Fetch and validate a route.

        Raises:
            ProviderError: on timeout, transport or HTTP failure, an invalid
                body, or any provider status other than ``OK``.
        """
        if not self.api_key:
            raise ProviderError('missing_api_key', 'GOOGLE_DIRECTIONS_API_KEY is not set')

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    self.base_url, params=request.to_params(self.api_key)
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise ProviderError('timeout', str(exc)) from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                'http_error', f'HTTP {exc.response.status_code}'
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError('transport', str(exc)) from exc
        except ValueError as exc:
            raise ProviderError('invalid_response', 'body is not JSON') from exc

        try:
            parsed = DirectionsResponse.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ProviderError('invalid_response', str(exc)) from exc

        if not parsed.ok:
            logger.warning(
                'Directions request failed with status %s: %s',
                parsed.status,
                parsed.error_message or '',
            )
            raise ProviderError(parsed.status, parsed.error_message or '')
        return parsed
