"""HTTP client for the external academic-records system (SIA)."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Protocol

import httpx

from app.domain.sia.exceptions import (
    SiaConfigError,
    SiaEnvelopeError,
    SiaFetchError,
    SiaHTTPError,
    SiaTimeoutError,
)

_MAX_ERROR_BODY = 512


class StudentSource(Protocol):
    """Source of the full student dataset."""

    async def fetch_students(self) -> list[Mapping[str, Any]]:
        ...


class SiaClient(StudentSource):
    """Single-shot fetcher for ``GET {base}/students?full=true``.

    The request is raced against ``timeout_seconds``; retries are the caller's
    responsibility.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str],
        api_token: Optional[str],
        timeout_seconds: float = 10.0,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self._api_token = api_token
        self.timeout_seconds = timeout_seconds
        self._owns_http = http is None
        # httpx defaults to a 5s timeout; align it with the configured one
        self._http = http or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    @property
    def students_url(self) -> str:
        if not self.base_url or not self._api_token:
            raise SiaConfigError("SIA_BASE_URL or SIA_API_TOKEN not configured")
        return f"{self.base_url}/students"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "x-api-token": self._api_token or "",
        }

    async def fetch_students(self) -> list[Mapping[str, Any]]:
        url = self.students_url
        request = self._http.get(url, params={"full": "true"}, headers=self._headers())
        try:
            response = await asyncio.wait_for(request, timeout=self.timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise SiaTimeoutError(f"SIA request timed out after {self.timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise SiaFetchError(f"SIA request failed: {exc.__class__.__name__}: {exc}") from exc

        if not response.is_success:
            raise SiaHTTPError(response.status_code, response.text[:_MAX_ERROR_BODY])

        try:
            envelope = response.json()
        except ValueError as exc:
            raise SiaEnvelopeError("SIA response is not valid JSON") from exc
        if not isinstance(envelope, Mapping) or envelope.get("data") is None:
            raise SiaEnvelopeError("SIA response missing data")
        data = envelope["data"]
        if not isinstance(data, list):
            raise SiaEnvelopeError("SIA response data is not a list")
        return data

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
