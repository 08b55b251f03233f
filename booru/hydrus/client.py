"""Async client for the Hydrus client API."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel

from booru.exceptions import InternalServerError
from booru.hydrus.types import (
    MetadataBatch,
    MetadataResponse,
    SearchResult,
    VerifyAccessKeyResponse,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from booru.config import Settings

logger = logging.getLogger(__name__)

ACCESS_KEY_HEADER = "Hydrus-Client-API-Access-Key"

_ResponseT = TypeVar("_ResponseT", bound=BaseModel)


class HydrusApiError(Exception):
    """Raised when the Hydrus API answers with a non-success status."""

    def __init__(self, message: str, status_code: int, response_body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class CatalogClient(Protocol):
    """The two remote operations the sync engine depends on."""

    async def search_files(self, tags: Sequence[str]) -> SearchResult:
        """List file ids (and hashes) matching a tag filter."""
        ...

    async def get_file_metadata(self, file_ids: Sequence[int]) -> MetadataBatch:
        """Fetch full metadata for the given file ids, invalid records set aside."""
        ...


def _encode_params(params: dict[str, Any]) -> dict[str, str]:
    """Encode query parameters the way Hydrus expects (JSON for lists/dicts/bools)."""
    encoded: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, dict, bool)):
            encoded[key] = json.dumps(list(value) if isinstance(value, tuple) else value)
        else:
            encoded[key] = str(value)
    return encoded


class HydrusClient:
    """Thin typed wrapper around the Hydrus client API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            msg = "Hydrus API key is required. Set the HYDRUS_API_KEY environment variable."
            raise InternalServerError(msg)
        self.api_url = api_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={ACCESS_KEY_HEADER: api_key},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> HydrusClient:
        return cls(
            settings.hydrus_api_url,
            settings.hydrus_api_key,
            timeout=settings.hydrus_timeout_seconds,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> HydrusClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def _request(
        self,
        endpoint: str,
        response_model: type[_ResponseT],
        params: dict[str, Any] | None = None,
    ) -> _ResponseT:
        started = time.monotonic()
        logger.debug("Hydrus API request %s (params: %s)", endpoint, sorted(params or {}))
        response = await self._client.get(endpoint, params=_encode_params(params or {}))
        duration_ms = (time.monotonic() - started) * 1000

        if response.is_error:
            body = response.text
            logger.error(
                "Hydrus API error on %s: %d %s (%.0f ms)",
                endpoint,
                response.status_code,
                body[:500],
                duration_ms,
            )
            msg = f"Hydrus API error: {response.status_code} {response.reason_phrase}"
            raise HydrusApiError(msg, response.status_code, body)

        logger.debug(
            "Hydrus API response %s: %d (%.0f ms)", endpoint, response.status_code, duration_ms
        )
        return response_model.model_validate(response.json())

    async def verify_access_key(self) -> VerifyAccessKeyResponse:
        """Verify the API key and return its permissions."""
        return await self._request("/verify_access_key", VerifyAccessKeyResponse)

    async def search_files(self, tags: Sequence[str]) -> SearchResult:
        """Search files by tags, returning ids and hashes in Hydrus order."""
        return await self._request(
            "/get_files/search_files",
            SearchResult,
            {
                "tags": list(tags),
                "return_hashes": True,
                "return_file_ids": True,
            },
        )

    async def get_file_metadata(
        self,
        file_ids: Sequence[int],
        *,
        include_notes: bool = True,
        include_blurhash: bool = True,
    ) -> MetadataBatch:
        """Fetch metadata for a list of file ids.

        Records that fail validation come back in ``MetadataBatch.invalid``
        rather than failing the request.
        """
        if not file_ids:
            return MetadataBatch()
        result = await self._request(
            "/get_files/file_metadata",
            MetadataResponse,
            {
                "file_ids": list(file_ids),
                "include_notes": include_notes,
                "include_blurhash": include_blurhash,
                "only_return_basic_information": False,
            },
        )
        batch = result.parse_files()
        for invalid in batch.invalid:
            logger.warning("Skipping Hydrus metadata record %s", invalid.describe())
        return batch
