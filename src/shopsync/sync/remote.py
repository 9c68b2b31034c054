"""
Remote sync endpoint clients.

The pumps only depend on RemoteSyncClient. Every failure short of
cancellation is reported as None so the pumps can treat "no answer" uniformly:
an upload stays pending, a download cycle aborts without moving its cursor.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError

from shopsync.config import Settings
from shopsync.sync.schemas import (
    SyncDownloadQuery,
    SyncDownloadResponse,
    SyncUploadRequest,
    SyncUploadResult,
)

logger = logging.getLogger(__name__)


class RemoteSyncClient(ABC):
    @abstractmethod
    async def upload_changes(self, request: SyncUploadRequest) -> Optional[SyncUploadResult]:
        ...

    @abstractmethod
    async def get_updates(self, query: SyncDownloadQuery) -> Optional[SyncDownloadResponse]:
        ...

    async def aclose(self) -> None:
        return None


class HttpRemoteSyncClient(RemoteSyncClient):
    """
    JSON over HTTP against the central node's /api/sync routes.

    One httpx.AsyncClient is kept for the lifetime of the worker; call
    aclose() on shutdown.
    """

    UPLOAD_PATH = "/api/sync/upload"
    CHANGES_PATH = "/api/sync/changes"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Central node root, e.g. "http://central:8000". Blank
                      disables the client (every call returns None).
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.base_url = (base_url or "").strip().rstrip("/")
        self._client: Optional[httpx.AsyncClient] = None
        if self.base_url:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpRemoteSyncClient":
        return cls(settings.central_api_base_url, timeout=settings.sync_http_timeout_seconds)

    async def upload_changes(self, request: SyncUploadRequest) -> Optional[SyncUploadResult]:
        body = request.model_dump(mode="json", by_alias=True)
        response = await self._send("POST", self.UPLOAD_PATH, json=body)
        if response is None:
            return None
        return self._decode(response, SyncUploadResult)

    async def get_updates(self, query: SyncDownloadQuery) -> Optional[SyncDownloadResponse]:
        response = await self._send("GET", self.CHANGES_PATH, params=query.to_params())
        if response is None:
            return None
        return self._decode(response, SyncDownloadResponse)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs) -> Optional[httpx.Response]:
        if self._client is None:
            logger.warning("Central API base URL is not configured; skipping %s %s", method, path)
            return None
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            return None
        if response.is_error:
            logger.error("%s %s returned %d: %s", method, path, response.status_code,
                         response.text or "<empty>")
            return None
        return response

    @staticmethod
    def _decode(response: httpx.Response, model):
        try:
            data = response.json()
        except ValueError as exc:
            logger.error("Undecodable response from %s: %s", response.request.url, exc)
            return None
        if data is None:
            logger.warning("Empty response body from %s", response.request.url)
            return None
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            logger.error("Unexpected response shape from %s: %s", response.request.url, exc)
            return None
