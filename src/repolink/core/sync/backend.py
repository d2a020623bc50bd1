"""
HTTP client for the backend sync endpoint.

One operation: ``POST {base_url}/sync-projects``. Transport failures and
timeouts become ``NetworkError``; non-2xx responses and unparsable bodies
become ``ServerError``. Retries, when configured, happen in the transport
(see ``repolink.core.sync.transport``).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from repolink.core.sync.exceptions import NetworkError, ServerError
from repolink.core.sync.models import SyncRequest, SyncResponse

logger = logging.getLogger(__name__)

SYNC_PATH = "/sync-projects"
DEFAULT_TIMEOUT_SECONDS = 30.0


class SyncBackendClient:
    """
    Async client for the project sync endpoint.

    The underlying ``httpx.AsyncClient`` is created on first use and reused
    until ``aclose()``. The client is also an async context manager.

    Example:
        >>> async with SyncBackendClient("https://api.example.com") as backend:
        ...     response = await backend.sync_projects(request, token)
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> SyncBackendClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def sync_projects(self, request: SyncRequest, token: str) -> SyncResponse:
        """
        Send local projects and receive the server's view.

        Args:
            request: Projects and resolution mode to send
            token: Bearer token; never logged

        Returns:
            Parsed response body

        Raises:
            NetworkError: On connection failure or timeout
            ServerError: On a non-2xx status or an unparsable body
        """
        payload = request.to_payload()
        logger.debug(
            "Syncing %d project(s) with %s",
            len(request.local_projects),
            request.conflict_resolution.value,
        )
        try:
            response = await self.client.post(
                SYNC_PATH,
                json=payload,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"Network error: request timed out after {self.timeout:g}s", url=self.base_url
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e}", url=self.base_url) from e

        body = self._json_body(response)

        if not response.is_success:
            server_message = body.get("error") if isinstance(body, dict) else None
            raise ServerError(
                f"Sync failed: {server_message or 'Unknown error'}",
                status_code=response.status_code,
                server_message=server_message,
            )

        if not isinstance(body, dict):
            raise ServerError(
                "Sync failed: response body is not a JSON object",
                status_code=response.status_code,
            )
        try:
            result = SyncResponse.model_validate(body)
        except PydanticValidationError as e:
            raise ServerError(
                f"Sync failed: unexpected response shape: {e.error_count()} error(s)",
                status_code=response.status_code,
            ) from e

        logger.debug(
            "Sync response: %d updated, %d conflict(s), %d deleted",
            len(result.updated_projects),
            len(result.conflicts),
            len(result.deleted_projects),
        )
        return result

    @staticmethod
    def _json_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None


__all__ = ["DEFAULT_TIMEOUT_SECONDS", "SYNC_PATH", "SyncBackendClient"]
