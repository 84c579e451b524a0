"""Async HTTP client for the ERP REST API.

One ErpClient is shared by the inventory, order and customer handlers. It
owns a single ``httpx.AsyncClient`` carrying the base URL, bearer token and
timeout, and turns every kind of transport problem (connection errors,
HTTP status >= 400, undecodable bodies) into ``errors.TransportError``.
"""

from typing import Any

import httpx
import structlog

from errors import TransportError

logger = structlog.get_logger(__name__)


class ErpClient:
    """Thin wrapper around httpx for JSON calls to the ERP API.

    Attributes:
        base_url: Root URL of the ERP API, e.g. ``http://erp.local/api``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create the client.

        Args:
            base_url: Root URL of the ERP API.
            api_key: Bearer token sent with every request. Omitted if empty.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport, used by tests to plug in
                ``httpx.MockTransport``.
        """
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Issue one request and return the decoded JSON body.

        Args:
            method: HTTP method.
            path: Path relative to the base URL (leading slash optional).
            json_body: Optional JSON payload.

        Returns:
            The decoded response body (None for an empty body).

        Raises:
            TransportError: On connection failure, HTTP error status or
                an invalid JSON body.
        """
        url = path if path.startswith("/") else f"/{path}"
        try:
            response = await self._client.request(method, url, json=json_body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("erp_http_error", method=method, path=url, status_code=status)
            raise TransportError(
                f"Request failed with status code {status}", status_code=status
            ) from e
        except httpx.HTTPError as e:
            logger.warning("erp_connection_error", method=method, path=url, error=str(e))
            raise TransportError(str(e) or type(e).__name__) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON in response: {e}") from e

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def post(self, path: str, json_body: dict[str, Any]) -> Any:
        return await self.request("POST", path, json_body)

    async def put(self, path: str, json_body: dict[str, Any]) -> Any:
        return await self.request("PUT", path, json_body)

    async def health(self) -> bool:
        """Return True if the ERP API answers ``GET /health``."""
        try:
            await self.get("/health")
        except TransportError:
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
