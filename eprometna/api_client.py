"""
Backend HTTP Client.

Thin wrapper around a shared ``httpx.AsyncClient`` that attaches the
bearer token, decodes JSON bodies, and translates every failure into the
core error taxonomy:

- ``httpx.TransportError`` (DNS, refused connection, timeout) ->
  :class:`~eprometna.errors.TransportError`
- HTTP status >= 400 -> :class:`~eprometna.errors.DomainError`
  carrying the server's ``message`` field when present
- 2xx body that is not a JSON object -> :class:`~eprometna.errors.ProtocolError`

Gateways build on this and never see raw ``httpx`` exceptions.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx

from eprometna.errors import DomainError, ProtocolError, TransportError
from eprometna.logger import StructuredLogger

TokenProvider = Callable[[], Optional[str]]


class ApiClient:
    """Async JSON client for the E-Prometna backend.

    Parameters
    ----------
    http:
        The ``httpx.AsyncClient`` to issue requests with.  Its
        ``base_url`` and timeout are configured by the caller so tests can
        inject a client backed by ``httpx.MockTransport``.
    token_provider:
        Callable returning the current access token, or ``None``.
        Consulted on every authenticated request.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        token_provider: TokenProvider,
        logger: StructuredLogger,
    ) -> None:
        self._http: httpx.AsyncClient = http
        self._token_provider: TokenProvider = token_provider
        self._logger: StructuredLogger = logger

    @classmethod
    def create(
        cls,
        base_url: str,
        timeout_s: float,
        token_provider: TokenProvider,
        logger: StructuredLogger,
    ) -> "ApiClient":
        """Build a client with its own ``httpx.AsyncClient``."""
        http = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_s),
            headers={"Accept": "application/json"},
        )
        return cls(http=http, token_provider=token_provider, logger=logger)

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Optional[dict[str, Any]]:
        """Issue one request and return the decoded JSON object body.

        Returns ``None`` for an empty 2xx body.

        Raises
        ------
        TransportError
            The backend could not be reached.
        DomainError
            The backend answered with status >= 400.
        ProtocolError
            A non-empty 2xx body is not a JSON object.
        """
        headers: dict[str, str] = {}
        if authenticated:
            token = self._token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.request(method, path, json=json, headers=headers)
        except httpx.TransportError as exc:
            self._logger.warning(
                "%s %s failed before a response: %s", method, path, exc,
                extra={"event": "HTTP_TRANSPORT_ERROR"},
            )
            raise TransportError(f"Cannot reach the server: {exc}") from exc

        self._logger.debug(
            "%s %s -> %d", method, path, response.status_code,
        )

        if response.is_error:
            server_message = self._server_message(response)
            self._logger.warning(
                "%s %s returned HTTP %d: %s",
                method,
                path,
                response.status_code,
                server_message or response.reason_phrase,
                extra={"event": "HTTP_ERROR", "status": response.status_code},
            )
            raise DomainError(
                status_code=response.status_code,
                message=server_message or f"HTTP {response.status_code} {response.reason_phrase}",
                server_message=server_message,
            )

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError(
                f"Invalid response from server: {method} {path} did not return JSON"
            ) from exc
        if not isinstance(body, dict):
            raise ProtocolError(
                f"Invalid response from server: {method} {path} did not return an object"
            )
        return body

    async def get(self, path: str, *, authenticated: bool = True) -> Optional[dict[str, Any]]:
        return await self.request("GET", path, authenticated=authenticated)

    async def post(
        self,
        path: str,
        json: Optional[dict[str, Any]] = None,
        *,
        authenticated: bool = True,
    ) -> Optional[dict[str, Any]]:
        return await self.request("POST", path, json=json, authenticated=authenticated)

    async def put(self, path: str, *, authenticated: bool = True) -> Optional[dict[str, Any]]:
        return await self.request("PUT", path, authenticated=authenticated)

    @staticmethod
    def _server_message(response: httpx.Response) -> Optional[str]:
        """Extract the ``message`` field of an error body, if any."""
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            message = body.get("message")
            if isinstance(message, str) and message.strip():
                return message
        return None
