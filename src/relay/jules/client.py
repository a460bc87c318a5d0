"""Jules task API client.

This module provides an async wrapper around the Jules REST API for:
- Listing the sources (GitHub repositories) an API key can access
- Creating a session that auto-creates a pull request
- Fetching the latest snapshot of a session

The client is a pure boundary: no retry, no backoff and no caching.
Retry policy belongs to the session poller. Each call carries the
caller's API key, so one client instance serves every user.

Source:
- src/relay/jules/models.py (Source, Session, CreateSessionRequest)
- src/relay/config.py (jules_api_base_url, jules_timeout_seconds)
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import SecretStr, ValidationError

from src.relay.jules.models import CreateSessionRequest, Session, Source


logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://jules.googleapis.com/v1alpha"
API_KEY_HEADER = "x-goog-api-key"


class UpstreamError(Exception):
    """Raised when a Jules API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code, or None for transport failures and
            malformed responses.
        response_body: Response body, preserved for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class JulesClient:
    """Async Jules API client.

    Attributes:
        base_url: Base URL of the Jules API.
        starting_branch: Branch new sessions start from.
        timeout: Request timeout in seconds.

    Example:
        >>> client = JulesClient()
        >>> async with client:
        ...     sources = await client.list_sources(SecretStr("key"))
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        starting_branch: str = "main",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Jules client.

        Args:
            base_url: Base URL of the Jules API.
            starting_branch: Branch new sessions start from.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests to stub
                       the API.
        """
        self.base_url = base_url.rstrip("/")
        self.starting_branch = starting_branch
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "JulesClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        api_key: SecretStr,
        operation: str,
        json_data: Optional[Dict[str, Any]] = None,
        include_body: bool = False,
    ) -> Dict[str, Any]:
        """Make one request and return the decoded JSON body.

        Args:
            method: HTTP method.
            path: API path relative to the base URL.
            api_key: The caller's Jules API key.
            operation: Short description used in error messages.
            json_data: Optional JSON body.
            include_body: Whether the error message should carry the
                          response body.

        Raises:
            UpstreamError: On a non-2xx status, a transport failure or a
                           non-JSON response.
        """
        headers = {API_KEY_HEADER: api_key.get_secret_value()}
        if json_data is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = await self.client.request(
                method=method,
                url=path,
                headers=headers,
                json=json_data,
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Jules API request failed",
                extra={"path": path, "method": method, "error": str(e)},
            )
            raise UpstreamError(f"{operation}: {e}") from e

        if not response.is_success:
            error_body = response.text
            logger.error(
                "Jules API error",
                extra={
                    "status_code": response.status_code,
                    "path": path,
                    "method": method,
                    "response_body": error_body[:500],
                },
            )
            message = f"{operation}: {response.status_code}"
            if include_body:
                message = f"{message} - {error_body}"
            raise UpstreamError(
                message,
                status_code=response.status_code,
                response_body=error_body,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"{operation}: invalid JSON response",
                status_code=response.status_code,
                response_body=response.text,
            ) from e

    async def list_sources(self, api_key: SecretStr) -> List[Source]:
        """List the sources the API key can access.

        The list order is the API's order, which callers treat as the
        default priority.

        Args:
            api_key: The caller's Jules API key.

        Returns:
            Sources in API order; empty when the response has no
            "sources" key.

        Raises:
            UpstreamError: If the request fails.
        """
        data = await self._request(
            "GET", "/sources", api_key, operation="Failed to list sources"
        )
        try:
            sources = [Source.model_validate(s) for s in data.get("sources") or []]
        except (ValidationError, AttributeError) as e:
            raise UpstreamError(f"Failed to list sources: {e}") from e

        logger.debug("Listed Jules sources", extra={"source_count": len(sources)})
        return sources

    async def create_session(
        self,
        api_key: SecretStr,
        prompt: str,
        source_name: str,
    ) -> Session:
        """Create a session that auto-creates a pull request.

        Args:
            api_key: The caller's Jules API key.
            prompt: Task description for Jules (non-empty).
            source_name: Resource name of the target source.

        Returns:
            The newly created session.

        Raises:
            UpstreamError: If the request fails. The response body is
                           preserved in the error.
        """
        request = CreateSessionRequest.for_source(
            prompt=prompt,
            source_name=source_name,
            starting_branch=self.starting_branch,
        )

        logger.info(
            "Creating Jules session",
            extra={"source": source_name, "prompt_length": len(prompt)},
        )

        data = await self._request(
            "POST",
            "/sessions",
            api_key,
            operation="Failed to create session",
            json_data=request.to_payload(),
            include_body=True,
        )
        session = self._parse_session(data, "Failed to create session")

        logger.info(
            "Jules session created",
            extra={"session_id": session.id, "source": source_name},
        )
        return session

    async def get_session(self, api_key: SecretStr, session_id: str) -> Session:
        """Fetch the latest snapshot of a session.

        Args:
            api_key: The caller's Jules API key.
            session_id: Identifier of the session.

        Raises:
            UpstreamError: If the request fails.
        """
        data = await self._request(
            "GET",
            f"/sessions/{session_id}",
            api_key,
            operation="Failed to get session",
        )
        return self._parse_session(data, "Failed to get session")

    def _parse_session(self, data: Any, operation: str) -> Session:
        try:
            return Session.model_validate(data)
        except ValidationError as e:
            raise UpstreamError(f"{operation}: malformed session: {e}") from e
