"""Slack Web API client for posting replies.

This module provides an async wrapper around the Slack Web API methods
the relay uses:
- chat.postMessage (channel or thread replies)
- chat.postEphemeral (replies only the invoking user sees)
- reactions.add (acknowledging a mention)

Includes retry logic for rate limiting and transient server errors.

Source:
- src/relay/config.py (slack_bot_token, slack_api_base_url)
"""

import asyncio
import logging
import random
from typing import Any, Dict, Optional

import httpx


logger = logging.getLogger(__name__)


DEFAULT_SLACK_API_URL = "https://slack.com/api"


class SlackAPIError(Exception):
    """Raised when a Slack API call fails.

    Slack reports most failures with HTTP 200 and {"ok": false, "error": ...},
    so error carries the Slack error code when there is one.

    Attributes:
        message: Human-readable error description.
        method: The Slack API method that was called.
        error: Slack error code (e.g. "channel_not_found").
        status_code: HTTP status code from the response.
    """

    def __init__(
        self,
        message: str,
        method: str,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.method = method
        self.error = error
        self.status_code = status_code
        super().__init__(message)


class SlackClient:
    """Async Slack Web API client with retry logic.

    Attributes:
        token: Bot token (xoxb-...).
        base_url: Base URL of the Slack Web API.
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> client = SlackClient(token="xoxb-...")
        >>> async with client:
        ...     await client.post_message("C123", "Hello!", thread_ts="1700.1")
    """

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_SLACK_API_URL,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json; charset=utf-8",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SlackClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).
        """
        capped_delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        return random.uniform(0, capped_delay)

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("retry-after")
        if retry_after is not None:
            try:
                return min(float(retry_after), self.max_delay)
            except ValueError:
                pass
        return self._calculate_backoff(attempt)

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Call a Slack Web API method with retry logic.

        Args:
            method: Slack API method name (e.g. "chat.postMessage").
            payload: JSON arguments for the method.

        Returns:
            The decoded response body.

        Raises:
            SlackAPIError: If the call fails after all retries or Slack
                           answers with ok=false.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.post(f"/{method}", json=payload)
            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Slack request error, retrying",
                        extra={
                            "slack_method": method,
                            "attempt": attempt + 1,
                            "delay": delay,
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(delay)
                    continue
                break

            if response.status_code in self.RETRYABLE_STATUS_CODES:
                if attempt < self.max_retries:
                    delay = self._retry_delay(response, attempt)
                    logger.warning(
                        "Retryable error from Slack API",
                        extra={
                            "slack_method": method,
                            "status_code": response.status_code,
                            "attempt": attempt + 1,
                            "delay": delay,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue

            if response.status_code >= 400:
                raise SlackAPIError(
                    f"Slack API error: {response.status_code}",
                    method=method,
                    status_code=response.status_code,
                )

            data = response.json()
            if not data.get("ok", False):
                error = data.get("error")
                raise SlackAPIError(
                    f"Slack API call {method} failed: {error}",
                    method=method,
                    error=error,
                    status_code=response.status_code,
                )
            return data

        logger.error(
            "Slack API request failed after all retries",
            extra={"slack_method": method, "last_error": str(last_exception)},
        )
        raise SlackAPIError(
            f"Slack API call {method} failed after {self.max_retries} retries: "
            f"{last_exception}",
            method=method,
        )

    async def post_message(
        self,
        channel: str,
        text: str,
        thread_ts: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Post a message to a channel, optionally as a thread reply."""
        payload: Dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts

        logger.info(
            "Posting Slack message",
            extra={"channel": channel, "thread_ts": thread_ts},
        )
        return await self._call("chat.postMessage", payload)

    async def post_ephemeral(
        self,
        channel: str,
        user: str,
        text: str,
    ) -> Dict[str, Any]:
        """Post a message only the given user can see."""
        logger.info(
            "Posting ephemeral Slack message",
            extra={"channel": channel, "slack_user": user},
        )
        return await self._call(
            "chat.postEphemeral",
            {"channel": channel, "user": user, "text": text},
        )

    async def add_reaction(self, channel: str, timestamp: str, name: str) -> None:
        """Add an emoji reaction to a message.

        An existing identical reaction is not an error.
        """
        try:
            await self._call(
                "reactions.add",
                {"channel": channel, "timestamp": timestamp, "name": name},
            )
        except SlackAPIError as e:
            if e.error == "already_reacted":
                return
            raise
