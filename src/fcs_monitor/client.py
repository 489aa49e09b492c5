"""Fetch capability for the flow engine REST API.

The core only needs "fetch JSON at path". `Fetch` is that capability;
`FlowApiClient` is the httpx-backed implementation used by the CLI and daemon.
Token acquisition is out of scope: a pre-issued bearer token may be configured.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog

from fcs_monitor.config import ApiConfig

log = structlog.get_logger()


class FetchError(Exception):
    """A single fetch failed (network error, bad status, or malformed JSON)."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class Fetch(Protocol):
    """Anything that can fetch a JSON document by API path."""

    def fetch(self, path: str) -> Any: ...


class FlowApiClient:
    """Synchronous JSON client for the flow engine API.

    Timeouts are enforced here, not by the callers.
    """

    def __init__(self, config: ApiConfig, transport: httpx.BaseTransport | None = None) -> None:
        headers = {"Accept": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._client = httpx.Client(
            base_url=config.base_url.rstrip("/"),
            headers=headers,
            timeout=config.timeout,
            verify=config.verify_ssl,
            transport=transport,
        )

    def fetch(self, path: str) -> Any:
        """GET `path` and decode the JSON body.

        Raises:
            FetchError: On any transport error, non-2xx status, or undecodable body.
        """
        try:
            response = self._client.get(path)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(path, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FetchError(path, str(e) or type(e).__name__) from e

        # ValueError covers both JSONDecodeError and UnicodeDecodeError
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(path, f"invalid JSON: {e}") from e

    def close(self) -> None:
        """Release pooled connections."""
        self._client.close()

    def __enter__(self) -> FlowApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
