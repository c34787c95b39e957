"""
Upstream Solana JSON-RPC client.

The cache calls ``Upstream.call(method, params)`` on a miss; anything that
goes wrong surfaces as ``UpstreamError``. There is no retry policy.
"""
import itertools
import logging
import threading
from typing import Any, List, Optional, Protocol

import requests

logger = logging.getLogger("upstream")


class UpstreamError(Exception):
    """A failed upstream call."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def rejected(self) -> bool:
        """True when the provider refused the call (forbidden / blocked)."""
        if self.status_code == 403:
            return True
        return "403 Forbidden" in self.message or "blocked" in self.message.lower()


class Upstream(Protocol):
    """Anything that can execute an RPC method."""

    def call(self, method: str, params: List[Any]) -> Any: ...


class JsonRpcUpstream:
    """
    HTTP JSON-RPC 2.0 client for a Solana node.

    A semaphore bounds concurrent calls across batch workers and the
    subscription poller.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        max_concurrency: int = 10,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._semaphore = threading.Semaphore(max_concurrency)
        self._ids = itertools.count(1)

    def call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        logger.debug(f"Upstream call {method} -> {self.url}")

        with self._semaphore:
            try:
                response = self._session.post(self.url, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                raise UpstreamError(f"Upstream request failed: {e}") from e

        if response.status_code >= 400:
            raise UpstreamError(
                f"{response.status_code} {response.reason}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError(f"Upstream returned invalid JSON: {e}") from e

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            raise UpstreamError(
                f"RPC error {error.get('code')}: {error.get('message')}",
                code=error.get("code"),
            )
        if not isinstance(body, dict) or "result" not in body:
            raise UpstreamError("Upstream response has no result")
        return body["result"]
