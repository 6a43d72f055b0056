"""
Network Capability handed to node behaviors.

Outbound HTTP calls go through a shared ``httpx.AsyncClient`` and are bounded
by a per-call timeout and by the node's cancellation token. Timeouts surface
as ``NodeTimeoutError``; cancellation surfaces as ``NodeCancelledError``.
"""

from typing import Any, Optional
import asyncio
import logging

import httpx

from blockflow.engine.cancellation import CancellationToken
from blockflow.engine.errors import NodeTimeoutError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class NetworkCapability:
    """
    Time-bounded, cancellation-aware HTTP access for one node.

    Usage:
        response = await ctx.network.request("GET", "https://example.com", timeout=5)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: CancellationToken,
        default_timeout: float = DEFAULT_TIMEOUT,
    ):
        self._client = client
        self._token = token
        self.default_timeout = default_timeout

    async def request(
        self,
        method: str,
        url: str,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Perform an HTTP request.

        Args:
            method: HTTP method
            url: Target URL
            timeout: Per-call limit in seconds (defaults to ``default_timeout``)
            **kwargs: Passed through to ``httpx.AsyncClient.request``

        Raises:
            NodeTimeoutError: The call exceeded its timeout
            NodeCancelledError: The run was cancelled during the call
        """
        limit = self.default_timeout if timeout is None else timeout
        operation = f"{method.upper()} {url}"
        logger.debug(f"Network call: {operation} (timeout={limit}s)")

        try:
            return await self._token.guard(
                self._client.request(method, url, timeout=limit, **kwargs),
                timeout=limit,
                operation=operation,
            )
        except httpx.TimeoutException as e:
            raise NodeTimeoutError(f"{operation} timed out after {limit}s") from e

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)


# Shared client, created once per event loop and reused by every run
_shared_client: Optional[httpx.AsyncClient] = None
_shared_loop: Optional[asyncio.AbstractEventLoop] = None


def get_shared_client() -> httpx.AsyncClient:
    """
    Return the process-wide ``httpx.AsyncClient``.

    Building a client creates an SSL context, which blocks the event loop,
    so it happens at most once per loop. A client left over from another
    loop (or closed explicitly) is replaced.
    """
    global _shared_client, _shared_loop

    loop = asyncio.get_running_loop()
    if _shared_client is None or _shared_client.is_closed or _shared_loop is not loop:
        logger.debug("Creating shared HTTP client")
        _shared_client = httpx.AsyncClient()
        _shared_loop = loop
    return _shared_client


async def close_shared_client() -> None:
    """Close the shared client, if any. Called on application shutdown."""
    global _shared_client, _shared_loop

    client, _shared_client, _shared_loop = _shared_client, None, None
    if client is not None and not client.is_closed:
        await client.aclose()
        logger.debug("Closed shared HTTP client")
