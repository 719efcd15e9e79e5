"""
xnoledger/rpc/connection.py

HTTP transport for the JSON-RPC ledger service.

Every action is a POST of a JSON object to a single endpoint. The
connection does not interpret the response beyond parsing it; error
payloads are handled by NanoRPCClient.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..errors import RPCError

logger = logging.getLogger("xnoledger.rpc.connection")


class RPCConnection:
    """
    Manages an aiohttp session to one RPC endpoint.

    A session can be injected (shared between connections); otherwise one
    is created on first use and closed by close().
    """

    DEFAULT_TIMEOUT = 30  # seconds

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize connection parameters.

        Args:
            url: RPC endpoint URL
            headers: Headers sent with every request (credentials)
            timeout: Total request timeout in seconds
            session: Optional shared aiohttp session
        """
        self.url = url
        self.headers = dict(headers or {})
        self.headers.setdefault("Content-Type", "application/json")
        self.timeout = timeout

        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def post(self, payload: Dict[str, Any],
                   headers: Optional[Dict[str, str]] = None,
                   timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Send one JSON-RPC action.

        Args:
            payload: Request body, including the "action" key
            headers: Extra headers for this request only
            timeout: Override of the connection timeout

        Returns:
            Parsed JSON response

        Raises:
            RPCError: On transport failure, HTTP error without a JSON body,
                or a body that is not a JSON object
        """
        action = payload.get("action")
        request_headers = dict(self.headers)
        if headers:
            request_headers.update(headers)
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)

        session = await self._get_session()
        try:
            async with session.post(
                self.url,
                data=json.dumps(payload),
                headers=request_headers,
                timeout=client_timeout,
            ) as response:
                status = response.status
                text = await response.text()
        except aiohttp.ClientConnectorError as e:
            # Never reached the server
            logger.warning(f"{action}: cannot connect to {self.url}: {e}")
            raise RPCError(f"Cannot connect to {self.url}: {e}", action=action)
        except asyncio.TimeoutError:
            logger.warning(f"{action}: timeout after {client_timeout.total}s on {self.url}")
            raise RPCError(
                f"Request to {self.url} timed out", action=action, maybe_delivered=True
            )
        except aiohttp.ClientError as e:
            logger.warning(f"{action}: request to {self.url} failed: {e}")
            raise RPCError(
                f"Request to {self.url} failed: {e}", action=action, maybe_delivered=True
            )

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.error(f"{action}: invalid JSON from {self.url} (HTTP {status})")
            raise RPCError(
                f"Invalid JSON response from {self.url} (HTTP {status})",
                action=action,
                maybe_delivered=True,
            )

        if not isinstance(data, dict):
            raise RPCError(f"Unexpected response type from {self.url}", action=action)
        if status >= 400 and "error" not in data:
            raise RPCError(f"HTTP {status} from {self.url}", action=action)
        return data

    async def close(self) -> None:
        """Close the session if this connection created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "RPCConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
