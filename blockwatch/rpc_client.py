"""Typed JSON-RPC client for Bitcoin-Core style nodes (DigiByte, Bitcoin, Litecoin).

Only the read paths needed to follow the chain tip are exposed. The client does
not retry: every failure is raised as a :class:`~blockwatch.errors.TransportError`
subclass so the caller decides what to do with it.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional

import requests
from requests import RequestException, Response

from .config import RPCConfig, load_rpc_config
from .errors import TransportError

logger = logging.getLogger(__name__)

RPC_INVALID_PARAMETER = -8
RPC_INVALID_ADDRESS_OR_KEY = -5
RPC_IN_WARMUP = -28


class RPCError(TransportError):
    """Raised when the node responds with a JSON-RPC error object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RPCTransportError(TransportError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | None) -> str | None:
    """Return a human-friendly hint for JSON-RPC errors seen while following the tip."""

    if error_obj is None:
        return None

    code = None
    message = ""
    if isinstance(error_obj, RPCError):
        code = error_obj.code
        message = error_obj.message
    elif isinstance(error_obj, dict):
        code = error_obj.get("code")
        message = str(error_obj.get("message", ""))

    if code == RPC_IN_WARMUP:
        return "The node is still starting up (loading blocks or verifying). Retry once it has finished warming up."
    if code == RPC_INVALID_PARAMETER and "out of range" in message.lower():
        return "The requested height is above the node's tip. Check --start-height against the node's block count."
    if code == RPC_INVALID_ADDRESS_OR_KEY and "not found" in message.lower():
        return (
            "The node does not have this block. It may be pruned; run the node with -prune=0 "
            "or start from a more recent height."
        )
    return None


class NodeRPCClient:
    """JSON-RPC client for Bitcoin-Core compatible nodes.

    Each helper maps directly to one RPC method and returns the parsed JSON
    result. A separate :class:`requests.Session` is kept per thread, so one
    client can serve the concurrent block fetches issued from worker threads.
    """

    def __init__(
        self,
        config: RPCConfig,
        *,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.config = config
        self._base_url = config.base_url
        self._session_factory = session_factory
        self._local = threading.local()
        self._sessions_lock = threading.Lock()
        self._sessions: List[requests.Session] = []
        self._generation = 0

    @classmethod
    def from_env(cls) -> "NodeRPCClient":
        """Instantiate a client using environment variables or config file."""

        return cls(load_rpc_config())

    @property
    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        # sessions from before the last close() are discarded
        if session is None or self._local.generation != self._generation:
            session = self._session_factory()
            with self._sessions_lock:
                self._sessions.append(session)
                self._local.generation = self._generation
            self._local.session = session
        return session

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        payload = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                self._base_url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                auth=(self.config.user, self.config.password),
                timeout=self.config.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                "RPC connection failed. Ensure the node is reachable, authentication is valid, "
                "and BLOCKWATCH_RPC_* variables (or ~/.blockwatch.yaml) point to the right host and port."
            ) from exc

        error_body = self._error_body(response)
        if error_body is not None:
            # Bitcoin-Core style nodes report JSON-RPC errors with HTTP 500/404.
            raise RPCError(error_body.get("code", -1), error_body.get("message", "unknown"))
        try:
            self._raise_for_status(response)
        except requests.HTTPError as exc:
            raise RPCTransportError(
                "RPC server returned an HTTP error; check the URL, authentication, and BLOCKWATCH_RPC_* settings.",
                status_code=response.status_code,
            ) from exc
        try:
            result = response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError("RPC server returned malformed JSON") from exc
        if not isinstance(result, dict):
            raise RPCTransportError("RPC server returned a non-object JSON response")
        return result.get("result")

    @staticmethod
    def _error_body(response: Response) -> dict[str, Any] | None:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"]
        return None

    def _raise_for_status(self, response: Response) -> None:
        if not response.ok:
            logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
            logger.error("RPC error body: %s", response.text)
            if response.status_code == 401:
                raise RPCTransportError(
                    "Unauthorized (401). Ensure BLOCKWATCH_RPC_USER (or your .blockwatch.yaml) contains valid credentials.",
                    status_code=response.status_code,
                )
        response.raise_for_status()

    def close(self) -> None:
        """Close the sessions opened by every thread that used this client."""

        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
            self._generation += 1
        for session in sessions:
            session.close()
        logger.debug("Closed %d RPC session(s)", len(sessions))

    # Convenience wrappers -------------------------------------------------

    def getblockchaininfo(self) -> Dict[str, Any]:
        return self.call("getblockchaininfo")

    def getblockcount(self) -> int:
        return int(self.call("getblockcount"))

    def getbestblockhash(self) -> str:
        return self.call("getbestblockhash")

    def getblockhash(self, height: int) -> str:
        return self.call("getblockhash", [height])

    def getblock(self, block_hash: str, verbosity: int = 1) -> Dict[str, Any]:
        return self.call("getblock", [block_hash, verbosity])
