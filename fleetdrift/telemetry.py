"""
Telemetry source adapter.

Thin async client for the Geotab JSON-RPC API. A client is constructed
explicitly, authenticates once and reuses the session credentials for every
subsequent call; an expired session is re-authenticated a single time.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import config

logger = logging.getLogger(__name__)

SESSION_EXPIRED_ERRORS = {"InvalidUserException", "DbUnavailableException"}


class TelemetryError(Exception):
    """Raised when a telemetry call fails or returns an unusable payload."""


class AuthenticationError(TelemetryError):
    """Raised when the telemetry source rejects the configured credentials."""


class _SessionExpired(TelemetryError):
    pass


class TelemetryClient:
    def __init__(
        self,
        server: Optional[str] = None,
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.server = server or config.geotab_server
        self.database = database if database is not None else config.geotab_database
        self.username = username if username is not None else config.geotab_username
        self.password = password if password is not None else config.geotab_password
        self.timeout = timeout or config.telemetry_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.credentials: Optional[Dict[str, Any]] = None

    @property
    def endpoint(self) -> str:
        return f"https://{self.server}/apiv1"

    async def __aenter__(self) -> "TelemetryClient":
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _rpc(self, method: str, params: Dict[str, Any]) -> Any:
        if self._client is None:
            raise TelemetryError("Telemetry client is not open; use 'async with TelemetryClient()'")

        try:
            response = await self._client.post(self.endpoint, json={"method": method, "params": params})
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise TelemetryError(f"{method} request failed: {e}") from e
        except ValueError as e:
            raise TelemetryError(f"{method} returned invalid JSON") from e

        if not isinstance(body, dict):
            raise TelemetryError(f"{method} returned an unexpected payload")

        error = body.get("error")
        if error and not isinstance(error, dict):
            raise TelemetryError(f"{method} failed: {error}")
        if error:
            names = {e.get("name") for e in error.get("errors") or [] if isinstance(e, dict)}
            if names & SESSION_EXPIRED_ERRORS:
                raise _SessionExpired(error.get("message", "session expired"))
            raise TelemetryError(f"{method} failed: {error.get('message', 'unknown error')}")

        return body.get("result")

    async def authenticate(self) -> Dict[str, Any]:
        """Authenticate and cache the session credentials."""
        if not (self.database and self.username and self.password):
            raise AuthenticationError("GEOTAB_DATABASE, GEOTAB_USERNAME and GEOTAB_PASSWORD must be set")

        try:
            result = await self._rpc("Authenticate", {
                "database": self.database,
                "userName": self.username,
                "password": self.password,
            })
        except TelemetryError as e:
            raise AuthenticationError(f"Authentication failed: {e}") from e

        if not isinstance(result, dict):
            raise AuthenticationError("Authentication returned an unexpected payload")

        credentials = result.get("credentials")
        if not credentials:
            raise AuthenticationError("Authentication returned no credentials")

        # "ThisServer" means keep talking to the server we authenticated against
        path = result.get("path")
        if path and path != "ThisServer":
            self.server = path

        self.credentials = credentials
        logger.info(f"Authenticated with telemetry source as {self.username} ({self.database})")
        return credentials

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke an API method with the session credentials attached."""
        if self.credentials is None:
            await self.authenticate()

        params = dict(params or {})
        try:
            return await self._rpc(method, {**params, "credentials": self.credentials})
        except _SessionExpired:
            logger.info("Telemetry session expired, re-authenticating")
            await self.authenticate()
            try:
                return await self._rpc(method, {**params, "credentials": self.credentials})
            except _SessionExpired as e:
                raise AuthenticationError(f"Session rejected after re-authentication: {e}") from e

    async def get(self, type_name: str, search: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Fetch every record of `type_name` matching `search`."""
        params: Dict[str, Any] = {"typeName": type_name}
        if search:
            params["search"] = search

        logger.debug(f"Telemetry CALL Get {type_name} search={search}")
        result = await self.call("Get", params)
        if result is None:
            return []
        if not isinstance(result, list):
            raise TelemetryError(f"Get {type_name} returned {type(result).__name__}, expected a list")

        logger.debug(f"Telemetry RESP Get {type_name} count={len(result)}")
        return result

