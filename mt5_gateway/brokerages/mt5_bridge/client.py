"""
MT5 Bridge Client (Session Manager)
===================================

Async HTTP client for the MT5 bridge REST API. Owns the session token and
the underlying httpx client; every other component issues its calls
through ``request()`` so authentication failures are detected in one place.

States:
    DISCONNECTED -> CONNECTING -> CONNECTED -> (DISCONNECTED | AUTH_EXPIRED)

Usage:
    client = MT5BridgeClient(config.bridge, token_store=FileTokenStore())
    result = await client.connect(Credentials("12345", "secret", "Broker-Demo"))
    if result.success:
        response = await client.request("AccountSummary")
    await client.disconnect()
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ...core.config import BridgeConfig
from ...core.exceptions import (
    AccountDisabledError,
    AuthenticationExpiredError,
    BridgeRejectedError,
    BrokerageError,
    InvalidCredentialsError,
    InvalidServerError,
    NotConnectedError,
    TransportError,
)
from ..base import ConnectionResult, Credentials
from .protocol import classify, credential_error_message, parse_connect_response
from .session import (
    MemoryTokenStore,
    Session,
    SessionState,
    TOKEN_KEY,
    TokenStore,
    mask_token,
)

logger = logging.getLogger(__name__)

# Body phrases that mean the bridge no longer accepts our token
AUTH_FAILURE_PHRASES = ("Authentication failed", "Session expired", "Invalid token")

_CONNECT_ERRORS = {
    "credentials": InvalidCredentialsError,
    "server": InvalidServerError,
    "disabled": AccountDisabledError,
}


@dataclass(frozen=True)
class BridgeResponse:
    """Decoded bridge response."""
    status_code: int
    body: Any
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _decode(response: httpx.Response) -> Any:
    """JSON when the body parses, raw text otherwise, None when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_text(response: "BridgeResponse") -> str:
    """Error text of a non-2xx response: error/message field of an object, else raw text."""
    body = response.body
    if isinstance(body, dict):
        for name in ("error", "Error", "message", "Message"):
            if body.get(name):
                return str(body.get(name))
        return ""
    return response.text or ""


def _connect_error(message: str) -> BrokerageError:
    kind, _ = credential_error_message(message)
    return _CONNECT_ERRORS.get(kind, BridgeRejectedError)(message)


class MT5BridgeClient:
    """
    Session Manager for the MT5 bridge.

    Holds exactly one session. The token is restored from the token store on
    construction and cleared from it on disconnect or authentication expiry.
    """

    def __init__(
        self,
        config: BridgeConfig,
        token_store: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize bridge client.

        Args:
            config: Bridge settings (validated here, before any network call)
            token_store: Persistent key-value store for the session token
            transport: httpx transport override (tests)

        Raises:
            ConfigurationError: bridge URL or API key missing / placeholder
        """
        config.validate()
        self.config = config
        self._token_store = token_store or MemoryTokenStore()
        self._transport = transport
        self._client = self._new_client()
        self._session: Optional[Session] = None
        self._state = SessionState.DISCONNECTED

        restored = self._token_store.get(TOKEN_KEY)
        if restored:
            self._session = Session(token=restored, base_endpoint=config.api_url)
            self._state = SessionState.CONNECTED
            logger.info(f"Restored MT5 session {mask_token(restored)}")

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.api_url,
            timeout=self.config.timeout,
            headers={
                self.config.api_key_header: self.config.api_key,
                "Accept": "application/json",
            },
            transport=self._transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client (the session itself is kept)."""
        await self._client.aclose()

    # ========== State ==========

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._state == SessionState.CONNECTED

    def get_stored_token(self) -> Optional[str]:
        """Token as persisted in the token store (None once invalidated)."""
        return self._token_store.get(TOKEN_KEY)

    def _require_session(self) -> Session:
        if self._session is None:
            raise NotConnectedError()
        return self._session

    def _clear(self, state: SessionState) -> None:
        self._session = None
        self._state = state
        self._token_store.delete(TOKEN_KEY)

    # ========== Transport ==========

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> BridgeResponse:
        """
        Issue one HTTP call. GET sends params as query string, POST as JSON.

        Raises:
            TransportError: timeout, refused connection, DNS failure
        """
        params = {k: v for k, v in (params or {}).items() if v is not None}
        url = f"/{path.lstrip('/')}"
        try:
            if method.upper() == "GET":
                response = await self._client.get(url, params=params)
            else:
                response = await self._client.request(method.upper(), url, json=params)
        except httpx.TimeoutException as e:
            raise TransportError(f"MT5 bridge timeout on {path}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"MT5 bridge unavailable ({type(e).__name__})") from e

        return BridgeResponse(
            status_code=response.status_code,
            body=_decode(response),
            text=response.text,
        )

    @staticmethod
    def is_auth_failure(response: BridgeResponse) -> bool:
        if response.status_code == 401:
            return True
        return any(phrase in response.text for phrase in AUTH_FAILURE_PHRASES)

    async def request(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        method: str = "GET",
    ) -> BridgeResponse:
        """
        Authenticated call: adds ``id=<token>`` and checks for auth expiry.

        Args:
            path: Bridge endpoint name (e.g. "Positions")
            params: Extra parameters
            method: GET or POST

        Returns:
            BridgeResponse (any HTTP status other than 401)

        Raises:
            NotConnectedError: no session
            TransportError: network failure
            AuthenticationExpiredError: HTTP 401 or an auth failure phrase;
                the session is cleared before this is raised
        """
        session = self._require_session()
        payload = {"id": session.token}
        payload.update(params or {})

        response = await self._send(method, path, payload)

        if self.is_auth_failure(response):
            # Only drop the session we used; a concurrent connect() may have replaced it
            if self._session is session:
                self._clear(SessionState.AUTH_EXPIRED)
                logger.warning(f"MT5 session expired on {path} (HTTP {response.status_code}); token cleared")
            raise AuthenticationExpiredError()

        return response

    # ========== Connection ==========

    def _credential_params(self, credentials: Credentials) -> Dict[str, str]:
        if self.config.credential_style == "legacy":
            return {
                "accountNumber": credentials.account_number,
                "password": credentials.password,
                "serverName": credentials.server_name,
                "apiKey": self.config.api_key,
            }
        return {
            "user": credentials.account_number,
            "password": credentials.password,
            "server": credentials.server_name,
        }

    def _fail_connect(self, error: BrokerageError) -> ConnectionResult:
        self._clear(SessionState.DISCONNECTED)
        logger.error(f"MT5 connection failed: {error.reason}")
        return ConnectionResult(success=False, message=error.reason, error=error)

    async def connect(self, credentials: Credentials) -> ConnectionResult:
        """
        Authenticate with ConnectEx and store the session token.

        Never raises: failures come back as ConnectionResult with a
        human-readable message. No retry; that is the caller's call.

        Args:
            credentials: Account number, password, server name

        Returns:
            ConnectionResult
        """
        if not (credentials.account_number and credentials.password and credentials.server_name):
            return self._fail_connect(
                InvalidCredentialsError("Account number, password and server are required")
            )

        self._state = SessionState.CONNECTING
        logger.info(
            f"Connecting to MT5 bridge: account={credentials.account_number}, "
            f"server={credentials.server_name}"
        )

        try:
            response = await self._send("GET", "ConnectEx", self._credential_params(credentials))
        except TransportError as e:
            return self._fail_connect(TransportError(f"Network error: {e.reason}"))

        if not response.ok:
            text = _error_text(response)
            kind, message = credential_error_message(text)
            if kind == "other":
                if response.status_code in (401, 403):
                    message = "Invalid account number or password."
                elif not text.strip():
                    message = f"MT5 bridge returned HTTP {response.status_code}"
            return self._fail_connect(_connect_error(message))

        result = parse_connect_response(response.body)
        if not result.success:
            return self._fail_connect(_connect_error(result.message))

        self._session = Session(
            token=result.token,
            base_endpoint=self.config.api_url,
            account=credentials.account_number,
        )
        self._state = SessionState.CONNECTED
        self._token_store.set(TOKEN_KEY, result.token)
        logger.info(f"Connected to MT5 account {credentials.account_number}: session {mask_token(result.token)}")

        return ConnectionResult(success=True, message="Connected successfully", token=result.token)

    async def disconnect(self) -> None:
        """
        Drop the session.

        Server-side invalidation is best effort. The HTTP client is replaced
        so no default headers from the old session survive.
        """
        session = self._session
        if session is not None:
            try:
                await self._send("GET", "Disconnect", {"id": session.token})
            except BrokerageError as e:
                logger.warning(f"Error ending MT5 session: {e.reason}")

        self._clear(SessionState.DISCONNECTED)
        await self._client.aclose()
        self._client = self._new_client()
        logger.info("Disconnected from MT5 API")

    async def check_connection(self) -> bool:
        """Liveness probe. Never raises."""
        if self._session is None:
            return False
        try:
            response = await self.request("CheckConnect")
        except BrokerageError as e:
            logger.warning(f"MT5 connection check failed: {e.reason}")
            return False
        except Exception as e:
            logger.error(f"MT5 connection check error: {e}")
            return False

        if not response.ok:
            return False
        return classify(response.body, "CheckConnect").success


# Alias
SessionManager = MT5BridgeClient
