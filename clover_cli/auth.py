"""
OAuth2 authentication and token lifecycle for Clover.
Covers the browser login flow, expiry detection and refresh-token exchange.
"""
import logging
import time
import webbrowser
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode, parse_qs, urlparse

import requests

from .config import CredentialRecord, CredentialStore
from .errors import AuthError, AuthReason, CloverError, TransportError, TransportKind

logger = logging.getLogger(__name__)

API_URLS = {
    'us': 'https://api.clover.com',
    'eu': 'https://api.eu.clover.com',
    'la': 'https://api.la.clover.com',
    'sandbox': 'https://apisandbox.dev.clover.com',
}

AUTH_URLS = {
    'us': 'https://www.clover.com',
    'eu': 'https://www.eu.clover.com',
    'la': 'https://www.la.clover.com',
    'sandbox': 'https://sandbox.dev.clover.com',
}

REGIONS = tuple(API_URLS)

CALLBACK_PORT = 8089
CALLBACK_TIMEOUT = 5 * 60
EXPIRY_SKEW_MS = 5 * 60 * 1000


def get_api_url(region: Optional[str]) -> str:
    return API_URLS.get(region or 'us', API_URLS['us'])


def get_auth_url(region: Optional[str]) -> str:
    return AUTH_URLS.get(region or 'us', AUTH_URLS['us'])


def now_ms() -> int:
    return int(time.time() * 1000)


def is_expired(record: CredentialRecord, now: Optional[int] = None) -> bool:
    """
    Check whether a token is expired or about to expire.

    A record without ``expires_at`` is treated as never expiring.
    """
    if record.expires_at is None:
        return False
    if now is None:
        now = now_ms()
    return now >= record.expires_at - EXPIRY_SKEW_MS


def _expires_at(token_data: Dict[str, Any], now: int) -> Optional[int]:
    if token_data.get('expires_in'):
        return now + int(token_data['expires_in']) * 1000
    # OAuth v2 endpoints may report an absolute expiry in epoch seconds instead
    if token_data.get('access_token_expiration'):
        return int(token_data['access_token_expiration']) * 1000
    return None


def _post_token(session, url: str, params: Dict[str, str]) -> Dict[str, Any]:
    """
    POST to an OAuth token endpoint.

    Raises:
        TransportError: On non-2xx or network failure
    """
    try:
        response = session.post(url, params=params, timeout=30)
    except requests.RequestException as e:
        raise TransportError(TransportKind.NETWORK, f"Token request failed: {e}")

    if not response.ok:
        raise TransportError(
            TransportKind.HTTP,
            response.text or response.reason or 'token endpoint error',
            status_code=response.status_code,
            response=response.text,
        )

    try:
        token_data = response.json()
    except ValueError:
        raise TransportError(
            TransportKind.HTTP,
            "Token endpoint returned a non-JSON response",
            status_code=response.status_code,
            response=response.text,
        )
    if not isinstance(token_data, dict) or not token_data.get('access_token'):
        raise TransportError(
            TransportKind.HTTP,
            "Token endpoint returned no access_token",
            status_code=response.status_code,
            response=token_data,
        )
    return token_data


class TokenManager:
    """
    Refreshes stored access tokens.

    Both the proactive path (token about to expire) and the reactive path
    (a 401 from the API) go through :meth:`refresh`.
    """

    def __init__(self, store: CredentialStore, session: Optional[requests.Session] = None):
        self.store = store
        self.session = session or requests.Session()

    def refresh(self, merchant_id: str) -> str:
        """
        Exchange the stored refresh token for a new access token.

        Args:
            merchant_id: Merchant whose record is refreshed

        Returns:
            The new access token

        Raises:
            AuthError: If nothing is stored or the record has no refresh token
            TransportError: If the token endpoint rejects the request
        """
        record = self.store.get(merchant_id)
        if record is None:
            raise AuthError(
                AuthReason.NOT_AUTHENTICATED,
                f"No credentials stored for merchant '{merchant_id}'",
            )
        if not record.refresh_token:
            raise AuthError(
                AuthReason.NO_REFRESH_TOKEN,
                f"No refresh token stored for merchant '{merchant_id}'",
            )

        logger.info("Refreshing access token for merchant %s", merchant_id)
        token_data = _post_token(
            self.session,
            f"{get_api_url(record.region)}/oauth/v2/refresh",
            {
                'client_id': record.client_id,
                'client_secret': record.client_secret,
                'refresh_token': record.refresh_token,
            },
        )

        updated = self.store.update_tokens(
            merchant_id,
            access_token=token_data['access_token'],
            refresh_token=token_data.get('refresh_token'),
            expires_at=_expires_at(token_data, now_ms()),
        )
        return updated.access_token


def exchange_code_for_token(
    session,
    region: str,
    client_id: str,
    client_secret: str,
    code: str,
) -> CredentialRecord:
    """
    Exchange an authorization code for a credential record.

    Raises:
        TransportError: If the token endpoint rejects the code
    """
    token_data = _post_token(
        session,
        f"{get_api_url(region)}/oauth/v2/token",
        {
            'client_id': client_id,
            'client_secret': client_secret,
            'code': code,
            'grant_type': 'authorization_code',
        },
    )
    return CredentialRecord(
        client_id=client_id,
        client_secret=client_secret,
        access_token=token_data['access_token'],
        refresh_token=token_data.get('refresh_token'),
        expires_at=_expires_at(token_data, now_ms()),
        region=region,
    )


def get_authorization_url(region: str, client_id: str, redirect_uri: str) -> str:
    params = {
        'client_id': client_id,
        'redirect_uri': redirect_uri,
        'response_type': 'code',
    }
    return f"{get_auth_url(region)}/oauth/v2/authorize?{urlencode(params)}"


SUCCESS_PAGE = b"""
<html>
<head><title>Authentication Successful</title></head>
<body>
    <h1>Authentication Successful!</h1>
    <p>You can close this window and return to the terminal.</p>
</body>
</html>
"""

FAILURE_PAGE = """
<html>
<head><title>Authentication Failed</title></head>
<body>
    <h1>Authentication Failed</h1>
    <p>Error: {error}</p>
    <p>You can close this window and return to the terminal.</p>
</body>
</html>
"""


class CallbackHandler(BaseHTTPRequestHandler):
    """HTTP handler for the OAuth2 redirect."""

    complete: Optional[Callable[[str, str], None]] = None
    done = False
    error: Optional[CloverError] = None

    def _reply(self, status: int, body: bytes) -> None:
        self.send_response(status)
        self.send_header('Content-type', 'text/html')
        self.end_headers()
        self.wfile.write(body)

    def _fail(self, status: int, error: CloverError) -> None:
        CallbackHandler.error = error
        CallbackHandler.done = True
        self._reply(status, FAILURE_PAGE.format(error=error.message).encode())

    def do_GET(self):
        """Handle GET request from OAuth2 redirect."""
        parsed_path = urlparse(self.path)
        if parsed_path.path != '/callback':
            self._reply(404, b'Not found')
            return

        query_params = parse_qs(parsed_path.query)
        if 'error' in query_params:
            message = query_params.get('error_description', query_params['error'])[0]
            self._fail(400, AuthError(AuthReason.NOT_AUTHENTICATED, f"OAuth authorization failed: {message}"))
            return

        code = query_params.get('code', [None])[0]
        merchant_id = query_params.get('merchant_id', [None])[0]
        if not code or not merchant_id:
            self._fail(400, AuthError(AuthReason.NOT_AUTHENTICATED, "Missing code or merchant_id in OAuth callback"))
            return

        # Exchange while the browser is still waiting so it sees the real outcome
        try:
            CallbackHandler.complete(code, merchant_id)
        except CloverError as e:
            self._fail(500, e)
            return

        CallbackHandler.done = True
        self._reply(200, SUCCESS_PAGE)

    def log_message(self, format, *args):
        """Route HTTP server logs to debug."""
        logger.debug("callback: " + format, *args)


def run_local_server(
    complete: Callable[[str, str], None],
    port: int = CALLBACK_PORT,
    timeout: int = CALLBACK_TIMEOUT,
) -> None:
    """
    Serve the OAuth2 callback until it arrives or the timeout passes.

    Args:
        complete: Called with (code, merchant_id) while the callback request is open
        port: Port to listen on
        timeout: Seconds to wait for the callback

    Raises:
        AuthError: On timeout or an OAuth error redirect
        TransportError: If ``complete`` failed to exchange the code
    """
    CallbackHandler.complete = complete
    CallbackHandler.done = False
    CallbackHandler.error = None

    server = HTTPServer(('localhost', port), CallbackHandler)
    server.timeout = 1
    deadline = time.monotonic() + timeout
    try:
        while not CallbackHandler.done:
            if time.monotonic() > deadline:
                raise AuthError(
                    AuthReason.NOT_AUTHENTICATED,
                    f"OAuth callback not received within {timeout} seconds",
                )
            server.handle_request()
    finally:
        server.server_close()

    if CallbackHandler.error:
        raise CallbackHandler.error


def perform_oauth_flow(
    store: CredentialStore,
    client_id: str,
    client_secret: str,
    region: str = 'us',
    port: int = CALLBACK_PORT,
    session: Optional[requests.Session] = None,
) -> Tuple[str, CredentialRecord]:
    """
    Perform the browser-based OAuth2 authorization-code flow.

    Returns:
        Tuple of (merchant_id, stored credential record)
    """
    session = session or requests.Session()
    redirect_uri = f"http://localhost:{port}/callback"
    auth_url = get_authorization_url(region, client_id, redirect_uri)
    result: Dict[str, Any] = {}

    def complete(code: str, merchant_id: str) -> None:
        record = exchange_code_for_token(session, region, client_id, client_secret, code)
        store.put(merchant_id, record)
        store.set_region(region)
        result['merchant_id'] = merchant_id
        result['record'] = record

    print("Opening browser for authentication...")
    print(f"If the browser doesn't open, visit: {auth_url}")
    webbrowser.open(auth_url)

    print(f"Waiting for callback on {redirect_uri} ...")
    run_local_server(complete, port=port)

    return result['merchant_id'], result['record']
