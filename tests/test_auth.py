"""Tests for token expiry, refresh and the OAuth callback listener."""
import socket
import threading
import time

import pytest
import requests

from clover_cli.auth import (
    TokenManager,
    exchange_code_for_token,
    get_authorization_url,
    is_expired,
    now_ms,
    run_local_server,
)
from clover_cli.config import CredentialRecord, CredentialStore
from clover_cli.errors import AuthError, AuthReason, TransportError, TransportKind


def _with_expiry(expires_at):
    return CredentialRecord('app', 'secret', 'token', refresh_token='r', expires_at=expires_at)


def test_is_expired() -> None:
    now = now_ms()
    assert is_expired(_with_expiry(now - 1), now) is True
    assert is_expired(_with_expiry(now + 60 * 60 * 1000), now) is False
    assert is_expired(_with_expiry(None), now) is False


def test_is_expired_within_skew() -> None:
    now = now_ms()
    assert is_expired(_with_expiry(now + 4 * 60 * 1000), now) is True
    assert is_expired(_with_expiry(now + 6 * 60 * 1000), now) is False


def test_refresh_updates_store(store: CredentialStore, record: CredentialRecord, session, make_response) -> None:
    record.region = 'eu'
    store.put('M1', record)
    session.post.return_value = make_response(200, {
        'access_token': 'access-2',
        'refresh_token': 'refresh-2',
        'expires_in': 3600,
    })

    before = now_ms()
    token = TokenManager(store, session).refresh('M1')

    assert token == 'access-2'
    args, kwargs = session.post.call_args
    assert args[0] == 'https://api.eu.clover.com/oauth/v2/refresh'
    assert kwargs['params'] == {
        'client_id': 'app-id',
        'client_secret': 'app-secret',
        'refresh_token': 'refresh-1',
    }

    stored = CredentialStore().get('M1')
    assert stored.access_token == 'access-2'
    assert stored.refresh_token == 'refresh-2'
    assert before + 3600 * 1000 <= stored.expires_at <= now_ms() + 3600 * 1000
    assert stored.client_id == 'app-id'
    assert stored.region == 'eu'


def test_refresh_keeps_refresh_token_when_not_rotated(store, record, session, make_response) -> None:
    store.put('M1', record)
    session.post.return_value = make_response(200, {'access_token': 'access-2'})

    TokenManager(store, session).refresh('M1')

    stored = store.get('M1')
    assert stored.refresh_token == 'refresh-1'
    assert stored.expires_at is None


def test_refresh_without_refresh_token(store, record, session) -> None:
    record.refresh_token = None
    store.put('M1', record)

    with pytest.raises(AuthError) as exc_info:
        TokenManager(store, session).refresh('M1')

    assert exc_info.value.reason == AuthReason.NO_REFRESH_TOKEN
    session.post.assert_not_called()


def test_refresh_unknown_merchant(store, session) -> None:
    with pytest.raises(AuthError) as exc_info:
        TokenManager(store, session).refresh('M404')
    assert exc_info.value.reason == AuthReason.NOT_AUTHENTICATED


def test_refresh_failure_surfaces_transport_error(store, record, session, make_response) -> None:
    store.put('M1', record)
    session.post.return_value = make_response(400, {'message': 'invalid_grant'})

    with pytest.raises(TransportError) as exc_info:
        TokenManager(store, session).refresh('M1')

    assert exc_info.value.kind == TransportKind.HTTP
    assert exc_info.value.status_code == 400
    assert store.get('M1').access_token == 'access-1'


def test_refresh_non_json_success_is_transport_error(store, record, session) -> None:
    """A 2xx maintenance page from the token endpoint stays inside the error hierarchy."""
    store.put('M1', record)
    response = requests.Response()
    response.status_code = 200
    response._content = b'<html>maintenance</html>'
    response.encoding = 'utf-8'
    session.post.return_value = response

    with pytest.raises(TransportError) as exc_info:
        TokenManager(store, session).refresh('M1')

    assert exc_info.value.kind == TransportKind.HTTP
    assert exc_info.value.status_code == 200
    assert store.get('M1').access_token == 'access-1'


def test_exchange_code_for_token(session, make_response) -> None:
    session.post.return_value = make_response(200, {
        'access_token': 'a', 'refresh_token': 'r', 'expires_in': 60,
    })

    record = exchange_code_for_token(session, 'sandbox', 'app', 'secret', 'code-1')

    assert record.access_token == 'a'
    assert record.refresh_token == 'r'
    assert record.region == 'sandbox'
    args, kwargs = session.post.call_args
    assert args[0] == 'https://apisandbox.dev.clover.com/oauth/v2/token'
    assert kwargs['params']['grant_type'] == 'authorization_code'
    assert kwargs['params']['code'] == 'code-1'


def test_authorization_url() -> None:
    url = get_authorization_url('eu', 'app', 'http://localhost:8089/callback')
    assert url.startswith('https://www.eu.clover.com/oauth/v2/authorize?')
    assert 'client_id=app' in url
    assert 'response_type=code' in url


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def _hit_callback(port: int, query: str, results: list) -> None:
    for _ in range(50):
        try:
            response = requests.get(f'http://127.0.0.1:{port}/callback?{query}', timeout=5)
            results.append(response.status_code)
            return
        except requests.ConnectionError:
            time.sleep(0.05)


def test_callback_completes_login() -> None:
    port = _free_port()
    received = []
    statuses = []

    thread = threading.Thread(target=_hit_callback, args=(port, 'code=abc&merchant_id=M1', statuses))
    thread.start()
    run_local_server(lambda code, merchant_id: received.append((code, merchant_id)), port=port, timeout=10)
    thread.join()

    assert received == [('abc', 'M1')]
    assert statuses == [200]


def test_callback_missing_merchant_id() -> None:
    port = _free_port()
    statuses = []

    thread = threading.Thread(target=_hit_callback, args=(port, 'code=abc', statuses))
    thread.start()
    with pytest.raises(AuthError) as exc_info:
        run_local_server(lambda code, merchant_id: None, port=port, timeout=10)
    thread.join()

    assert exc_info.value.reason == AuthReason.NOT_AUTHENTICATED
    assert statuses == [400]


def test_callback_rejected_exchange_is_reported() -> None:
    port = _free_port()
    statuses = []

    def reject(code, merchant_id):
        raise TransportError(TransportKind.HTTP, 'invalid code', status_code=401)

    thread = threading.Thread(target=_hit_callback, args=(port, 'code=abc&merchant_id=M1', statuses))
    thread.start()
    with pytest.raises(TransportError):
        run_local_server(reject, port=port, timeout=10)
    thread.join()

    assert statuses == [500]


def test_callback_timeout() -> None:
    with pytest.raises(AuthError) as exc_info:
        run_local_server(lambda code, merchant_id: None, port=_free_port(), timeout=0)
    assert 'within 0 seconds' in str(exc_info.value)
