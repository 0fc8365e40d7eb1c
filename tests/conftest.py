"""Shared fixtures: an isolated config directory and fake HTTP responses."""
import json
from unittest.mock import MagicMock

import pytest
import requests

from clover_cli.config import CredentialRecord, CredentialStore


@pytest.fixture(autouse=True)
def config_dir(tmp_path, monkeypatch):
    """Point the config directory at a temp dir and clear Clover env overrides."""
    monkeypatch.setenv('XDG_CONFIG_HOME', str(tmp_path / 'xdg'))
    monkeypatch.delenv('APPDATA', raising=False)
    for name in ('CLOVER_MERCHANT_ID', 'CLOVER_ACCESS_TOKEN', 'CLOVER_REGION',
                 'CLOVER_CLIENT_ID', 'CLOVER_CLIENT_SECRET'):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / 'xdg' / 'clover-cli'


@pytest.fixture
def make_response():
    """Factory for real requests.Response objects."""
    def factory(status=200, body=None, headers=None):
        response = requests.Response()
        response.status_code = status
        response._content = json.dumps(body).encode('utf-8') if body is not None else b''
        response.headers.update(headers or {})
        response.encoding = 'utf-8'
        return response
    return factory


@pytest.fixture
def session():
    """A mock requests session; set ``request.side_effect`` / ``post.return_value``."""
    mock = MagicMock()
    mock.headers = {}
    return mock


@pytest.fixture
def store(config_dir) -> CredentialStore:
    return CredentialStore()


@pytest.fixture
def record() -> CredentialRecord:
    return CredentialRecord(
        client_id='app-id',
        client_secret='app-secret',
        access_token='access-1',
        refresh_token='refresh-1',
        expires_at=None,
        region='us',
    )
