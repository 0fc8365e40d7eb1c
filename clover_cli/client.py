"""
Clover REST API client.
Provides the authenticated transport (refresh on 401, backoff on 429) and
the high-level resource methods built on it.
"""
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import requests

from .auth import TokenManager, get_api_url, is_expired
from .config import ACCESS_TOKEN_ENV, MERCHANT_ENV, REGION_ENV, CredentialStore
from .errors import (
    AuthError,
    AuthReason,
    CloverError,
    TransportError,
    TransportKind,
)
from .fetcher import BulkFetcher, elements

logger = logging.getLogger(__name__)

MERCHANT_PLACEHOLDER = '{mId}'
MAX_RETRIES = 5
MAX_BACKOFF = 60.0

Params = Union[Dict[str, Any], Sequence[Tuple[str, Any]], None]


class TokenProvider(Protocol):
    """Capability the transport uses to obtain and renew bearer tokens."""

    def get_token(self) -> str:
        ...

    def on_unauthorized(self) -> Optional[str]:
        """Return a fresh token after a 401, or None if none can be obtained."""
        ...


class StoredTokenProvider:
    """Tokens from the credential store, refreshed through a TokenManager."""

    def __init__(self, store: CredentialStore, manager: TokenManager, merchant_id: str):
        self.store = store
        self.manager = manager
        self.merchant_id = merchant_id

    def get_token(self) -> str:
        record = self.store.get(self.merchant_id)
        if record is None:
            raise AuthError(
                AuthReason.NOT_AUTHENTICATED,
                f"No credentials for merchant '{self.merchant_id}'",
            )
        if record.refresh_token and is_expired(record):
            return self.manager.refresh(self.merchant_id)
        return record.access_token

    def on_unauthorized(self) -> Optional[str]:
        return self.manager.refresh(self.merchant_id)


class StaticTokenProvider:
    """A fixed token, e.g. from $CLOVER_ACCESS_TOKEN. Cannot be refreshed."""

    def __init__(self, token: str):
        self.token = token

    def get_token(self) -> str:
        return self.token

    def on_unauthorized(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class Ok:
    value: Any

    def unwrap(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Err:
    error: CloverError
    retry_after: Optional[float] = None

    def unwrap(self) -> Any:
        raise self.error


Result = Union[Ok, Err]


@dataclass
class RetryState:
    """Retry bookkeeping for one logical request."""

    attempt: int = 0
    refreshed: bool = False
    delay: float = 0.0
    last_error: Optional[CloverError] = None


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _extract_error_message(response_data: Any) -> str:
    """Extract error message from response data."""
    if isinstance(response_data, dict):
        for key in ('message', 'error', 'details'):
            if response_data.get(key):
                return str(response_data[key])
    return str(response_data)


class Transport:
    """
    Sends authenticated requests for one merchant.

    A 401 triggers exactly one token refresh and one retry. A 429 is retried
    up to ``max_retries`` times, sleeping for the server's Retry-After or
    ``2 ** attempt`` seconds. Anything else non-2xx fails immediately.
    """

    def __init__(
        self,
        base_url: str,
        merchant_id: str,
        tokens: TokenProvider,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = MAX_RETRIES,
        timeout: int = 30,
    ):
        self.base_url = base_url.rstrip('/')
        self.merchant_id = merchant_id
        self.tokens = tokens
        self.sleep = sleep
        self.max_retries = max_retries
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json'
        })

    def url(self, path: str) -> str:
        path = path.replace(MERCHANT_PLACEHOLDER, self.merchant_id)
        if not path.startswith('/'):
            path = '/' + path
        return f"{self.base_url}{path}"

    def _attempt(
        self,
        method: str,
        url: str,
        token: str,
        params: Params,
        json_data: Optional[Dict],
    ) -> Result:
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers={'Authorization': f"Bearer {token}"},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            return Err(TransportError(TransportKind.NETWORK, f"Request failed: {e}"))

        if not response.content:
            response_data: Any = {}
        else:
            try:
                response_data = response.json()
            except ValueError:
                response_data = {'message': response.text}

        if response.ok:
            return Ok(response_data)

        error = TransportError(
            TransportKind.HTTP,
            _extract_error_message(response_data),
            status_code=response.status_code,
            response=response_data,
        )
        return Err(error, retry_after=_parse_retry_after(response.headers.get('Retry-After')))

    def _backoff(self, retry_after: Optional[float], attempt: int) -> float:
        if retry_after is not None:
            return min(retry_after, MAX_BACKOFF)
        return min(float(2 ** attempt), MAX_BACKOFF)

    def send(
        self,
        method: str,
        path: str,
        params: Params = None,
        json_data: Optional[Dict] = None,
    ) -> Result:
        """
        Issue a request and return ``Ok(data)`` or ``Err(error)``.

        Never raises for HTTP or auth failures; see :meth:`request`.
        """
        url = self.url(path)
        state = RetryState()
        try:
            token = self.tokens.get_token()
        except CloverError as e:
            return Err(e)

        while True:
            outcome = self._attempt(method, url, token, params, json_data)
            if isinstance(outcome, Ok):
                return outcome

            state.last_error = outcome.error
            status = outcome.error.status_code

            if status == 401:
                if state.refreshed:
                    return Err(AuthError(
                        AuthReason.UNAUTHORIZED,
                        "Access token rejected after refresh",
                        status_code=401,
                    ))
                state.refreshed = True
                logger.info("Got 401 for %s %s, refreshing token", method, path)
                try:
                    token = self.tokens.on_unauthorized()
                except CloverError as e:
                    return Err(e)
                if token is None:
                    return Err(AuthError(
                        AuthReason.UNAUTHORIZED,
                        "Access token rejected and cannot be refreshed",
                        status_code=401,
                    ))
                continue

            if status == 429:
                if state.attempt >= self.max_retries:
                    return Err(TransportError(
                        TransportKind.RATE_LIMITED,
                        f"Rate limited after {self.max_retries} retries",
                        status_code=429,
                        response=outcome.error.response,
                    ))
                state.delay = self._backoff(outcome.retry_after, state.attempt)
                state.attempt += 1
                logger.warning(
                    "Rate limited on %s %s, retry %d/%d in %.1fs",
                    method, path, state.attempt, self.max_retries, state.delay,
                )
                self.sleep(state.delay)
                continue

            return outcome

    def request(
        self,
        method: str,
        path: str,
        params: Params = None,
        json_data: Optional[Dict] = None,
    ) -> Any:
        """
        Issue a request and return the decoded response body.

        Raises:
            AuthError: When no usable token exists or it is rejected twice
            TransportError: On exhausted rate-limit retries or other failures
        """
        return self.send(method, path, params=params, json_data=json_data).unwrap()


def _list_params(
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    filters: Optional[List[str]] = None,
    expand: Optional[str] = None,
) -> List[Tuple[str, Any]]:
    params: List[Tuple[str, Any]] = []
    if limit is not None:
        params.append(('limit', limit))
    if offset is not None:
        params.append(('offset', offset))
    for f in filters or []:
        params.append(('filter', f))
    if expand:
        params.append(('expand', expand))
    return params


class CloverClient:
    """
    Clover REST API client scoped to one merchant.

    Example:
        client = create_client()
        items = client.list_items(limit=10)
        payments = client.fetch_all('payments', from_ms=start, to_ms=end)
    """

    def __init__(self, transport: Transport):
        self.transport = transport
        self.fetcher = BulkFetcher(transport)

    @property
    def merchant_id(self) -> str:
        return self.transport.merchant_id

    def request(self, method: str, path: str, params: Params = None, data: Optional[Dict] = None) -> Any:
        return self.transport.request(method.upper(), path, params=params, json_data=data)

    def fetch_all(
        self,
        resource: str,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        limit_total: Optional[int] = None,
        filters: Optional[List[str]] = None,
        expand: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch every record of a list endpoint; see BulkFetcher.fetch_all."""
        return self.fetcher.fetch_all(
            resource,
            from_ms=from_ms,
            to_ms=to_ms,
            limit_total=limit_total,
            filters=filters,
            expand=expand,
        )

    def _list(self, path: str, **kwargs) -> List[Dict[str, Any]]:
        return elements(self.request('GET', path, params=_list_params(**kwargs)))

    # Merchant

    def get_merchant(self) -> Dict[str, Any]:
        return self.request('GET', '/v3/merchants/{mId}')

    # Inventory

    def list_items(self, limit: int = 50, offset: int = 0, filters: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        return self._list('/v3/merchants/{mId}/items', limit=limit, offset=offset, filters=filters)

    def get_item(self, item_id: str) -> Dict[str, Any]:
        return self.request('GET', f'/v3/merchants/{{mId}}/items/{item_id}')

    def create_item(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('POST', '/v3/merchants/{mId}/items', data=data)

    def update_item(self, item_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('POST', f'/v3/merchants/{{mId}}/items/{item_id}', data=data)

    def delete_item(self, item_id: str) -> None:
        self.request('DELETE', f'/v3/merchants/{{mId}}/items/{item_id}')

    def list_categories(self) -> List[Dict[str, Any]]:
        return self._list('/v3/merchants/{mId}/categories')

    def create_category(self, name: str) -> Dict[str, Any]:
        return self.request('POST', '/v3/merchants/{mId}/categories', data={'name': name})

    def get_item_stock(self, item_id: str) -> Dict[str, Any]:
        return self.request('GET', f'/v3/merchants/{{mId}}/item_stocks/{item_id}')

    def update_item_stock(self, item_id: str, quantity: float) -> Dict[str, Any]:
        return self.request('POST', f'/v3/merchants/{{mId}}/item_stocks/{item_id}', data={'quantity': quantity})

    # Orders

    def list_orders(self, limit: int = 20, offset: int = 0, filters: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        return self._list('/v3/merchants/{mId}/orders', limit=limit, offset=offset, filters=filters)

    def get_order(self, order_id: str, expand: Optional[str] = None) -> Dict[str, Any]:
        return self.request('GET', f'/v3/merchants/{{mId}}/orders/{order_id}', params=_list_params(expand=expand))

    def create_order(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('POST', '/v3/merchants/{mId}/orders', data=data)

    def update_order(self, order_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('POST', f'/v3/merchants/{{mId}}/orders/{order_id}', data=data)

    def delete_order(self, order_id: str) -> None:
        self.request('DELETE', f'/v3/merchants/{{mId}}/orders/{order_id}')

    def add_line_item(self, order_id: str, item_id: str, quantity: int = 1) -> Dict[str, Any]:
        return self.request(
            'POST',
            f'/v3/merchants/{{mId}}/orders/{order_id}/line_items',
            data={'item': {'id': item_id}, 'unitQty': quantity},
        )

    # Payments

    def list_payments(self, limit: int = 20, offset: int = 0, order_id: Optional[str] = None) -> List[Dict[str, Any]]:
        path = '/v3/merchants/{mId}/payments'
        if order_id:
            path = f'/v3/merchants/{{mId}}/orders/{order_id}/payments'
        return self._list(path, limit=limit, offset=offset)

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self.request('GET', f'/v3/merchants/{{mId}}/payments/{payment_id}')

    def refund_payment(self, payment_id: str, amount: Optional[int] = None, reason: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {'payment': {'id': payment_id}}
        if amount is not None:
            data['amount'] = amount
        if reason:
            data['reason'] = reason
        return self.request('POST', '/v3/merchants/{mId}/refunds', data=data)

    # Customers

    def list_customers(self, limit: int = 50, offset: int = 0, filters: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        return self._list('/v3/merchants/{mId}/customers', limit=limit, offset=offset, filters=filters)

    def get_customer(self, customer_id: str) -> Dict[str, Any]:
        return self.request('GET', f'/v3/merchants/{{mId}}/customers/{customer_id}')

    def create_customer(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('POST', '/v3/merchants/{mId}/customers', data=data)

    def update_customer(self, customer_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('POST', f'/v3/merchants/{{mId}}/customers/{customer_id}', data=data)

    def delete_customer(self, customer_id: str) -> None:
        self.request('DELETE', f'/v3/merchants/{{mId}}/customers/{customer_id}')

    # Employees

    def list_employees(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        return self._list('/v3/merchants/{mId}/employees', limit=limit, offset=offset)

    def get_employee(self, employee_id: str) -> Dict[str, Any]:
        return self.request('GET', f'/v3/merchants/{{mId}}/employees/{employee_id}')

    def current_employee(self) -> Dict[str, Any]:
        return self.request('GET', '/v3/merchants/{mId}/employees/current')


def create_client(
    store: Optional[CredentialStore] = None,
    merchant_id: Optional[str] = None,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CloverClient:
    """
    Build a client for the active merchant.

    $CLOVER_ACCESS_TOKEN, when set, bypasses the credential store entirely.

    Raises:
        AuthError: If no merchant or no credentials can be resolved
    """
    env_token = os.environ.get(ACCESS_TOKEN_ENV)
    if env_token:
        resolved = merchant_id or os.environ.get(MERCHANT_ENV)
        if not resolved:
            raise AuthError(
                AuthReason.NOT_AUTHENTICATED,
                f"{ACCESS_TOKEN_ENV} is set but no merchant ID was given; use --merchant or set {MERCHANT_ENV}",
            )
        transport = Transport(
            get_api_url(os.environ.get(REGION_ENV)),
            resolved,
            StaticTokenProvider(env_token),
            session=session,
            sleep=sleep,
        )
        return CloverClient(transport)

    store = store or CredentialStore()
    resolved = store.resolve_merchant_id(merchant_id)
    if not resolved:
        raise AuthError(
            AuthReason.NOT_AUTHENTICATED,
            f"No merchant ID; use --merchant or set {MERCHANT_ENV}",
        )
    record = store.get(resolved)
    if record is None:
        raise AuthError(
            AuthReason.NOT_AUTHENTICATED,
            f"No credentials for merchant '{resolved}'",
        )

    session = session or requests.Session()
    tokens = StoredTokenProvider(store, TokenManager(store, session), resolved)
    transport = Transport(get_api_url(record.region), resolved, tokens, session=session, sleep=sleep)
    return CloverClient(transport)
