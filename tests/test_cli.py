"""Tests for the command-line interface."""
import json
import time
from datetime import datetime

import pytest
from click.testing import CliRunner

from clover_cli import cli
from clover_cli.config import CredentialRecord, CredentialStore
from clover_cli.errors import AuthError, AuthReason
from clover_cli.fetcher import DAY_MS


class FakeClient:
    merchant_id = 'M1'

    def __init__(self):
        self.fetch_calls = []

    def list_payments(self, limit, offset, order_id=None):
        return [{'id': 'P1', 'amount': 1250, 'result': 'SUCCESS'}, {'id': 'P2', 'amount': 99}][:limit]

    def fetch_all(self, resource, **kwargs):
        self.fetch_calls.append((resource, kwargs))
        if resource == 'refunds':
            return [{'id': 'R1', 'amount': 250}]
        return [{'id': 'P1', 'amount': 1000, 'createdTime': kwargs['from_ms']}]

    def get_merchant(self):
        return {'id': 'M1', 'name': 'Corner Shop'}


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def fake_client(monkeypatch) -> FakeClient:
    client = FakeClient()
    monkeypatch.setattr(cli, 'create_client', lambda store, merchant: client)
    return client


def _store_with(*merchant_ids) -> CredentialStore:
    store = CredentialStore()
    for merchant_id in merchant_ids:
        store.put(merchant_id, CredentialRecord('app', 'secret', f'token-{merchant_id}'))
    return store


def test_merchants_list_empty(runner) -> None:
    result = runner.invoke(cli.main, ['merchants', 'list'])
    assert result.exit_code == 0
    assert 'No merchants configured' in result.output


def test_merchants_list_quiet(runner) -> None:
    _store_with('M1', 'M2')
    result = runner.invoke(cli.main, ['merchants', 'list', '--quiet'])
    assert result.exit_code == 0
    assert result.output.split() == ['M1', 'M2']


def test_merchants_use(runner) -> None:
    _store_with('M1', 'M2')

    result = runner.invoke(cli.main, ['merchants', 'use', 'M2'])

    assert result.exit_code == 0
    assert CredentialStore().default_merchant == 'M2'


def test_merchants_use_unknown(runner) -> None:
    _store_with('M1')

    result = runner.invoke(cli.main, ['merchants', 'use', 'ghost'])

    assert result.exit_code == 1
    assert 'not found' in result.output
    assert CredentialStore().default_merchant == 'M1'


def test_logout_reassigns_default(runner) -> None:
    _store_with('M1', 'M2')

    result = runner.invoke(cli.main, ['auth', 'logout'])

    assert result.exit_code == 0
    store = CredentialStore()
    assert store.list() == ['M2']
    assert store.default_merchant == 'M2'


def test_status_not_logged_in(runner) -> None:
    result = runner.invoke(cli.main, ['auth', 'status'])
    assert result.exit_code == 0
    assert 'Not logged in' in result.output


def test_payments_list_json(runner, fake_client) -> None:
    result = runner.invoke(cli.main, ['payments', 'list', '--output', 'json'])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == [
        {'id': 'P1', 'amount': 1250, 'result': 'SUCCESS'},
        {'id': 'P2', 'amount': 99},
    ]


def test_payments_list_table(runner, fake_client) -> None:
    result = runner.invoke(cli.main, ['payments', 'list'])
    assert result.exit_code == 0
    assert '$12.50' in result.output


def test_payments_list_range_uses_bulk_fetch(runner, fake_client) -> None:
    result = runner.invoke(cli.main, ['payments', 'list', '--from', '2024-01-01', '--to', '2024-12-31',
                                      '--limit', '5000', '-q'])

    assert result.exit_code == 0
    assert result.output.split() == ['P1']
    resource, kwargs = fake_client.fetch_calls[0]
    assert resource == 'payments'
    assert kwargs['limit_total'] == 5000
    assert kwargs['to_ms'] > kwargs['from_ms']


def test_half_range_is_rejected(runner, fake_client) -> None:
    result = runner.invoke(cli.main, ['payments', 'list', '--from', '2024-01-01'])
    assert result.exit_code == 1
    assert '--from and --to' in result.output


def test_reports_sales_json(runner, fake_client) -> None:
    result = runner.invoke(cli.main, ['reports', 'sales', '--from', '2024-01-01', '--to', '2024-01-31', '-o', 'json'])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report['period'] == {'from': '2024-01-01', 'to': '2024-01-31'}
    assert report['grossSales'] == 1000
    assert report['netSales'] == 750
    assert [call[0] for call in fake_client.fetch_calls] == ['payments', 'refunds']


def test_reports_require_range(runner, fake_client) -> None:
    result = runner.invoke(cli.main, ['reports', 'daily'])
    assert result.exit_code == 1


def test_auth_error_exits_non_zero(runner, monkeypatch) -> None:
    def fail(store, merchant):
        raise AuthError(AuthReason.NOT_AUTHENTICATED, "No credentials for merchant 'M1'")

    monkeypatch.setattr(cli, 'create_client', fail)

    result = runner.invoke(cli.main, ['merchant', 'get'])

    assert result.exit_code == 1
    assert 'No credentials' in result.output


def test_api_command_parses_data(runner, monkeypatch) -> None:
    calls = []

    class RawClient:
        def request(self, method, path, data=None):
            calls.append((method, path, data))
            return {'id': 'C1'}

    monkeypatch.setattr(cli, 'create_client', lambda store, merchant: RawClient())

    result = runner.invoke(cli.main, ['api', 'post', '/v3/merchants/{mId}/categories', '--data', '{"name": "Drinks"}'])

    assert result.exit_code == 0
    assert calls == [('post', '/v3/merchants/{mId}/categories', {'name': 'Drinks'})]
    assert json.loads(result.stdout) == {'id': 'C1'}


class ReportClient:
    """Serves canned records per resource and records every bulk fetch."""

    merchant_id = 'M1'

    def __init__(self, records):
        self.records = records
        self.fetch_calls = []

    def fetch_all(self, resource, **kwargs):
        self.fetch_calls.append((resource, kwargs))
        return self.records.get(resource, [])


@pytest.fixture
def report_client(monkeypatch):
    def install(records):
        client = ReportClient(records)
        monkeypatch.setattr(cli, 'create_client', lambda store, merchant: client)
        return client
    return install


def test_export_payments_csv(runner, report_client, tmp_path) -> None:
    client = report_client({'payments': [
        {'id': 'P1', 'amount': 1250, 'order': {'id': 'O1'}},
        {'id': 'P2', 'amount': 99, 'note': 'a, b'},
    ]})
    destination = tmp_path / 'payments.csv'

    result = runner.invoke(cli.main, ['reports', 'export', 'payments', '--format', 'csv', '-o', str(destination),
                                      '--from', '2024-01-01', '--to', '2024-06-30'])

    assert result.exit_code == 0
    assert destination.read_text().splitlines() == ['id,amount,note', 'P1,1250,', 'P2,99,"a, b"']
    resource, kwargs = client.fetch_calls[0]
    assert resource == 'payments'
    assert kwargs['limit_total'] == 10000
    assert kwargs['to_ms'] > kwargs['from_ms']


def test_export_customers_json(runner, report_client, tmp_path) -> None:
    client = report_client({'customers': [{'id': 'C1', 'firstName': 'Ana'}]})
    destination = tmp_path / 'customers.json'

    result = runner.invoke(cli.main, ['reports', 'export', 'customers', '--limit', '50', '-o', str(destination)])

    assert result.exit_code == 0
    assert json.loads(destination.read_text()) == [{'id': 'C1', 'firstName': 'Ana'}]
    assert client.fetch_calls == [('customers', {'limit_total': 50})]


def test_export_rejects_range_for_items(runner, report_client, tmp_path) -> None:
    client = report_client({})

    result = runner.invoke(cli.main, ['reports', 'export', 'items', '-o', str(tmp_path / 'items.json'),
                                      '--from', '2024-01-01', '--to', '2024-01-31'])

    assert result.exit_code == 1
    assert client.fetch_calls == []


def test_export_unknown_type(runner, report_client) -> None:
    result = runner.invoke(cli.main, ['reports', 'export', 'discounts'])
    assert result.exit_code == 2


def test_payments_report_defaults_to_last_30_days(runner, report_client) -> None:
    client = report_client({'payments': [
        {'amount': 700, 'tender': {'label': 'Cash'}},
        {'amount': 300, 'tender': {'label': 'Credit Card'}},
    ]})

    result = runner.invoke(cli.main, ['reports', 'payments', '-o', 'json'])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report['total'] == 1000
    assert list(report['byType']) == ['Cash', 'Credit Card']
    resource, kwargs = client.fetch_calls[0]
    assert kwargs['expand'] == 'tender,cardTransaction'
    days = (kwargs['to_ms'] - kwargs['from_ms']) / DAY_MS
    assert 29.9 < days < 30.1


def test_refunds_report(runner, report_client) -> None:
    report_client({'refunds': [{'id': 'R1', 'amount': 300}, {'id': 'R2', 'amount': 100}]})

    result = runner.invoke(cli.main, ['reports', 'refunds', '--from', '2024-01-01', '--to', '2024-01-31', '-o', 'json'])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report['totalRefunded'] == 400
    assert report['count'] == 2
    assert [r['id'] for r in report['refunds']] == ['R1', 'R2']


def test_refunds_report_table(runner, report_client) -> None:
    report_client({'refunds': [{'id': 'R1', 'amount': 300, 'reason': 'damaged'}]})

    result = runner.invoke(cli.main, ['reports', 'refunds', '--period', 'last-month'])

    assert result.exit_code == 0
    assert '$3.00' in result.output
    assert 'damaged' in result.output


def test_taxes_report(runner, report_client) -> None:
    report_client({'payments': [{'amount': 1080, 'taxAmount': 80}]})

    result = runner.invoke(cli.main, ['reports', 'taxes', '-o', 'json'])

    assert result.exit_code == 0
    assert json.loads(result.stdout)['effectiveRate'] == 8.0


def test_top_items_report(runner, report_client) -> None:
    client = report_client({'orders': [
        {'id': 'O1', 'lineItems': {'elements': [
            {'name': 'Latte', 'price': 450, 'item': {'id': 'I1'}},
            {'name': 'Bagel', 'price': 300, 'item': {'id': 'I2'}},
        ]}},
    ]})

    result = runner.invoke(cli.main, ['reports', 'top-items', '--limit', '1', '-o', 'json'])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == [{'name': 'Latte', 'qty': 1, 'revenue': 450}]
    resource, kwargs = client.fetch_calls[0]
    assert (resource, kwargs['expand']) == ('orders', 'lineItems')


def test_categories_report(runner, report_client) -> None:
    client = report_client({
        'orders': [{'id': 'O1', 'lineItems': {'elements': [{'price': 500, 'item': {'id': 'I1'}}]}}],
        'categories': [{'id': 'C1', 'name': 'Drinks'}],
        'items': [{'id': 'I1', 'categories': {'elements': [{'id': 'C1'}]}}],
    })

    result = runner.invoke(cli.main, ['reports', 'categories', '-o', 'json'])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report['categories'] == [{'name': 'Drinks', 'sales': 500, 'orders': 1, 'items': 1}]
    assert ('items', {'expand': 'categories'}) in client.fetch_calls


def test_employees_report(runner, report_client) -> None:
    report_client({
        'employees': [{'id': 'E1', 'name': 'Ana'}],
        'payments': [{'amount': 900, 'tipAmount': 90, 'employee': {'id': 'E1'}}],
    })

    result = runner.invoke(cli.main, ['reports', 'employees', '-o', 'json'])

    assert result.exit_code == 0
    assert json.loads(result.stdout)['employees'] == [{'name': 'Ana', 'sales': 900, 'txns': 1, 'tips': 90}]


def test_compare_report(runner, report_client) -> None:
    client = report_client({'payments': [{'amount': 1000}]})

    result = runner.invoke(cli.main, ['reports', 'compare',
                                      '--period1-from', '2024-06-01', '--period1-to', '2024-06-30',
                                      '--period2-from', '2023-06-01', '--period2-to', '2023-06-30',
                                      '-o', 'json'])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report['period1']['from'] == '2024-06-01'
    assert report['period2']['to'] == '2023-06-30'
    assert report['changes']['sales'] == 0.0
    assert len(client.fetch_calls) == 2
    assert client.fetch_calls[0][1]['from_ms'] > client.fetch_calls[1][1]['from_ms']


def test_summary_report(runner, report_client) -> None:
    now_ms = int(time.time() * 1000)
    report_client({
        'payments': [{'amount': 500, 'createdTime': now_ms}],
        'refunds': [{'amount': 200, 'createdTime': now_ms}],
    })

    result = runner.invoke(cli.main, ['reports', 'summary', '-o', 'json'])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    for bucket in ('today', 'week', 'month'):
        assert report[bucket] == {'gross': 500, 'refunds': 200, 'net': 300, 'txns': 1}


def test_hourly_report(runner, report_client) -> None:
    created = int(datetime(2024, 1, 5, 14, 30).timestamp() * 1000)
    report_client({'payments': [{'amount': 800, 'createdTime': created}]})

    result = runner.invoke(cli.main, ['reports', 'hourly', '--date', '2024-01-05', '-o', 'json'])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report['date'] == '2024-01-05'
    assert report['hourly']['14'] == {'sales': 800, 'count': 1}
