"""
Command-line interface for Clover CLI.
Provides commands for authentication, merchant selection and API operations.
"""
import functools
import json
import logging
import os
import sys
from datetime import date
from typing import Optional

import click
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .auth import REGIONS, TokenManager, is_expired, perform_oauth_flow
from .client import create_client
from .config import ACCESS_TOKEN_ENV, CredentialStore
from .fetcher import DEFAULT_LIMIT_TOTAL
from .output import (
    OUTPUT_FORMATS,
    console,
    err_console,
    format_date,
    format_json,
    format_price,
    render,
    success,
    warn,
    write_csv,
)
from .reports import (
    PERIODS,
    category_sales,
    compare_periods,
    daily_breakdown,
    dashboard,
    dashboard_range,
    employee_sales,
    hourly_breakdown,
    last_days,
    parse_date_range,
    parse_period,
    payment_methods,
    refund_summary,
    sales_summary,
    share,
    tax_summary,
    top_items,
)

logger = logging.getLogger(__name__)


def _first_email(customer):
    emails = customer.get('emailAddresses') or []
    if isinstance(emails, dict):
        emails = emails.get('elements') or []
    return emails[0].get('emailAddress') if emails else None


ITEM_COLUMNS = [
    ('ID', 'id'),
    ('Name', 'name'),
    ('Price', lambda r: format_price(r.get('price'))),
    ('SKU', 'sku'),
]
CATEGORY_COLUMNS = [('ID', 'id'), ('Name', 'name'), ('Sort Order', 'sortOrder')]
ORDER_COLUMNS = [
    ('ID', 'id'),
    ('Total', lambda r: format_price(r.get('total'))),
    ('State', 'state'),
    ('Created', lambda r: format_date(r.get('createdTime'))),
]
PAYMENT_COLUMNS = [
    ('ID', 'id'),
    ('Amount', lambda r: format_price(r.get('amount'))),
    ('Tip', lambda r: format_price(r.get('tipAmount'))),
    ('Result', 'result'),
    ('Created', lambda r: format_date(r.get('createdTime'))),
]
CUSTOMER_COLUMNS = [
    ('ID', 'id'),
    ('First Name', 'firstName'),
    ('Last Name', 'lastName'),
    ('Email', lambda r: _first_email(r)),
]
EMPLOYEE_COLUMNS = [('ID', 'id'), ('Name', 'name'), ('Role', 'role'), ('Email', 'email')]


def handle_error(error: Exception, exit_code: int = 1) -> None:
    """Display error message and exit."""
    err_console.print(f"[bold red]Error:[/bold red] {error}")
    sys.exit(exit_code)


def reports_errors(f):
    """Print any exception raised by a command and exit non-zero."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except Exception as e:
            logger.debug("Command failed", exc_info=True)
            handle_error(e)
    return wrapper


def merchant_option(f):
    return click.option('--merchant', '-m', default=None, help='Merchant ID (default: configured default)')(f)


def output_options(f):
    f = click.option('--quiet', '-q', is_flag=True, help='Only print IDs')(f)
    f = click.option(
        '--output', '-o',
        type=click.Choice(OUTPUT_FORMATS),
        default='table',
        show_default=True,
        help='Output format',
    )(f)
    return f


def range_options(f):
    f = click.option('--to', 'end', default=None, help='End date, inclusive (YYYY-MM-DD)')(f)
    f = click.option('--from', 'start', default=None, help='Start date (YYYY-MM-DD)')(f)
    return f


def _format(output: str, quiet: bool) -> str:
    return 'quiet' if quiet else output


def _date_range(start: Optional[str], end: Optional[str], period: Optional[str] = None):
    if period:
        return parse_period(period)
    if start or end:
        if not (start and end):
            raise click.UsageError("--from and --to must be given together")
        return parse_date_range(start, end)
    return None


def _client(merchant: Optional[str]):
    return create_client(CredentialStore(), merchant)


def _parse_json(data: Optional[str]):
    if not data:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint='--data')


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


@click.group()
@click.version_option(version=__version__, prog_name="clover-cli")
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def main(verbose):
    """
    Clover CLI - OAuth2 authentication and API access for Clover merchants.

    Manage merchant credentials, inspect inventory, orders and payments,
    and build sales reports.
    """
    _setup_logging(verbose)


# Authentication

@main.group()
def auth():
    """Authentication commands."""


@auth.command()
@click.option('--client-id', envvar='CLOVER_CLIENT_ID', required=True, help='Clover App ID')
@click.option('--client-secret', envvar='CLOVER_CLIENT_SECRET', required=True, help='Clover App Secret')
@click.option('--region', type=click.Choice(REGIONS), default=None, help='Region (default: last used, else us)')
@click.option('--port', default=8089, show_default=True, help='Local callback server port')
@reports_errors
def login(client_id, client_secret, region, port):
    """
    Authenticate with OAuth (opens a browser).

    Example:
        clover auth login --client-id APPID --client-secret SECRET --region us
    """
    store = CredentialStore()
    region = region or store.region or 'us'

    merchant_id, _ = perform_oauth_flow(store, client_id, client_secret, region=region, port=port)
    success(f"Logged in to merchant [bold]{merchant_id}[/bold] ({region})")

    try:
        merchant = create_client(store, merchant_id).get_merchant()
        success(f"Merchant name: {merchant.get('name', 'unknown')}")
    except Exception as e:
        warn(f"Authentication successful, but couldn't fetch merchant details: {e}")


@auth.command()
@merchant_option
@reports_errors
def status(merchant):
    """Show authentication status for the active merchant."""
    if os.environ.get(ACCESS_TOKEN_ENV):
        console.print(f"[cyan]Using access token from {ACCESS_TOKEN_ENV}[/cyan]")
        return

    store = CredentialStore()
    merchant_id = store.resolve_merchant_id(merchant)
    record = store.get(merchant_id) if merchant_id else None
    if record is None:
        console.print("[yellow]Not logged in.[/yellow] Run [cyan]clover auth login[/cyan]")
        return

    console.print(f"[cyan]Merchant ID:[/cyan] {merchant_id}")
    console.print(f"[cyan]Region:[/cyan] {record.region}")
    if record.expires_at:
        expiry = "[red]EXPIRED[/red]" if is_expired(record) else format_date(record.expires_at)
        console.print(f"[cyan]Token expires:[/cyan] {expiry}")
    else:
        console.print("[cyan]Token expires:[/cyan] never")
    console.print(f"[cyan]Refresh token:[/cyan] {'yes' if record.refresh_token else 'no'}")


@auth.command()
@merchant_option
@reports_errors
def refresh(merchant):
    """Refresh the access token for the active merchant."""
    store = CredentialStore()
    merchant_id = store.resolve_merchant_id(merchant)
    if not merchant_id:
        raise click.ClickException("Not logged in.")
    TokenManager(store).refresh(merchant_id)
    success(f"Token refreshed for merchant {merchant_id}")


@auth.command()
@merchant_option
@click.option('--all', 'remove_all', is_flag=True, help='Remove credentials for every merchant')
@reports_errors
def logout(merchant, remove_all):
    """
    Remove stored credentials.

    Examples:
        clover auth logout
        clover auth logout --all
    """
    store = CredentialStore()
    if remove_all:
        merchants = store.list()
        for merchant_id in merchants:
            store.remove(merchant_id)
        success(f"Logged out from all merchants ({len(merchants)} removed)")
        return

    merchant_id = store.resolve_merchant_id(merchant)
    if not merchant_id or not store.remove(merchant_id):
        console.print("[yellow]No stored credentials to remove[/yellow]")
        return
    success(f"Logged out from merchant {merchant_id}")


# Merchants

@main.group()
def merchants():
    """Manage stored merchants."""


@merchants.command('list')
@output_options
@reports_errors
def merchants_list(output, quiet):
    """List merchants with stored credentials."""
    store = CredentialStore()
    rows = []
    for merchant_id in store.list():
        record = store.get(merchant_id)
        rows.append({
            'id': merchant_id,
            'region': record.region,
            'expires': format_date(record.expires_at) or 'never',
            'default': merchant_id == store.default_merchant,
        })

    if not rows and _format(output, quiet) == 'table':
        console.print("[yellow]No merchants configured[/yellow]")
        console.print("\nAdd one with: [cyan]clover auth login[/cyan]")
        return

    render(rows, _format(output, quiet), columns=[
        ('Merchant ID', 'id'),
        ('Region', 'region'),
        ('Token Expires', 'expires'),
        ('Default', lambda r: '✓' if r['default'] else ''),
    ], title="Merchants")


@merchants.command('use')
@click.argument('merchant_id')
@reports_errors
def merchants_use(merchant_id):
    """Set the default merchant."""
    store = CredentialStore()
    if merchant_id not in store.list():
        raise click.ClickException(
            f"Merchant '{merchant_id}' not found. Known merchants: {', '.join(store.list()) or 'none'}"
        )
    store.set_default(merchant_id)
    success(f"Default merchant set to '{merchant_id}'")


@main.group()
def merchant():
    """Merchant information."""


@merchant.command('get')
@merchant_option
@output_options
@reports_errors
def merchant_get(merchant, output, quiet):
    """Get merchant details."""
    render(_client(merchant).get_merchant(), _format(output, quiet))


# Inventory

@main.group()
def items():
    """Manage inventory items."""


@items.command('list')
@merchant_option
@click.option('--limit', default=50, show_default=True, help='Max results')
@click.option('--offset', default=0, help='Offset')
@click.option('--filter', 'filters', multiple=True, help='Filter expression (repeatable)')
@click.option('--all', 'fetch_everything', is_flag=True, help='Page through every item (up to --limit)')
@output_options
@reports_errors
def items_list(merchant, limit, offset, filters, fetch_everything, output, quiet):
    """List items."""
    client = _client(merchant)
    if fetch_everything:
        data = client.fetch_all('items', limit_total=limit, filters=list(filters))
    else:
        data = client.list_items(limit=limit, offset=offset, filters=list(filters))
    render(data, _format(output, quiet), columns=ITEM_COLUMNS, title="Items")


@items.command('get')
@click.argument('item_id')
@merchant_option
@output_options
@reports_errors
def items_get(item_id, merchant, output, quiet):
    """Get an item."""
    render(_client(merchant).get_item(item_id), _format(output, quiet))


@items.command('create')
@click.option('--name', required=True, help='Item name')
@click.option('--price', type=int, default=None, help='Price in cents')
@click.option('--sku', default=None, help='SKU')
@merchant_option
@output_options
@reports_errors
def items_create(name, price, sku, merchant, output, quiet):
    """Create an item."""
    data = {'name': name}
    if price is not None:
        data['price'] = price
    if sku:
        data['sku'] = sku
    render(_client(merchant).create_item(data), _format(output, quiet))


@items.command('update')
@click.argument('item_id')
@click.option('--name', default=None, help='Item name')
@click.option('--price', type=int, default=None, help='Price in cents')
@click.option('--sku', default=None, help='SKU')
@merchant_option
@output_options
@reports_errors
def items_update(item_id, name, price, sku, merchant, output, quiet):
    """Update an item."""
    data = {}
    if name:
        data['name'] = name
    if price is not None:
        data['price'] = price
    if sku:
        data['sku'] = sku
    if not data:
        raise click.UsageError("Nothing to update; pass --name, --price or --sku")
    render(_client(merchant).update_item(item_id, data), _format(output, quiet))


@items.command('delete')
@click.argument('item_id')
@merchant_option
@reports_errors
def items_delete(item_id, merchant):
    """Delete an item."""
    _client(merchant).delete_item(item_id)
    success(f"Deleted item {item_id}")


@main.group()
def categories():
    """Manage item categories."""


@categories.command('list')
@merchant_option
@output_options
@reports_errors
def categories_list(merchant, output, quiet):
    """List categories."""
    render(_client(merchant).list_categories(), _format(output, quiet), columns=CATEGORY_COLUMNS, title="Categories")


@categories.command('create')
@click.option('--name', required=True, help='Category name')
@merchant_option
@output_options
@reports_errors
def categories_create(name, merchant, output, quiet):
    """Create a category."""
    render(_client(merchant).create_category(name), _format(output, quiet))


@main.group()
def stock():
    """Item stock levels."""


@stock.command('get')
@click.argument('item_id')
@merchant_option
@output_options
@reports_errors
def stock_get(item_id, merchant, output, quiet):
    """Get the stock level of an item."""
    render(_client(merchant).get_item_stock(item_id), _format(output, quiet))


@stock.command('set')
@click.argument('item_id')
@click.argument('quantity', type=float)
@merchant_option
@output_options
@reports_errors
def stock_set(item_id, quantity, merchant, output, quiet):
    """Set the stock level of an item."""
    render(_client(merchant).update_item_stock(item_id, quantity), _format(output, quiet))


# Orders

@main.group()
def orders():
    """Order management."""


@orders.command('list')
@merchant_option
@click.option('--limit', default=20, show_default=True, help='Max results')
@click.option('--offset', default=0, help='Offset (ignored with --from/--to)')
@click.option('--filter', 'filters', multiple=True, help='Filter expression (repeatable)')
@range_options
@output_options
@reports_errors
def orders_list(merchant, limit, offset, filters, start, end, output, quiet):
    """
    List orders.

    With --from/--to every order created in the range is fetched, up to --limit.
    """
    client = _client(merchant)
    date_range = _date_range(start, end)
    if date_range:
        data = client.fetch_all(
            'orders',
            from_ms=date_range.from_ms,
            to_ms=date_range.to_ms,
            limit_total=limit,
            filters=list(filters),
        )
    else:
        data = client.list_orders(limit=limit, offset=offset, filters=list(filters))
    render(data, _format(output, quiet), columns=ORDER_COLUMNS, title="Orders")


@orders.command('get')
@click.argument('order_id')
@click.option('--expand', default=None, help='Expand fields (lineItems,payments)')
@merchant_option
@output_options
@reports_errors
def orders_get(order_id, expand, merchant, output, quiet):
    """Get an order."""
    render(_client(merchant).get_order(order_id, expand=expand), _format(output, quiet))


@orders.command('create')
@click.option('--total', type=int, default=None, help='Total in cents')
@click.option('--note', default=None, help='Note')
@merchant_option
@output_options
@reports_errors
def orders_create(total, note, merchant, output, quiet):
    """Create an order."""
    data = {}
    if total is not None:
        data['total'] = total
    if note:
        data['note'] = note
    render(_client(merchant).create_order(data), _format(output, quiet))


@orders.command('update')
@click.argument('order_id')
@click.option('--note', required=True, help='Note')
@merchant_option
@output_options
@reports_errors
def orders_update(order_id, note, merchant, output, quiet):
    """Update an order."""
    render(_client(merchant).update_order(order_id, {'note': note}), _format(output, quiet))


@orders.command('delete')
@click.argument('order_id')
@merchant_option
@reports_errors
def orders_delete(order_id, merchant):
    """Delete an order."""
    _client(merchant).delete_order(order_id)
    success(f"Deleted order {order_id}")


@orders.command('add-item')
@click.argument('order_id')
@click.option('--item-id', required=True, help='Item ID')
@click.option('--quantity', default=1, show_default=True, help='Quantity')
@merchant_option
@output_options
@reports_errors
def orders_add_item(order_id, item_id, quantity, merchant, output, quiet):
    """Add a line item to an order."""
    render(_client(merchant).add_line_item(order_id, item_id, quantity), _format(output, quiet))


# Payments

@main.group()
def payments():
    """Payment management."""


@payments.command('list')
@merchant_option
@click.option('--limit', default=20, show_default=True, help='Max results')
@click.option('--offset', default=0, help='Offset (ignored with --from/--to)')
@click.option('--order', 'order_id', default=None, help='Only payments of this order')
@range_options
@output_options
@reports_errors
def payments_list(merchant, limit, offset, order_id, start, end, output, quiet):
    """
    List payments.

    Examples:
        clover payments list --limit 5
        clover payments list --from 2024-01-01 --to 2024-06-30 --limit 5000 -o json
    """
    client = _client(merchant)
    date_range = _date_range(start, end)
    if date_range:
        resource = f'orders/{order_id}/payments' if order_id else 'payments'
        data = client.fetch_all(resource, from_ms=date_range.from_ms, to_ms=date_range.to_ms, limit_total=limit)
    else:
        data = client.list_payments(limit=limit, offset=offset, order_id=order_id)
    render(data, _format(output, quiet), columns=PAYMENT_COLUMNS, title="Payments")


@payments.command('get')
@click.argument('payment_id')
@merchant_option
@output_options
@reports_errors
def payments_get(payment_id, merchant, output, quiet):
    """Get payment details."""
    render(_client(merchant).get_payment(payment_id), _format(output, quiet))


@payments.command('refund')
@click.argument('payment_id')
@click.option('--amount', type=int, default=None, help='Amount in cents (omit for full refund)')
@click.option('--reason', default=None, help='Refund reason')
@merchant_option
@output_options
@reports_errors
def payments_refund(payment_id, amount, reason, merchant, output, quiet):
    """Refund a payment."""
    render(_client(merchant).refund_payment(payment_id, amount=amount, reason=reason), _format(output, quiet))


# Customers

@main.group()
def customers():
    """Customer management."""


@customers.command('list')
@merchant_option
@click.option('--limit', default=50, show_default=True, help='Max results')
@click.option('--offset', default=0, help='Offset')
@click.option('--filter', 'filters', multiple=True, help='Filter (e.g. emailAddress=a@example.com)')
@output_options
@reports_errors
def customers_list(merchant, limit, offset, filters, output, quiet):
    """List customers."""
    data = _client(merchant).list_customers(limit=limit, offset=offset, filters=list(filters))
    render(data, _format(output, quiet), columns=CUSTOMER_COLUMNS, title="Customers")


@customers.command('get')
@click.argument('customer_id')
@merchant_option
@output_options
@reports_errors
def customers_get(customer_id, merchant, output, quiet):
    """Get customer details."""
    render(_client(merchant).get_customer(customer_id), _format(output, quiet))


def _customer_payload(first_name, last_name, email=None, phone=None):
    data = {}
    if first_name:
        data['firstName'] = first_name
    if last_name:
        data['lastName'] = last_name
    if email:
        data['emailAddresses'] = [{'emailAddress': email}]
    if phone:
        data['phoneNumbers'] = [{'phoneNumber': phone}]
    return data


@customers.command('create')
@click.option('--first-name', default=None, help='First name')
@click.option('--last-name', default=None, help='Last name')
@click.option('--email', default=None, help='Email address')
@click.option('--phone', default=None, help='Phone number')
@merchant_option
@output_options
@reports_errors
def customers_create(first_name, last_name, email, phone, merchant, output, quiet):
    """Create a customer."""
    data = _customer_payload(first_name, last_name, email, phone)
    render(_client(merchant).create_customer(data), _format(output, quiet))


@customers.command('update')
@click.argument('customer_id')
@click.option('--first-name', default=None, help='First name')
@click.option('--last-name', default=None, help='Last name')
@click.option('--phone', default=None, help='Phone number')
@merchant_option
@output_options
@reports_errors
def customers_update(customer_id, first_name, last_name, phone, merchant, output, quiet):
    """Update a customer."""
    data = _customer_payload(first_name, last_name, phone=phone)
    render(_client(merchant).update_customer(customer_id, data), _format(output, quiet))


@customers.command('delete')
@click.argument('customer_id')
@merchant_option
@reports_errors
def customers_delete(customer_id, merchant):
    """Delete a customer."""
    _client(merchant).delete_customer(customer_id)
    success(f"Deleted customer {customer_id}")


# Employees

@main.group()
def employees():
    """Employee information."""


@employees.command('list')
@merchant_option
@click.option('--limit', default=50, show_default=True, help='Max results')
@click.option('--offset', default=0, help='Offset')
@output_options
@reports_errors
def employees_list(merchant, limit, offset, output, quiet):
    """List employees."""
    data = _client(merchant).list_employees(limit=limit, offset=offset)
    render(data, _format(output, quiet), columns=EMPLOYEE_COLUMNS, title="Employees")


@employees.command('get')
@click.argument('employee_id')
@merchant_option
@output_options
@reports_errors
def employees_get(employee_id, merchant, output, quiet):
    """Get employee details."""
    render(_client(merchant).get_employee(employee_id), _format(output, quiet))


@employees.command('me')
@merchant_option
@output_options
@reports_errors
def employees_me(merchant, output, quiet):
    """Get the employee the token belongs to."""
    render(_client(merchant).current_employee(), _format(output, quiet))


# Reports

@main.group()
def reports():
    """Sales reporting."""


def _report_range(start, end, period, default_days=None):
    date_range = _date_range(start, end, period)
    if date_range is None and default_days:
        return last_days(default_days)
    if date_range is None:
        raise click.UsageError("Provide --from/--to or --period")
    return date_range


@reports.command('sales')
@range_options
@click.option('--period', type=click.Choice(PERIODS), default=None, help='Period shortcut')
@click.option('--limit', default=None, type=int, help='Max payments and refunds fetched (default 10000)')
@merchant_option
@click.option('--output', '-o', type=click.Choice(['table', 'json']), default='table', show_default=True)
@reports_errors
def reports_sales(start, end, period, limit, merchant, output):
    """
    Sales summary for a date range, from payments and refunds.

    Examples:
        clover reports sales --period last-month
        clover reports sales --from 2024-01-01 --to 2024-12-31 -o json
    """
    date_range = _report_range(start, end, period)
    client = _client(merchant)
    fetch = functools.partial(
        client.fetch_all,
        from_ms=date_range.from_ms,
        to_ms=date_range.to_ms,
        limit_total=limit,
    )
    summary = sales_summary(fetch('payments'), fetch('refunds'))

    if output == 'json':
        click.echo(format_json({
            'period': {'from': date_range.start.isoformat(), 'to': date_range.end.isoformat()},
            **summary,
        }))
        return

    table = Table(title=f"Sales Report: {date_range.start} to {date_range.end}", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Gross Sales", f"[green]{format_price(summary['grossSales'])}[/green]")
    table.add_row("Refunds", f"[red]-{format_price(summary['totalRefunds'])}[/red]")
    table.add_row("Net Sales", f"[bold green]{format_price(summary['netSales'])}[/bold green]")
    table.add_row("Total Tax", format_price(summary['totalTax']))
    table.add_row("Total Tips", format_price(summary['totalTips']))
    table.add_row("Transactions", str(summary['paymentCount']))
    table.add_row("Avg Transaction", format_price(round(summary['avgPayment'])))
    console.print(table)


@reports.command('daily')
@range_options
@click.option('--period', type=click.Choice(PERIODS), default=None, help='Period shortcut')
@click.option('--limit', default=None, type=int, help='Max payments fetched (default 10000)')
@merchant_option
@click.option('--output', '-o', type=click.Choice(['table', 'json']), default='table', show_default=True)
@reports_errors
def reports_daily(start, end, period, limit, merchant, output):
    """Daily breakdown of payments for a date range."""
    date_range = _report_range(start, end, period)
    payments_data = _client(merchant).fetch_all(
        'payments',
        from_ms=date_range.from_ms,
        to_ms=date_range.to_ms,
        limit_total=limit,
    )
    by_day = daily_breakdown(payments_data)

    if output == 'json':
        click.echo(format_json(by_day))
        return

    table = Table(title="Daily Breakdown", show_footer=True)
    table.add_column("Date", style="cyan", footer="TOTAL")
    table.add_column("Sales", justify="right", footer=format_price(sum(d['sales'] for d in by_day.values())))
    table.add_column("Txns", justify="right", footer=str(sum(d['count'] for d in by_day.values())))
    table.add_column("Avg", justify="right")
    table.add_column("Tips", justify="right", footer=format_price(sum(d['tips'] for d in by_day.values())))
    for day, totals in by_day.items():
        avg = totals['sales'] / totals['count'] if totals['count'] else 0
        table.add_row(
            day,
            format_price(totals['sales']),
            str(totals['count']),
            format_price(round(avg)),
            format_price(totals['tips']),
        )
    console.print(table)


def report_output(f):
    return click.option(
        '--output', '-o',
        type=click.Choice(['table', 'json']),
        default='table',
        show_default=True,
        help='Output format',
    )(f)


def period_options(f):
    f = click.option('--period', type=click.Choice(PERIODS), default=None, help='Period shortcut')(f)
    return range_options(f)


def _summary_table(title, rows):
    table = Table(title=title, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for label, value in rows:
        table.add_row(label, value)
    console.print(table)


@reports.command('hourly')
@click.option('--date', 'day', default=None, help='Day to report (YYYY-MM-DD, default: today)')
@merchant_option
@report_output
@reports_errors
def reports_hourly(day, merchant, output):
    """Sales by hour of day."""
    day = day or date.today().isoformat()
    date_range = parse_date_range(day, day)
    payments_data = _client(merchant).fetch_all('payments', from_ms=date_range.from_ms, to_ms=date_range.to_ms)
    by_hour = hourly_breakdown(payments_data)

    if output == 'json':
        click.echo(format_json({'date': day, 'hourly': by_hour}))
        return

    total = sum(h['sales'] for h in by_hour.values())
    table = Table(title=f"Hourly Sales: {day}")
    table.add_column("Hour", style="cyan")
    table.add_column("Sales", justify="right")
    table.add_column("Txns", justify="right")
    table.add_column("")
    for hour, totals in by_hour.items():
        bar = '█' * round(totals['sales'] / total * 30) if total else ''
        table.add_row(f"{hour:02d}:00", format_price(totals['sales']), str(totals['count']), f"[green]{bar}[/green]")
    console.print(table)


@reports.command('top-items')
@period_options
@click.option('--limit', default=10, show_default=True, help='Number of items')
@merchant_option
@report_output
@reports_errors
def reports_top_items(start, end, period, limit, merchant, output):
    """
    Best selling items by revenue (default: last 30 days).

    Example:
        clover reports top-items --period last-month --limit 20
    """
    date_range = _report_range(start, end, period, default_days=30)
    orders_data = _client(merchant).fetch_all(
        'orders',
        from_ms=date_range.from_ms,
        to_ms=date_range.to_ms,
        expand='lineItems',
    )
    ranked = top_items(orders_data, limit)

    if output == 'json':
        click.echo(format_json(ranked))
        return

    table = Table(title=f"Top Selling Items: {date_range.start} to {date_range.end}")
    table.add_column("Rank", justify="right")
    table.add_column("Item", style="cyan")
    table.add_column("Qty", justify="right")
    table.add_column("Revenue", justify="right")
    for rank, item in enumerate(ranked, 1):
        table.add_row(str(rank), item['name'], str(item['qty']), format_price(item['revenue']))
    console.print(table)


@reports.command('payments')
@period_options
@merchant_option
@report_output
@reports_errors
def reports_payments(start, end, period, merchant, output):
    """Payment method breakdown (default: last 30 days)."""
    date_range = _report_range(start, end, period, default_days=30)
    payments_data = _client(merchant).fetch_all(
        'payments',
        from_ms=date_range.from_ms,
        to_ms=date_range.to_ms,
        expand='tender,cardTransaction',
    )
    methods = payment_methods(payments_data)

    if output == 'json':
        click.echo(format_json(methods))
        return

    table = Table(title="Payment Methods", show_footer=True)
    table.add_column("Method", style="cyan", footer="TOTAL")
    table.add_column("Count", justify="right", footer=str(methods['count']))
    table.add_column("Amount", justify="right", footer=format_price(methods['total']))
    table.add_column("Share", justify="right")
    for name, totals in methods['byType'].items():
        table.add_row(name, str(totals['count']), format_price(totals['amount']), share(totals['amount'], methods['total']))
    console.print(table)


@reports.command('refunds')
@period_options
@merchant_option
@report_output
@reports_errors
def reports_refunds(start, end, period, merchant, output):
    """Refund summary (default: last 30 days)."""
    date_range = _report_range(start, end, period, default_days=30)
    refunds_data = _client(merchant).fetch_all('refunds', from_ms=date_range.from_ms, to_ms=date_range.to_ms)
    summary = refund_summary(refunds_data)

    if output == 'json':
        click.echo(format_json({**summary, 'refunds': refunds_data}))
        return

    _summary_table("Refunds Summary", [
        ("Total Refunded", f"[red]{format_price(summary['totalRefunded'])}[/red]"),
        ("Refund Count", str(summary['count'])),
        ("Avg Refund", format_price(round(summary['avgRefund']))),
    ])
    if refunds_data:
        render(refunds_data[:10], columns=[
            ('Date', lambda r: format_date(r.get('createdTime'))),
            ('Amount', lambda r: format_price(r.get('amount'))),
            ('Reason', lambda r: r.get('reason') or 'No reason'),
        ], title="Recent Refunds")


@reports.command('taxes')
@period_options
@merchant_option
@report_output
@reports_errors
def reports_taxes(start, end, period, merchant, output):
    """Tax collected summary (default: last 30 days)."""
    date_range = _report_range(start, end, period, default_days=30)
    summary = tax_summary(_client(merchant).fetch_all('payments', from_ms=date_range.from_ms, to_ms=date_range.to_ms))

    if output == 'json':
        click.echo(format_json(summary))
        return

    _summary_table("Tax Summary", [
        ("Total Tax Collected", f"[yellow]{format_price(summary['totalTax'])}[/yellow]"),
        ("Total Sales", format_price(summary['totalSales'])),
        ("Effective Tax Rate", f"{summary['effectiveRate']:.2f}%"),
        ("Transactions", str(summary['paymentCount'])),
    ])


@reports.command('summary')
@merchant_option
@report_output
@reports_errors
def reports_summary(merchant, output):
    """Quick business dashboard: today, this week and this month."""
    date_range = dashboard_range()
    client = _client(merchant)
    payments_data = client.fetch_all('payments', from_ms=date_range.from_ms, to_ms=date_range.to_ms)
    refunds_data = client.fetch_all('refunds', from_ms=date_range.from_ms, to_ms=date_range.to_ms)
    data = dashboard(payments_data, refunds_data)

    if output == 'json':
        click.echo(format_json(data))
        return

    table = Table(title="Business Dashboard")
    table.add_column("Period", style="cyan")
    table.add_column("Gross", justify="right")
    table.add_column("Refunds", justify="right")
    table.add_column("Net", justify="right")
    table.add_column("Txns", justify="right")
    for label, key in (("Today", 'today'), ("This Week", 'week'), ("This Month", 'month')):
        row = data[key]
        table.add_row(
            label,
            f"[green]{format_price(row['gross'])}[/green]",
            f"[red]{format_price(row['refunds'])}[/red]",
            f"[bold green]{format_price(row['net'])}[/bold green]",
            str(row['txns']),
        )
    console.print(table)


EXPORT_TYPES = ('orders', 'items', 'payments', 'customers')


@reports.command('export')
@click.argument('kind', type=click.Choice(EXPORT_TYPES))
@click.option('--output', '-o', 'destination', type=click.File('w', encoding='utf-8'), default='-',
              help='Output file (default: stdout)')
@click.option('--format', 'fmt', type=click.Choice(['json', 'csv']), default='json', show_default=True)
@click.option('--limit', default=DEFAULT_LIMIT_TOTAL, show_default=True, help='Max records')
@range_options
@merchant_option
@reports_errors
def reports_export(kind, destination, fmt, limit, start, end, merchant):
    """
    Export orders, items, payments or customers as JSON or CSV.

    --from/--to apply to orders and payments only.

    Examples:
        clover reports export payments --from 2024-01-01 --to 2024-12-31 --format csv -o payments.csv
        clover reports export customers -o customers.json
    """
    date_range = _date_range(start, end)
    if date_range and kind not in ('orders', 'payments'):
        raise click.UsageError(f"--from/--to cannot be used when exporting {kind}")

    bounds = {'from_ms': date_range.from_ms, 'to_ms': date_range.to_ms} if date_range else {}
    records = _client(merchant).fetch_all(kind, limit_total=limit, **bounds)

    if fmt == 'csv':
        write_csv(records, destination)
    else:
        destination.write(format_json(records) + '\n')
    destination.flush()
    err_console.print(f"[green]✓[/green] Exported {len(records)} {kind} to {destination.name}")


@reports.command('categories')
@period_options
@merchant_option
@report_output
@reports_errors
def reports_categories(start, end, period, merchant, output):
    """Sales breakdown by category (default: last 30 days)."""
    date_range = _report_range(start, end, period, default_days=30)
    client = _client(merchant)
    breakdown = category_sales(
        client.fetch_all('orders', from_ms=date_range.from_ms, to_ms=date_range.to_ms, expand='lineItems'),
        client.fetch_all('categories'),
        client.fetch_all('items', expand='categories'),
    )

    if output == 'json':
        click.echo(format_json(breakdown))
        return

    total = breakdown['totalSales']
    table = Table(title="Sales by Category", show_footer=True)
    table.add_column("Category", style="cyan", footer="TOTAL")
    table.add_column("Sales", justify="right", footer=format_price(total))
    table.add_column("Orders", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Share", justify="right")
    for category in breakdown['categories']:
        table.add_row(
            category['name'],
            format_price(category['sales']),
            str(category['orders']),
            str(category['items']),
            share(category['sales'], total),
        )
    console.print(table)


def _change(value: float) -> str:
    if value > 0:
        return f"[green]↑ +{value:.1f}%[/green]"
    if value < 0:
        return f"[red]↓ {value:.1f}%[/red]"
    return "[dim]→ 0%[/dim]"


@reports.command('compare')
@click.option('--period1-from', required=True, help='Period 1 start (YYYY-MM-DD)')
@click.option('--period1-to', required=True, help='Period 1 end, inclusive')
@click.option('--period2-from', required=True, help='Period 2 start, the baseline')
@click.option('--period2-to', required=True, help='Period 2 end, inclusive')
@merchant_option
@report_output
@reports_errors
def reports_compare(period1_from, period1_to, period2_from, period2_to, merchant, output):
    """
    Compare two periods (e.g. year over year). Changes are period 1 relative to period 2.

    Example:
        clover reports compare --period1-from 2024-06-01 --period1-to 2024-06-30 \\
            --period2-from 2023-06-01 --period2-to 2023-06-30
    """
    first = parse_date_range(period1_from, period1_to)
    second = parse_date_range(period2_from, period2_to)
    client = _client(merchant)
    data = compare_periods(
        client.fetch_all('payments', from_ms=first.from_ms, to_ms=first.to_ms),
        client.fetch_all('payments', from_ms=second.from_ms, to_ms=second.to_ms),
    )
    data['period1'].update({'from': period1_from, 'to': period1_to})
    data['period2'].update({'from': period2_from, 'to': period2_to})

    if output == 'json':
        click.echo(format_json(data))
        return

    p1, p2, changes = data['period1'], data['period2'], data['changes']
    table = Table(title="Period Comparison")
    table.add_column("Metric", style="cyan")
    table.add_column("Period 1", justify="right")
    table.add_column("Period 2", justify="right")
    table.add_column("Change", justify="right")
    table.add_row("Dates", f"{period1_from} to {period1_to}", f"{period2_from} to {period2_to}", "")
    table.add_row("Total Sales", format_price(p1['sales']), format_price(p2['sales']), _change(changes['sales']))
    table.add_row("Transactions", str(p1['txns']), str(p2['txns']), _change(changes['txns']))
    table.add_row(
        "Avg Txn",
        format_price(round(p1['avgTxn'])),
        format_price(round(p2['avgTxn'])),
        _change(changes['avgTxn']),
    )
    console.print(table)


@reports.command('employees')
@period_options
@merchant_option
@report_output
@reports_errors
def reports_employees(start, end, period, merchant, output):
    """Sales breakdown by employee (default: last 30 days)."""
    date_range = _report_range(start, end, period, default_days=30)
    client = _client(merchant)
    breakdown = employee_sales(
        client.fetch_all('employees'),
        client.fetch_all('payments', from_ms=date_range.from_ms, to_ms=date_range.to_ms),
    )

    if output == 'json':
        click.echo(format_json(breakdown))
        return

    total = breakdown['totalSales']
    table = Table(title="Sales by Employee", show_footer=True)
    table.add_column("Employee", style="cyan", footer="TOTAL")
    table.add_column("Sales", justify="right", footer=format_price(total))
    table.add_column("Txns", justify="right", footer=str(breakdown['paymentCount']))
    table.add_column("Avg Txn", justify="right")
    table.add_column("Tips", justify="right")
    table.add_column("Share", justify="right")
    for employee in breakdown['employees']:
        avg = employee['sales'] / employee['txns'] if employee['txns'] else 0
        table.add_row(
            employee['name'],
            format_price(employee['sales']),
            str(employee['txns']),
            format_price(round(avg)),
            format_price(employee['tips']),
            share(employee['sales'], total),
        )
    console.print(table)


# Raw access

@main.command()
@click.argument('method', type=click.Choice(['get', 'post', 'put', 'delete'], case_sensitive=False))
@click.argument('path')
@click.option('--data', default=None, help='JSON request body')
@merchant_option
@reports_errors
def api(method, path, data, merchant):
    """
    Raw API access. '{mId}' in PATH is replaced with the merchant ID.

    Examples:
        clover api get '/v3/merchants/{mId}/tax_rates'
        clover api post '/v3/merchants/{mId}/categories' --data '{"name": "Drinks"}'
    """
    result = _client(merchant).request(method, path, data=_parse_json(data))
    click.echo(format_json(result))


if __name__ == '__main__':
    main()
