"""
Sales reporting helpers built on bulk payment and refund fetches.
All amounts are integer cents; date ranges are local-time calendar days.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

PERIODS = ('today', 'yesterday', 'this-week', 'last-week', 'this-month', 'last-month', 'mtd', 'ytd')


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar days, with the matching half-open epoch-ms bounds."""

    start: date
    end: date

    @property
    def from_ms(self) -> int:
        return _day_start_ms(self.start)

    @property
    def to_ms(self) -> int:
        return _day_start_ms(self.end + timedelta(days=1))


def _day_start_ms(day: date) -> int:
    return int(datetime(day.year, day.month, day.day).timestamp() * 1000)


def parse_period(period: str, today: Optional[date] = None) -> DateRange:
    """
    Resolve a period shortcut to a date range. Weeks start on Sunday.

    Raises:
        ValueError: On an unknown period name
    """
    today = today or date.today()
    days_since_sunday = (today.weekday() + 1) % 7
    period = period.lower()

    if period == 'today':
        return DateRange(today, today)
    if period == 'yesterday':
        day = today - timedelta(days=1)
        return DateRange(day, day)
    if period == 'this-week':
        return DateRange(today - timedelta(days=days_since_sunday), today)
    if period == 'last-week':
        end = today - timedelta(days=days_since_sunday + 1)
        return DateRange(end - timedelta(days=6), end)
    if period in ('this-month', 'mtd'):
        return DateRange(today.replace(day=1), today)
    if period == 'last-month':
        end = today.replace(day=1) - timedelta(days=1)
        return DateRange(end.replace(day=1), end)
    if period == 'ytd':
        return DateRange(today.replace(month=1, day=1), today)

    raise ValueError(f"Unknown period: {period}. Use: {', '.join(PERIODS)}")


def parse_date_range(start: str, end: str) -> DateRange:
    """
    Parse YYYY-MM-DD bounds; both days are included.

    Raises:
        ValueError: On a malformed date or a start after the end
    """
    result = DateRange(date.fromisoformat(start), date.fromisoformat(end))
    if result.start > result.end:
        raise ValueError(f"--from {start} is after --to {end}")
    return result


def sales_summary(payments: List[Dict[str, Any]], refunds: List[Dict[str, Any]]) -> Dict[str, Any]:
    gross = sum(p.get('amount') or 0 for p in payments)
    refunded = sum(r.get('amount') or 0 for r in refunds)
    return {
        'grossSales': gross,
        'netSales': gross - refunded,
        'totalRefunds': refunded,
        'totalTax': sum(p.get('taxAmount') or 0 for p in payments),
        'totalTips': sum(p.get('tipAmount') or 0 for p in payments),
        'paymentCount': len(payments),
        'refundCount': len(refunds),
        'avgPayment': gross / len(payments) if payments else 0,
    }


def daily_breakdown(payments: List[Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
    """Totals per local calendar day, keyed by ISO date, in date order."""
    by_day: Dict[str, Dict[str, int]] = {}
    for payment in payments:
        day = datetime.fromtimestamp((payment.get('createdTime') or 0) / 1000).date().isoformat()
        totals = by_day.setdefault(day, {'sales': 0, 'count': 0, 'tips': 0, 'tax': 0})
        totals['sales'] += payment.get('amount') or 0
        totals['count'] += 1
        totals['tips'] += payment.get('tipAmount') or 0
        totals['tax'] += payment.get('taxAmount') or 0
    return dict(sorted(by_day.items()))


def last_days(days: int, today: Optional[date] = None) -> DateRange:
    """The ``days`` calendar days ending today."""
    today = today or date.today()
    return DateRange(today - timedelta(days=days - 1), today)


def share(part: float, total: float) -> str:
    return f"{part / total * 100:.1f}%" if total else "0.0%"


def _amount(record: Dict[str, Any], key: str = 'amount') -> int:
    return record.get(key) or 0


def _local_time(record: Dict[str, Any]) -> datetime:
    return datetime.fromtimestamp((record.get('createdTime') or 0) / 1000)


def hourly_breakdown(payments: List[Dict[str, Any]]) -> Dict[int, Dict[str, int]]:
    """Sales and counts for each local hour 0-23; empty hours are included."""
    by_hour = {hour: {'sales': 0, 'count': 0} for hour in range(24)}
    for payment in payments:
        totals = by_hour[_local_time(payment).hour]
        totals['sales'] += _amount(payment)
        totals['count'] += 1
    return by_hour


def payment_type(payment: Dict[str, Any]) -> str:
    tender = payment.get('tender') or {}
    card = payment.get('cardTransaction') or {}
    return tender.get('label') or card.get('cardType') or 'Other'


def payment_methods(payments: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Totals per tender, largest amount first."""
    by_type: Dict[str, Dict[str, int]] = {}
    for payment in payments:
        totals = by_type.setdefault(payment_type(payment), {'count': 0, 'amount': 0})
        totals['count'] += 1
        totals['amount'] += _amount(payment)
    return {
        'total': sum(_amount(p) for p in payments),
        'count': len(payments),
        'byType': dict(sorted(by_type.items(), key=lambda kv: kv[1]['amount'], reverse=True)),
    }


def refund_summary(refunds: List[Dict[str, Any]]) -> Dict[str, Any]:
    total = sum(_amount(r) for r in refunds)
    return {
        'totalRefunded': total,
        'count': len(refunds),
        'avgRefund': total / len(refunds) if refunds else 0,
    }


def tax_summary(payments: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Tax collected over a set of payments.

    The effective rate is tax over pre-tax sales, as a percentage rounded
    to two places.
    """
    total_tax = sum(_amount(p, 'taxAmount') for p in payments)
    total_sales = sum(_amount(p) for p in payments)
    pre_tax = total_sales - total_tax
    return {
        'totalTax': total_tax,
        'totalSales': total_sales,
        'effectiveRate': round(total_tax / pre_tax * 100, 2) if pre_tax > 0 else 0.0,
        'paymentCount': len(payments),
    }


def _line_items(order: Dict[str, Any]) -> List[Dict[str, Any]]:
    line_items = order.get('lineItems') or {}
    if isinstance(line_items, dict):
        return line_items.get('elements') or []
    return line_items


def top_items(orders: List[Dict[str, Any]], limit: int = 10) -> List[Dict[str, Any]]:
    """
    Best selling items by revenue across orders fetched with ``expand=lineItems``.

    Each line item counts as one unit sold.
    """
    sales: Dict[str, Dict[str, Any]] = {}
    for order in orders:
        for line_item in _line_items(order):
            item_id = (line_item.get('item') or {}).get('id') or line_item.get('name') or 'unknown'
            totals = sales.setdefault(item_id, {'name': line_item.get('name') or item_id, 'qty': 0, 'revenue': 0})
            totals['qty'] += 1
            totals['revenue'] += _amount(line_item, 'price')
    ranked = sorted(sales.values(), key=lambda s: s['revenue'], reverse=True)
    return ranked[:limit]


def category_sales(
    orders: List[Dict[str, Any]],
    categories: List[Dict[str, Any]],
    items: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Line-item sales per category.

    Args:
        orders: Orders fetched with ``expand=lineItems``
        categories: Category records
        items: Item records fetched with ``expand=categories``; an item is
            counted under its first category, or 'Uncategorized'

    Returns:
        ``totalSales`` and the categories with sales, largest first
    """
    item_category: Dict[str, str] = {}
    for item in items:
        item_categories = (item.get('categories') or {}).get('elements') or []
        if item_categories:
            item_category[item['id']] = item_categories[0].get('id')

    totals = {c['id']: {'name': c.get('name') or c['id'], 'sales': 0, 'orders': 0, 'items': 0} for c in categories}
    totals['uncategorized'] = {'name': 'Uncategorized', 'sales': 0, 'orders': 0, 'items': 0}

    total_sales = 0
    for order in orders:
        seen = set()
        for line_item in _line_items(order):
            price = _amount(line_item, 'price')
            total_sales += price
            category_id = item_category.get((line_item.get('item') or {}).get('id'))
            if category_id not in totals:
                category_id = 'uncategorized'
            totals[category_id]['sales'] += price
            totals[category_id]['items'] += 1
            seen.add(category_id)
        for category_id in seen:
            totals[category_id]['orders'] += 1

    ranked = sorted((c for c in totals.values() if c['sales'] > 0), key=lambda c: c['sales'], reverse=True)
    return {'totalSales': total_sales, 'categories': ranked}


def employee_sales(employees: List[Dict[str, Any]], payments: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Sales, transactions and tips per employee, largest sales first."""
    totals = {e['id']: {'name': e.get('name') or 'Unknown', 'sales': 0, 'txns': 0, 'tips': 0} for e in employees}
    for payment in payments:
        employee_id = (payment.get('employee') or {}).get('id')
        if employee_id in totals:
            totals[employee_id]['sales'] += _amount(payment)
            totals[employee_id]['txns'] += 1
            totals[employee_id]['tips'] += _amount(payment, 'tipAmount')

    ranked = sorted((e for e in totals.values() if e['sales'] > 0), key=lambda e: e['sales'], reverse=True)
    return {
        'totalSales': sum(_amount(p) for p in payments),
        'paymentCount': len(payments),
        'employees': ranked,
    }


def dashboard(
    payments: List[Dict[str, Any]],
    refunds: List[Dict[str, Any]],
    today: Optional[date] = None,
) -> Dict[str, Dict[str, int]]:
    """
    Gross, refunds, net and transaction count for today, this week and this
    month. Records are expected to cover at least :func:`dashboard_range`.
    """
    today = today or date.today()
    result = {}
    for name, period in (('today', 'today'), ('week', 'this-week'), ('month', 'this-month')):
        start_ms = parse_period(period, today).from_ms
        gross = sum(_amount(p) for p in payments if (p.get('createdTime') or 0) >= start_ms)
        refunded = sum(_amount(r) for r in refunds if (r.get('createdTime') or 0) >= start_ms)
        result[name] = {
            'gross': gross,
            'refunds': refunded,
            'net': gross - refunded,
            'txns': sum(1 for p in payments if (p.get('createdTime') or 0) >= start_ms),
        }
    return result


def dashboard_range(today: Optional[date] = None) -> DateRange:
    """The span :func:`dashboard` needs: this month and this week, through today."""
    today = today or date.today()
    start = min(parse_period('this-week', today).start, parse_period('this-month', today).start)
    return DateRange(start, today)


def percent_change(current: float, previous: float) -> float:
    return (current - previous) / previous * 100 if previous else 0.0


def compare_periods(current: List[Dict[str, Any]], previous: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Sales, transactions and average transaction for two payment sets, with percent changes."""
    def stats(payments):
        sales = sum(_amount(p) for p in payments)
        return {'sales': sales, 'txns': len(payments), 'avgTxn': sales / len(payments) if payments else 0}

    first, second = stats(current), stats(previous)
    return {
        'period1': first,
        'period2': second,
        'changes': {key: percent_change(first[key], second[key]) for key in ('sales', 'txns', 'avgTxn')},
    }
