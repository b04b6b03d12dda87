from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple

from sourcing_engine.domain.models import POItem


LINE_NO_STEP = 10
DEFAULT_DELIVERY_BUFFER_DAYS = 7


def money(value: float | int | None) -> float:
    if value is None:
        return 0.0
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def is_working_day(day: date) -> bool:
    return day.weekday() < 5


def next_working_day(day: date) -> date:
    while not is_working_day(day):
        day += timedelta(days=1)
    return day


def add_working_days(start: date, days: int) -> date:
    current = start
    remaining = max(0, int(days))
    while remaining > 0:
        current += timedelta(days=1)
        if is_working_day(current):
            remaining -= 1
    return current


def delivery_date(today: date, lead_time_days: int | None, buffer_days: int = DEFAULT_DELIVERY_BUFFER_DAYS) -> date:
    """Calendar lead time, rolled onto a working day, then the working-day buffer.

    Monday 2024-01-01 with a 5 day lead time lands on Saturday the 6th, rolls
    to Monday the 8th and the 7 day buffer gives Wednesday 2024-01-17.
    """
    arrival = today + timedelta(days=max(0, int(lead_time_days or 0)))
    return add_working_days(next_working_day(arrival), buffer_days)


@dataclass(frozen=True)
class ItemAmounts:
    gross: float
    discount_amount: float
    net_amount: float
    tax_amount: float
    total_amount: float


def compute_item_amounts(
    *,
    quantity: float,
    unit_price: float,
    price_unit: float | None,
    discount_percent: float | None,
    tax_percent: float | None,
) -> ItemAmounts:
    per = Decimal(str(price_unit or 1)) or Decimal("1")
    gross = Decimal(str(quantity)) * Decimal(str(unit_price)) / per
    discount = gross * Decimal(str(discount_percent or 0)) / Decimal("100")
    net = gross - discount
    tax = net * Decimal(str(tax_percent or 0)) / Decimal("100")
    return ItemAmounts(
        gross=money(gross),
        discount_amount=money(discount),
        net_amount=money(net),
        tax_amount=money(tax),
        total_amount=money(net + tax),
    )


def quote_item_total(unit_price: float, quantity: float, discount_percent: float | None) -> float:
    gross = Decimal(str(unit_price)) * Decimal(str(quantity))
    return money(gross * (Decimal("1") - Decimal(str(discount_percent or 0)) / Decimal("100")))


def renumber(items: Iterable[POItem]) -> Tuple[POItem, ...]:
    return tuple(replace(item, line_no=(index + 1) * LINE_NO_STEP) for index, item in enumerate(items))


@dataclass(frozen=True)
class OrderTotals:
    sub_total: float
    total_tax: float
    grand_total: float
    expected_delivery_date: str | None


def order_totals(items: Iterable[POItem]) -> OrderTotals:
    """Aggregates from the full item list; never adjusted incrementally."""
    item_list = list(items)
    sub_total = money(sum(Decimal(str(item.net_amount)) for item in item_list))
    total_tax = money(sum(Decimal(str(item.tax_amount)) for item in item_list))
    dates = [item.delivery_date for item in item_list if item.delivery_date]
    return OrderTotals(
        sub_total=sub_total,
        total_tax=total_tax,
        grand_total=money(Decimal(str(sub_total)) + Decimal(str(total_tax))),
        expected_delivery_date=max(dates) if dates else None,
    )
