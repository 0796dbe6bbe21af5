"""KPI formulas. Inputs are integer cents; percentages are 0-100 floats.

Ratios whose denominator is zero return ``None`` (undefined) unless noted.
"""

from typing import Optional


def savings_ratio(income_cents: int, savings_cents: int) -> float:
    if income_cents == 0:
        return 0.0
    return savings_cents / income_cents * 100


def runway_months(liquid_cents: int, avg_monthly_burn_cents: float) -> Optional[float]:
    # No burn means an unbounded runway.
    if not avg_monthly_burn_cents:
        return None
    return liquid_cents / avg_monthly_burn_cents


def budget_consumption(spent_cents: int, budget_cents: int) -> Optional[float]:
    if budget_cents <= 0:
        return None
    return spent_cents / budget_cents * 100


def credit_utilization(used_cents: int, limit_cents: Optional[int]) -> float:
    if not limit_cents:
        return 0.0
    return used_cents / limit_cents * 100


def month_over_month(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def roi_percent(revenue_cents: int, spend_cents: int) -> Optional[float]:
    if spend_cents == 0:
        return None
    return (revenue_cents - spend_cents) / spend_cents * 100


def cac(spend_cents: int, sales_count: int) -> Optional[float]:
    if sales_count == 0:
        return None
    return spend_cents / sales_count


def average_ticket(revenue_cents: int, sales_count: int) -> Optional[float]:
    if sales_count == 0:
        return None
    return revenue_cents / sales_count


def minutes_to_hours(minutes: int) -> float:
    return round(minutes / 60, 1)


def round_optional(value: Optional[float], digits: int = 1) -> Optional[float]:
    return None if value is None else round(value, digits)


def share(part_cents: int, total_cents: int) -> float:
    if total_cents == 0:
        return 0.0
    return part_cents / total_cents * 100


def cumulative_percentages(values: list[int]) -> list[float]:
    """Running share of the total, for Pareto charts. Feed values sorted descending."""
    total = sum(values)
    if total == 0:
        return [0.0 for _ in values]
    accumulated = 0
    result = []
    for value in values:
        accumulated += value
        result.append(accumulated / total * 100)
    return result
