from collections import defaultdict
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Optional

from categories import describe, resolve_category
from models import Granularity
from recurrence import add_months
from schemas import (
    AggregationResult,
    Bucket,
    DimensionTotal,
    TransactionInstance,
    TrendSummary,
)


DAILY_MAX_DAYS = 31
WEEKLY_MAX_DAYS = 93
TREND_WINDOW = 3
UNSPECIFIED_BANK = "Unspecified"


def choose_granularity(interval_start: date, interval_end: date) -> Granularity:
    length = (interval_end - interval_start).days
    if length <= DAILY_MAX_DAYS:
        return Granularity.day
    if length <= WEEKLY_MAX_DAYS:
        return Granularity.week
    return Granularity.month


def seed_buckets(
    interval_start: date, interval_end: date, granularity: Granularity
) -> list[Bucket]:
    """Zeroed buckets covering the whole interval, oldest first."""
    buckets: list[Bucket] = []
    if interval_end < interval_start:
        return buckets
    if granularity == Granularity.day:
        current = interval_start
        while current <= interval_end:
            buckets.append(
                Bucket(
                    label=current.isoformat(),
                    period_start=current,
                    period_end=current,
                )
            )
            current += timedelta(days=1)
    elif granularity == Granularity.week:
        current = interval_start - timedelta(days=interval_start.weekday())
        while current <= interval_end:
            iso_year, iso_week, _ = current.isocalendar()
            buckets.append(
                Bucket(
                    label=f"{iso_year:04d}-W{iso_week:02d}",
                    period_start=current,
                    period_end=current + timedelta(days=6),
                )
            )
            current += timedelta(weeks=1)
    else:
        current = interval_start.replace(day=1)
        while current <= interval_end:
            following = add_months(current, 1)
            buckets.append(
                Bucket(
                    label=f"{current.year:04d}-{current.month:02d}",
                    period_start=current,
                    period_end=following - timedelta(days=1),
                )
            )
            current = following
    return buckets


def assign_bucket(buckets: list[Bucket], day: date) -> Optional[Bucket]:
    # Newest first, so a date on a shared boundary lands in the later period.
    for bucket in reversed(buckets):
        if bucket.contains(day):
            return bucket
    return None


def percentage(amount: int, total: int) -> float:
    if not total:
        return 0.0
    value = (Decimal(amount) * Decimal(100) / Decimal(total)).quantize(
        Decimal("0.1"), rounding=ROUND_HALF_UP
    )
    return float(value)


def dimension_totals(
    transactions: Iterable[TransactionInstance],
    key: Callable[[TransactionInstance], tuple[str, str]],
) -> list[DimensionTotal]:
    sums: dict[str, int] = defaultdict(int)
    labels: dict[str, str] = {}
    for txn in transactions:
        name, label = key(txn)
        sums[name] += abs(txn.amount_cents)
        labels[name] = label
    total = sum(sums.values())
    items = sorted(sums.items(), key=lambda item: (-item[1], item[0]))
    return [
        DimensionTotal(
            key=name,
            label=labels[name],
            amount_cents=amount,
            percentage=percentage(amount, total),
        )
        for name, amount in items
    ]


def _category_key(txn: TransactionInstance) -> tuple[str, str]:
    descriptor = describe(resolve_category(txn.category))
    return descriptor.category.value, descriptor.label


def _bank_key(txn: TransactionInstance) -> tuple[str, str]:
    bank = (txn.bank or "").strip() or UNSPECIFIED_BANK
    return bank, bank


def summarize(buckets: list[Bucket]) -> TrendSummary:
    if not buckets:
        return TrendSummary()
    total_income = sum(b.income_cents for b in buckets)
    total_expense = sum(b.expense_cents for b in buckets)
    total_savings = total_income - total_expense
    count = len(buckets)

    trend: Optional[float] = None
    if count >= TREND_WINDOW:
        recent = sum(b.expense_cents for b in buckets[-TREND_WINDOW:]) / TREND_WINDOW
        earlier_buckets = buckets[:-TREND_WINDOW]
        earlier = sum(b.expense_cents for b in earlier_buckets) / max(
            1, len(earlier_buckets)
        )
        if earlier > 0:
            trend = round((recent - earlier) / earlier * 100, 1)
        else:
            trend = 100.0 if recent > 0 else 0.0

    return TrendSummary(
        total_income_cents=total_income,
        total_expense_cents=total_expense,
        total_savings_cents=total_savings,
        average_income_cents=total_income / count,
        average_expense_cents=total_expense / count,
        average_savings_cents=total_savings / count,
        savings_rate=percentage(total_savings, total_income),
        positive_periods=sum(1 for b in buckets if b.savings_cents > 0),
        negative_periods=sum(1 for b in buckets if b.savings_cents < 0),
        expense_trend_percentage=trend,
    )


class TimeBucketAggregator:
    def aggregate(
        self,
        transactions: Iterable[TransactionInstance],
        interval_start: date,
        interval_end: date,
    ) -> AggregationResult:
        granularity = choose_granularity(interval_start, interval_end)
        in_range = [
            txn
            for txn in transactions
            if interval_start <= txn.date <= interval_end
        ]
        buckets = seed_buckets(interval_start, interval_end, granularity)
        for txn in in_range:
            bucket = assign_bucket(buckets, txn.date)
            if bucket is None:
                continue
            if txn.amount_cents >= 0:
                bucket.expense_cents += txn.amount_cents
            else:
                bucket.income_cents += -txn.amount_cents
            bucket.transaction_count += 1

        expenses = [txn for txn in in_range if txn.amount_cents >= 0]
        income = [txn for txn in in_range if txn.amount_cents < 0]
        return AggregationResult(
            granularity=granularity,
            interval_start=interval_start,
            interval_end=interval_end,
            buckets=buckets,
            category_totals=dimension_totals(expenses, _category_key),
            bank_totals=dimension_totals(expenses, _bank_key),
            income_bank_totals=dimension_totals(income, _bank_key),
            summary=summarize(buckets),
        )
