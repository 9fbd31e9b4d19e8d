from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from aggregation import TimeBucketAggregator
from categories import describe, resolve_category
from config import get_settings
from models import (
    Frequency,
    TemplateKind,
    TRANSACTIONS_COLLECTION,
)
from periods import Period
from recurrence import (
    CatchUpProcessor,
    IdempotentInstanceWriter,
    InstanceProjector,
    add_months,
    local_today,
    merge_projected,
)
from schemas import (
    AggregationResult,
    MarkPaidResult,
    RecurringTemplate,
    TemplateIn,
    TransactionInstance,
)
from store import Document, DocumentStore


logger = logging.getLogger(__name__)


def get_current_user_id() -> str:
    return get_settings().user_id


def get_current_user_name() -> str:
    return get_settings().user_name


def template_from_document(doc: Document) -> RecurringTemplate:
    return RecurringTemplate.model_validate({**doc.data, "id": doc.id})


def instance_from_document(doc: Document) -> TransactionInstance:
    return TransactionInstance.model_validate({**doc.data, "id": doc.id})


def process_past_due_allowances(
    store: DocumentStore,
    templates: Iterable[RecurringTemplate],
    user_id: str,
    user_name: str,
    today: Optional[date] = None,
) -> bool:
    allowances = [t for t in templates if t.kind == TemplateKind.allowance]
    return CatchUpProcessor(store).process(allowances, user_id, user_name, today)


def process_past_due_recurring_expenses(
    store: DocumentStore,
    templates: Iterable[RecurringTemplate],
    user_id: str,
    user_name: str,
    today: Optional[date] = None,
) -> bool:
    expenses = [t for t in templates if t.kind == TemplateKind.expense]
    return CatchUpProcessor(store).process(expenses, user_id, user_name, today)


def mark_recurring_expense_paid(
    store: DocumentStore,
    template: RecurringTemplate,
    due_date: Optional[date] = None,
    user_name: Optional[str] = None,
) -> MarkPaidResult:
    return IdempotentInstanceWriter(store).mark_paid(
        template, due_date, user_name=user_name
    )


def aggregate(
    transactions: Iterable[TransactionInstance], interval: Period
) -> AggregationResult:
    return TimeBucketAggregator().aggregate(transactions, interval.start, interval.end)


@dataclass
class TransactionFilters:
    query: Optional[str] = None
    category: Optional[str] = None
    bank: Optional[str] = None

    def matches(self, txn: TransactionInstance) -> bool:
        if self.query:
            needle = self.query.strip().lower()
            haystack = [txn.name, txn.notes, txn.category, txn.bank or ""]
            if not any(needle in (value or "").lower() for value in haystack):
                return False
        if self.category and txn.category != self.category:
            return False
        if self.bank and txn.bank != self.bank:
            return False
        return True


class RecurringTemplateService:
    def __init__(self, store: DocumentStore, user_id: Optional[str] = None) -> None:
        self.store = store
        self.user_id = user_id or get_current_user_id()

    def get(self, kind: TemplateKind, template_id: str) -> RecurringTemplate:
        template = template_from_document(
            self.store.get_document(kind.collection, template_id)
        )
        if template.user_id != self.user_id:
            raise ValueError("Template not found")
        return template

    def list(self, kind: TemplateKind) -> list[RecurringTemplate]:
        docs = self.store.list_documents(
            kind.collection,
            filters={"user_id": self.user_id},
            ordering=["next_due_date"],
        )
        return [template_from_document(doc) for doc in docs]

    def list_all(self) -> list[RecurringTemplate]:
        return self.list(TemplateKind.allowance) + self.list(TemplateKind.expense)

    def create(self, kind: TemplateKind, data: TemplateIn) -> RecurringTemplate:
        fields = data.model_dump(mode="json")
        fields["frequency"] = Frequency.parse(data.frequency).value
        fields["category"] = resolve_category(data.category).value
        fields["user_id"] = self.user_id
        fields["kind"] = kind.value
        doc = self.store.create_document(kind.collection, fields)
        return template_from_document(doc)

    def toggle(
        self, kind: TemplateKind, template_id: str, is_active: bool
    ) -> RecurringTemplate:
        self.get(kind, template_id)
        doc = self.store.update_document(
            kind.collection, template_id, {"is_active": is_active}
        )
        return template_from_document(doc)

    def delete(self, kind: TemplateKind, template_id: str) -> None:
        self.get(kind, template_id)
        self.store.delete_document(kind.collection, template_id)

    def get_statistics(self) -> dict[str, object]:
        def monthly_amount(template: RecurringTemplate) -> int:
            amount = template.amount_cents
            frequency = Frequency.parse(template.frequency)
            if frequency == Frequency.daily:
                return int(amount * 30.44)
            if frequency == Frequency.weekly:
                return int(amount * 4.35)
            if frequency == Frequency.yearly:
                return int(amount / 12)
            return amount

        total_income = 0
        total_expenses = 0
        expense_by_category: dict[str, int] = {}
        income_count = 0
        expense_count = 0

        for template in self.list_all():
            if not template.is_active:
                continue
            monthly = monthly_amount(template)
            if template.kind == TemplateKind.allowance:
                total_income += monthly
                income_count += 1
            else:
                total_expenses += monthly
                expense_count += 1
                label = describe(resolve_category(template.category)).label
                expense_by_category[label] = expense_by_category.get(label, 0) + monthly

        coverage_ratio = (
            (total_income / total_expenses * 100) if total_expenses > 0 else 100.0
        )
        items = sorted(expense_by_category.items(), key=lambda x: x[1], reverse=True)
        return {
            "total_monthly_income": total_income,
            "total_monthly_expenses": total_expenses,
            "net_monthly": total_income - total_expenses,
            "coverage_ratio": coverage_ratio,
            "expense_breakdown": [
                {
                    "name": name,
                    "amount_cents": amount,
                    "percent": (amount / total_expenses * 100) if total_expenses else 0,
                }
                for name, amount in items
            ],
            "template_counts": {
                "allowance": income_count,
                "expense": expense_count,
                "total": income_count + expense_count,
            },
        }

    def mark_paid(
        self, template_id: str, due_date: Optional[date] = None
    ) -> MarkPaidResult:
        template = self.get(TemplateKind.expense, template_id)
        return mark_recurring_expense_paid(
            self.store, template, due_date, user_name=get_current_user_name()
        )

    def catch_up(self, today: Optional[date] = None) -> bool:
        """Runs both catch-up passes for this user; True if anything changed."""
        user_name = get_current_user_name()
        allowances = self.list(TemplateKind.allowance)
        expenses = self.list(TemplateKind.expense)
        changed_allowances = process_past_due_allowances(
            self.store, allowances, self.user_id, user_name, today
        )
        changed_expenses = process_past_due_recurring_expenses(
            self.store, expenses, self.user_id, user_name, today
        )
        logger.info(
            f"catch_up: user={self.user_id} allowances_changed={changed_allowances} "
            f"expenses_changed={changed_expenses}"
        )
        return changed_allowances or changed_expenses

    def projection(
        self, kind: TemplateKind, template_id: str, period: Period
    ) -> list[TransactionInstance]:
        template = self.get(kind, template_id)
        return InstanceProjector(get_current_user_name()).project(
            template, period.start, period.end
        )


class TransactionService:
    def __init__(self, store: DocumentStore, user_id: Optional[str] = None) -> None:
        self.store = store
        self.user_id = user_id or get_current_user_id()

    def persisted(self) -> list[TransactionInstance]:
        docs = self.store.list_documents(
            TRANSACTIONS_COLLECTION,
            filters={"user_id": self.user_id},
            ordering=["-date"],
        )
        return [instance_from_document(doc) for doc in docs]

    def projected(self, start: date, end: date) -> list[TransactionInstance]:
        templates = RecurringTemplateService(self.store, self.user_id).list_all()
        return InstanceProjector(get_current_user_name()).project_all(
            templates, start, end
        )

    def feed(
        self,
        period: Period,
        filters: Optional[TransactionFilters] = None,
        *,
        include_projected: bool = True,
        today: Optional[date] = None,
    ) -> list[TransactionInstance]:
        """Transactions in ``period``, newest first.

        Projections are limited to the configured window around today so an
        open-ended period does not expand templates indefinitely.
        """
        filters = filters or TransactionFilters()
        items = self.persisted()
        if include_projected:
            today = today or local_today()
            months = get_settings().projection_months
            window_start = max(period.start, add_months(today, -months))
            window_end = min(period.end, add_months(today, months))
            if window_start <= window_end:
                items = merge_projected(
                    items, self.projected(window_start, window_end)
                )
        selected = [
            txn
            for txn in items
            if period.start <= txn.date <= period.end and filters.matches(txn)
        ]
        selected.sort(key=lambda txn: (txn.date, txn.id), reverse=True)
        return selected


class AnalyticsService:
    def __init__(self, store: DocumentStore, user_id: Optional[str] = None) -> None:
        self.store = store
        self.user_id = user_id or get_current_user_id()

    def analytics(
        self,
        period: Period,
        filters: Optional[TransactionFilters] = None,
        *,
        include_projected: bool = False,
    ) -> AggregationResult:
        filters = filters or TransactionFilters()
        service = TransactionService(self.store, self.user_id)
        items = service.persisted()
        if include_projected:
            items = merge_projected(items, service.projected(period.start, period.end))
        selected = [txn for txn in items if filters.matches(txn)]
        return aggregate(selected, period)

