import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import Frequency, TemplateKind, TRANSACTIONS_COLLECTION
from schemas import (
    MarkPaidResult,
    RecurringTemplate,
    TransactionInstance,
    coerce_date,
)
from store import AlreadyExists, DocumentStore, NotFound, StoreError


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def local_now() -> datetime:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone))


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def advance(from_date: date, frequency: object) -> date:
    """Step one occurrence forward; unknown frequencies step monthly."""
    unit = Frequency.parse(frequency)
    if unit == Frequency.daily:
        return from_date + timedelta(days=1)
    if unit == Frequency.weekly:
        return from_date + timedelta(weeks=1)
    if unit == Frequency.yearly:
        return add_months(from_date, 12)
    return add_months(from_date, 1)


def instance_id(template_id: str, due_date: date) -> str:
    return f"rec_{template_id}_{due_date.strftime('%Y%m%d')}"


def projected_instance_id(template_id: str, due_date: date) -> str:
    return f"projected_{template_id}_{due_date.strftime('%Y%m%d')}"


def default_notes(template: RecurringTemplate) -> str:
    frequency = Frequency.parse(template.frequency).value
    if template.kind == TemplateKind.allowance:
        return f"Allowance received for {frequency} period."
    return f"Recurring expense paid for {frequency} period."


def signed_amount(template: RecurringTemplate) -> int:
    if template.kind == TemplateKind.allowance:
        return -abs(template.amount_cents)
    return abs(template.amount_cents)


def build_instance(
    template: RecurringTemplate,
    due_date: date,
    *,
    user_id: str,
    user_name: str,
) -> TransactionInstance:
    settings = get_settings()
    return TransactionInstance(
        id=instance_id(template.id, due_date),
        user_id=user_id,
        name=template.name,
        amount_cents=signed_amount(template),
        date=due_date,
        category=template.category,
        bank=template.bank,
        payment_method=template.payment_method,
        notes=template.notes or default_notes(template),
        is_recurring_instance=True,
        currency=settings.currency,
        paid_by=user_name,
        is_settled=True,
        template_id=template.id,
    )


def instance_fields(instance: TransactionInstance) -> dict[str, object]:
    return instance.model_dump(mode="json", exclude={"id"})


class CatchUpProcessor:
    """Materializes every missed occurrence of a set of templates.

    Each template is caught up in two phases: its missed instances are
    written one by one, then its ``next_due_date`` pointer is advanced. The
    phases are separate writes, so a crash between them leaves the pointer
    stale and the next run walks the same dates again. Instance ids are
    derived from ``(template_id, due_date)``, so that replay is answered with
    AlreadyExists and skipped rather than duplicated.
    """

    def __init__(self, store: DocumentStore, max_workers: Optional[int] = None) -> None:
        self.store = store
        self.max_workers = max_workers or get_settings().catch_up_workers

    def process(
        self,
        templates: Iterable[RecurringTemplate],
        user_id: str,
        user_name: str,
        today: Optional[date] = None,
    ) -> bool:
        today = today or local_today()
        templates = list(templates)
        if not templates:
            return False
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [
                pool.submit(self.catch_up_template, template, user_id, user_name, today)
                for template in templates
            ]
        return any([future.result() for future in futures])

    def catch_up_template(
        self,
        template: RecurringTemplate,
        user_id: str,
        user_name: str,
        today: date,
    ) -> bool:
        if not template.is_active:
            return False
        if template.next_due_date is None:
            logger.debug(f"catch_up: template={template.id} skipped, no due date")
            return False
        if template.next_due_date >= today:
            return False

        cursor = template.next_due_date
        written = 0
        while cursor < today:
            instance = build_instance(
                template, cursor, user_id=user_id, user_name=user_name
            )
            try:
                self.store.create_document(
                    TRANSACTIONS_COLLECTION, instance_fields(instance), instance.id
                )
                written += 1
            except AlreadyExists:
                logger.info(
                    f"catch_up: template={template.id} date={cursor.isoformat()} "
                    "already recorded"
                )
            except StoreError:
                logger.exception(
                    f"catch_up: template={template.id} date={cursor.isoformat()} "
                    "instance write failed, leaving pointer unchanged"
                )
                return written > 0
            cursor = advance(cursor, template.frequency)

        update: dict[str, object] = {"next_due_date": cursor.isoformat()}
        if template.kind == TemplateKind.expense:
            update["last_paid_date"] = datetime.combine(
                today, datetime.min.time()
            ).isoformat()
        try:
            self.store.update_document(template.kind.collection, template.id, update)
        except StoreError:
            logger.exception(
                f"catch_up: template={template.id} pointer update to "
                f"{cursor.isoformat()} failed"
            )
            return written > 0

        logger.info(
            f"catch_up: template={template.id} instances={written} "
            f"next_due_date={cursor.isoformat()}"
        )
        return True


class IdempotentInstanceWriter:
    """Records a single occurrence as paid, at most once per due date.

    The lookup and the create are separate calls. Two sessions marking the
    same occurrence at once can both pass the lookup; the store then rejects
    the second create with AlreadyExists and that caller reports
    ``created=False``.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def _stored_next_due(self, template: RecurringTemplate) -> Optional[date]:
        """The pointer as stored, which may be ahead of the caller's copy."""
        doc = self.store.get_document(template.kind.collection, template.id)
        return coerce_date(doc.data.get("next_due_date"))

    def mark_paid(
        self,
        template: RecurringTemplate,
        due_date: Optional[date] = None,
        *,
        user_name: Optional[str] = None,
    ) -> MarkPaidResult:
        due_date = due_date or template.next_due_date
        if due_date is None:
            raise ValueError("Template has no due date to mark as paid")
        record_id = instance_id(template.id, due_date)

        try:
            self.store.get_document(TRANSACTIONS_COLLECTION, record_id)
        except NotFound:
            pass
        else:
            logger.info(f"mark_paid: {record_id} already recorded")
            return MarkPaidResult(
                created=False,
                instance_id=record_id,
                next_due_date=self._stored_next_due(template),
            )

        instance = build_instance(
            template,
            due_date,
            user_id=template.user_id,
            user_name=user_name or get_settings().user_name,
        )
        try:
            self.store.create_document(
                TRANSACTIONS_COLLECTION, instance_fields(instance), record_id
            )
        except AlreadyExists:
            logger.info(f"mark_paid: {record_id} recorded concurrently")
            return MarkPaidResult(
                created=False,
                instance_id=record_id,
                next_due_date=self._stored_next_due(template),
            )

        next_due = advance(due_date, template.frequency)
        if template.next_due_date is not None and next_due < template.next_due_date:
            next_due = template.next_due_date
        self.store.update_document(
            template.kind.collection,
            template.id,
            {
                "next_due_date": next_due.isoformat(),
                "last_paid_date": local_now().isoformat(),
            },
        )
        logger.info(f"mark_paid: {record_id} created next_due_date={next_due}")
        return MarkPaidResult(
            created=True, instance_id=record_id, next_due_date=next_due
        )


class InstanceProjector:
    """Expands a template into virtual instances; never writes."""

    def __init__(self, user_name: str = "", currency: Optional[str] = None) -> None:
        self.user_name = user_name
        self.currency = currency or get_settings().currency

    def project(
        self,
        template: RecurringTemplate,
        interval_start: date,
        interval_end: date,
    ) -> list[TransactionInstance]:
        if not template.is_active or template.next_due_date is None:
            return []
        cursor = template.next_due_date
        while cursor < interval_start:
            cursor = advance(cursor, template.frequency)

        projected: list[TransactionInstance] = []
        while cursor <= interval_end:
            projected.append(
                TransactionInstance(
                    id=projected_instance_id(template.id, cursor),
                    user_id=template.user_id,
                    name=template.name,
                    amount_cents=signed_amount(template),
                    date=cursor,
                    category=template.category,
                    bank=template.bank,
                    payment_method=template.payment_method or "Auto-Pay",
                    notes=template.notes or f"Scheduled: {template.name}",
                    is_recurring_instance=True,
                    currency=self.currency,
                    paid_by=self.user_name,
                    is_settled=False,
                    template_id=template.id,
                    projected=True,
                )
            )
            cursor = advance(cursor, template.frequency)
        return projected

    def project_all(
        self,
        templates: Iterable[RecurringTemplate],
        interval_start: date,
        interval_end: date,
    ) -> list[TransactionInstance]:
        out: list[TransactionInstance] = []
        for template in templates:
            out.extend(self.project(template, interval_start, interval_end))
        return out


def merge_projected(
    persisted: Iterable[TransactionInstance],
    projected: Iterable[TransactionInstance],
) -> list[TransactionInstance]:
    """Persisted instances plus projections not yet materialized."""
    merged = list(persisted)
    recorded = {txn.id for txn in merged}
    for txn in projected:
        if txn.template_id and instance_id(txn.template_id, txn.date) in recorded:
            continue
        merged.append(txn)
    return merged
