from datetime import date

import pytest
from conftest import add_template

from models import TemplateKind, TRANSACTIONS_COLLECTION
from recurrence import (
    CatchUpProcessor,
    InstanceProjector,
    advance,
    instance_id,
    merge_projected,
)
from services import (
    instance_from_document,
    process_past_due_allowances,
    process_past_due_recurring_expenses,
    template_from_document,
)
from store import InMemoryDocumentStore, StoreError


def _instances(store):
    docs = store.list_documents(TRANSACTIONS_COLLECTION, ordering=["date"])
    return [instance_from_document(doc) for doc in docs]


def _reload(store, template):
    return template_from_document(
        store.get_document(template.kind.collection, template.id)
    )


def test_advance_step_table():
    assert advance(date(2024, 1, 1), "daily") == date(2024, 1, 2)
    assert advance(date(2024, 1, 1), "weekly") == date(2024, 1, 8)
    assert advance(date(2024, 1, 15), "monthly") == date(2024, 2, 15)
    assert advance(date(2024, 3, 10), "yearly") == date(2025, 3, 10)


def test_advance_clamps_to_month_end():
    assert advance(date(2024, 1, 31), "monthly") == date(2024, 2, 29)
    assert advance(date(2023, 1, 31), "monthly") == date(2023, 2, 28)
    assert advance(date(2024, 2, 29), "yearly") == date(2025, 2, 28)
    assert advance(date(2024, 12, 31), "monthly") == date(2025, 1, 31)


def test_advance_unknown_frequency_steps_monthly():
    assert advance(date(2024, 1, 1), "fortnightly") == date(2024, 2, 1)
    assert advance(date(2024, 1, 1), None) == date(2024, 2, 1)


def test_catch_up_monthly_scenario(store, make_template):
    template = make_template(next_due_date=date(2024, 1, 1))

    changed = CatchUpProcessor(store).process(
        [template], "1", "Asha", today=date(2024, 4, 15)
    )

    assert changed is True
    instances = _instances(store)
    assert [txn.date for txn in instances] == [
        date(2024, 1, 1),
        date(2024, 2, 1),
        date(2024, 3, 1),
        date(2024, 4, 1),
    ]
    assert all(txn.is_recurring_instance for txn in instances)
    assert all(txn.amount_cents == 1500000 for txn in instances)
    assert instances[0].id == f"rec_{template.id}_20240101"
    assert instances[0].paid_by == "Asha"
    assert instances[0].notes == "Recurring expense paid for monthly period."

    updated = _reload(store, template)
    assert updated.next_due_date == date(2024, 5, 1)
    assert updated.last_paid_date is not None
    assert updated.last_paid_date.date() == date(2024, 4, 15)


def test_catch_up_instance_count_matches_steps_before_today(store, make_template):
    template = make_template(next_due_date=date(2024, 3, 1), frequency="daily")

    CatchUpProcessor(store).process([template], "1", "Asha", today=date(2024, 3, 10))

    assert len(_instances(store)) == 9
    assert _reload(store, template).next_due_date == date(2024, 3, 10)


def test_catch_up_weekly_lands_on_first_step_not_before_today(store, make_template):
    template = make_template(next_due_date=date(2024, 6, 3), frequency="weekly")

    CatchUpProcessor(store).process([template], "1", "Asha", today=date(2024, 6, 17))

    assert [txn.date for txn in _instances(store)] == [
        date(2024, 6, 3),
        date(2024, 6, 10),
    ]
    assert _reload(store, template).next_due_date == date(2024, 6, 17)


def test_catch_up_skips_inactive_missing_and_current(store, make_template):
    inactive = make_template(is_active=False)
    missing = make_template(next_due_date=None)
    garbage = make_template(next_due_date="not-a-date")
    current = make_template(next_due_date=date(2024, 4, 15))

    changed = CatchUpProcessor(store).process(
        [inactive, missing, garbage, current], "1", "Asha", today=date(2024, 4, 15)
    )

    assert changed is False
    assert _instances(store) == []
    assert _reload(store, current).next_due_date == date(2024, 4, 15)
    assert garbage.next_due_date is None


def test_catch_up_allowance_produces_income(store, make_template):
    template = make_template(
        TemplateKind.allowance,
        name="Pocket money",
        amount_cents=500000,
        category="allowance",
        next_due_date=date(2024, 1, 1),
    )

    changed = process_past_due_allowances(
        store, [template], "1", "Asha", today=date(2024, 2, 15)
    )

    assert changed is True
    instances = _instances(store)
    assert [txn.amount_cents for txn in instances] == [-500000, -500000]
    assert instances[0].notes == "Allowance received for monthly period."
    updated = _reload(store, template)
    assert updated.next_due_date == date(2024, 3, 1)
    assert updated.last_paid_date is None


def test_entry_points_only_process_their_own_kind(store, make_template):
    allowance = make_template(TemplateKind.allowance, next_due_date=date(2024, 1, 1))
    expense = make_template(next_due_date=date(2024, 1, 1))

    changed = process_past_due_recurring_expenses(
        store, [allowance, expense], "1", "Asha", today=date(2024, 1, 15)
    )

    assert changed is True
    assert [txn.template_id for txn in _instances(store)] == [expense.id]
    assert _reload(store, allowance).next_due_date == date(2024, 1, 1)


def test_catch_up_replay_after_stale_pointer_does_not_duplicate(store, make_template):
    template = make_template(next_due_date=date(2024, 1, 1))
    processor = CatchUpProcessor(store)
    processor.process([template], "1", "Asha", today=date(2024, 4, 15))

    # Pointer never advanced: the same occurrences are walked again.
    processor.process([template], "1", "Asha", today=date(2024, 4, 15))

    assert len(_instances(store)) == 4
    assert _reload(store, template).next_due_date == date(2024, 5, 1)


class FailingCreateStore(InMemoryDocumentStore):
    def __init__(self, failing_template_id: str) -> None:
        super().__init__()
        self.failing_template_id = failing_template_id

    def create_document(self, collection, fields, document_id=None):
        if fields.get("template_id") == self.failing_template_id:
            raise StoreError("network down")
        return super().create_document(collection, fields, document_id)


def test_write_failure_is_isolated_to_its_template():
    store = FailingCreateStore("broken")

    broken = add_template(store, template_id="broken", next_due_date=date(2024, 1, 1))
    healthy = add_template(store, template_id="ok", next_due_date=date(2024, 1, 1))

    changed = CatchUpProcessor(store).process(
        [broken, healthy], "1", "Asha", today=date(2024, 3, 15)
    )

    assert changed is True
    assert {txn.template_id for txn in _instances(store)} == {"ok"}
    assert _reload(store, broken).next_due_date == date(2024, 1, 1)
    assert _reload(store, healthy).next_due_date == date(2024, 4, 1)


def test_projector_weekly_scenario(store, make_template):
    template = make_template(next_due_date=date(2024, 6, 3), frequency="weekly")

    projected = InstanceProjector("Asha").project(
        template, date(2024, 6, 10), date(2024, 6, 24)
    )

    assert [txn.date for txn in projected] == [
        date(2024, 6, 10),
        date(2024, 6, 17),
        date(2024, 6, 24),
    ]
    assert all(txn.is_recurring_instance and txn.projected for txn in projected)
    assert projected[0].id == f"projected_{template.id}_20240610"
    assert projected[0].notes == "Scheduled: Rent"
    assert _instances(store) == []


def test_projector_starts_from_due_date_inside_interval(make_template):
    template = make_template(next_due_date=date(2024, 7, 1))

    projected = InstanceProjector().project(
        template, date(2024, 6, 1), date(2024, 9, 30)
    )

    assert [txn.date for txn in projected] == [
        date(2024, 7, 1),
        date(2024, 8, 1),
        date(2024, 9, 1),
    ]


@pytest.mark.parametrize("overrides", [{"is_active": False}, {"next_due_date": None}])
def test_projector_ignores_unusable_templates(make_template, overrides):
    template = make_template(**overrides)

    assert InstanceProjector().project(template, date(2024, 1, 1), date(2024, 12, 31)) == []


def test_merge_projected_drops_materialized_dates(store, make_template):
    template = make_template(next_due_date=date(2024, 1, 1))
    CatchUpProcessor(store).process([template], "1", "Asha", today=date(2024, 2, 15))
    persisted = _instances(store)
    projected = InstanceProjector().project(
        template,
        date(2024, 1, 1),
        date(2024, 3, 31),
    )

    merged = merge_projected(persisted, projected)

    assert sorted(txn.id for txn in merged) == sorted(
        [
            instance_id(template.id, date(2024, 1, 1)),
            instance_id(template.id, date(2024, 2, 1)),
            f"projected_{template.id}_20240301",
        ]
    )
