import os
import tempfile
from datetime import date
from typing import Optional

import pytest

# Settings are cached on first use, so point them at a scratch directory
# before any project module is imported.
_DATA_DIR = tempfile.mkdtemp(prefix="ledger-tests-")
os.environ.setdefault("LEDGER_DATA_DIR", _DATA_DIR)
os.environ.setdefault(
    "LEDGER_DATABASE_URL", f"sqlite:///{os.path.join(_DATA_DIR, 'ledger.db')}"
)

from models import TemplateKind  # noqa: E402
from schemas import RecurringTemplate  # noqa: E402
from services import template_from_document  # noqa: E402
from store import InMemoryDocumentStore  # noqa: E402


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def make_template(store):
    return lambda *args, **kwargs: add_template(store, *args, **kwargs)


def add_template(
    store,
    kind: TemplateKind = TemplateKind.expense,
    *,
    next_due_date: Optional[object] = date(2024, 1, 1),
    frequency: str = "monthly",
    template_id: Optional[str] = None,
    **fields,
) -> RecurringTemplate:
    data = {
        "user_id": "1",
        "kind": kind.value,
        "name": "Rent",
        "amount_cents": 1500000,
        "category": "rent",
        "frequency": frequency,
        "next_due_date": (
            next_due_date.isoformat()
            if isinstance(next_due_date, date)
            else next_due_date
        ),
        "is_active": True,
        "bank": "HDFC",
    }
    data.update(fields)
    doc = store.create_document(kind.collection, data, template_id)
    return template_from_document(doc)
