from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


ALLOWANCES_COLLECTION = "allowances"
RECURRING_EXPENSES_COLLECTION = "recurring_expenses"
TRANSACTIONS_COLLECTION = "transactions"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"

    @classmethod
    def parse(cls, value: object) -> "Frequency":
        """Unknown or missing values fall back to monthly."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.monthly


class TemplateKind(str, Enum):
    allowance = "allowance"
    expense = "expense"

    @property
    def collection(self) -> str:
        if self == TemplateKind.allowance:
            return ALLOWANCES_COLLECTION
        return RECURRING_EXPENSES_COLLECTION


class Granularity(str, Enum):
    day = "day"
    week = "week"
    month = "month"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class DocumentRow(Base, TimestampMixin):
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_documents_collection_user", "collection", "user_id"),
    )
