from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from categories import Category
from models import Granularity, TemplateKind


def coerce_date(value: Any) -> Optional[date]:
    """Read a stored date; ISO datetimes keep their date part.

    Returns None for missing or unparseable values instead of raising.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


class RecurringTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    kind: TemplateKind = TemplateKind.expense
    name: str
    amount_cents: int = Field(..., ge=0)
    category: str = Category.other.value
    frequency: str = "monthly"
    next_due_date: Optional[date] = None
    is_active: bool = True
    bank: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    last_paid_date: Optional[datetime] = None

    @field_validator("next_due_date", mode="before")
    @classmethod
    def _lenient_due_date(cls, value: Any) -> Optional[date]:
        return coerce_date(value)

    @field_validator("last_paid_date", mode="before")
    @classmethod
    def _lenient_paid_date(cls, value: Any) -> Optional[datetime]:
        if value is None or isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime.combine(value, datetime.min.time())
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None


class TransactionInstance(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    name: str
    amount_cents: int
    date: date
    category: str = Category.other.value
    bank: Optional[str] = None
    payment_method: Optional[str] = None
    notes: str = ""
    is_recurring_instance: bool = False
    currency: str = "INR"
    paid_by: str = ""
    is_settled: bool = True
    template_id: Optional[str] = None
    projected: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def _date_part(cls, value: Any) -> Any:
        parsed = coerce_date(value)
        return parsed if parsed is not None else value


class TemplateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., ge=0)
    category: str = Field(default=Category.other.value, max_length=100)
    frequency: str = "monthly"
    next_due_date: date
    is_active: bool = True
    bank: Optional[str] = Field(default=None, max_length=100)
    payment_method: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=200)


class MarkPaidResult(BaseModel):
    created: bool
    instance_id: str
    next_due_date: Optional[date] = None


class Bucket(BaseModel):
    label: str
    period_start: date
    period_end: date
    expense_cents: int = 0
    income_cents: int = 0
    transaction_count: int = 0

    @computed_field
    @property
    def savings_cents(self) -> int:
        return self.income_cents - self.expense_cents

    def contains(self, day: date) -> bool:
        return self.period_start <= day <= self.period_end


class DimensionTotal(BaseModel):
    key: str
    label: str
    amount_cents: int
    percentage: float


class TrendSummary(BaseModel):
    total_income_cents: int = 0
    total_expense_cents: int = 0
    total_savings_cents: int = 0
    average_income_cents: float = 0.0
    average_expense_cents: float = 0.0
    average_savings_cents: float = 0.0
    savings_rate: float = 0.0
    positive_periods: int = 0
    negative_periods: int = 0
    expense_trend_percentage: Optional[float] = None


class AggregationResult(BaseModel):
    granularity: Granularity
    interval_start: date
    interval_end: date
    buckets: list[Bucket] = Field(default_factory=list)
    category_totals: list[DimensionTotal] = Field(default_factory=list)
    bank_totals: list[DimensionTotal] = Field(default_factory=list)
    income_bank_totals: list[DimensionTotal] = Field(default_factory=list)
    summary: TrendSummary = Field(default_factory=TrendSummary)

