from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from budget_manager.currency import amount_class_name, format_cents_as_currency
from budget_manager.dates import parse_iso, to_iso

UNCATEGORIZED_LABEL = "Uncategorized"
UNKNOWN_ACCOUNT_LABEL = "Unknown Account"
CLASSIFICATIONS = ("income", "expense")


class TransactionViewModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    created_at_iso: str = Field(alias="createdAtISO")
    transaction_date_iso: str = Field(alias="transactionDateISO")
    description: str
    account_name: str = Field(alias="accountName")
    account_id: str = Field(alias="accountId")
    category_name: str = Field(alias="categoryName")
    category_id: Optional[str] = Field(default=None, alias="categoryId")
    type: Literal["income", "expense"]
    amount_cents: int = Field(alias="amountCents")
    amount_formatted: str = Field(alias="amountFormatted")
    amount_class_name: str = Field(alias="amountClassName")


class SummaryDTO(BaseModel):
    total_cents: int
    transaction_count: int
    period_start: datetime
    period_end: datetime


class SummaryViewModel(BaseModel):
    kind: Literal["income", "expense"]
    total_cents: int
    total_formatted: str
    transaction_count: int
    period_start_iso: str
    period_end_iso: str


@dataclass(frozen=True)
class SummaryResult:
    total_cents: int
    count: int
    period_start: datetime
    period_end: datetime

    def to_dto(self) -> SummaryDTO:
        return SummaryDTO(
            total_cents=self.total_cents,
            transaction_count=self.count,
            period_start=self.period_start,
            period_end=self.period_end,
        )

    def to_view_model(self, kind: str) -> SummaryViewModel:
        return SummaryViewModel(
            kind=kind,
            total_cents=self.total_cents,
            total_formatted=format_cents_as_currency(self.total_cents),
            transaction_count=self.count,
            period_start_iso=to_iso(self.period_start),
            period_end_iso=to_iso(self.period_end),
        )


def map_to_view_model(
    record: Mapping, uncategorized_label: str = UNCATEGORIZED_LABEL
) -> TransactionViewModel:
    """Project a stored transaction row onto its display form.

    ``record`` carries the embedded relations the way the store returns them:
    ``accounts`` is ``{"name": ...}`` and ``categories`` is ``{"name": ...}``
    or ``None`` when the transaction is uncategorized.
    """
    account = record.get("accounts") or {}
    category = record.get("categories") or {}
    transaction_type = record["transaction_type"]
    amount_cents = record["amount_cents"]
    return TransactionViewModel(
        id=str(record["id"]),
        created_at_iso=_iso_value(record.get("created_at")),
        transaction_date_iso=_iso_value(record.get("transaction_date")),
        description=record.get("description") or "",
        account_name=account.get("name") or UNKNOWN_ACCOUNT_LABEL,
        account_id=str(record["account_id"]),
        category_name=category.get("name") or uncategorized_label,
        category_id=record.get("category_id"),
        type=transaction_type,
        amount_cents=amount_cents,
        amount_formatted=format_cents_as_currency(amount_cents),
        amount_class_name=amount_class_name(transaction_type),
    )


def map_to_view_models(
    records: Iterable[Mapping], uncategorized_label: str = UNCATEGORIZED_LABEL
) -> list[TransactionViewModel]:
    return [map_to_view_model(record, uncategorized_label) for record in records]


def aggregate_summary(
    records: Iterable[Mapping],
    classification: str,
    start: datetime,
    end: datetime,
) -> SummaryResult:
    if classification not in CLASSIFICATIONS:
        raise ValueError(f"Unsupported classification: {classification}")
    if start > end:
        raise ValueError("start must be on or before end.")

    total_cents = 0
    count = 0
    for record in records:
        if record.get("transaction_type") != classification:
            continue
        occurred_at = _datetime_value(record.get("transaction_date"))
        if occurred_at is None or not start <= occurred_at <= end:
            continue
        total_cents += _coerce_cents(record.get("amount_cents"))
        count += 1

    return SummaryResult(
        total_cents=total_cents,
        count=count,
        period_start=start,
        period_end=end,
    )


def _iso_value(value: datetime | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return to_iso(value)
    return str(value)


def _datetime_value(value: datetime | str | None) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return parse_iso(value)
    return None


def _coerce_cents(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("amount_cents must be an integer.")
    return value
