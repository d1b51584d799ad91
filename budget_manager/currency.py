from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

AMOUNT_DOLLARS_PATTERN = re.compile(r"\d{1,9}(?:\.\d{1,2})?", re.ASCII)
CURRENCY_SYMBOL = "$"
CENTS_PER_DOLLAR = 100
# Upper bound of the stored money_cents domain ($999,999.99).
MAX_AMOUNT_CENTS = 99_999_999

INCOME_CLASS_NAME = "text-green-600"
EXPENSE_CLASS_NAME = "text-red-600"


class InvalidAmountFormat(ValueError):
    """Raised when a dollar string is not a positive amount with at most 2 decimals."""

    def __init__(self, message: str = "Enter a valid amount (max 2 decimals).") -> None:
        super().__init__(message)


def parse_dollars_to_cents(value: str) -> int:
    """Convert a user-entered dollar string such as ``"1500.00"`` to integer cents.

    Integer amounts (``"1500"``) are accepted; more than two fractional digits,
    signs, exponents, separators and surrounding whitespace are not.
    """
    if not isinstance(value, str) or not AMOUNT_DOLLARS_PATTERN.fullmatch(value):
        raise InvalidAmountFormat()
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise InvalidAmountFormat() from exc
    if amount <= 0:
        raise InvalidAmountFormat("Amount must be greater than 0.")
    return int(amount * CENTS_PER_DOLLAR)


def cents_to_dollars(cents: int) -> str:
    dollars, remainder = divmod(_coerce_cents(cents), CENTS_PER_DOLLAR)
    return f"{dollars}.{remainder:02d}"


def format_cents_as_currency(cents: int) -> str:
    """Render cents as ``$1,234.56``.

    The magnitude is rendered; income/expense meaning lives in the
    transaction type, not in the sign.
    """
    dollars, remainder = divmod(abs(_coerce_cents(cents)), CENTS_PER_DOLLAR)
    return f"{CURRENCY_SYMBOL}{dollars:,}.{remainder:02d}"


def amount_class_name(transaction_type: str) -> str:
    return INCOME_CLASS_NAME if transaction_type == "income" else EXPENSE_CLASS_NAME


def _coerce_cents(cents: int) -> int:
    if isinstance(cents, bool) or not isinstance(cents, int):
        raise TypeError("Amount in cents must be an integer.")
    return cents
