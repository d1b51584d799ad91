"""Validation schemas for auth, transaction, account, category and summary commands.

Each schema is a pydantic model. Callers use the module-level ``validate_*``
helpers (or ``<Schema>.check``), which never raise: they return either
``Valid(command)`` or ``Invalid(errors)`` with every field error collected.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Literal, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import (
    AnyUrl,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    StrictBool,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError

from budget_manager.currency import InvalidAmountFormat, parse_dollars_to_cents
from budget_manager.dates import parse_iso, parse_ui_date, to_naive_utc
from budget_manager.postgrest import is_valid_uuid
from budget_manager.results import ValidationResult, validate_model

PASSWORD_MIN_LENGTH = 8
# bcrypt rejects passwords longer than 72 bytes.
PASSWORD_MAX_BYTES = 72
DESCRIPTION_MAX_LENGTH = 255
NAME_MAX_LENGTH = 100

TransactionType = Literal["income", "expense"]
AccountType = Literal["checking", "savings", "credit_card", "cash", "investment"]

_LETTER = re.compile(r"[A-Za-z]")
_DIGIT = re.compile(r"\d", re.ASCII)
_URL_ADAPTER = TypeAdapter(AnyUrl)


def _check_email(value: str) -> str:
    try:
        result = validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise PydanticCustomError("invalid_email", "Enter a valid email address.") from exc
    return result.normalized.lower()


def _password_failures(value: str, strength: bool) -> list[tuple[str, str]]:
    failures = []
    if len(value) < PASSWORD_MIN_LENGTH:
        failures.append(
            ("password_too_short", f"Password must be at least {PASSWORD_MIN_LENGTH} characters.")
        )
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        failures.append(
            ("password_too_long", f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")
        )
    if strength and not _LETTER.search(value):
        failures.append(("password_missing_letter", "Password must contain a letter."))
    if strength and not _DIGIT.search(value):
        failures.append(("password_missing_digit", "Password must contain a number."))
    return failures


def _check_password(value: str, strength: bool = False) -> str:
    # field_errors expands the failures into one error per rule.
    failures = _password_failures(value, strength)
    if failures:
        raise PydanticCustomError(
            "password_rules",
            "Password does not meet the requirements.",
            {"failures": tuple(failures)},
        )
    return value


def _parse_timestamp(value: object) -> datetime:
    # Only ISO 8601 text is accepted; pydantic would also take epoch numbers.
    if isinstance(value, datetime):
        return value
    parsed = parse_iso(value) if isinstance(value, str) else None
    if parsed is None:
        raise PydanticCustomError("invalid_timestamp", "Enter a valid ISO 8601 timestamp.")
    return parsed


IsoTimestamp = Annotated[datetime, BeforeValidator(_parse_timestamp)]


def _check_amount_cents(value: int) -> int:
    if value <= 0:
        raise PydanticCustomError("amount_not_positive", "Amount must be a positive integer in cents.")
    return value


def _check_uuid(value: str, message: str) -> str:
    if not is_valid_uuid(value):
        raise PydanticCustomError("invalid_uuid", message)
    return value.lower()


def _check_name(value: str, label: str) -> str:
    name = value.strip()
    if not name:
        raise PydanticCustomError("name_empty", "{label} name cannot be empty.", {"label": label})
    if len(name) > NAME_MAX_LENGTH:
        raise PydanticCustomError(
            "name_too_long",
            "{label} name must be at most {max_length} characters.",
            {"label": label, "max_length": NAME_MAX_LENGTH},
        )
    return name


def _check_description(value: str) -> str:
    description = value.strip()
    if not description:
        raise PydanticCustomError("description_empty", "Description is required.")
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise PydanticCustomError(
            "description_too_long",
            "Description must be at most {max_length} characters.",
            {"max_length": DESCRIPTION_MAX_LENGTH},
        )
    return description


class Command(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @classmethod
    def check(cls, data: object) -> ValidationResult:
        return validate_model(cls, data)


class LoginCommand(Command):
    email: StrictStr
    password: StrictStr

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password(value)


class SignupCommand(Command):
    email: StrictStr
    password: StrictStr

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password(value, strength=True)


class SignupConfirmCommand(SignupCommand):
    confirm_password: StrictStr

    @field_validator("confirm_password")
    @classmethod
    def validate_confirmation(cls, value: str, info: ValidationInfo) -> str:
        password = info.data.get("password")
        if password is not None and value != password:
            raise PydanticCustomError("password_mismatch", "Passwords do not match.")
        return value

    def to_signup(self) -> SignupCommand:
        return SignupCommand(email=self.email, password=self.password)


class RecoverCommand(Command):
    email: StrictStr
    redirect_to: Optional[StrictStr] = None

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("redirect_to")
    @classmethod
    def validate_redirect(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            _URL_ADAPTER.validate_python(value)
        except ValidationError as exc:
            raise PydanticCustomError("invalid_url", "Enter a valid URL.") from exc
        return value


class PasswordResetCommand(Command):
    token: StrictStr
    password: StrictStr

    @field_validator("token")
    @classmethod
    def validate_token(cls, value: str) -> str:
        token = value.strip()
        if not token:
            raise PydanticCustomError("token_empty", "Recovery token is required.")
        return token

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password(value, strength=True)


class TransactionCreateCommand(Command):
    amount_cents: StrictInt
    transaction_type: TransactionType
    description: StrictStr
    transaction_date: IsoTimestamp
    account_id: StrictStr
    category_id: Optional[StrictStr] = None

    @field_validator("amount_cents")
    @classmethod
    def validate_amount(cls, value: int) -> int:
        return _check_amount_cents(value)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: str) -> str:
        return _check_description(value)

    @field_validator("transaction_date")
    @classmethod
    def validate_transaction_date(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @field_validator("account_id")
    @classmethod
    def validate_account_id(cls, value: str) -> str:
        return _check_uuid(value, "Account ID must be a valid UUID.")

    @field_validator("category_id")
    @classmethod
    def validate_category_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _check_uuid(value, "Category ID must be a valid UUID.")


class TransactionUpdateCommand(Command):
    amount_cents: Optional[StrictInt] = None
    transaction_type: Optional[TransactionType] = None
    description: Optional[StrictStr] = None
    transaction_date: Optional[IsoTimestamp] = None
    account_id: Optional[StrictStr] = None
    category_id: Optional[StrictStr] = None

    @field_validator("amount_cents")
    @classmethod
    def validate_amount(cls, value: int | None) -> int | None:
        if value is None:
            return None
        return _check_amount_cents(value)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _check_description(value)

    @field_validator("transaction_date")
    @classmethod
    def validate_transaction_date(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_naive_utc(value)

    @field_validator("account_id")
    @classmethod
    def validate_account_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _check_uuid(value, "Account ID must be a valid UUID.")

    @field_validator("category_id")
    @classmethod
    def validate_category_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _check_uuid(value, "Category ID must be a valid UUID.")

    @model_validator(mode="after")
    def require_one_field(self) -> "TransactionUpdateCommand":
        if not self.model_fields_set:
            raise PydanticCustomError(
                "empty_update", "At least one field must be provided for update."
            )
        return self

    def changes(self) -> dict:
        # category_id may be explicitly set to null to uncategorize.
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None or name == "category_id"
        }


class TransactionFormCommand(Command):
    """The transaction form as typed by the user (dollars and a UI date)."""

    amount_dollars: StrictStr
    transaction_type: TransactionType
    transaction_date_input: StrictStr
    account_id: StrictStr
    category_id: Optional[StrictStr] = None
    description: StrictStr

    @field_validator("amount_dollars")
    @classmethod
    def validate_amount(cls, value: str) -> str:
        try:
            parse_dollars_to_cents(value)
        except InvalidAmountFormat as exc:
            raise PydanticCustomError("invalid_amount_format", str(exc)) from exc
        return value

    @field_validator("transaction_date_input")
    @classmethod
    def validate_date_input(cls, value: str) -> str:
        if not value:
            raise PydanticCustomError("date_required", "Date/time is required.")
        if parse_ui_date(value) is None:
            raise PydanticCustomError(
                "invalid_date_format", "Invalid date format. Use DD/MM/YYYY HH:mm."
            )
        return value

    @field_validator("account_id")
    @classmethod
    def validate_account_id(cls, value: str) -> str:
        return _check_uuid(value, "Select an account.")

    @field_validator("category_id")
    @classmethod
    def validate_category_id(cls, value: str | None) -> str | None:
        if not value:
            return None
        return _check_uuid(value, "Category ID must be a valid UUID.")

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: str) -> str:
        return _check_description(value)

    def to_create_command(self) -> TransactionCreateCommand:
        return TransactionCreateCommand(
            amount_cents=parse_dollars_to_cents(self.amount_dollars),
            transaction_type=self.transaction_type,
            description=self.description,
            transaction_date=parse_ui_date(self.transaction_date_input),
            account_id=self.account_id,
            category_id=self.category_id,
        )


class AccountCreateCommand(Command):
    name: StrictStr
    account_type: AccountType

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _check_name(value, "Account")


class AccountUpdateCommand(Command):
    name: StrictStr

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _check_name(value, "Account")


class CategoryCreateCommand(Command):
    name: StrictStr

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _check_name(value, "Category")


class CategoryUpdateCommand(CategoryCreateCommand):
    pass


class SummaryCommand(Command):
    start_date: IsoTimestamp
    end_date: IsoTimestamp

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def validate_range(self) -> "SummaryCommand":
        if self.start_date > self.end_date:
            raise PydanticCustomError(
                "invalid_range", "Start date must be before or equal to end date."
            )
        return self


class SuggestionReviewCommand(Command):
    suggestion_id: StrictStr
    approved: StrictBool

    @field_validator("suggestion_id")
    @classmethod
    def validate_suggestion_id(cls, value: str) -> str:
        return _check_uuid(value, "Suggestion ID must be a valid UUID.")


def validate_login(data: object) -> ValidationResult[LoginCommand]:
    return LoginCommand.check(data)


def validate_signup(data: object) -> ValidationResult[SignupCommand]:
    return SignupCommand.check(data)


def validate_signup_confirm(data: object) -> ValidationResult[SignupConfirmCommand]:
    return SignupConfirmCommand.check(data)


def validate_recover(data: object) -> ValidationResult[RecoverCommand]:
    return RecoverCommand.check(data)


def validate_transaction_form(data: object) -> ValidationResult[TransactionFormCommand]:
    return TransactionFormCommand.check(data)


def validate_transaction_create(data: object) -> ValidationResult[TransactionCreateCommand]:
    return TransactionCreateCommand.check(data)


def validate_category_create(data: object) -> ValidationResult[CategoryCreateCommand]:
    return CategoryCreateCommand.check(data)


def validate_summary(data: object) -> ValidationResult[SummaryCommand]:
    return SummaryCommand.check(data)
