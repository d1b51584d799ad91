"""SQL storage boundary.

Every query is scoped to an owner id that the caller has already resolved.
Failures surface as ``StoreError`` with an explicit ``ErrorKind``; callers
never inspect database error text.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator

import structlog
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from budget_manager.currency import MAX_AMOUNT_CENTS
from budget_manager.errors import ErrorKind, StoreError
from budget_manager.validators import (
    AccountCreateCommand,
    TransactionCreateCommand,
)

logger = structlog.get_logger(__name__)

DEFAULT_ACCOUNT_NAME = "Basic account"
DEFAULT_ACCOUNT_TYPE = "checking"
DEFAULT_CATEGORIES = [
    "Salary",
    "Rent",
    "Utilities",
    "Groceries",
    "Transportation",
    "Healthcare",
    "Debt Payments",
    "Savings",
    "Investments",
    "Entertainment",
    "Personal Care",
    "Dining Out",
    "Education",
    "Insurance",
    "Charity",
    "Clothing",
]

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

sessions = Table(
    "sessions",
    metadata,
    Column("token_hash", String(64), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("expires_at", DateTime, nullable=False),
)

recovery_tokens = Table(
    "recovery_tokens",
    metadata,
    Column("token_hash", String(64), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("expires_at", DateTime, nullable=False),
    Column("used_at", DateTime),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("name", String(100), nullable=False),
    Column("account_type", String(20), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    Column("deleted_at", DateTime),
    CheckConstraint(
        "account_type IN ('checking', 'savings', 'credit_card', 'cash', 'investment')",
        name="ck_accounts_type",
    ),
)

categories = Table(
    "categories",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("name", String(100), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("account_id", String(36), ForeignKey("accounts.id"), nullable=False),
    Column("category_id", String(36), ForeignKey("categories.id")),
    Column("amount_cents", Integer, nullable=False),
    Column("transaction_type", String(10), nullable=False),
    Column("description", String(255), nullable=False),
    Column("transaction_date", DateTime, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        f"amount_cents > 0 AND amount_cents <= {MAX_AMOUNT_CENTS}",
        name="ck_transactions_amount_cents",
    ),
    CheckConstraint(
        "transaction_type IN ('income', 'expense')",
        name="ck_transactions_type",
    ),
)

ai_suggestions = Table(
    "ai_suggestions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column(
        "transaction_id",
        String(36),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column(
        "suggested_category_id",
        String(36),
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("confidence_score", Float, nullable=False),
    # NULL while pending review.
    Column("approved", Boolean),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "confidence_score >= 0 AND confidence_score <= 1",
        name="ck_ai_suggestions_confidence_score",
    ),
)

Index(
    "uq_categories_user_lower_name",
    categories.c.user_id,
    func.lower(categories.c.name),
    unique=True,
)
Index("ix_transactions_user_created", transactions.c.user_id, transactions.c.created_at)
Index("ix_transactions_user_date", transactions.c.user_id, transactions.c.transaction_date)

ACCOUNT_COLUMNS = (
    accounts.c.id,
    accounts.c.name,
    accounts.c.account_type,
    accounts.c.created_at,
    accounts.c.updated_at,
)
CATEGORY_COLUMNS = (
    categories.c.id,
    categories.c.name,
    categories.c.created_at,
    categories.c.updated_at,
)
TRANSACTION_COLUMNS = (
    transactions.c.id,
    transactions.c.amount_cents,
    transactions.c.transaction_type,
    transactions.c.description,
    transactions.c.transaction_date,
    transactions.c.account_id,
    transactions.c.category_id,
    transactions.c.created_at,
    transactions.c.updated_at,
)
SUGGESTION_COLUMNS = (
    ai_suggestions.c.id,
    ai_suggestions.c.transaction_id,
    ai_suggestions.c.suggested_category_id,
    ai_suggestions.c.confidence_score,
    ai_suggestions.c.approved,
    ai_suggestions.c.created_at,
)
CATEGORY_ORDER_COLUMNS = {
    "created_at": categories.c.created_at,
    "updated_at": categories.c.updated_at,
    "name": categories.c.name,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class BudgetStore:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self.clock = clock

    @classmethod
    def from_url(cls, database_url: str, clock: Callable[[], datetime] = utcnow) -> "BudgetStore":
        connect_args = {}
        engine_options = {}
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_options["poolclass"] = StaticPool
        engine = create_engine(database_url, connect_args=connect_args, **engine_options)
        return cls(engine, clock=clock)

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    # Users and credentials

    def register_user(self, email: str, hashed_password: str) -> dict:
        """Create a user and seed the default account and categories."""
        now = self.clock()
        user_id = new_id()
        try:
            with self.engine.begin() as conn:
                if _email_taken(conn, email):
                    raise StoreError(ErrorKind.CONFLICT, "Email is already in use.")
                conn.execute(
                    insert(users).values(
                        id=user_id,
                        email=email,
                        hashed_password=hashed_password,
                        created_at=now,
                    )
                )
                _seed_defaults(conn, user_id, now)
        except IntegrityError as exc:
            raise StoreError(ErrorKind.CONFLICT, "Email is already in use.") from exc
        logger.info("user_seeded", user_id=user_id, categories=len(DEFAULT_CATEGORIES))
        return {"id": user_id, "email": email, "created_at": now}

    def get_user_by_email(self, email: str) -> dict | None:
        with self.engine.begin() as conn:
            row = conn.execute(select(users).where(users.c.email == email)).mappings().first()
        return dict(row) if row else None

    def update_password(self, user_id: str, hashed_password: str) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(users).where(users.c.id == user_id).values(hashed_password=hashed_password)
            )
            if result.rowcount == 0:
                raise StoreError(ErrorKind.NOT_FOUND, "User not found.")
            conn.execute(sessions.delete().where(sessions.c.user_id == user_id))

    def create_session(self, user_id: str, token_hash: str, expires_at: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(sessions).values(
                    token_hash=token_hash,
                    user_id=user_id,
                    created_at=self.clock(),
                    expires_at=expires_at,
                )
            )

    def resolve_session(self, token_hash: str) -> dict | None:
        now = self.clock()
        with self.engine.begin() as conn:
            row = conn.execute(
                select(sessions.c.expires_at, users.c.id, users.c.email)
                .select_from(sessions.join(users, users.c.id == sessions.c.user_id))
                .where(sessions.c.token_hash == token_hash)
            ).mappings().first()
            if row and row["expires_at"] <= now:
                conn.execute(sessions.delete().where(sessions.c.token_hash == token_hash))
                return None
        if not row:
            return None
        return {"id": row["id"], "email": row["email"]}

    def delete_session(self, token_hash: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(sessions.delete().where(sessions.c.token_hash == token_hash))

    def create_recovery_token(self, user_id: str, token_hash: str, expires_at: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(recovery_tokens).values(
                    token_hash=token_hash,
                    user_id=user_id,
                    created_at=self.clock(),
                    expires_at=expires_at,
                )
            )

    def consume_recovery_token(self, token_hash: str) -> str | None:
        """Mark a recovery token as used and return its user id, if still valid."""
        now = self.clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                update(recovery_tokens)
                .where(
                    recovery_tokens.c.token_hash == token_hash,
                    recovery_tokens.c.used_at.is_(None),
                    recovery_tokens.c.expires_at > now,
                )
                .values(used_at=now)
                .returning(recovery_tokens.c.user_id)
            )
            row = result.first()
        return row[0] if row else None

    # Accounts

    def list_accounts(self, user_id: str, limit: int, offset: int) -> tuple[list[dict], int]:
        conditions = (accounts.c.user_id == user_id, accounts.c.deleted_at.is_(None))
        with self.engine.begin() as conn:
            total = conn.execute(select(func.count()).select_from(accounts).where(*conditions)).scalar_one()
            rows = conn.execute(
                select(*ACCOUNT_COLUMNS)
                .where(*conditions)
                .order_by(accounts.c.created_at.desc(), accounts.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).mappings().all()
        return [dict(row) for row in rows], int(total or 0)

    def create_account(self, user_id: str, command: AccountCreateCommand) -> dict:
        now = self.clock()
        stmt = (
            insert(accounts)
            .values(
                id=new_id(),
                user_id=user_id,
                name=command.name,
                account_type=command.account_type,
                created_at=now,
                updated_at=now,
            )
            .returning(*ACCOUNT_COLUMNS)
        )
        with _integrity_guard("create_account"):
            with self.engine.begin() as conn:
                if _active_account_named(conn, user_id, command.name):
                    raise StoreError(ErrorKind.CONFLICT, "Account with this name already exists.")
                row = conn.execute(stmt).mappings().first()
        return dict(row)

    def rename_account(self, user_id: str, account_id: str, name: str) -> dict:
        with _integrity_guard("rename_account"):
            with self.engine.begin() as conn:
                existing = _active_account_named(conn, user_id, name)
                if existing and existing != account_id:
                    raise StoreError(ErrorKind.CONFLICT, "Account with this name already exists.")
                row = conn.execute(
                    update(accounts)
                    .where(
                        accounts.c.id == account_id,
                        accounts.c.user_id == user_id,
                        accounts.c.deleted_at.is_(None),
                    )
                    .values(name=name, updated_at=self.clock())
                    .returning(*ACCOUNT_COLUMNS)
                ).mappings().first()
        if not row:
            raise StoreError(ErrorKind.NOT_FOUND, "Account not found.")
        return dict(row)

    def delete_account(self, user_id: str, account_id: str) -> None:
        """Soft delete; transactions keep referencing the account."""
        now = self.clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                update(accounts)
                .where(
                    accounts.c.id == account_id,
                    accounts.c.user_id == user_id,
                    accounts.c.deleted_at.is_(None),
                )
                .values(deleted_at=now, updated_at=now)
            )
            if result.rowcount == 0:
                raise StoreError(ErrorKind.NOT_FOUND, "Account not found.")

    # Categories

    def list_categories(
        self,
        user_id: str,
        limit: int,
        offset: int,
        order_column: str = "created_at",
        ascending: bool = False,
    ) -> tuple[list[dict], int]:
        column = CATEGORY_ORDER_COLUMNS[order_column]
        ordering = column.asc() if ascending else column.desc()
        with self.engine.begin() as conn:
            total = conn.execute(
                select(func.count()).select_from(categories).where(categories.c.user_id == user_id)
            ).scalar_one()
            rows = conn.execute(
                select(*CATEGORY_COLUMNS)
                .where(categories.c.user_id == user_id)
                .order_by(ordering, categories.c.id.asc())
                .limit(limit)
                .offset(offset)
            ).mappings().all()
        return [dict(row) for row in rows], int(total or 0)

    def create_category(self, user_id: str, name: str) -> dict:
        now = self.clock()
        stmt = (
            insert(categories)
            .values(id=new_id(), user_id=user_id, name=name, created_at=now, updated_at=now)
            .returning(*CATEGORY_COLUMNS)
        )
        with _integrity_guard("create_category"):
            with self.engine.begin() as conn:
                if _category_named(conn, user_id, name):
                    raise StoreError(
                        ErrorKind.CONSTRAINT_VIOLATION,
                        "Category name already exists for this user.",
                    )
                row = conn.execute(stmt).mappings().first()
        return dict(row)

    def rename_category(self, user_id: str, category_id: str, name: str) -> dict:
        with _integrity_guard("rename_category"):
            with self.engine.begin() as conn:
                existing = _category_named(conn, user_id, name)
                if existing and existing != category_id:
                    raise StoreError(
                        ErrorKind.CONSTRAINT_VIOLATION,
                        "Category name already exists for this user.",
                    )
                row = conn.execute(
                    update(categories)
                    .where(categories.c.id == category_id, categories.c.user_id == user_id)
                    .values(name=name, updated_at=self.clock())
                    .returning(*CATEGORY_COLUMNS)
                ).mappings().first()
        if not row:
            raise StoreError(ErrorKind.NOT_FOUND, "Category not found.")
        return dict(row)

    def delete_category(self, user_id: str, category_id: str) -> None:
        """Delete a category; its transactions become uncategorized."""
        with self.engine.begin() as conn:
            if not _owned(conn, categories, user_id, category_id):
                raise StoreError(ErrorKind.NOT_FOUND, "Category not found.")
            conn.execute(
                ai_suggestions.delete().where(
                    ai_suggestions.c.suggested_category_id == category_id
                )
            )
            conn.execute(
                update(transactions)
                .where(transactions.c.user_id == user_id, transactions.c.category_id == category_id)
                .values(category_id=None, updated_at=self.clock())
            )
            conn.execute(
                categories.delete().where(
                    categories.c.id == category_id, categories.c.user_id == user_id
                )
            )

    # Transactions

    def list_transactions(self, user_id: str, limit: int, offset: int) -> tuple[list[dict], int]:
        with self.engine.begin() as conn:
            total = conn.execute(
                select(func.count()).select_from(transactions).where(transactions.c.user_id == user_id)
            ).scalar_one()
            rows = conn.execute(
                _transaction_select()
                .where(transactions.c.user_id == user_id)
                .order_by(transactions.c.created_at.desc(), transactions.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).mappings().all()
        return [_embed_relations(row) for row in rows], int(total or 0)

    def get_transaction(self, user_id: str, transaction_id: str) -> dict:
        with self.engine.begin() as conn:
            row = _fetch_transaction(conn, user_id, transaction_id)
        if not row:
            raise StoreError(ErrorKind.NOT_FOUND, "Transaction not found.")
        return row

    def create_transaction(self, user_id: str, command: TransactionCreateCommand) -> dict:
        now = self.clock()
        stmt = (
            insert(transactions)
            .values(
                id=new_id(),
                user_id=user_id,
                account_id=command.account_id,
                category_id=command.category_id,
                amount_cents=command.amount_cents,
                transaction_type=command.transaction_type,
                description=command.description,
                transaction_date=command.transaction_date,
                created_at=now,
                updated_at=now,
            )
            .returning(*TRANSACTION_COLUMNS)
        )
        with _integrity_guard("create_transaction"):
            with self.engine.begin() as conn:
                _check_references(conn, user_id, command.account_id, command.category_id)
                row = conn.execute(stmt).mappings().first()
        return dict(row)

    def update_transaction(self, user_id: str, transaction_id: str, changes: dict) -> dict:
        with _integrity_guard("update_transaction"):
            with self.engine.begin() as conn:
                if not _owned(conn, transactions, user_id, transaction_id):
                    raise StoreError(ErrorKind.NOT_FOUND, "Transaction not found.")
                _check_references(
                    conn, user_id, changes.get("account_id"), changes.get("category_id")
                )
                conn.execute(
                    update(transactions)
                    .where(transactions.c.id == transaction_id, transactions.c.user_id == user_id)
                    .values(**changes, updated_at=self.clock())
                )
                row = _fetch_transaction(conn, user_id, transaction_id)
        return row

    def delete_transaction(self, user_id: str, transaction_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                ai_suggestions.delete().where(
                    ai_suggestions.c.transaction_id == transaction_id,
                    ai_suggestions.c.user_id == user_id,
                )
            )
            result = conn.execute(
                transactions.delete().where(
                    transactions.c.id == transaction_id, transactions.c.user_id == user_id
                )
            )
            if result.rowcount == 0:
                raise StoreError(ErrorKind.NOT_FOUND, "Transaction not found.")

    def transactions_in_range(
        self, user_id: str, transaction_type: str, start: datetime, end: datetime
    ) -> list[dict]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(
                    transactions.c.amount_cents,
                    transactions.c.transaction_type,
                    transactions.c.transaction_date,
                ).where(
                    transactions.c.user_id == user_id,
                    transactions.c.transaction_type == transaction_type,
                    transactions.c.transaction_date >= start,
                    transactions.c.transaction_date <= end,
                )
            ).mappings().all()
        return [dict(row) for row in rows]

    # Category suggestions

    def create_suggestion(
        self, user_id: str, transaction_id: str, category_id: str, confidence_score: float
    ) -> dict:
        now = self.clock()
        suggestion_id = new_id()
        with _integrity_guard("create_suggestion"):
            with self.engine.begin() as conn:
                if not _owned(conn, transactions, user_id, transaction_id):
                    raise StoreError(ErrorKind.NOT_FOUND, "Transaction not found.")
                if not _owned(conn, categories, user_id, category_id):
                    raise StoreError(
                        ErrorKind.CONSTRAINT_VIOLATION,
                        "Category not found or does not belong to user.",
                    )
                existing = conn.execute(
                    select(ai_suggestions.c.id).where(
                        ai_suggestions.c.transaction_id == transaction_id
                    )
                ).first()
                if existing:
                    raise StoreError(
                        ErrorKind.CONFLICT, "Suggestion already exists for this transaction."
                    )
                conn.execute(
                    insert(ai_suggestions).values(
                        id=suggestion_id,
                        user_id=user_id,
                        transaction_id=transaction_id,
                        suggested_category_id=category_id,
                        confidence_score=confidence_score,
                        created_at=now,
                        updated_at=now,
                    )
                )
                row = _fetch_suggestion(conn, ai_suggestions.c.id == suggestion_id)
        return row

    def get_suggestion(self, user_id: str, transaction_id: str) -> dict:
        with self.engine.begin() as conn:
            row = _fetch_suggestion(
                conn,
                ai_suggestions.c.transaction_id == transaction_id,
                ai_suggestions.c.user_id == user_id,
            )
        if not row:
            raise StoreError(ErrorKind.NOT_FOUND, "Suggestion not found.")
        return row

    def review_suggestion(self, user_id: str, suggestion_id: str, approved: bool) -> dict:
        """Record the owner's decision; approving also categorizes the transaction."""
        now = self.clock()
        with self.engine.begin() as conn:
            row = _fetch_suggestion(
                conn, ai_suggestions.c.id == suggestion_id, ai_suggestions.c.user_id == user_id
            )
            if not row:
                raise StoreError(ErrorKind.NOT_FOUND, "Suggestion not found.")
            if row["approved"] is not None:
                raise StoreError(ErrorKind.CONFLICT, "Suggestion has already been reviewed.")
            conn.execute(
                update(ai_suggestions)
                .where(ai_suggestions.c.id == suggestion_id)
                .values(approved=approved, updated_at=now)
            )
            if approved:
                conn.execute(
                    update(transactions)
                    .where(
                        transactions.c.id == row["transaction_id"],
                        transactions.c.user_id == user_id,
                    )
                    .values(category_id=row["suggested_category_id"], updated_at=now)
                )
            row = _fetch_suggestion(conn, ai_suggestions.c.id == suggestion_id)
        return row


@contextmanager
def _integrity_guard(operation: str) -> Iterator[None]:
    """Turn residual database integrity failures into typed store errors."""
    try:
        yield
    except IntegrityError as exc:
        logger.warning("store_constraint_violation", operation=operation, error=str(exc.orig))
        raise StoreError(
            ErrorKind.CONSTRAINT_VIOLATION,
            "Data violates database constraints.",
        ) from exc


def _email_taken(conn: Connection, email: str) -> bool:
    return conn.execute(select(users.c.id).where(users.c.email == email)).first() is not None


def _seed_defaults(conn: Connection, user_id: str, now: datetime) -> None:
    conn.execute(
        insert(accounts).values(
            id=new_id(),
            user_id=user_id,
            name=DEFAULT_ACCOUNT_NAME,
            account_type=DEFAULT_ACCOUNT_TYPE,
            created_at=now,
            updated_at=now,
        )
    )
    conn.execute(
        insert(categories),
        [
            {"id": new_id(), "user_id": user_id, "name": name, "created_at": now, "updated_at": now}
            for name in DEFAULT_CATEGORIES
        ],
    )


def _owned(conn: Connection, table: Table, user_id: str, record_id: str) -> bool:
    row = conn.execute(
        select(table.c.id).where(table.c.id == record_id, table.c.user_id == user_id)
    ).first()
    return row is not None


def _active_account_named(conn: Connection, user_id: str, name: str) -> str | None:
    return conn.execute(
        select(accounts.c.id).where(
            accounts.c.user_id == user_id,
            accounts.c.deleted_at.is_(None),
            func.lower(accounts.c.name) == name.lower(),
        )
    ).scalar_one_or_none()


def _category_named(conn: Connection, user_id: str, name: str) -> str | None:
    return conn.execute(
        select(categories.c.id).where(
            categories.c.user_id == user_id,
            func.lower(categories.c.name) == name.lower(),
        )
    ).scalar_one_or_none()


def _check_references(
    conn: Connection, user_id: str, account_id: str | None, category_id: str | None
) -> None:
    if account_id is not None:
        account = conn.execute(
            select(accounts.c.id).where(
                accounts.c.id == account_id,
                accounts.c.user_id == user_id,
                accounts.c.deleted_at.is_(None),
            )
        ).first()
        if not account:
            raise StoreError(
                ErrorKind.CONSTRAINT_VIOLATION,
                "Account not found or does not belong to user.",
            )
    if category_id is not None and not _owned(conn, categories, user_id, category_id):
        raise StoreError(
            ErrorKind.CONSTRAINT_VIOLATION,
            "Category not found or does not belong to user.",
        )


def _transaction_select():
    join_stmt = transactions.join(accounts, accounts.c.id == transactions.c.account_id).outerjoin(
        categories, categories.c.id == transactions.c.category_id
    )
    return select(
        *TRANSACTION_COLUMNS,
        accounts.c.name.label("account_name"),
        categories.c.name.label("category_name"),
    ).select_from(join_stmt)


def _fetch_transaction(conn: Connection, user_id: str, transaction_id: str) -> dict | None:
    row = conn.execute(
        _transaction_select().where(
            transactions.c.id == transaction_id, transactions.c.user_id == user_id
        )
    ).mappings().first()
    return _embed_relations(row) if row else None


def _embed_relations(row) -> dict:
    record = dict(row)
    account_name = record.pop("account_name")
    category_name = record.pop("category_name")
    record["accounts"] = {"name": account_name}
    record["categories"] = {"name": category_name} if category_name is not None else None
    return record


def _fetch_suggestion(conn: Connection, *criteria) -> dict | None:
    row = conn.execute(
        select(*SUGGESTION_COLUMNS, categories.c.name.label("category_name"))
        .select_from(
            ai_suggestions.join(
                categories, categories.c.id == ai_suggestions.c.suggested_category_id
            )
        )
        .where(*criteria)
    ).mappings().first()
    if not row:
        return None
    record = dict(row)
    record["categories"] = {"name": record.pop("category_name")}
    return record
