from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Request,
    Response,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from budget_manager.auth import (
    bearer_token,
    expiry_from,
    hash_password,
    new_token,
    token_digest,
    verify_password,
)
from budget_manager.config import Settings
from budget_manager.dates import current_month_range, parse_ui_date, to_inclusive_end
from budget_manager.errors import AuthError, BudgetError, ErrorKind, ValidationFailed
from budget_manager.logging_config import configure_logging
from budget_manager.postgrest import is_valid_uuid, parse_id_filter, parse_order, parse_page
from budget_manager.results import Invalid, ValidationResult
from budget_manager.store import CATEGORY_ORDER_COLUMNS, BudgetStore
from budget_manager.summaries import (
    SummaryDTO,
    SummaryResult,
    SummaryViewModel,
    TransactionViewModel,
    aggregate_summary,
    map_to_view_model,
    map_to_view_models,
)
from budget_manager.suggestions import (
    OpenRouterSuggestionProvider,
    SuggestionProvider,
    generate_category_suggestion,
)
from budget_manager.validators import (
    AccountCreateCommand,
    AccountUpdateCommand,
    CategoryCreateCommand,
    CategoryUpdateCommand,
    LoginCommand,
    PasswordResetCommand,
    RecoverCommand,
    SignupCommand,
    SuggestionReviewCommand,
    SummaryCommand,
    TransactionCreateCommand,
    TransactionUpdateCommand,
)

logger = structlog.get_logger(__name__)

RECOVERY_MESSAGE = "If an account exists for this email, a recovery link has been sent."
UNEXPECTED_MESSAGE = "An unexpected error occurred."
UI_DATE_MESSAGE = "Invalid date format. Use DD/MM/YYYY HH:mm."


class UserResponse(BaseModel):
    id: str
    email: str


class AuthResponse(BaseModel):
    user: UserResponse


class MessageResponse(BaseModel):
    message: str


class PaginationMeta(BaseModel):
    total_count: int
    limit: int
    offset: int


class AccountDTO(BaseModel):
    id: str
    name: str
    account_type: str
    created_at: datetime
    updated_at: datetime


class AccountListResponse(BaseModel):
    data: list[AccountDTO]
    meta: PaginationMeta


class CategoryDTO(BaseModel):
    id: str
    name: str
    created_at: datetime
    updated_at: datetime


class CategoryListResponse(BaseModel):
    data: list[CategoryDTO]
    meta: PaginationMeta


class TransactionDTO(BaseModel):
    id: str
    amount_cents: int
    transaction_type: str
    description: str
    transaction_date: datetime
    account_id: str
    category_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TransactionListResponse(BaseModel):
    data: list[TransactionViewModel]
    meta: PaginationMeta


class CategoryNameRef(BaseModel):
    name: str


class AISuggestionDTO(BaseModel):
    id: str
    transaction_id: str
    suggested_category_id: str
    confidence_score: float
    approved: Optional[bool] = None
    created_at: datetime
    categories: CategoryNameRef


class DashboardSummaryResponse(BaseModel):
    income: SummaryViewModel
    expense: SummaryViewModel


def get_store(request: Request) -> BudgetStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def session_token(request: Request, authorization: str | None) -> str | None:
    settings = get_settings(request)
    return bearer_token(authorization) or request.cookies.get(settings.session_cookie_name)


def get_current_user(
    request: Request,
    authorization: str | None = Header(None),
    store: BudgetStore = Depends(get_store),
) -> UserResponse:
    token = session_token(request, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = store.resolve_session(token_digest(token))
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return UserResponse(id=user["id"], email=user["email"])


async def json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise BudgetError(ErrorKind.MALFORMED_INPUT, "Invalid JSON in request body.") from exc
    if not isinstance(body, dict):
        raise BudgetError(ErrorKind.MALFORMED_INPUT, "Request body must be a JSON object.")
    return body


def require(result: ValidationResult):
    if isinstance(result, Invalid):
        raise ValidationFailed(result.errors)
    return result.value


def get_suggestion_provider(request: Request) -> SuggestionProvider | None:
    return request.app.state.suggestion_provider


def require_record_id(request: Request, label: str, column: str = "id") -> str:
    record_id = parse_id_filter(request.query_params, column)
    if record_id is None:
        raise BudgetError(
            ErrorKind.MALFORMED_INPUT,
            f"{label} ID is required in format: ?{column}=eq.{{{label.lower()}_id}}",
        )
    if not is_valid_uuid(record_id):
        raise BudgetError(
            ErrorKind.MALFORMED_INPUT, f"Invalid {label.lower()} ID format: must be a valid UUID"
        )
    return record_id.lower()


def require_page(request: Request):
    result = parse_page(request.query_params)
    if isinstance(result, Invalid):
        raise BudgetError(
            ErrorKind.MALFORMED_INPUT, f"Invalid query parameters: {result.joined()}"
        )
    return result.value


def start_session(response: Response, settings: Settings, store: BudgetStore, user_id: str) -> None:
    token = new_token()
    expires_at = expiry_from(store.clock(), hours=settings.session_ttl_hours)
    store.create_session(user_id, token_digest(token), expires_at)
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
    )


router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/api/auth/signup", response_model=AuthResponse, status_code=201)
def signup(
    response: Response,
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    command: SignupCommand = require(SignupCommand.check(body))
    user = store.register_user(command.email, hash_password(command.password))
    start_session(response, settings, store, user["id"])
    logger.info("signup_succeeded", user_id=user["id"])
    return AuthResponse(user=UserResponse(id=user["id"], email=user["email"]))


@router.post("/api/auth/login", response_model=AuthResponse)
def login(
    response: Response,
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    command: LoginCommand = require(LoginCommand.check(body))
    user = store.get_user_by_email(command.email)
    if not user or not verify_password(command.password, user["hashed_password"]):
        logger.info("login_failed", email=command.email)
        raise AuthError(ErrorKind.UNAUTHORIZED, "Invalid login credentials.")
    start_session(response, settings, store, user["id"])
    logger.info("login_succeeded", user_id=user["id"])
    return AuthResponse(user=UserResponse(id=user["id"], email=user["email"]))


@router.post("/api/auth/logout", status_code=204)
def logout(
    request: Request,
    authorization: str | None = Header(None),
    store: BudgetStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Response:
    token = session_token(request, authorization)
    if token:
        store.delete_session(token_digest(token))
    response = Response(status_code=204)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return response


@router.post("/api/auth/recover", response_model=MessageResponse, status_code=202)
def recover(
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> MessageResponse:
    command: RecoverCommand = require(RecoverCommand.check(body))
    user = store.get_user_by_email(command.email)
    if user:
        token = new_token()
        expires_at = expiry_from(store.clock(), minutes=settings.recovery_ttl_minutes)
        store.create_recovery_token(user["id"], token_digest(token), expires_at)
        logger.info("recovery_token_issued", user_id=user["id"], redirect_to=command.redirect_to)
        if settings.log_recovery_tokens:
            logger.debug("recovery_token", user_id=user["id"], token=token)
    else:
        logger.info("recovery_requested_for_unknown_email")
    return MessageResponse(message=RECOVERY_MESSAGE)


@router.post("/api/auth/reset", status_code=204)
def reset_password(
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
) -> Response:
    command: PasswordResetCommand = require(PasswordResetCommand.check(body))
    user_id = store.consume_recovery_token(token_digest(command.token))
    if not user_id:
        raise AuthError(ErrorKind.UNAUTHORIZED, "Recovery token is invalid or expired.")
    store.update_password(user_id, hash_password(command.password))
    logger.info("password_reset", user_id=user_id)
    return Response(status_code=204)


@router.get("/api/rest/v1/accounts", response_model=AccountListResponse)
def list_accounts(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    store: BudgetStore = Depends(get_store),
) -> AccountListResponse:
    page = require_page(request)
    rows, total = store.list_accounts(user.id, page.limit, page.offset)
    return AccountListResponse(
        data=[AccountDTO(**row) for row in rows],
        meta=PaginationMeta(total_count=total, limit=page.limit, offset=page.offset),
    )


@router.post("/api/rest/v1/accounts", response_model=AccountDTO, status_code=201)
def create_account(
    user: UserResponse = Depends(get_current_user),
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
) -> AccountDTO:
    command: AccountCreateCommand = require(AccountCreateCommand.check(body))
    return AccountDTO(**store.create_account(user.id, command))


@router.patch("/api/rest/v1/accounts", response_model=AccountDTO)
def update_account(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
) -> AccountDTO:
    account_id = require_record_id(request, "Account")
    command: AccountUpdateCommand = require(AccountUpdateCommand.check(body))
    return AccountDTO(**store.rename_account(user.id, account_id, command.name))


@router.delete("/api/rest/v1/accounts", status_code=204)
def delete_account(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    store: BudgetStore = Depends(get_store),
) -> Response:
    account_id = require_record_id(request, "Account")
    store.delete_account(user.id, account_id)
    return Response(status_code=204)


@router.get("/api/rest/v1/categories", response_model=CategoryListResponse)
def list_categories(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    store: BudgetStore = Depends(get_store),
) -> CategoryListResponse:
    page = require_page(request)
    ordering = parse_order(
        request.query_params.get("order"), CATEGORY_ORDER_COLUMNS, default="created_at.desc"
    )
    if ordering is None:
        raise BudgetError(ErrorKind.MALFORMED_INPUT, "Invalid query parameters: order")
    order_column, ascending = ordering
    rows, total = store.list_categories(user.id, page.limit, page.offset, order_column, ascending)
    return CategoryListResponse(
        data=[CategoryDTO(**row) for row in rows],
        meta=PaginationMeta(total_count=total, limit=page.limit, offset=page.offset),
    )


@router.post("/api/rest/v1/categories", response_model=CategoryDTO, status_code=201)
def create_category(
    user: UserResponse = Depends(get_current_user),
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
) -> CategoryDTO:
    command: CategoryCreateCommand = require(CategoryCreateCommand.check(body))
    return CategoryDTO(**store.create_category(user.id, command.name))


@router.patch("/api/rest/v1/categories", response_model=CategoryDTO)
def update_category(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
) -> CategoryDTO:
    category_id = require_record_id(request, "Category")
    command: CategoryUpdateCommand = require(CategoryUpdateCommand.check(body))
    return CategoryDTO(**store.rename_category(user.id, category_id, command.name))


@router.delete("/api/rest/v1/categories", status_code=204)
def delete_category(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    store: BudgetStore = Depends(get_store),
) -> Response:
    category_id = require_record_id(request, "Category")
    store.delete_category(user.id, category_id)
    return Response(status_code=204)


@router.get("/api/rest/v1/transactions", response_model=None)
def list_transactions(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    store: BudgetStore = Depends(get_store),
) -> TransactionViewModel | TransactionListResponse:
    if "id" in request.query_params:
        transaction_id = require_record_id(request, "Transaction")
        return map_to_view_model(store.get_transaction(user.id, transaction_id))
    page = require_page(request)
    rows, total = store.list_transactions(user.id, page.limit, page.offset)
    return TransactionListResponse(
        data=map_to_view_models(rows),
        meta=PaginationMeta(total_count=total, limit=page.limit, offset=page.offset),
    )


@router.post("/api/rest/v1/transactions", response_model=TransactionDTO, status_code=201)
def create_transaction(
    background_tasks: BackgroundTasks,
    user: UserResponse = Depends(get_current_user),
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
    provider: SuggestionProvider | None = Depends(get_suggestion_provider),
) -> TransactionDTO:
    command: TransactionCreateCommand = require(TransactionCreateCommand.check(body))
    row = store.create_transaction(user.id, command)
    logger.info("transaction_created", user_id=user.id, transaction_id=row["id"])
    if provider is not None:
        background_tasks.add_task(generate_category_suggestion, store, provider, user.id, row)
    return TransactionDTO(**row)


@router.patch("/api/rest/v1/transactions", response_model=None)
def update_transaction(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
) -> TransactionViewModel:
    transaction_id = require_record_id(request, "Transaction")
    command: TransactionUpdateCommand = require(TransactionUpdateCommand.check(body))
    row = store.update_transaction(user.id, transaction_id, command.changes())
    return map_to_view_model(row)


@router.delete("/api/rest/v1/transactions", status_code=204)
def delete_transaction(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    store: BudgetStore = Depends(get_store),
) -> Response:
    transaction_id = require_record_id(request, "Transaction")
    store.delete_transaction(user.id, transaction_id)
    return Response(status_code=204)


@router.get("/api/rest/v1/ai_suggestions", response_model=AISuggestionDTO)
def get_ai_suggestion(
    request: Request,
    user: UserResponse = Depends(get_current_user),
    store: BudgetStore = Depends(get_store),
) -> AISuggestionDTO:
    transaction_id = require_record_id(request, "Transaction", column="transaction_id")
    return AISuggestionDTO(**store.get_suggestion(user.id, transaction_id))


@router.post("/api/rest/v1/rpc/handle_ai_suggestion", response_model=AISuggestionDTO)
def handle_ai_suggestion(
    user: UserResponse = Depends(get_current_user),
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
) -> AISuggestionDTO:
    command: SuggestionReviewCommand = require(SuggestionReviewCommand.check(body))
    row = store.review_suggestion(user.id, command.suggestion_id, command.approved)
    logger.info(
        "suggestion_reviewed",
        user_id=user.id,
        suggestion_id=command.suggestion_id,
        approved=command.approved,
    )
    return AISuggestionDTO(**row)


def summarize(
    store: BudgetStore, user_id: str, command: SummaryCommand, classification: str
) -> SummaryResult:
    records = store.transactions_in_range(
        user_id, classification, command.start_date, command.end_date
    )
    return aggregate_summary(records, classification, command.start_date, command.end_date)


@router.post("/api/rest/v1/rpc/get_income_summary", response_model=SummaryDTO)
def get_income_summary(
    user: UserResponse = Depends(get_current_user),
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
) -> SummaryDTO:
    command: SummaryCommand = require(SummaryCommand.check(body))
    return summarize(store, user.id, command, "income").to_dto()


@router.post("/api/rest/v1/rpc/get_expense_summary", response_model=SummaryDTO)
def get_expense_summary(
    user: UserResponse = Depends(get_current_user),
    body: dict = Depends(json_body),
    store: BudgetStore = Depends(get_store),
) -> SummaryDTO:
    command: SummaryCommand = require(SummaryCommand.check(body))
    return summarize(store, user.id, command, "expense").to_dto()


@router.get("/api/dashboard/summary", response_model=DashboardSummaryResponse)
def dashboard_summary(
    start: str | None = None,
    end: str | None = None,
    user: UserResponse = Depends(get_current_user),
    store: BudgetStore = Depends(get_store),
) -> DashboardSummaryResponse:
    """Income and expense cards for a ``dd/MM/yyyy HH:mm`` range, month to date by default."""
    if start is None and end is None:
        start_date, end_date = current_month_range(store.clock())
    else:
        start_date = parse_ui_date(start) if start is not None else None
        end_date = parse_ui_date(end) if end is not None else None
        if start_date is None or end_date is None:
            raise BudgetError(ErrorKind.MALFORMED_INPUT, UI_DATE_MESSAGE)
        end_date = to_inclusive_end(end_date)
    command: SummaryCommand = require(
        SummaryCommand.check({"start_date": start_date, "end_date": end_date})
    )
    return DashboardSummaryResponse(
        income=summarize(store, user.id, command, "income").to_view_model("income"),
        expense=summarize(store, user.id, command, "expense").to_view_model("expense"),
    )


async def handle_budget_error(request: Request, exc: BudgetError) -> JSONResponse:
    content: dict = {"detail": exc.message}
    if isinstance(exc, ValidationFailed):
        content["errors"] = [error.as_dict() for error in exc.errors]
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, kind=exc.kind.value, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=content)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error", method=request.method, path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": UNEXPECTED_MESSAGE})


def create_app(
    settings: Settings | None = None,
    store: BudgetStore | None = None,
    suggestion_provider: SuggestionProvider | None = None,
) -> FastAPI:
    """Build the API with its settings, store and suggestion provider injected.

    Run with ``uvicorn budget_manager.main:create_app --factory``.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    store = store or BudgetStore.from_url(settings.database_url)
    store.create_schema()
    if suggestion_provider is None:
        suggestion_provider = OpenRouterSuggestionProvider.from_settings(settings)
    if suggestion_provider is None:
        logger.info("category_suggestions_disabled")

    app = FastAPI(title="Budget Manager")
    app.state.settings = settings
    app.state.store = store
    app.state.suggestion_provider = suggestion_provider
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BudgetError, handle_budget_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router)
    return app
