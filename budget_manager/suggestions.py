"""Category suggestions for new transactions, produced by an OpenRouter chat model.

A suggestion is stored as pending; the owner later approves it (which
categorizes the transaction) or rejects it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Sequence

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from budget_manager.config import (
    DEFAULT_OPENROUTER_BASE_URL,
    DEFAULT_OPENROUTER_MAX_RETRIES,
    DEFAULT_OPENROUTER_MODEL,
    DEFAULT_OPENROUTER_TIMEOUT_SECONDS,
    Settings,
)
from budget_manager.currency import cents_to_dollars
from budget_manager.errors import StoreError
from budget_manager.postgrest import is_valid_uuid

logger = structlog.get_logger(__name__)

SUGGESTION_TEMPERATURE = 0.3
MAX_PROMPT_CATEGORIES = 50
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "category_suggestion",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "suggested_category_id": {
                    "type": "string",
                    "description": "UUID of the suggested category",
                },
                "confidence_score": {
                    "type": "number",
                    "description": "Confidence score between 0.0 and 1.0",
                },
                "reasoning": {
                    "type": "string",
                    "description": "Brief explanation of why this category was chosen",
                },
            },
            "required": ["suggested_category_id", "confidence_score", "reasoning"],
            "additionalProperties": False,
        },
    },
}


class CategorySuggestion(BaseModel):
    suggested_category_id: str
    confidence_score: float = Field(ge=0.0, le=1.0)
    reasoning: str

    @field_validator("suggested_category_id")
    @classmethod
    def validate_category_id(cls, value: str) -> str:
        if not is_valid_uuid(value):
            raise ValueError("Invalid category ID format")
        return value.lower()


class SuggestionUnavailable(RuntimeError):
    """Raised when the model cannot produce a usable suggestion."""


class RetryableSuggestionError(SuggestionUnavailable):
    """A transport failure or a status worth retrying."""


class SuggestionProvider(Protocol):
    def suggest(
        self, transaction: Mapping, categories: Sequence[Mapping]
    ) -> CategorySuggestion: ...


@dataclass
class OpenRouterSuggestionProvider:
    api_key: str
    base_url: str = DEFAULT_OPENROUTER_BASE_URL
    model: str = DEFAULT_OPENROUTER_MODEL
    timeout_seconds: float = DEFAULT_OPENROUTER_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_OPENROUTER_MAX_RETRIES
    backoff_seconds: float = 1.0
    transport: Optional[httpx.BaseTransport] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["OpenRouterSuggestionProvider"]:
        if not settings.openrouter_api_key:
            return None
        return cls(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            model=settings.openrouter_model,
            timeout_seconds=settings.openrouter_timeout_seconds,
            max_attempts=settings.openrouter_max_retries,
        )

    def suggest(self, transaction: Mapping, categories: Sequence[Mapping]) -> CategorySuggestion:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": build_system_prompt(categories)},
                {"role": "user", "content": build_user_prompt(transaction)},
            ],
            "response_format": RESPONSE_FORMAT,
            "temperature": SUGGESTION_TEMPERATURE,
        }
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=10),
            retry=retry_if_exception_type(RetryableSuggestionError),
            reraise=True,
        )
        return parse_completion(retrying(self._post_completion, payload))

    def _post_completion(self, payload: dict) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(
                base_url=self.base_url, timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = client.post("/chat/completions", json=payload, headers=headers)
        except httpx.TransportError as exc:
            raise RetryableSuggestionError("OpenRouter request failed") from exc
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise RetryableSuggestionError(f"OpenRouter responded with {response.status_code}")
        if response.is_error:
            raise SuggestionUnavailable(f"OpenRouter responded with {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise SuggestionUnavailable("OpenRouter response is not JSON") from exc


def parse_completion(body: Mapping) -> CategorySuggestion:
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise SuggestionUnavailable("OpenRouter response has no message content") from exc
    if not isinstance(content, str):
        raise SuggestionUnavailable("OpenRouter response has no message content")
    try:
        return CategorySuggestion.model_validate_json(content)
    except ValidationError as exc:
        raise SuggestionUnavailable("OpenRouter returned an invalid suggestion") from exc


def build_system_prompt(categories: Sequence[Mapping]) -> str:
    category_list = "\n".join(f"- {category['name']} (id: {category['id']})" for category in categories)
    return (
        "You are a financial transaction categorization assistant.\n"
        "Your task is to suggest the most appropriate category for a transaction "
        "based on its description, amount, and type.\n\n"
        f"Available categories:\n{category_list}\n\n"
        "Respond with the category ID that best matches the transaction "
        "and your confidence score (0.0 to 1.0)."
    )


def build_user_prompt(transaction: Mapping) -> str:
    return (
        "Transaction Details:\n"
        f"- Description: {transaction['description']}\n"
        f"- Amount: ${cents_to_dollars(transaction['amount_cents'])}\n"
        f"- Type: {transaction['transaction_type']}\n\n"
        "Select the most appropriate category from the list."
    )


def generate_category_suggestion(
    store, provider: SuggestionProvider, user_id: str, transaction: Mapping
) -> dict | None:
    """Ask the provider for a category and store it as a pending suggestion.

    Runs after the transaction has been created, so failures are logged and
    reported as ``None`` instead of being raised.
    """
    transaction_id = transaction["id"]
    categories, _ = store.list_categories(user_id, limit=MAX_PROMPT_CATEGORIES, offset=0)
    if not categories:
        logger.warning("suggestion_skipped", reason="no_categories", transaction_id=transaction_id)
        return None

    try:
        suggestion = provider.suggest(transaction, categories)
    except SuggestionUnavailable as exc:
        logger.warning("suggestion_failed", transaction_id=transaction_id, error=str(exc))
        return None

    if suggestion.suggested_category_id not in {category["id"] for category in categories}:
        logger.warning(
            "suggestion_unknown_category",
            transaction_id=transaction_id,
            suggested_category_id=suggestion.suggested_category_id,
        )
        return None

    try:
        row = store.create_suggestion(
            user_id,
            transaction_id,
            suggestion.suggested_category_id,
            suggestion.confidence_score,
        )
    except StoreError as exc:
        logger.warning(
            "suggestion_not_stored",
            transaction_id=transaction_id,
            kind=exc.kind.value,
            error=exc.message,
        )
        return None

    logger.info(
        "suggestion_created",
        transaction_id=transaction_id,
        suggested_category_id=suggestion.suggested_category_id,
        confidence_score=suggestion.confidence_score,
    )
    return row
