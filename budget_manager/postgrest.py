"""Parsing of PostgREST-style query parameters (``id=eq.<uuid>``, ``limit``, ``order``)."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from pydantic import BaseModel, Field

from budget_manager.results import ValidationResult, validate_model

RESERVED_PARAMS = frozenset({"limit", "offset", "order", "select"})
DEFAULT_LIMIT = 20
MAX_LIMIT = 50

UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}",
    re.IGNORECASE,
)
_ID_FILTER = re.compile(r"eq\.(.+)", re.DOTALL)
_FILTER = re.compile(r"([^.]+)\.(.*)", re.DOTALL)
_ORDER = re.compile(r"([a-z_]+)\.(asc|desc)")


@dataclass(frozen=True)
class PostgRESTFilter:
    column: str
    operator: str
    value: str


class PageQuery(BaseModel):
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)


def iter_params(params: Any) -> Iterator[tuple[str, str]]:
    """Yield ``(key, value)`` pairs in their original order.

    Accepts Starlette ``QueryParams`` (repeated keys included), plain
    mappings and sequences of pairs.
    """
    if hasattr(params, "multi_items"):
        yield from params.multi_items()
    elif hasattr(params, "items"):
        yield from params.items()
    else:
        yield from params


def parse_id_filter(params: Any, column: str = "id") -> str | None:
    for key, value in iter_params(params):
        if key != column:
            continue
        match = _ID_FILTER.fullmatch(value or "")
        return match.group(1) if match else None
    return None


def parse_filters(params: Any) -> list[PostgRESTFilter]:
    filters = []
    for key, value in iter_params(params):
        if key in RESERVED_PARAMS:
            continue
        match = _FILTER.fullmatch(value or "")
        if match:
            filters.append(PostgRESTFilter(column=key, operator=match.group(1), value=match.group(2)))
    return filters


def is_valid_uuid(value: object) -> bool:
    return isinstance(value, str) and bool(UUID_PATTERN.fullmatch(value))


def parse_page(params: Any) -> ValidationResult[PageQuery]:
    raw = {key: value for key, value in iter_params(params) if key in ("limit", "offset")}
    return validate_model(PageQuery, raw)


def parse_order(value: str | None, allowed: Iterable[str], default: str) -> tuple[str, bool] | None:
    """Return ``(column, ascending)`` for ``<column>.<asc|desc>`` or ``None`` if not allowed."""
    match = _ORDER.fullmatch(value or default)
    if not match or match.group(1) not in set(allowed):
        return None
    return match.group(1), match.group(2) == "asc"
