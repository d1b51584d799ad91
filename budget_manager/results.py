from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from pydantic import BaseModel, ValidationError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# Friendlier wording for pydantic's built-in error types.
_BUILTIN_MESSAGES = {
    "missing": "{field} is required.",
    "string_type": "{field} must be a string.",
    "int_type": "{field} must be an integer.",
    "bool_type": "{field} must be a boolean.",
    "literal_error": "{field} has an unsupported value.",
    "enum": "{field} has an unsupported value.",
    "model_type": "Request body must be a JSON object.",
    "dict_type": "Request body must be a JSON object.",
}


@dataclass(frozen=True)
class FieldError:
    path: tuple[str, ...]
    kind: str
    message: str

    @property
    def field(self) -> str:
        return ".".join(self.path)

    def as_dict(self) -> dict:
        return {"field": self.field, "kind": self.kind, "message": self.message}


@dataclass(frozen=True)
class Valid(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class Invalid:
    errors: tuple[FieldError, ...]
    ok: bool = False

    @property
    def messages(self) -> list[str]:
        return [error.message for error in self.errors]

    def joined(self) -> str:
        return ", ".join(self.messages)

    def by_field(self) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for error in self.errors:
            grouped.setdefault(error.field, []).append(error.message)
        return grouped


ValidationResult = Union[Valid[T], Invalid]


def validate_model(model: type[M], data: object) -> ValidationResult[M]:
    try:
        return Valid(model.model_validate(data))
    except ValidationError as exc:
        return Invalid(tuple(field_errors(exc)))


def field_errors(exc: ValidationError) -> list[FieldError]:
    errors = []
    for detail in exc.errors():
        path = tuple(str(part) for part in detail["loc"])
        failures = (detail.get("ctx") or {}).get("failures")
        if failures:
            errors.extend(
                FieldError(path=path, kind=kind, message=message) for kind, message in failures
            )
            continue
        kind = detail["type"]
        template = _BUILTIN_MESSAGES.get(kind)
        if template:
            field = path[-1] if path else "value"
            message = template.format(field=field.replace("_", " ").capitalize())
        else:
            message = detail["msg"]
        errors.append(FieldError(path=path, kind=kind, message=message))
    return errors
