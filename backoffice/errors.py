"""
Error taxonomy for the back-office core.

  NotFoundError    entity (or scope) does not exist
  ValidationError  malformed / out-of-range input rejected before persistence
  ConflictError    unique constraint hit, e.g. a duplicate document number
  InternalError    store or transport failure
"""
from typing import Any, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError


class BackofficeError(Exception):
    """Base class for all errors raised by the back-office core."""

    code = "internal_error"

    def __init__(self, message: str, detail: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.detail}


class NotFoundError(BackofficeError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[str] = None) -> None:
        msg = f"{entity} not found" if entity_id is None else f"{entity} not found: {entity_id}"
        super().__init__(msg, {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(BackofficeError):
    code = "validation_error"


class ConflictError(BackofficeError):
    code = "conflict"


class InternalError(BackofficeError):
    code = "internal_error"


def validate_payload(model: Type[BaseModel], payload: Any) -> BaseModel:
    """Parse payload into model, raising ValidationError (ours) on failure."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload if payload is not None else {})
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__} payload",
            {"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
        ) from exc
