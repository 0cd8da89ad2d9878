"""Envelope handling shared by the API services."""

import logging
from typing import Any, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import ServerError
from ..models import ApiEnvelope


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def unwrap(payload: Any, field: str = None) -> Any:
    """Return ``data`` (or ``data[field]``) from a success envelope.

    Raises:
        ServerError: If the response does not have the expected shape
    """
    try:
        envelope = ApiEnvelope.model_validate(payload)
    except PydanticValidationError as e:
        raise ServerError("Unexpected API response", description=str(e)) from e

    data = envelope.data
    if field is None:
        return data
    if not isinstance(data, dict) or field not in data:
        raise ServerError(
            "Unexpected API response",
            description=f"Response data has no '{field}' field",
        )
    return data[field]


def parse_model(model_cls: Type[ModelT], data: Any) -> ModelT:
    """Validate one API object, reporting malformed data as a server error."""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        logger.error(f"Malformed {model_cls.__name__} in API response: {e}")
        raise ServerError(f"Malformed {model_cls.__name__} in API response",
                          description=str(e)) from e
