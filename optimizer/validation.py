"""Boundary validation: coerce raw values into engine types."""

from typing import Any, Mapping, Optional, Union

import pydantic

from optimizer.errors import ValidationError
from optimizer.schemas import BatchTask, ContentType, OptimizationOptions


def _first_error(exc: pydantic.ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"Invalid {location or 'value'}: {error.get('msg', 'invalid value')}"


def coerce_content_type(value: Union[ContentType, str, None]) -> ContentType:
    if isinstance(value, ContentType):
        return value
    if not value:
        raise ValidationError("Missing required field: contentType")
    try:
        return ContentType(str(value).upper())
    except ValueError:
        raise ValidationError(f"Invalid contentType: {value}") from None


def coerce_options(value: Union[OptimizationOptions, Mapping[str, Any], None]) -> OptimizationOptions:
    if value is None:
        return OptimizationOptions()
    if isinstance(value, OptimizationOptions):
        return value
    try:
        return OptimizationOptions.model_validate(dict(value))
    except pydantic.ValidationError as exc:
        raise ValidationError(_first_error(exc)) from exc


def coerce_task(value: Union[BatchTask, Mapping[str, Any]]) -> BatchTask:
    if isinstance(value, BatchTask):
        return value
    try:
        return BatchTask.model_validate(dict(value))
    except pydantic.ValidationError as exc:
        raise ValidationError(_first_error(exc)) from exc


def require_ref(ref: Optional[str]) -> str:
    if not ref or not str(ref).strip():
        raise ValidationError("Missing required field: ref")
    return str(ref)
