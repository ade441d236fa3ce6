"""Schema checks applied by adapters before anything is published."""

from typing import Any, Callable

from pydantic import BaseModel, Field


class ValidationResult(BaseModel):
    """Outcome of validating one row or one batch."""

    valid: bool
    errors: list[str] = Field(default_factory=list)


RowValidator = Callable[[dict[str, Any]], ValidationResult]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_api_data(data: Any) -> ValidationResult:
    """Every item must be a mapping with an id and a string name."""
    if not isinstance(data, list):
        return ValidationResult(valid=False, errors=["API data must be an array"])
    errors: list[str] = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            errors.append(f"Item at index {index} is not an object")
            continue
        if _is_blank(item.get("id")):
            errors.append(f"Item at index {index} is missing an id")
        if not isinstance(item.get("name"), str):
            errors.append(f"Item at index {index} has invalid name")
    return ValidationResult(valid=not errors, errors=errors)


def validate_csv_row(row: dict[str, Any]) -> ValidationResult:
    """Default CSV row check: non-empty id and name."""
    errors: list[str] = []
    if _is_blank(row.get("id")):
        errors.append("Row is missing an id")
    if _is_blank(row.get("name")):
        errors.append("Row is missing a name")
    return ValidationResult(valid=not errors, errors=errors)


def numeric_id_validator(row: dict[str, Any]) -> ValidationResult:
    """Stricter CSV row check: the id must have been coerced to a number."""
    result = validate_csv_row(row)
    record_id = row.get("id")
    if not _is_blank(record_id) and (
        isinstance(record_id, bool) or not isinstance(record_id, (int, float))
    ):
        result.errors.append(f"Row id {record_id!r} is not numeric")
        result.valid = False
    return result
