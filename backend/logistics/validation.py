from __future__ import annotations

from typing import Any


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate order_ref)."""


def clean_text(value: Any, field: str, *, max_length: int | None = None, required: bool = False) -> str | None:
    """
    Normalize a free-text field.

    - None / blank -> None (or ValidationError when required)
    - non-strings are stringified, then stripped
    - enforces max_length when given
    """
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None

    text = str(value).strip()
    if not text:
        if required:
            raise ValidationError(f"{field} is required")
        return None

    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def parse_optional_id(value: Any, field: str) -> int | None:
    """
    Parse a foreign-key style identifier.

    Accepts ints and plain digit strings; rejects booleans, floats and
    scientific notation the same way integer columns do.
    """
    if value is None or value == "":
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        if value <= 0:
            raise ValidationError(f"{field} must be a positive integer")
        return value

    if isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            parsed = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
        if parsed <= 0:
            raise ValidationError(f"{field} must be a positive integer")
        return parsed

    raise ValidationError(f"{field} must be an integer")


def parse_bool(value: Any, field: str, *, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    raise ValidationError(f"{field} must be a boolean")


def parse_choice(value: Any, field: str, choices: set[str], *, default: str | None = None) -> str | None:
    """Validate a lowercase enum-like string against the allowed choices."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    normalized = str(value).strip().lower()
    if normalized not in choices:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {', '.join(sorted(choices))}"
        )
    return normalized


def parse_page_args(args, *, default_limit: int = 20, max_limit: int = 200) -> tuple[int, int]:
    """Read limit/offset query params with sane bounds."""
    try:
        limit = int(args.get("limit", default_limit))
        offset = int(args.get("offset", 0))
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers")
    if limit <= 0:
        raise ValidationError("limit must be positive")
    if offset < 0:
        raise ValidationError("offset must be >= 0")
    return min(limit, max_limit), offset
