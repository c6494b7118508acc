from __future__ import annotations

from typing import Any

from flask import request

from .errors import ValidationError


MAX_PAGE_SIZE = 500


def json_body() -> dict:
    """Request JSON as a dict; anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_field(data: dict, name: str) -> Any:
    value = data.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing required field: {name}", details={"field": name})
    return value


def coerce_int(value: Any, name: str, *, required: bool = False, minimum: int | None = None) -> int | None:
    """
    Strict integer coercion for payload fields.

    Accepts ints and digit strings; rejects bools, floats and scientific
    notation.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"Missing required field: {name}", details={"field": name})
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", details={"field": name})
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        try:
            result = int(value.strip())
        except ValueError:
            # isdigit() also accepts "--5" and superscript digits
            raise ValidationError(f"{name} must be an integer", details={"field": name})
    else:
        raise ValidationError(f"{name} must be an integer", details={"field": name})

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be at least {minimum}", details={"field": name})
    return result


def coerce_bool(value: Any, name: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "0", "no"}:
        return False
    raise ValidationError(f"{name} must be a boolean", details={"field": name})


def pagination_args(default_limit: int = 100) -> tuple[int, int]:
    """limit/offset query args, clamped to sane bounds."""
    limit = request.args.get("limit", default_limit, type=int)
    offset = request.args.get("offset", 0, type=int)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)
    return limit, offset
