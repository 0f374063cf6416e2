from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

from flask import jsonify, request

from app.irl.errors import ValidationError


def json_payload() -> dict:
    """Return the JSON object body of the current request or fail with 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def parse_id(raw: Any, field: str) -> int:
    """Parse a positive integer id from a JSON value or URL segment."""
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be a positive integer")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and raw.strip().isdigit():
        value = int(raw.strip())
    else:
        raise ValidationError(f"{field} must be a positive integer")
    if value < 1:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def parse_bool(raw: Any, field: str) -> bool:
    if not isinstance(raw, bool):
        raise ValidationError(f"{field} must be a boolean")
    return raw


def optional_str(payload: dict, key: str, max_len: int | None = None) -> str | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{key} must be a string")
    value = raw.strip()
    if max_len is not None and len(value) > max_len:
        raise ValidationError(f"{key} must be at most {max_len} characters")
    return value or None


def parse_pagination(default_limit: int = 10, max_limit: int = 100) -> tuple[int, int]:
    try:
        page = int(request.args.get("page") or 1)
    except ValueError:
        page = 1
    try:
        limit = int(request.args.get("limit") or default_limit)
    except ValueError:
        limit = default_limit
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)
    return page, limit


def ok(data: Any = None, message: str | None = None, status: int = 200):
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def paginated(items: list, total: int, page: int, limit: int):
    return jsonify(
        {
            "success": True,
            "data": items,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "totalPages": math.ceil(total / limit) if limit else 0,
            },
        }
    )


def iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def parse_datetime(raw, field: str) -> datetime:
    """Parse an ISO-8601 timestamp into a naive UTC datetime."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError(f"Invalid date format for {field}")
    value = raw.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date format for {field}") from None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
