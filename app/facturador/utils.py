from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from typing import Any

from flask import request

from app.facturador.errors import BadRequestError

_TRUTHY = ("1", "true", "yes", "on", "si", "sí")


def json_body() -> dict:
    """Request JSON object; anything else is a 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequestError("El cuerpo de la solicitud debe ser un objeto JSON")
    return payload


def clean_str(value: Any, max_len: int | None = None) -> str | None:
    """Trim; empty becomes None; truncate to max_len."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_len is not None:
        text = text[:max_len]
    return text


def clean_code(value: Any) -> str:
    return (str(value or "")).strip().upper()


def round_money(value: float) -> float:
    return round(float(value) + 0.0, 2)


def to_float(value: Any, default: float | None = None) -> float | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int | None = None) -> int | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def parse_date(s: Any) -> date | None:
    """Parse YYYY-MM-DD (or the date part of an ISO datetime)."""
    if s is None:
        return None
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    text = str(s).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValueError(f"Fecha inválida: {text}")


def parse_datetime(s: Any) -> datetime | None:
    if s is None:
        return None
    if isinstance(s, datetime):
        return s.replace(tzinfo=None)
    if isinstance(s, date):
        return datetime(s.year, s.month, s.day)
    text = str(s).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1]
    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        raise ValueError(f"Fecha inválida: {text}")


def parse_csv(value: str | None, *, upper: bool = True) -> list[str]:
    if not value:
        return []
    items = []
    for part in value.split(","):
        part = part.strip()
        if part:
            items.append(part.upper() if upper else part)
    return items


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", normalized).strip("-").lower()
    return slug[:40]


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None
