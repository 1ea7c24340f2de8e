from __future__ import annotations

import json
from datetime import date, datetime
from typing import TYPE_CHECKING

from app.facturador.audit import record_event
from app.facturador.modules.catalog.models import Article, Warehouse
from app.facturador.modules.inventory.models import WarehouseStock
from app.facturador.modules.preferences.models import ExchangeRate, InventoryAlert, NotificationChannel
from app.facturador.utils import clean_code, clean_str, iso, parse_bool, parse_date, to_float, to_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser

CHANNEL_TYPES = ("email", "sms", "webhook", "whatsapp")


# ---------- Notification channels ----------
def channel_to_dict(c: NotificationChannel) -> dict:
    try:
        preferences = json.loads(c.preferences) if c.preferences else {}
    except ValueError:
        preferences = {}
    return {
        "id": c.id,
        "name": c.name,
        "channel_type": c.channel_type,
        "target": c.target,
        "preferences": preferences,
        "is_active": c.is_active,
        "updated_at": iso(c.updated_at),
    }


def list_channels(s: "Session") -> list[NotificationChannel]:
    return s.query(NotificationChannel).order_by(NotificationChannel.name.asc()).all()


def _apply_channel_fields(c: NotificationChannel, payload: dict, *, creating: bool) -> None:
    if creating or "name" in payload:
        name = clean_str(payload.get("name"), 120)
        if not name:
            raise ValueError("El nombre del canal es obligatorio")
        c.name = name
    if creating or "channel_type" in payload:
        channel_type = (clean_str(payload.get("channel_type")) or "").lower()
        if channel_type not in CHANNEL_TYPES:
            raise ValueError(f"Tipo de canal inválido. Debe ser uno de: {', '.join(CHANNEL_TYPES)}")
        c.channel_type = channel_type
    if creating or "target" in payload:
        target = clean_str(payload.get("target"), 250)
        if not target:
            raise ValueError("El destino del canal es obligatorio")
        c.target = target
    if "preferences" in payload:
        prefs = payload.get("preferences")
        if prefs is not None and not isinstance(prefs, dict):
            raise ValueError("Las preferencias deben ser un objeto")
        c.preferences = json.dumps(prefs, sort_keys=True) if prefs else None
    if "is_active" in payload:
        c.is_active = parse_bool(payload.get("is_active"), True)


def create_channel(s: "Session", payload: dict, user: "AdminUser") -> NotificationChannel:
    c = NotificationChannel(is_active=True)
    _apply_channel_fields(c, payload, creating=True)
    if s.query(NotificationChannel).filter(NotificationChannel.name == c.name).first() is not None:
        raise ValueError("Ya existe un canal con ese nombre")
    s.add(c)
    s.flush()
    record_event(s, actor=user, action="preferences.channel.create", entity_type="NotificationChannel", entity_id=str(c.id), metadata={"type": c.channel_type})
    return c


def update_channel(s: "Session", c: NotificationChannel, payload: dict, user: "AdminUser") -> NotificationChannel:
    _apply_channel_fields(c, payload, creating=False)
    clash = s.query(NotificationChannel).filter(NotificationChannel.name == c.name, NotificationChannel.id != c.id).first()
    if clash is not None:
        raise ValueError("Ya existe un canal con ese nombre")
    c.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=user, action="preferences.channel.edit", entity_type="NotificationChannel", entity_id=str(c.id))
    return c


def delete_channel(s: "Session", c: NotificationChannel, user: "AdminUser") -> None:
    for alert in s.query(InventoryAlert).filter(InventoryAlert.notify_channel_id == c.id).all():
        alert.notify_channel_id = None
        alert.notify_channel = None
    record_event(s, actor=user, action="preferences.channel.delete", entity_type="NotificationChannel", entity_id=str(c.id), metadata={"name": c.name})
    s.delete(c)
    s.flush()


# ---------- Exchange rates ----------
def rate_to_dict(r: ExchangeRate) -> dict:
    return {
        "id": r.id,
        "rate_date": iso(r.rate_date),
        "rate_value": r.rate_value,
        "base_currency_code": r.base_currency_code,
        "quote_currency_code": r.quote_currency_code,
        "source_name": r.source_name,
    }


def list_rates(
    s: "Session",
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    base: str | None = None,
    quote: str | None = None,
) -> list[ExchangeRate]:
    q = s.query(ExchangeRate)
    if date_from is not None:
        q = q.filter(ExchangeRate.rate_date >= date_from)
    if date_to is not None:
        q = q.filter(ExchangeRate.rate_date <= date_to)
    if clean_code(base):
        q = q.filter(ExchangeRate.base_currency_code == clean_code(base))
    if clean_code(quote):
        q = q.filter(ExchangeRate.quote_currency_code == clean_code(quote))
    return q.order_by(ExchangeRate.rate_date.desc(), ExchangeRate.id.desc()).all()


def save_rate(
    s: "Session",
    payload: dict,
    user: "AdminUser",
    *,
    default_base: str,
    default_quote: str,
) -> ExchangeRate:
    """Upsert by (date, base, quote)."""
    rate_date = parse_date(payload.get("rate_date"))
    if rate_date is None:
        raise ValueError("La fecha del tipo de cambio es obligatoria")
    value = to_float(payload.get("rate_value"))
    if value is None or value <= 0:
        raise ValueError("El tipo de cambio debe ser mayor a cero")
    base = (clean_code(payload.get("base_currency_code")) or default_base)[:3]
    quote = (clean_code(payload.get("quote_currency_code")) or default_quote)[:3]
    if base == quote:
        raise ValueError("La moneda base y la moneda cotizada deben ser diferentes")

    rate = (
        s.query(ExchangeRate)
        .filter(
            ExchangeRate.rate_date == rate_date,
            ExchangeRate.base_currency_code == base,
            ExchangeRate.quote_currency_code == quote,
        )
        .one_or_none()
    )
    creating = rate is None
    if creating:
        rate = ExchangeRate(rate_date=rate_date, base_currency_code=base, quote_currency_code=quote, created_by=user.id)
        s.add(rate)
    rate.rate_value = value
    rate.source_name = clean_str(payload.get("source_name"), 120)
    rate.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="preferences.exchange_rate.create" if creating else "preferences.exchange_rate.edit",
        entity_type="ExchangeRate",
        entity_id=str(rate.id),
        metadata={"date": rate_date.isoformat(), "pair": f"{base}/{quote}", "value": value},
    )
    return rate


def current_rate(
    s: "Session",
    on_date: date | None = None,
    *,
    base: str | None = None,
    quote: str | None = None,
) -> ExchangeRate | None:
    """Latest rate on or before `on_date`."""
    q = s.query(ExchangeRate).filter(ExchangeRate.rate_date <= (on_date or date.today()))
    if clean_code(base):
        q = q.filter(ExchangeRate.base_currency_code == clean_code(base))
    if clean_code(quote):
        q = q.filter(ExchangeRate.quote_currency_code == clean_code(quote))
    return q.order_by(ExchangeRate.rate_date.desc(), ExchangeRate.id.desc()).first()


# ---------- Inventory alerts ----------
def alert_to_dict(a: InventoryAlert) -> dict:
    return {
        "id": a.id,
        "name": a.name,
        "description": a.description,
        "threshold": a.threshold,
        "unit_code": a.unit_code,
        "notify_channel_id": a.notify_channel_id,
        "notify_channel": a.notify_channel.name if a.notify_channel else None,
        "is_active": a.is_active,
    }


def list_alerts(s: "Session") -> list[InventoryAlert]:
    return s.query(InventoryAlert).order_by(InventoryAlert.name.asc()).all()


def _apply_alert_fields(s: "Session", a: InventoryAlert, payload: dict, *, creating: bool) -> None:
    if creating or "name" in payload:
        name = clean_str(payload.get("name"), 120)
        if not name:
            raise ValueError("El nombre de la alerta es obligatorio")
        a.name = name
    if "description" in payload:
        a.description = clean_str(payload.get("description"), 300)
    if creating or "threshold" in payload:
        threshold = to_float(payload.get("threshold"))
        if threshold is None or threshold < 0:
            raise ValueError("El umbral debe ser mayor o igual a cero")
        a.threshold = threshold
    if "unit_code" in payload:
        a.unit_code = clean_code(payload.get("unit_code"))[:20] or None
    if "notify_channel_id" in payload:
        channel_id = to_int(payload.get("notify_channel_id"))
        channel = s.get(NotificationChannel, channel_id) if channel_id is not None else None
        if channel_id is not None and channel is None:
            raise ValueError("El canal de notificación no existe")
        a.notify_channel_id = channel.id if channel else None
        a.notify_channel = channel
    if "is_active" in payload:
        a.is_active = parse_bool(payload.get("is_active"), True)


def create_alert(s: "Session", payload: dict, user: "AdminUser") -> InventoryAlert:
    a = InventoryAlert(is_active=True)
    _apply_alert_fields(s, a, payload, creating=True)
    s.add(a)
    s.flush()
    record_event(s, actor=user, action="preferences.alert.create", entity_type="InventoryAlert", entity_id=str(a.id), metadata={"threshold": a.threshold})
    return a


def update_alert(s: "Session", a: InventoryAlert, payload: dict, user: "AdminUser") -> InventoryAlert:
    _apply_alert_fields(s, a, payload, creating=False)
    a.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=user, action="preferences.alert.edit", entity_type="InventoryAlert", entity_id=str(a.id))
    return a


def delete_alert(s: "Session", a: InventoryAlert, user: "AdminUser") -> None:
    record_event(s, actor=user, action="preferences.alert.delete", entity_type="InventoryAlert", entity_id=str(a.id), metadata={"name": a.name})
    s.delete(a)
    s.flush()


def evaluate_alerts(s: "Session") -> list[dict]:
    """Stock rows at or below the threshold of each active alert."""
    out = []
    for alert in s.query(InventoryAlert).filter(InventoryAlert.is_active.is_(True)).order_by(InventoryAlert.name.asc()):
        q = (
            s.query(WarehouseStock)
            .join(Article, Article.id == WarehouseStock.article_id)
            .join(Warehouse, Warehouse.id == WarehouseStock.warehouse_id)
            .filter(WarehouseStock.quantity_retail <= alert.threshold, Article.is_active.is_(True))
        )
        if alert.unit_code:
            q = q.filter(Article.retail_unit == alert.unit_code)
        rows = q.order_by(Article.article_code.asc(), Warehouse.code.asc()).all()
        out.append(
            {
                "alert": alert_to_dict(alert),
                "items": [
                    {
                        "article_code": r.article.article_code,
                        "article_name": r.article.name,
                        "warehouse_code": r.warehouse.code,
                        "quantity_retail": round(float(r.quantity_retail), 6),
                    }
                    for r in rows
                ],
            }
        )
    return out
