from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from app.facturador.audit import record_event
from app.facturador.models import Waiter
from app.facturador.modules.orders.models import Order, OrderItem
from app.facturador.modules.tables.models import DiningTable
from app.facturador.modules.tables.service import sync_table_status
from app.facturador.utils import clean_code, clean_str, iso, round_money, to_float, to_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser

logger = logging.getLogger(__name__)

STATUS_OPEN = "OPEN"
STATUS_CANCELLED = "CANCELLED"
STATUS_INVOICED = "INVOICED"
ORDER_STATUSES = (STATUS_OPEN, STATUS_CANCELLED, STATUS_INVOICED)
TABLE_STATUS_BY_ORDER = {STATUS_OPEN: "normal", STATUS_INVOICED: "facturado", STATUS_CANCELLED: "anulado"}

NOT_EDITABLE_MESSAGE = "Solo se pueden modificar comandas abiertas"


def _load_modifiers(raw: str | None) -> list[str]:
    try:
        value = json.loads(raw or "[]")
    except (TypeError, ValueError):
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


def item_to_dict(it: OrderItem) -> dict:
    return {
        "id": it.id,
        "article_code": it.article_code,
        "description": it.description,
        "quantity": it.quantity,
        "unit_price": it.unit_price,
        "line_total": round_money(float(it.quantity) * float(it.unit_price)),
        "modifiers": _load_modifiers(it.modifiers),
        "notes": it.notes,
    }


def order_to_dict(o: Order) -> dict:
    items = [item_to_dict(it) for it in o.items]
    return {
        "id": o.id,
        "order_code": o.order_code,
        "table_id": o.table_id,
        "waiter_code": o.waiter_code,
        "waiter_name": o.waiter_name,
        "guests": o.guests,
        "status": o.status,
        "notes": o.notes,
        "opened_at": iso(o.opened_at),
        "closed_at": iso(o.closed_at),
        "items": items,
        "total": round_money(sum(it["line_total"] for it in items)),
    }


def list_orders(s: "Session", *, status: str | None = STATUS_OPEN, table_id: str | None = None) -> list[Order]:
    q = s.query(Order)
    if status:
        q = q.filter(Order.status == status)
    if table_id:
        q = q.filter(Order.table_id == table_id)
    return q.order_by(Order.opened_at.asc(), Order.id.asc()).all()


def get_order(s: "Session", order_id: int) -> Order | None:
    return s.get(Order, order_id)


def get_open_order_for_table(s: "Session", table_id: str) -> Order | None:
    return (
        s.query(Order)
        .filter(Order.table_id == table_id, Order.status == STATUS_OPEN)
        .order_by(Order.id.desc())
        .first()
    )


def _item_fields(raw: dict) -> dict:
    code = clean_code(raw.get("article_code"))
    description = clean_str(raw.get("description"), 200)
    if not code or not description:
        raise ValueError("El artículo necesita código y nombre")
    quantity = to_float(raw.get("quantity"))
    if quantity is None or quantity <= 0:
        raise ValueError("La cantidad debe ser mayor a cero")
    unit_price = to_float(raw.get("unit_price"), 0.0)
    if unit_price is None or unit_price < 0:
        raise ValueError("El precio no puede ser negativo")
    modifiers = raw.get("modifiers") or []
    if not isinstance(modifiers, list):
        raise ValueError("Los modificadores deben ser una lista")
    return {
        "article_code": code[:40],
        "description": description,
        "quantity": quantity,
        "unit_price": round_money(unit_price),
        "modifiers": json.dumps([str(m) for m in modifiers]),
        "notes": clean_str(raw.get("notes"), 300),
    }


def _ensure_open(order: Order) -> None:
    if order.status != STATUS_OPEN:
        raise ValueError(NOT_EDITABLE_MESSAGE)


def _touch(s: "Session", order: Order) -> None:
    order.updated_at = datetime.utcnow()
    s.flush()
    if order.table_id:
        sync_table_status(s, order.table_id, TABLE_STATUS_BY_ORDER[order.status])


def create_order(s: "Session", payload: dict, actor: "AdminUser | Waiter") -> Order:
    table_id = clean_str(payload.get("table_id"), 40)
    if table_id and s.get(DiningTable, table_id) is None:
        raise ValueError("La mesa indicada no existe")
    guests = to_int(payload.get("guests"), 1)
    if guests is None or guests <= 0:
        raise ValueError("El número de comensales debe ser mayor a cero")

    if isinstance(actor, Waiter):
        waiter_code, waiter_name = actor.code, actor.full_name
    else:
        waiter_code = clean_code(payload.get("waiter_code")) or None
        waiter_name = clean_str(payload.get("waiter_name"), 150)

    order = Order(
        table_id=table_id,
        waiter_code=waiter_code,
        waiter_name=waiter_name,
        guests=guests,
        status=STATUS_OPEN,
        notes=clean_str(payload.get("notes"), 500),
    )
    order.items = [OrderItem(**_item_fields(raw)) for raw in payload.get("items") or []]
    s.add(order)
    s.flush()
    order.order_code = f"ORD-{order.id:04d}"
    _touch(s, order)
    record_event(s, actor=actor, action="order.create", entity_type="Order", entity_id=str(order.id), metadata={"code": order.order_code, "table": table_id})
    return order


def add_item(s: "Session", order: Order, payload: dict, actor: "AdminUser | Waiter") -> OrderItem:
    _ensure_open(order)
    item = OrderItem(**_item_fields(payload))
    order.items.append(item)
    _touch(s, order)
    record_event(s, actor=actor, action="order.item.add", entity_type="Order", entity_id=str(order.id), metadata={"article": item.article_code})
    return item


def _find_item(order: Order, item_id: int) -> OrderItem:
    for it in order.items:
        if it.id == item_id:
            return it
    raise ValueError("El artículo indicado no existe en la comanda")


def update_item(s: "Session", order: Order, item_id: int, payload: dict, actor: "AdminUser | Waiter") -> OrderItem:
    _ensure_open(order)
    item = _find_item(order, item_id)
    merged = {**item_to_dict(item), **payload}
    for key, value in _item_fields(merged).items():
        setattr(item, key, value)
    _touch(s, order)
    record_event(s, actor=actor, action="order.item.edit", entity_type="Order", entity_id=str(order.id), metadata={"item_id": item_id})
    return item


def remove_item(s: "Session", order: Order, item_id: int, actor: "AdminUser | Waiter") -> None:
    _ensure_open(order)
    order.items.remove(_find_item(order, item_id))
    _touch(s, order)
    record_event(s, actor=actor, action="order.item.remove", entity_type="Order", entity_id=str(order.id), metadata={"item_id": item_id})


def update_order(s: "Session", order: Order, payload: dict, actor: "AdminUser | Waiter") -> Order:
    _ensure_open(order)
    if "notes" in payload:
        order.notes = clean_str(payload.get("notes"), 500)
    if "guests" in payload:
        guests = to_int(payload.get("guests"))
        if guests is None or guests <= 0:
            raise ValueError("El número de comensales debe ser mayor a cero")
        order.guests = guests
    _touch(s, order)
    record_event(s, actor=actor, action="order.edit", entity_type="Order", entity_id=str(order.id))
    return order


def cancel_order(s: "Session", order: Order, reason: str | None, actor: "AdminUser | Waiter") -> Order:
    _ensure_open(order)
    order.status = STATUS_CANCELLED
    order.closed_at = datetime.utcnow()
    _touch(s, order)
    record_event(s, actor=actor, action="order.cancel", entity_type="Order", entity_id=str(order.id), reason=clean_str(reason, 300))
    return order


def mark_order_invoiced(s: "Session", order_id: int, actor: "AdminUser | Waiter | None") -> Order:
    order = s.get(Order, order_id)
    if order is None:
        raise ValueError("La comanda indicada no existe")
    if order.status == STATUS_INVOICED:
        raise ValueError("La comanda ya fue facturada")
    if order.status == STATUS_CANCELLED:
        raise ValueError("La comanda está anulada")
    order.status = STATUS_INVOICED
    order.closed_at = datetime.utcnow()
    _touch(s, order)
    record_event(s, actor=actor, action="order.invoice", entity_type="Order", entity_id=str(order.id), metadata={"code": order.order_code})
    return order


def sync_waiter_order_for_table(s: "Session", table_id: str, waiter: Waiter, sent_items: list[dict]) -> Order | None:
    """
    Mirror the items a waiter sent to the kitchen into the table's OPEN order.

    Creates the order when there is none and something was sent. Returns None
    when there is nothing to sync.
    """
    order = get_open_order_for_table(s, table_id)
    if order is None and not sent_items:
        return None

    items = [
        _item_fields(
            {
                "article_code": raw.get("articleCode"),
                "description": raw.get("name"),
                "quantity": raw.get("quantity"),
                "unit_price": raw.get("unitPrice"),
                "notes": raw.get("notes"),
            }
        )
        for raw in sent_items
    ]

    if order is None:
        order = Order(table_id=table_id, waiter_code=waiter.code, waiter_name=waiter.full_name, guests=1, status=STATUS_OPEN)
        s.add(order)
        s.flush()
        order.order_code = f"ORD-{order.id:04d}"
        action = "order.create"
    else:
        action = "order.sync"

    order.items = [OrderItem(**fields) for fields in items]
    order.waiter_code = waiter.code
    order.waiter_name = waiter.full_name
    _touch(s, order)
    record_event(s, actor=waiter, action=action, entity_type="Order", entity_id=str(order.id), metadata={"table": table_id, "items": len(items)})
    logger.info("Synced %s item(s) into %s for table %s", len(items), order.order_code, table_id)
    return order
