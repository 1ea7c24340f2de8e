from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING

from app.facturador.audit import record_event
from app.facturador.modules.orders.models import Order
from app.facturador.modules.tables.models import DiningTable, TableReservation, TableState, TableZone
from app.facturador.utils import clean_str, iso, parse_bool, parse_datetime, slugify, to_float, to_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser, Waiter

TABLE_STATUSES = ("normal", "facturado", "anulado")
RESERVATION_STATUSES = ("holding", "seated")


def _load_items(raw: str | None) -> list[dict]:
    try:
        value = json.loads(raw or "[]")
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


def normalize_items(raw_items) -> list[dict]:
    """Validate waiter order lines: {articleCode, name, quantity, unitPrice, notes}."""
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValueError("Los artículos de la mesa deben ser una lista")
    out = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValueError("Artículo de mesa inválido")
        code = clean_str(raw.get("articleCode"), 40)
        name = clean_str(raw.get("name"), 200)
        if not code or not name:
            raise ValueError("El artículo necesita código y nombre")
        quantity = to_float(raw.get("quantity"))
        if quantity is None or quantity <= 0:
            raise ValueError("La cantidad debe ser mayor a cero")
        unit_price = to_float(raw.get("unitPrice"), 0.0)
        if unit_price is None or unit_price < 0:
            raise ValueError("El precio no puede ser negativo")
        out.append(
            {
                "articleCode": code.upper(),
                "name": name,
                "quantity": quantity,
                "unitPrice": unit_price,
                "notes": clean_str(raw.get("notes"), 300),
            }
        )
    return out


# ---------- Zones ----------
def zone_to_dict(z: TableZone) -> dict:
    return {"id": z.id, "name": z.name, "sort_order": z.sort_order, "is_active": z.is_active}


def list_zones(s: "Session") -> list[TableZone]:
    return s.query(TableZone).order_by(TableZone.sort_order.asc(), TableZone.name.asc()).all()


def create_zone(s: "Session", payload: dict, user: "AdminUser") -> TableZone:
    name = clean_str(payload.get("name"), 120)
    if not name:
        raise ValueError("El nombre de la zona es obligatorio")
    zone_id = slugify(name)
    if not zone_id:
        raise ValueError("El nombre de la zona no es válido")
    if s.get(TableZone, zone_id) is not None:
        raise ValueError("Ya existe una zona con ese nombre")
    sort_order = to_int(payload.get("sort_order"))
    if sort_order is None:
        sort_order = s.query(TableZone).count()
    zone = TableZone(id=zone_id, name=name, sort_order=sort_order, is_active=parse_bool(payload.get("is_active"), True))
    s.add(zone)
    s.flush()
    record_event(s, actor=user, action="table_zone.create", entity_type="TableZone", entity_id=zone.id)
    return zone


def update_zone(s: "Session", zone: TableZone, payload: dict, user: "AdminUser") -> TableZone:
    if "name" in payload:
        name = clean_str(payload.get("name"), 120)
        if not name:
            raise ValueError("El nombre de la zona es obligatorio")
        zone.name = name
    if "sort_order" in payload:
        zone.sort_order = to_int(payload.get("sort_order"), zone.sort_order)
    if "is_active" in payload:
        zone.is_active = parse_bool(payload.get("is_active"), zone.is_active)
    zone.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=user, action="table_zone.edit", entity_type="TableZone", entity_id=zone.id)
    return zone


def delete_zone(s: "Session", zone: TableZone, user: "AdminUser") -> None:
    if s.query(DiningTable).filter(DiningTable.zone_id == zone.id).count():
        raise ValueError("No puedes eliminar una zona con mesas asignadas")
    record_event(s, actor=user, action="table_zone.delete", entity_type="TableZone", entity_id=zone.id)
    s.delete(zone)
    s.flush()


# ---------- Tables ----------
def is_available(t: DiningTable) -> bool:
    if t.reservation is not None:
        return False
    state = t.state
    if state is None:
        return True
    if state.assigned_waiter_id is not None:
        return False
    if _load_items(state.pending_items):
        return False
    if state.status == "normal" and _load_items(state.sent_items):
        return False
    return True


def state_to_dict(state: TableState | None) -> dict:
    if state is None:
        return {"assigned_waiter_id": None, "assigned_waiter_name": None, "status": "normal", "pending_items": [], "sent_items": []}
    return {
        "assigned_waiter_id": state.assigned_waiter_id,
        "assigned_waiter_name": state.assigned_waiter_name,
        "status": state.status,
        "pending_items": _load_items(state.pending_items),
        "sent_items": _load_items(state.sent_items),
        "updated_at": iso(state.updated_at),
    }


def reservation_to_dict(r: TableReservation | None) -> dict | None:
    if r is None:
        return None
    return {
        "id": r.id,
        "table_id": r.table_id,
        "reserved_by": r.reserved_by,
        "contact": r.contact,
        "party_size": r.party_size,
        "scheduled_for": iso(r.scheduled_for),
        "status": r.status,
        "notes": r.notes,
    }


def table_to_dict(t: DiningTable) -> dict:
    return {
        "id": t.id,
        "label": t.label,
        "zone_id": t.zone_id,
        "zone_name": t.zone.name if t.zone else None,
        "capacity": t.capacity,
        "is_active": t.is_active,
        "sort_order": t.sort_order,
        "state": state_to_dict(t.state),
        "reservation": reservation_to_dict(t.reservation),
        "available": is_available(t),
    }


def list_tables(s: "Session", *, include_inactive: bool = True) -> list[DiningTable]:
    q = s.query(DiningTable)
    if not include_inactive:
        q = q.filter(DiningTable.is_active.is_(True))
    return q.order_by(DiningTable.sort_order.asc(), DiningTable.label.asc()).all()


def get_table(s: "Session", table_id: str) -> DiningTable | None:
    return s.get(DiningTable, (table_id or "").strip().lower())


def _resolve_zone(s: "Session", zone_id) -> str | None:
    zone_id = clean_str(zone_id, 40)
    if not zone_id:
        return None
    if s.get(TableZone, zone_id) is None:
        raise ValueError("La zona seleccionada no existe")
    return zone_id


def _capacity(value) -> int | None:
    if value is None or value == "":
        return None
    capacity = to_int(value)
    if capacity is None or capacity <= 0:
        raise ValueError("La capacidad debe ser mayor a cero")
    return capacity


def create_table(s: "Session", payload: dict, user: "AdminUser") -> DiningTable:
    label = clean_str(payload.get("label"), 120)
    if not label:
        raise ValueError("El nombre de la mesa es obligatorio")
    table_id = slugify(clean_str(payload.get("id")) or label)
    if not table_id:
        raise ValueError("El código de la mesa no es válido")
    if s.get(DiningTable, table_id) is not None:
        raise ValueError("Ya existe una mesa con ese código")
    sort_order = to_int(payload.get("sort_order"))
    if sort_order is None:
        sort_order = s.query(DiningTable).count() + 1
    t = DiningTable(
        id=table_id,
        label=label,
        zone_id=_resolve_zone(s, payload.get("zone_id")),
        capacity=_capacity(payload.get("capacity")),
        is_active=parse_bool(payload.get("is_active"), True),
        sort_order=sort_order,
    )
    t.state = TableState(table_id=table_id)
    s.add(t)
    s.flush()
    record_event(s, actor=user, action="table.create", entity_type="DiningTable", entity_id=t.id, metadata={"label": label})
    return t


def update_table(s: "Session", t: DiningTable, payload: dict, user: "AdminUser") -> DiningTable:
    if "label" in payload:
        label = clean_str(payload.get("label"), 120)
        if not label:
            raise ValueError("El nombre de la mesa es obligatorio")
        t.label = label
    if "zone_id" in payload:
        t.zone_id = _resolve_zone(s, payload.get("zone_id"))
    if "capacity" in payload:
        t.capacity = _capacity(payload.get("capacity"))
    if "is_active" in payload:
        t.is_active = parse_bool(payload.get("is_active"), t.is_active)
    if "sort_order" in payload:
        t.sort_order = to_int(payload.get("sort_order"), t.sort_order)
    t.updated_at = datetime.utcnow()
    s.flush()
    s.expire(t, ["zone"])
    record_event(s, actor=user, action="table.edit", entity_type="DiningTable", entity_id=t.id)
    return t


def delete_table(s: "Session", t: DiningTable, user: "AdminUser") -> None:
    active_order = s.query(Order).filter(Order.table_id == t.id, Order.status == "OPEN").first()
    if active_order is not None:
        raise ValueError("No puedes eliminar una mesa con una comanda activa")
    if t.reservation is not None:
        raise ValueError("No puedes eliminar una mesa con una reservación activa")
    record_event(s, actor=user, action="table.delete", entity_type="DiningTable", entity_id=t.id, metadata={"label": t.label})
    s.delete(t)
    s.flush()
    for position, remaining in enumerate(list_tables(s), start=1):
        remaining.sort_order = position
    s.flush()


def _get_state(s: "Session", t: DiningTable) -> TableState:
    if t.state is None:
        t.state = TableState(table_id=t.id)
        s.flush()
    return t.state


def sync_table_status(s: "Session", table_id: str, status: str) -> None:
    t = s.get(DiningTable, table_id)
    if t is None:
        return
    state = _get_state(s, t)
    state.status = status
    state.updated_at = datetime.utcnow()
    s.flush()


# ---------- Reservations ----------
def save_reservation(s: "Session", t: DiningTable, payload: dict, user: "AdminUser") -> TableReservation:
    """Create or replace the table's single reservation."""
    reserved_by = clean_str(payload.get("reserved_by"), 150)
    if not reserved_by:
        raise ValueError("El nombre de quien reserva es obligatorio")
    party_size = payload.get("party_size")
    if party_size is not None and party_size != "":
        party_size = to_int(party_size)
        if party_size is None or party_size <= 0:
            raise ValueError("El número de personas debe ser mayor a cero")
    else:
        party_size = None
    status = (clean_str(payload.get("status")) or "holding").lower()
    if status not in RESERVATION_STATUSES:
        raise ValueError("Estado de reservación inválido")

    r = t.reservation
    creating = r is None
    if creating:
        r = TableReservation(table_id=t.id, created_by=user.id)
        t.reservation = r
    r.reserved_by = reserved_by
    r.contact = clean_str(payload.get("contact"), 150)
    r.party_size = party_size
    r.scheduled_for = parse_datetime(payload.get("scheduled_for"))
    r.status = status
    r.notes = clean_str(payload.get("notes"), 300)
    r.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="table.reservation.create" if creating else "table.reservation.edit",
        entity_type="DiningTable",
        entity_id=t.id,
        metadata={"reserved_by": reserved_by, "status": status},
    )
    return r


def delete_reservation(s: "Session", t: DiningTable, user: "AdminUser") -> None:
    if t.reservation is None:
        raise ValueError("La mesa no tiene reservación")
    t.reservation = None
    s.flush()
    record_event(s, actor=user, action="table.reservation.delete", entity_type="DiningTable", entity_id=t.id)


# ---------- Waiter operations ----------
def _table_for_waiter(s: "Session", table_id: str, waiter: "Waiter") -> tuple[DiningTable, TableState]:
    t = get_table(s, table_id)
    if t is None:
        raise ValueError("Mesa no encontrada")
    if not t.is_active:
        raise ValueError("La mesa está inactiva")
    state = _get_state(s, t)
    held_by_other = state.assigned_waiter_id is not None and state.assigned_waiter_id != waiter.id
    if held_by_other and state.status == "normal":
        raise ValueError("La mesa está asignada a otro mesero")
    if state.status in ("facturado", "anulado"):
        state.status = "normal"
        state.pending_items = "[]"
        state.sent_items = "[]"
    return t, state


def claim_table(s: "Session", table_id: str, waiter: "Waiter") -> DiningTable:
    t, state = _table_for_waiter(s, table_id, waiter)
    state.assigned_waiter_id = waiter.id
    state.assigned_waiter_name = waiter.full_name
    state.updated_at = datetime.utcnow()
    if t.reservation is not None and t.reservation.status == "holding":
        t.reservation.status = "seated"
        t.reservation.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=waiter, action="table.claim", entity_type="DiningTable", entity_id=t.id)
    return t


def save_table_order(s: "Session", table_id: str, waiter: "Waiter", payload: dict) -> DiningTable:
    t, state = _table_for_waiter(s, table_id, waiter)
    pending = normalize_items(payload.get("pendingItems"))
    sent = normalize_items(payload.get("sentItems"))
    state.assigned_waiter_id = waiter.id
    state.assigned_waiter_name = waiter.full_name
    state.pending_items = json.dumps(pending)
    state.sent_items = json.dumps(sent)
    state.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=waiter,
        action="table.order.save",
        entity_type="DiningTable",
        entity_id=t.id,
        metadata={"pending": len(pending), "sent": len(sent)},
    )
    return t


def list_waiter_tables(s: "Session") -> list[DiningTable]:
    return list_tables(s, include_inactive=False)
