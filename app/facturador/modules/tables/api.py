from __future__ import annotations

from flask import Blueprint, request

from app.facturador.db import db_session
from app.facturador.errors import NotFoundError, created, ok, raise_for_business_error
from app.facturador.modules.orders.service import order_to_dict, sync_waiter_order_for_table
from app.facturador.modules.tables.models import TableZone
from app.facturador.modules.tables.service import (
    claim_table,
    create_table,
    create_zone,
    delete_reservation,
    delete_table,
    delete_zone,
    get_table,
    list_tables,
    list_waiter_tables,
    list_zones,
    reservation_to_dict,
    save_reservation,
    save_table_order,
    state_to_dict,
    table_to_dict,
    update_table,
    update_zone,
    zone_to_dict,
)
from app.facturador.rbac import (
    current_admin,
    current_waiter,
    require_admin_session,
    require_administrator,
    require_restaurant_mode,
    require_waiter,
)
from app.facturador.utils import json_body, parse_bool

bp = Blueprint("tables", __name__)

_TABLE_CONFLICTS = ("Ya existe", "comanda activa", "reservación activa", "mesas asignadas", "asignada a otro mesero")


def _table_or_404(s, table_id: str):
    t = get_table(s, table_id)
    if not t:
        raise NotFoundError("Mesa no encontrada")
    return t


# ---------- Zones ----------
@bp.get("/tables/zones")
@require_restaurant_mode
@require_admin_session
def zones_list():
    s = db_session()
    return ok(items=[zone_to_dict(z) for z in list_zones(s)])


@bp.post("/tables/zones")
@require_restaurant_mode
@require_administrator
def zones_create():
    s = db_session()
    try:
        zone = create_zone(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_TABLE_CONFLICTS)
    s.commit()
    return created(zone=zone_to_dict(zone))


@bp.patch("/tables/zones/<zone_id>")
@require_restaurant_mode
@require_administrator
def zones_update(zone_id: str):
    s = db_session()
    zone = s.get(TableZone, zone_id)
    if not zone:
        raise NotFoundError("Zona no encontrada")
    try:
        update_zone(s, zone, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(zone=zone_to_dict(zone))


@bp.delete("/tables/zones/<zone_id>")
@require_restaurant_mode
@require_administrator
def zones_delete(zone_id: str):
    s = db_session()
    zone = s.get(TableZone, zone_id)
    if not zone:
        raise NotFoundError("Zona no encontrada")
    try:
        delete_zone(s, zone, current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_TABLE_CONFLICTS)
    s.commit()
    return ok()


# ---------- Tables ----------
@bp.get("/tables")
@require_restaurant_mode
@require_admin_session
def tables_list():
    s = db_session()
    rows = list_tables(s, include_inactive=parse_bool(request.args.get("includeInactive"), True))
    return ok(items=[table_to_dict(t) for t in rows])


@bp.post("/tables")
@require_restaurant_mode
@require_administrator
def tables_create():
    s = db_session()
    try:
        t = create_table(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_TABLE_CONFLICTS, not_found_markers=("no existe",))
    s.commit()
    return created(table=table_to_dict(t))


@bp.patch("/tables/<table_id>")
@require_restaurant_mode
@require_administrator
def tables_update(table_id: str):
    s = db_session()
    t = _table_or_404(s, table_id)
    try:
        update_table(s, t, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(table=table_to_dict(t))


@bp.delete("/tables/<table_id>")
@require_restaurant_mode
@require_administrator
def tables_delete(table_id: str):
    s = db_session()
    t = _table_or_404(s, table_id)
    try:
        delete_table(s, t, current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_TABLE_CONFLICTS)
    s.commit()
    return ok()


# ---------- Reservations ----------
@bp.put("/tables/<table_id>/reservation")
@require_restaurant_mode
@require_admin_session
def reservation_save(table_id: str):
    s = db_session()
    t = _table_or_404(s, table_id)
    try:
        r = save_reservation(s, t, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(reservation=reservation_to_dict(r), table=table_to_dict(t))


@bp.delete("/tables/<table_id>/reservation")
@require_restaurant_mode
@require_admin_session
def reservation_delete(table_id: str):
    s = db_session()
    t = _table_or_404(s, table_id)
    try:
        delete_reservation(s, t, current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(table=table_to_dict(t))


# ---------- Waiter ----------
@bp.get("/meseros/tables")
@require_restaurant_mode
@require_waiter
def waiter_tables():
    s = db_session()
    return ok(items=[table_to_dict(t) for t in list_waiter_tables(s)])


@bp.post("/meseros/tables/select")
@require_restaurant_mode
@require_waiter
def waiter_select_table():
    s = db_session()
    payload = json_body()
    try:
        t = claim_table(s, str(payload.get("table_id") or ""), current_waiter())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_TABLE_CONFLICTS)
    s.commit()
    return ok(table=table_to_dict(t))


@bp.put("/meseros/tables/<table_id>")
@require_restaurant_mode
@require_waiter
def waiter_save_table(table_id: str):
    s = db_session()
    waiter = current_waiter()
    try:
        t = save_table_order(s, table_id, waiter, json_body())
        order = sync_waiter_order_for_table(s, t.id, waiter, state_to_dict(t.state)["sent_items"])
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_TABLE_CONFLICTS)
    s.commit()
    return ok(table=table_to_dict(t), order=order_to_dict(order) if order else None)
