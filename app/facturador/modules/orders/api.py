from __future__ import annotations

from flask import Blueprint, request

from app.facturador.db import db_session
from app.facturador.errors import NotFoundError, created, ok, raise_for_business_error
from app.facturador.modules.orders.service import (
    ORDER_STATUSES,
    add_item,
    cancel_order,
    create_order,
    get_order,
    item_to_dict,
    list_orders,
    order_to_dict,
    remove_item,
    update_item,
    update_order,
)
from app.facturador.rbac import current_actor, require_restaurant_mode, require_session
from app.facturador.utils import clean_code, json_body

bp = Blueprint("orders", __name__)

_CONFLICTS = ("comandas abiertas",)


def _order_or_404(s, order_id: int):
    order = get_order(s, order_id)
    if not order:
        raise NotFoundError("Comanda no encontrada")
    return order


@bp.get("")
@require_restaurant_mode
@require_session
def orders_list():
    s = db_session()
    status = clean_code(request.args.get("status")) or "OPEN"
    if status not in ORDER_STATUSES:
        status = "OPEN"
    rows = list_orders(s, status=status, table_id=request.args.get("table"))
    return ok(items=[order_to_dict(o) for o in rows])


@bp.post("")
@require_restaurant_mode
@require_session
def orders_create():
    s = db_session()
    try:
        order = create_order(s, json_body(), current_actor())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return created(order=order_to_dict(order))


@bp.get("/<int:order_id>")
@require_restaurant_mode
@require_session
def orders_detail(order_id: int):
    s = db_session()
    return ok(order=order_to_dict(_order_or_404(s, order_id)))


@bp.patch("/<int:order_id>")
@require_restaurant_mode
@require_session
def orders_update(order_id: int):
    s = db_session()
    order = _order_or_404(s, order_id)
    try:
        update_order(s, order, json_body(), current_actor())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_CONFLICTS)
    s.commit()
    return ok(order=order_to_dict(order))


@bp.post("/<int:order_id>/cancel")
@require_restaurant_mode
@require_session
def orders_cancel(order_id: int):
    s = db_session()
    order = _order_or_404(s, order_id)
    try:
        cancel_order(s, order, json_body().get("reason"), current_actor())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_CONFLICTS)
    s.commit()
    return ok(order=order_to_dict(order))


@bp.post("/<int:order_id>/items")
@require_restaurant_mode
@require_session
def order_items_add(order_id: int):
    s = db_session()
    order = _order_or_404(s, order_id)
    try:
        item = add_item(s, order, json_body(), current_actor())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_CONFLICTS)
    s.commit()
    return created(item=item_to_dict(item), order=order_to_dict(order))


@bp.patch("/<int:order_id>/items/<int:item_id>")
@require_restaurant_mode
@require_session
def order_items_update(order_id: int, item_id: int):
    s = db_session()
    order = _order_or_404(s, order_id)
    try:
        item = update_item(s, order, item_id, json_body(), current_actor())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_CONFLICTS)
    s.commit()
    return ok(item=item_to_dict(item), order=order_to_dict(order))


@bp.delete("/<int:order_id>/items/<int:item_id>")
@require_restaurant_mode
@require_session
def order_items_delete(order_id: int, item_id: int):
    s = db_session()
    order = _order_or_404(s, order_id)
    try:
        remove_item(s, order, item_id, current_actor())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_CONFLICTS)
    s.commit()
    return ok(order=order_to_dict(order))
