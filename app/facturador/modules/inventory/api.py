from __future__ import annotations

from flask import Blueprint, request

from app.facturador.constants import PERM_INVENTORY_MANAGE
from app.facturador.db import db_session
from app.facturador.errors import NotFoundError, created, ok, raise_for_business_error
from app.facturador.modules.catalog.service import (
    create_warehouse,
    get_warehouse_by_code,
    list_warehouses,
    update_warehouse,
    warehouse_to_dict,
)
from app.facturador.modules.inventory.service import (
    get_transaction_document,
    list_kardex,
    list_transactions,
    register_adjustment,
    register_consumption,
    register_purchase,
    register_transfer,
    stock_summary,
    transaction_to_dict,
)
from app.facturador.rbac import current_admin, require_admin_session, require_permissions
from app.facturador.utils import json_body, parse_bool, parse_csv, parse_date, to_int

bp = Blueprint("inventory", __name__)

_STOCK_CONFLICT = ("Existencias insuficientes",)


def _post(register_fn):
    s = db_session()
    try:
        tx = register_fn(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_STOCK_CONFLICT)
    s.commit()
    return created(transaction=transaction_to_dict(tx, include_entries=True))


@bp.post("/compras")
@require_permissions(PERM_INVENTORY_MANAGE)
def purchases_create():
    return _post(register_purchase)


@bp.post("/consumos")
@require_permissions(PERM_INVENTORY_MANAGE)
def consumptions_create():
    return _post(register_consumption)


@bp.post("/ajustes")
@require_permissions(PERM_INVENTORY_MANAGE)
def adjustments_create():
    return _post(register_adjustment)


@bp.post("/traspasos")
@require_permissions(PERM_INVENTORY_MANAGE)
def transfers_create():
    return _post(register_transfer)


@bp.get("/existencias")
@require_admin_session
def stock_list():
    s = db_session()
    items = stock_summary(s, warehouse_code=request.args.get("warehouse"), article=request.args.get("article"))
    return ok(items=items)


@bp.get("/kardex")
@require_admin_session
def kardex_list():
    s = db_session()
    try:
        items = list_kardex(
            s,
            article_code=request.args.get("article"),
            warehouse_code=request.args.get("warehouse"),
            date_from=parse_date(request.args.get("from")),
            date_to=parse_date(request.args.get("to")),
        )
    except ValueError as e:
        raise_for_business_error(e)
    return ok(items=items)


@bp.get("/documentos")
@require_admin_session
def documents_list():
    s = db_session()
    try:
        rows = list_transactions(
            s,
            types=parse_csv(request.args.get("type")),
            warehouse_codes=parse_csv(request.args.get("warehouse")),
            search=request.args.get("q"),
            date_from=parse_date(request.args.get("from")),
            date_to=parse_date(request.args.get("to")),
            limit=to_int(request.args.get("limit")),
        )
    except ValueError as e:
        raise_for_business_error(e)
    return ok(items=[transaction_to_dict(tx) for tx in rows])


@bp.get("/documentos/<code>")
@require_admin_session
def document_detail(code: str):
    s = db_session()
    tx = get_transaction_document(s, code)
    if not tx:
        raise NotFoundError("Documento de inventario no encontrado")
    return ok(transaction=transaction_to_dict(tx, include_entries=True))


# ---------- Warehouses ----------
@bp.get("/warehouses")
@require_admin_session
def warehouses_list():
    s = db_session()
    rows = list_warehouses(s, include_inactive=parse_bool(request.args.get("includeInactive")))
    return ok(items=[warehouse_to_dict(w) for w in rows])


@bp.post("/warehouses")
@require_permissions(PERM_INVENTORY_MANAGE)
def warehouses_create():
    s = db_session()
    try:
        w = create_warehouse(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("Ya existe",))
    s.commit()
    return created(warehouse=warehouse_to_dict(w))


@bp.patch("/warehouses/<code>")
@require_permissions(PERM_INVENTORY_MANAGE)
def warehouses_update(code: str):
    s = db_session()
    w = get_warehouse_by_code(s, code, active_only=False)
    if not w:
        raise NotFoundError("Almacén no encontrado")
    try:
        update_warehouse(s, w, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(warehouse=warehouse_to_dict(w))
