from __future__ import annotations

from flask import Blueprint, request

from app.facturador.constants import PERM_CASH_REPORT
from app.facturador.db import db_session
from app.facturador.errors import ok, raise_for_business_error
from app.facturador.modules.reports.service import (
    inventory_movements,
    invoice_status,
    purchases,
    resolve_range,
    sales_summary,
    top_articles,
    waiter_sales,
)
from app.facturador.rbac import require_permissions
from app.facturador.utils import parse_date, to_int

bp = Blueprint("reports", __name__)

_DENIED = "No tienes permisos para consultar reportes"


def _range():
    return resolve_range(parse_date(request.args.get("from")), parse_date(request.args.get("to")))


@bp.get("/ventas")
@require_permissions(PERM_CASH_REPORT, message=_DENIED)
def report_sales():
    s = db_session()
    try:
        report = sales_summary(s, *_range())
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)


@bp.get("/meseros")
@require_permissions(PERM_CASH_REPORT, message=_DENIED)
def report_waiters():
    s = db_session()
    try:
        report = waiter_sales(s, *_range())
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)


@bp.get("/articulos")
@require_permissions(PERM_CASH_REPORT, message=_DENIED)
def report_top_articles():
    s = db_session()
    try:
        report = top_articles(s, *_range(), limit=to_int(request.args.get("limit"), 10))
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)


@bp.get("/facturas")
@require_permissions(PERM_CASH_REPORT, message=_DENIED)
def report_invoice_status():
    s = db_session()
    try:
        report = invoice_status(s, *_range())
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)


@bp.get("/compras")
@require_permissions(PERM_CASH_REPORT, message=_DENIED)
def report_purchases():
    s = db_session()
    try:
        report = purchases(s, *_range())
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)


@bp.get("/inventario")
@require_permissions(PERM_CASH_REPORT, message=_DENIED)
def report_inventory_movements():
    s = db_session()
    try:
        report = inventory_movements(s, *_range(), warehouse_code=request.args.get("warehouse"))
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)
