from __future__ import annotations

from flask import Blueprint, current_app, request

from app.facturador.db import db_session
from app.facturador.errors import BadRequestError, NotFoundError, created, ensure_valid, ok, raise_for_business_error
from app.facturador.modules.invoices.models import Invoice
from app.facturador.modules.invoices.service import (
    STATUS_CANCELLED,
    cancel_invoice,
    create_invoice,
    invoice_to_dict,
    list_invoices,
    validate_invoice_payload,
)
from app.facturador.rbac import current_admin, is_retail_mode, require_admin_session, require_facturacion
from app.facturador.utils import clean_code, json_body, parse_date, to_int

bp = Blueprint("invoices", __name__)

_CREATE_CONFLICTS = (
    "abrir una caja",
    "saldo pendiente",
    "consecutivo",
    "Existencias insuficientes",
    "crédito bloqueado",
    "ya fue facturada",
    "comanda está anulada",
)


@bp.post("")
@require_facturacion
def invoices_create():
    payload = json_body()
    ensure_valid(validate_invoice_payload(payload))
    s = db_session()
    try:
        inv = create_invoice(
            s,
            payload,
            current_admin(),
            retail_mode=is_retail_mode(),
            local_currency=current_app.config["LOCAL_CURRENCY_CODE"],
            default_warehouse_code=current_app.config.get("DEFAULT_SALES_WAREHOUSE_CODE"),
        )
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_CREATE_CONFLICTS)
    s.commit()
    return created(invoice=invoice_to_dict(inv))


@bp.get("")
@require_admin_session
def invoices_list():
    s = db_session()
    try:
        date_from = parse_date(request.args.get("from"))
        date_to = parse_date(request.args.get("to"))
    except ValueError as e:
        raise BadRequestError(str(e)) from e
    page = to_int(request.args.get("page"), 1)
    page_size = to_int(request.args.get("pageSize"), 20)
    rows, total = list_invoices(
        s,
        date_from=date_from,
        date_to=date_to,
        search=request.args.get("q"),
        table=request.args.get("table"),
        waiter=request.args.get("waiter"),
        page=page,
        page_size=page_size,
    )
    return ok(
        items=[invoice_to_dict(inv, include_lines=False) for inv in rows],
        total=total,
        page=max(1, page),
        page_size=max(1, min(page_size, 100)),
    )


@bp.get("/<int:invoice_id>")
@require_admin_session
def invoices_detail(invoice_id: int):
    s = db_session()
    inv = s.get(Invoice, invoice_id)
    if not inv:
        raise NotFoundError("Factura no encontrada")
    return ok(invoice=invoice_to_dict(inv))


@bp.patch("/<int:invoice_id>")
@require_facturacion
def invoices_update(invoice_id: int):
    payload = json_body()
    if clean_code(payload.get("status")) != STATUS_CANCELLED:
        raise BadRequestError("Solo se permite anular facturas", errors=["status debe ser ANULADA"])
    s = db_session()
    inv = s.get(Invoice, invoice_id)
    if not inv:
        raise NotFoundError("Factura no encontrada")
    try:
        cancel_invoice(s, inv, payload.get("reason"), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("pagos aplicados",))
    s.commit()
    return ok(invoice=invoice_to_dict(inv))
