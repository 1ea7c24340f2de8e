from __future__ import annotations

from flask import Blueprint, current_app, request

from app.facturador.constants import (
    CXC_VIEW_PERMISSIONS,
    PERM_COLLECTIONS_MANAGE,
    PERM_CREDIT_MANAGE,
    PERM_CUSTOMERS_MANAGE,
    PERM_CXC_MENU,
    PERM_DISPUTES_MANAGE,
    PERM_DOCUMENTS_APPLY,
    PERM_DOCUMENTS_MANAGE,
    PERM_PAYMENT_TERMS_MANAGE,
)
from app.facturador.db import db_session
from app.facturador.errors import NotFoundError, ValidationError, created, ok, raise_for_business_error
from app.facturador.modules.cxc.customers import (
    assign_credit_line,
    create_customer,
    create_payment_term,
    credit_line_to_dict,
    credit_overview,
    customer_summary,
    customer_to_dict,
    delete_payment_term,
    get_customer_by_code,
    get_payment_term_by_code,
    list_credit_lines,
    list_customers,
    list_payment_terms,
    payment_term_to_dict,
    update_credit_line,
    update_customer,
    update_customer_credit_status,
    update_payment_term,
)
from app.facturador.modules.cxc.documents import (
    application_to_dict,
    apply_documents,
    cancel_document,
    create_document,
    delete_application,
    document_to_dict,
    get_document,
    list_applications,
    list_documents,
    update_document,
)
from app.facturador.modules.cxc.followups import (
    collection_log_to_dict,
    create_collection_log,
    create_dispute,
    delete_collection_log,
    dispute_to_dict,
    list_collection_logs,
    list_disputes,
    update_dispute,
)
from app.facturador.modules.cxc.models import CustomerCreditLine, CustomerDispute
from app.facturador.modules.cxc.reports import account_statement, aging_report, cxc_summary, due_schedule
from app.facturador.rbac import current_admin, require_admin_session, require_permissions, require_retail_mode
from app.facturador.utils import json_body, parse_bool, parse_csv, parse_date, to_int

bp = Blueprint("cxc", __name__)

_DUPLICATE = ("Ya existe",)
_DOCUMENT_CONFLICTS = ("Ya existe", "aplicaciones activas", "módulo de facturación")
_VIEW_MESSAGE = "No tienes permisos para consultar Cuentas por Cobrar"


def _customer_or_404(s, code: str):
    customer = get_customer_by_code(s, code)
    if not customer:
        raise NotFoundError("Cliente no encontrado")
    return customer


# ---------- Payment terms ----------
@bp.get("/preferencias/terminos-pago")
@require_retail_mode
@require_admin_session
def payment_terms_list():
    s = db_session()
    terms = list_payment_terms(s, include_inactive=not parse_bool(request.args.get("onlyActive")))
    return ok(items=[payment_term_to_dict(t) for t in terms])


@bp.post("/preferencias/terminos-pago")
@require_retail_mode
@require_permissions(PERM_PAYMENT_TERMS_MANAGE)
def payment_terms_create():
    s = db_session()
    try:
        term = create_payment_term(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_DUPLICATE)
    s.commit()
    return created(term=payment_term_to_dict(term))


@bp.patch("/preferencias/terminos-pago/<code>")
@require_retail_mode
@require_permissions(PERM_PAYMENT_TERMS_MANAGE)
def payment_terms_update(code: str):
    s = db_session()
    term = get_payment_term_by_code(s, code)
    if not term:
        raise NotFoundError("Condición de pago no encontrada")
    try:
        update_payment_term(s, term, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(term=payment_term_to_dict(term))


@bp.delete("/preferencias/terminos-pago/<code>")
@require_retail_mode
@require_permissions(PERM_PAYMENT_TERMS_MANAGE)
def payment_terms_delete(code: str):
    s = db_session()
    term = get_payment_term_by_code(s, code)
    if not term:
        raise NotFoundError("Condición de pago no encontrada")
    try:
        delete_payment_term(s, term, current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("clientes asociados",))
    s.commit()
    return ok()


# ---------- Customers ----------
@bp.get("/cxc/clientes")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, PERM_CUSTOMERS_MANAGE, message=_VIEW_MESSAGE)
def customers_list():
    s = db_session()
    rows = list_customers(s, search=request.args.get("q"), only_active=parse_bool(request.args.get("onlyActive")))
    return ok(items=[customer_summary(c) for c in rows])


@bp.post("/cxc/clientes")
@require_retail_mode
@require_permissions(PERM_CUSTOMERS_MANAGE)
def customers_create():
    s = db_session()
    try:
        customer = create_customer(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_DUPLICATE)
    s.commit()
    return created(customer=customer_to_dict(customer))


@bp.get("/cxc/clientes/<code>")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, PERM_CUSTOMERS_MANAGE, message=_VIEW_MESSAGE)
def customers_detail(code: str):
    s = db_session()
    customer = _customer_or_404(s, code)
    return ok(customer=customer_to_dict(customer), credit=credit_overview(customer))


@bp.patch("/cxc/clientes/<code>")
@require_retail_mode
@require_permissions(PERM_CUSTOMERS_MANAGE)
def customers_update(code: str):
    s = db_session()
    customer = _customer_or_404(s, code)
    try:
        update_customer(s, customer, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(customer=customer_to_dict(customer))


@bp.patch("/cxc/clientes/<code>/credito")
@require_retail_mode
@require_permissions(PERM_CREDIT_MANAGE)
def customers_credit_status(code: str):
    s = db_session()
    customer = _customer_or_404(s, code)
    payload = json_body()
    try:
        update_customer_credit_status(s, customer, payload.get("status") or "", payload.get("reason"), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(customer=customer_to_dict(customer), credit=credit_overview(customer))


# ---------- Documents ----------
@bp.get("/cxc/documentos")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, message=_VIEW_MESSAGE)
def documents_list():
    s = db_session()
    customer_id = to_int(request.args.get("customerId"))
    if customer_id is None and request.args.get("customer"):
        customer_id = _customer_or_404(s, request.args["customer"]).id
    try:
        rows = list_documents(
            s,
            customer_id=customer_id,
            types=parse_csv(request.args.get("type")),
            statuses=parse_csv(request.args.get("status")),
            include_settled=parse_bool(request.args.get("includeSettled")),
            date_from=parse_date(request.args.get("from")),
            date_to=parse_date(request.args.get("to")),
            search=request.args.get("q"),
            order_by=request.args.get("orderBy"),
            direction=request.args.get("direction"),
            limit=to_int(request.args.get("limit")),
        )
    except ValueError as e:
        raise_for_business_error(e)
    return ok(items=[document_to_dict(d) for d in rows])


@bp.post("/cxc/documentos")
@require_retail_mode
@require_permissions(PERM_DOCUMENTS_MANAGE)
def documents_create():
    s = db_session()
    try:
        doc = create_document(s, json_body(), current_admin(), default_currency=current_app.config["LOCAL_CURRENCY_CODE"])
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_DUPLICATE)
    s.commit()
    return created(document=document_to_dict(doc))


@bp.get("/cxc/documentos/<int:document_id>")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, message=_VIEW_MESSAGE)
def documents_detail(document_id: int):
    s = db_session()
    doc = get_document(s, document_id)
    if not doc:
        raise NotFoundError("El documento indicado no existe")
    applications = list_applications(s, document_id=doc.id)
    return ok(document=document_to_dict(doc), applications=[application_to_dict(a) for a in applications])


@bp.patch("/cxc/documentos/<int:document_id>")
@require_retail_mode
@require_permissions(PERM_DOCUMENTS_MANAGE)
def documents_update(document_id: int):
    s = db_session()
    doc = get_document(s, document_id)
    if not doc:
        raise NotFoundError("El documento indicado no existe")
    try:
        update_document(s, doc, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(document=document_to_dict(doc))


@bp.post("/cxc/documentos/<int:document_id>/cancel")
@require_retail_mode
@require_permissions(PERM_DOCUMENTS_MANAGE)
def documents_cancel(document_id: int):
    s = db_session()
    try:
        doc = cancel_document(s, document_id, current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_DOCUMENT_CONFLICTS)
    s.commit()
    return ok(document=document_to_dict(doc))


# ---------- Applications ----------
@bp.get("/cxc/documentos/aplicaciones")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, message=_VIEW_MESSAGE)
def applications_list():
    s = db_session()
    rows = list_applications(
        s,
        document_id=to_int(request.args.get("documentId")),
        customer_id=to_int(request.args.get("customerId")),
    )
    return ok(items=[application_to_dict(a) for a in rows])


@bp.post("/cxc/documentos/aplicaciones")
@require_retail_mode
@require_permissions(PERM_DOCUMENTS_APPLY)
def applications_create():
    s = db_session()
    payload = json_body()
    inputs = payload.get("applications")
    if not isinstance(inputs, list) or not inputs or not all(isinstance(i, dict) for i in inputs):
        raise ValidationError("Datos inválidos", errors=["Debes indicar al menos una aplicación."])
    try:
        rows = apply_documents(s, inputs, current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return created(items=[application_to_dict(a) for a in rows])


@bp.delete("/cxc/documentos/aplicaciones/<int:application_id>")
@require_retail_mode
@require_permissions(PERM_DOCUMENTS_APPLY)
def applications_delete(application_id: int):
    s = db_session()
    try:
        delete_application(s, application_id, current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok()


# ---------- Credit lines ----------
@bp.get("/cxc/credit-lines")
@require_retail_mode
@require_permissions(PERM_CREDIT_MANAGE, PERM_CXC_MENU, message=_VIEW_MESSAGE)
def credit_lines_list():
    s = db_session()
    customer_id = None
    if request.args.get("customer"):
        customer_id = _customer_or_404(s, request.args["customer"]).id
    rows = list_credit_lines(s, customer_id=customer_id, status=request.args.get("status"))
    return ok(items=[credit_line_to_dict(line) for line in rows])


@bp.post("/cxc/credit-lines")
@require_retail_mode
@require_permissions(PERM_CREDIT_MANAGE)
def credit_lines_create():
    s = db_session()
    payload = json_body()
    customer = _customer_or_404(s, payload.get("customer_code") or "")
    try:
        line = assign_credit_line(s, customer, payload, current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return created(credit_line=credit_line_to_dict(line), credit=credit_overview(customer))


@bp.patch("/cxc/credit-lines/<int:line_id>")
@require_retail_mode
@require_permissions(PERM_CREDIT_MANAGE)
def credit_lines_update(line_id: int):
    s = db_session()
    line = s.get(CustomerCreditLine, line_id)
    if not line:
        raise NotFoundError("Línea de crédito no encontrada")
    try:
        update_credit_line(s, line, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(credit_line=credit_line_to_dict(line), credit=credit_overview(line.customer))


# ---------- Collection logs ----------
@bp.get("/cxc/gestiones")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, message=_VIEW_MESSAGE)
def collection_logs_list():
    s = db_session()
    rows = list_collection_logs(
        s,
        customer_id=to_int(request.args.get("customerId")),
        document_id=to_int(request.args.get("documentId")),
    )
    return ok(items=[collection_log_to_dict(log) for log in rows])


@bp.post("/cxc/gestiones")
@require_retail_mode
@require_permissions(PERM_COLLECTIONS_MANAGE)
def collection_logs_create():
    s = db_session()
    try:
        log = create_collection_log(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return created(log=collection_log_to_dict(log))


@bp.delete("/cxc/gestiones/<int:log_id>")
@require_retail_mode
@require_permissions(PERM_COLLECTIONS_MANAGE)
def collection_logs_delete(log_id: int):
    s = db_session()
    try:
        delete_collection_log(s, log_id, current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok()


# ---------- Disputes ----------
@bp.get("/cxc/disputas")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, PERM_DISPUTES_MANAGE, message=_VIEW_MESSAGE)
def disputes_list():
    s = db_session()
    rows = list_disputes(
        s,
        customer_id=to_int(request.args.get("customerId")),
        document_id=to_int(request.args.get("documentId")),
        statuses=parse_csv(request.args.get("status")),
    )
    return ok(items=[dispute_to_dict(d) for d in rows])


@bp.post("/cxc/disputas")
@require_retail_mode
@require_permissions(PERM_DISPUTES_MANAGE)
def disputes_create():
    s = db_session()
    try:
        dispute = create_dispute(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return created(dispute=dispute_to_dict(dispute))


@bp.patch("/cxc/disputas/<int:dispute_id>")
@require_retail_mode
@require_permissions(PERM_DISPUTES_MANAGE)
def disputes_update(dispute_id: int):
    s = db_session()
    dispute = s.get(CustomerDispute, dispute_id)
    if not dispute:
        raise NotFoundError("Disputa no encontrada")
    try:
        update_dispute(s, dispute, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(dispute=dispute_to_dict(dispute))


# ---------- Reports ----------
@bp.get("/reportes/cxc/antiguedad")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, message="No tienes permisos para consultar reportes de CxC")
def report_aging():
    s = db_session()
    try:
        report = aging_report(s, as_of=parse_date(request.args.get("asOf")), customer_code=request.args.get("customer"))
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)


@bp.get("/reportes/cxc/estado-cuenta")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, message="No tienes permisos para consultar reportes de CxC")
def report_statement():
    s = db_session()
    try:
        date_from = parse_date(request.args.get("from"))
        date_to = parse_date(request.args.get("to"))
        if not request.args.get("customer") or date_from is None or date_to is None:
            raise ValidationError("Parámetros inválidos", errors=["Debes indicar cliente, fecha inicial y fecha final."])
        report = account_statement(s, customer_code=request.args["customer"], date_from=date_from, date_to=date_to)
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)


@bp.get("/reportes/cxc/resumen")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, message="No tienes permisos para consultar reportes de CxC")
def report_summary():
    s = db_session()
    try:
        report = cxc_summary(s, as_of=parse_date(request.args.get("asOf")))
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)


@bp.get("/reportes/cxc/vencimientos")
@require_retail_mode
@require_permissions(*CXC_VIEW_PERMISSIONS, message="No tienes permisos para consultar reportes de CxC")
def report_due_schedule():
    s = db_session()
    try:
        report = due_schedule(
            s,
            date_from=parse_date(request.args.get("from")),
            date_to=parse_date(request.args.get("to")),
            customer_code=request.args.get("customer"),
        )
    except ValueError as e:
        raise_for_business_error(e)
    return ok(report=report)
