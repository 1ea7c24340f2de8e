from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.facturador.audit import record_event
from app.facturador.modules.cash_registers.service import get_active_session
from app.facturador.modules.cxc.customers import calculate_due_date, get_payment_term_by_code
from app.facturador.modules.cxc.documents import (
    apply_documents,
    cancel_document,
    create_document,
    delete_application,
    find_invoice_document,
    has_applications,
    list_applications,
)
from app.facturador.modules.cxc.models import Customer
from app.facturador.modules.inventory.service import register_invoice_movements, reverse_invoice_movements
from app.facturador.modules.invoices.models import Invoice, InvoiceItem, InvoicePayment
from app.facturador.modules.orders.service import mark_order_invoiced
from app.facturador.modules.sequences.service import next_invoice_number
from app.facturador.utils import clean_code, clean_str, iso, parse_date, parse_datetime, round_money, to_float, to_int

if TYPE_CHECKING:
    from datetime import date

    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser

logger = logging.getLogger(__name__)

SALE_TYPES = ("CONTADO", "CREDITO")
PAYMENT_METHODS = ("CASH", "CARD", "TRANSFER", "OTHER")
ITEM_UNITS = ("RETAIL", "STORAGE")
STATUS_ISSUED = "FACTURADA"
STATUS_CANCELLED = "ANULADA"
BALANCE_TOLERANCE = 0.005
MAX_PAGE_SIZE = 100

NO_OPEN_SESSION_MESSAGE = "Debes abrir una caja antes de facturar"
PENDING_BALANCE_MESSAGE = "No puedes guardar la factura con saldo pendiente. Registra pagos que cubran el total."
APPLIED_PAYMENTS_MESSAGE = "La factura tiene pagos aplicados en CxC. Desaplica los pagos antes de anularla."


def validate_invoice_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        errors.append("La factura debe tener al menos un artículo.")
        items = []
    for idx, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            errors.append(f"Artículo {idx}: formato inválido.")
            continue
        if not clean_str(item.get("description")):
            errors.append(f"Artículo {idx}: la descripción es obligatoria.")
        qty = to_float(item.get("quantity"))
        if qty is None or qty <= 0:
            errors.append(f"Artículo {idx}: la cantidad debe ser mayor a cero.")
        price = to_float(item.get("unit_price"))
        if price is None or price < 0:
            errors.append(f"Artículo {idx}: el precio no puede ser negativo.")
        unit = clean_code(item.get("unit")) or "RETAIL"
        if unit not in ITEM_UNITS:
            errors.append(f"Artículo {idx}: unidad inválida.")

    payments = payload.get("payments") or []
    if not isinstance(payments, list):
        errors.append("Los pagos deben ser una lista.")
        payments = []
    for idx, payment in enumerate(payments, start=1):
        if not isinstance(payment, dict):
            errors.append(f"Pago {idx}: formato inválido.")
            continue
        if clean_code(payment.get("method")) not in PAYMENT_METHODS:
            errors.append(f"Pago {idx}: método de pago inválido.")
        amount = to_float(payment.get("amount"))
        if amount is None or amount < 0:
            errors.append(f"Pago {idx}: el monto no puede ser negativo.")

    for key in ("subtotal", "service_charge", "vat_amount", "vat_rate", "total_amount"):
        if key in payload and payload[key] is not None:
            value = to_float(payload.get(key))
            if value is None or value < 0:
                errors.append(f"El campo {key} debe ser un número mayor o igual a cero.")

    sale_type = clean_code(payload.get("sale_type")) or "CONTADO"
    if sale_type not in SALE_TYPES:
        errors.append("Tipo de venta inválido.")
    currency = payload.get("currency_code")
    if currency is not None and len(clean_code(currency)) != 3:
        errors.append("La moneda debe tener 3 caracteres.")
    try:
        parse_datetime(payload.get("invoice_date"))
        parse_date(payload.get("due_date"))
    except ValueError as e:
        errors.append(str(e))
    return errors


def invoice_to_dict(inv: Invoice, *, include_lines: bool = True) -> dict:
    out = {
        "id": inv.id,
        "invoice_number": inv.invoice_number,
        "invoice_date": iso(inv.invoice_date),
        "origin_order_id": inv.origin_order_id,
        "table_code": inv.table_code,
        "waiter_code": inv.waiter_code,
        "subtotal": inv.subtotal,
        "service_charge": inv.service_charge,
        "vat_amount": inv.vat_amount,
        "vat_rate": inv.vat_rate,
        "total_amount": inv.total_amount,
        "currency_code": inv.currency_code,
        "notes": inv.notes,
        "customer_name": inv.customer_name,
        "customer_tax_id": inv.customer_tax_id,
        "customer_id": inv.customer_id,
        "sale_type": inv.sale_type,
        "due_date": iso(inv.due_date),
        "status": inv.status,
        "cancellation_reason": inv.cancellation_reason,
        "cancelled_at": iso(inv.cancelled_at),
        "cancelled_by": inv.cancelled_by,
        "cash_register_id": inv.cash_register_id,
        "cash_register_session_id": inv.cash_register_session_id,
        "warehouse_code": inv.warehouse_code,
        "created_at": iso(inv.created_at),
    }
    if include_lines:
        out["items"] = [
            {
                "id": it.id,
                "article_code": it.article_code,
                "description": it.description,
                "quantity": it.quantity,
                "unit_price": it.unit_price,
                "unit": it.unit,
                "line_total": it.line_total,
            }
            for it in inv.items
        ]
        out["payments"] = [
            {"id": p.id, "method": p.payment_method, "amount": p.amount, "reference": p.reference}
            for p in inv.payments
        ]
    return out


def _resolve_warehouse_code(register, requested: str | None) -> str:
    requested = clean_code(requested)
    if requested and requested != register.warehouse.code:
        if not register.allow_manual_warehouse_override:
            raise ValueError("La caja no permite cambiar la bodega de salida")
        return requested
    return register.warehouse.code


def create_invoice(
    s: "Session",
    payload: dict,
    user: "AdminUser",
    *,
    retail_mode: bool,
    local_currency: str,
    default_warehouse_code: str | None = None,
) -> Invoice:
    """
    Issue an invoice against the user's open cash register session.

    Numbering comes from the register's sequence; stocked items post inventory
    consumption, and a retail credit sale opens a receivable document.
    """
    cash_session = get_active_session(s, user)
    if cash_session is None:
        raise ValueError(NO_OPEN_SESSION_MESSAGE)
    register = cash_session.cash_register

    sale_type = clean_code(payload.get("sale_type")) or "CONTADO"
    customer = None
    customer_id = to_int(payload.get("customer_id"))
    if retail_mode and customer_id is None:
        raise ValueError("Debes seleccionar un cliente para facturar en modo retail")
    if customer_id is not None:
        customer = s.get(Customer, customer_id)
        if customer is None or not customer.is_active:
            raise ValueError("El cliente indicado no existe o está inactivo")
    if sale_type == "CREDITO":
        if not retail_mode:
            raise ValueError("Las ventas al crédito solo están disponibles en modo retail")
        if customer.credit_status == "BLOCKED":
            raise ValueError("El cliente tiene el crédito bloqueado")

    items = []
    for raw in payload.get("items") or []:
        quantity = float(to_float(raw.get("quantity")))
        unit_price = round_money(to_float(raw.get("unit_price")))
        items.append(
            {
                "article_code": clean_code(raw.get("article_code")) or None,
                "description": clean_str(raw.get("description"), 200),
                "quantity": quantity,
                "unit_price": unit_price,
                "unit": clean_code(raw.get("unit")) or "RETAIL",
                "line_total": round_money(quantity * unit_price),
            }
        )
    payments = [
        {
            "method": clean_code(p.get("method")),
            "amount": round_money(to_float(p.get("amount"), 0.0)),
            "reference": clean_str(p.get("reference"), 120),
        }
        for p in payload.get("payments") or []
    ]

    subtotal = to_float(payload.get("subtotal"))
    subtotal = round_money(sum(it["line_total"] for it in items) if subtotal is None else subtotal)
    service_charge = round_money(to_float(payload.get("service_charge"), 0.0))
    vat_amount = round_money(to_float(payload.get("vat_amount"), 0.0))
    total = to_float(payload.get("total_amount"))
    total = round_money(subtotal + service_charge + vat_amount if total is None else total)
    paid = round_money(sum(p["amount"] for p in payments))
    missing = round_money(total - paid)
    is_credit_sale = retail_mode and sale_type == "CREDITO"
    if missing > BALANCE_TOLERANCE and not is_credit_sale:
        raise ValueError(PENDING_BALANCE_MESSAGE)

    term = None
    due_date = parse_date(payload.get("due_date"))
    if is_credit_sale:
        term = get_payment_term_by_code(s, payload.get("payment_term_code")) if payload.get("payment_term_code") else customer.payment_term
    invoice_date = parse_datetime(payload.get("invoice_date")) or datetime.utcnow()
    if is_credit_sale and due_date is None:
        due_date = calculate_due_date(invoice_date.date(), term) if term is not None else invoice_date.date()

    warehouse_code = _resolve_warehouse_code(register, payload.get("warehouse_code"))
    number = next_invoice_number(s, register)
    if s.query(Invoice.id).filter(Invoice.invoice_number == number).first() is not None:
        raise ValueError(f"El consecutivo {number} ya fue utilizado por otra factura")

    inv = Invoice(
        invoice_number=number,
        invoice_date=invoice_date,
        origin_order_id=to_int(payload.get("origin_order_id")),
        table_code=clean_str(payload.get("table_code"), 40),
        waiter_code=clean_code(payload.get("waiter_code")) or None,
        subtotal=subtotal,
        service_charge=service_charge,
        vat_amount=vat_amount,
        vat_rate=to_float(payload.get("vat_rate"), 0.0),
        total_amount=total,
        currency_code=(clean_code(payload.get("currency_code")) or local_currency)[:3],
        notes=clean_str(payload.get("notes"), 500),
        customer_name=clean_str(payload.get("customer_name"), 200) or (customer.name if customer else None),
        customer_tax_id=clean_str(payload.get("customer_tax_id"), 40) or (customer.tax_id if customer else None),
        customer_id=customer.id if customer else None,
        payment_term_id=term.id if term else None,
        due_date=due_date,
        sale_type=sale_type,
        status=STATUS_ISSUED,
        cash_register_id=register.id,
        cash_register_session_id=cash_session.id,
        warehouse_code=warehouse_code,
        issued_by_user_id=user.id,
    )
    inv.items = [InvoiceItem(**it) for it in items]
    inv.payments = [InvoicePayment(payment_method=p["method"], amount=p["amount"], reference=p["reference"]) for p in payments]
    s.add(inv)
    s.flush()

    if not cash_session.invoice_sequence_start:
        cash_session.invoice_sequence_start = number
    cash_session.invoice_sequence_end = number

    register_invoice_movements(
        s,
        invoice_number=number,
        occurred_at=invoice_date,
        items=[it for it in items if it["article_code"]],
        warehouse_code=warehouse_code,
        default_warehouse_code=default_warehouse_code,
        user=user,
    )

    if inv.origin_order_id is not None:
        mark_order_invoiced(s, inv.origin_order_id, user)

    if is_credit_sale and missing > BALANCE_TOLERANCE:
        document = create_document(
            s,
            {
                "customer_id": customer.id,
                "document_type": "INVOICE",
                "document_number": number,
                "document_date": invoice_date.date().isoformat(),
                "due_date": due_date.isoformat() if due_date else None,
                "payment_term_id": term.id if term else None,
                "original_amount": total,
                "currency_code": inv.currency_code,
                "reference": f"Factura {number}",
            },
            user,
            default_currency=local_currency,
            related_invoice_id=inv.id,
        )
        if paid > BALANCE_TOLERANCE:
            # the counter payment is a receipt applied to the invoice document
            receipt = create_document(
                s,
                {
                    "customer_id": customer.id,
                    "document_type": "RECEIPT",
                    "document_number": number,
                    "document_date": invoice_date.date().isoformat(),
                    "original_amount": paid,
                    "currency_code": inv.currency_code,
                    "reference": f"Pago en caja {number}",
                },
                user,
                default_currency=local_currency,
                related_invoice_id=inv.id,
            )
            apply_documents(
                s,
                [
                    {
                        "applied_document_id": receipt.id,
                        "target_document_id": document.id,
                        "amount": paid,
                        "application_date": invoice_date,
                        "reference": f"Pago en caja {number}",
                    }
                ],
                user,
            )

    record_event(
        s,
        actor=user,
        action="invoice.create",
        entity_type="Invoice",
        entity_id=str(inv.id),
        metadata={"number": number, "total": total, "sale_type": sale_type, "register": register.code},
    )
    logger.info("Invoice %s issued by %s (total=%s)", number, user.username, total)
    return inv


def cancel_invoice(s: "Session", inv: Invoice, reason: str | None, user: "AdminUser") -> Invoice:
    if inv.status == STATUS_CANCELLED:
        return inv
    document = find_invoice_document(s, inv.id)
    receipt = find_invoice_document(s, inv.id, document_type="RECEIPT")
    if document is not None and has_applications(s, document.id, ignore_applied_id=receipt.id if receipt else None):
        raise ValueError(APPLIED_PAYMENTS_MESSAGE)

    reverse_invoice_movements(s, inv.invoice_number, user)
    if receipt is not None:
        for application in list_applications(s, document_id=receipt.id):
            delete_application(s, application.id, user)
        if receipt.status != "CANCELADO":
            cancel_document(s, receipt.id, user, allow_invoice_link=True)
    if document is not None and document.status != "CANCELADO":
        cancel_document(s, document.id, user, allow_invoice_link=True)

    inv.status = STATUS_CANCELLED
    inv.cancellation_reason = clean_str(reason, 300)
    inv.cancelled_at = datetime.utcnow()
    inv.cancelled_by = user.username
    s.flush()
    record_event(
        s,
        actor=user,
        action="invoice.cancel",
        entity_type="Invoice",
        entity_id=str(inv.id),
        reason=inv.cancellation_reason,
        metadata={"number": inv.invoice_number},
    )
    return inv


def list_invoices(
    s: "Session",
    *,
    date_from: "date | None" = None,
    date_to: "date | None" = None,
    search: str | None = None,
    table: str | None = None,
    waiter: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Invoice], int]:
    page = max(1, page)
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))
    q = s.query(Invoice)
    if date_from is not None:
        q = q.filter(Invoice.invoice_date >= datetime.combine(date_from, time.min))
    if date_to is not None:
        q = q.filter(Invoice.invoice_date < datetime.combine(date_to + timedelta(days=1), time.min))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Invoice.invoice_number.ilike(like),
                Invoice.customer_name.ilike(like),
                Invoice.customer_tax_id.ilike(like),
            )
        )
    if table:
        q = q.filter(Invoice.table_code == table.strip())
    if waiter:
        q = q.filter(Invoice.waiter_code == clean_code(waiter))
    total = q.count()
    rows = (
        q.order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total
