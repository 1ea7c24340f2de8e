from __future__ import annotations

from datetime import date, timedelta
from typing import TYPE_CHECKING

from app.facturador.modules.cxc.customers import CREDIT_WARNING_RATIO, credit_overview, get_customer_by_code
from app.facturador.modules.cxc.documents import is_debit_type
from app.facturador.modules.cxc.models import Customer, CustomerDocument
from app.facturador.utils import iso, round_money

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


AGING_BUCKETS = ("current", "1_30", "31_60", "61_90", "90_plus")


def _bucket_for(days_overdue: int) -> str:
    if days_overdue <= 0:
        return "current"
    if days_overdue <= 30:
        return "1_30"
    if days_overdue <= 60:
        return "31_60"
    if days_overdue <= 90:
        return "61_90"
    return "90_plus"


def _open_debit_documents(s: "Session", *, customer_id: int | None = None):
    q = s.query(CustomerDocument).filter(
        CustomerDocument.document_type.in_(("INVOICE", "DEBIT_NOTE")),
        CustomerDocument.status.notin_(("CANCELADO", "BORRADOR")),
        CustomerDocument.balance_amount > 0,
    )
    if customer_id is not None:
        q = q.filter(CustomerDocument.customer_id == customer_id)
    return q


def _resolve_customer(s: "Session", code: str | None) -> Customer | None:
    if not code:
        return None
    customer = get_customer_by_code(s, code)
    if customer is None:
        raise ValueError("El cliente indicado no existe")
    return customer


def aging_report(s: "Session", *, as_of: date | None = None, customer_code: str | None = None) -> dict:
    as_of = as_of or date.today()
    customer = _resolve_customer(s, customer_code)
    docs = (
        _open_debit_documents(s, customer_id=customer.id if customer else None)
        .filter(CustomerDocument.document_date <= as_of)
        .order_by(CustomerDocument.customer_id.asc(), CustomerDocument.due_date.asc())
        .all()
    )

    per_customer: dict[int, dict] = {}
    totals = {bucket: 0.0 for bucket in AGING_BUCKETS}
    for doc in docs:
        due = doc.due_date or doc.document_date
        bucket = _bucket_for((as_of - due).days)
        row = per_customer.setdefault(
            doc.customer_id,
            {
                "customer_code": doc.customer.code,
                "customer_name": doc.customer.name,
                **{b: 0.0 for b in AGING_BUCKETS},
                "total": 0.0,
                "documents": 0,
            },
        )
        balance = float(doc.balance_amount)
        row[bucket] = round_money(row[bucket] + balance)
        row["total"] = round_money(row["total"] + balance)
        row["documents"] += 1
        totals[bucket] = round_money(totals[bucket] + balance)

    customers = sorted(per_customer.values(), key=lambda r: (-r["total"], r["customer_code"]))
    return {
        "as_of": as_of.isoformat(),
        "customers": customers,
        "totals": {**totals, "total": round_money(sum(totals.values()))},
    }


def account_statement(s: "Session", *, customer_code: str, date_from: date, date_to: date) -> dict:
    """Opening balance, chronological movements and closing balance for one customer."""
    customer = _resolve_customer(s, customer_code)
    if customer is None:
        raise ValueError("El cliente indicado no existe")
    if date_to < date_from:
        raise ValueError("La fecha final no puede ser anterior a la inicial")

    docs = (
        s.query(CustomerDocument)
        .filter(
            CustomerDocument.customer_id == customer.id,
            CustomerDocument.status.notin_(("CANCELADO", "BORRADOR")),
            CustomerDocument.document_date <= date_to,
        )
        .order_by(CustomerDocument.document_date.asc(), CustomerDocument.id.asc())
        .all()
    )

    opening = 0.0
    balance = 0.0
    movements = []
    for doc in docs:
        amount = float(doc.original_amount)
        signed = amount if is_debit_type(doc.document_type) else -amount
        if doc.document_date < date_from:
            opening += signed
            continue
        if not movements:
            balance = opening
        balance += signed
        movements.append(
            {
                "document_id": doc.id,
                "document_date": iso(doc.document_date),
                "document_type": doc.document_type,
                "document_number": doc.document_number,
                "due_date": iso(doc.due_date),
                "debit": round_money(amount) if signed > 0 else 0.0,
                "credit": round_money(amount) if signed < 0 else 0.0,
                "balance": round_money(balance),
                "status": doc.status,
            }
        )
    closing = balance if movements else opening
    return {
        "customer": {"code": customer.code, "name": customer.name, "tax_id": customer.tax_id},
        "from": date_from.isoformat(),
        "to": date_to.isoformat(),
        "opening_balance": round_money(opening),
        "movements": movements,
        "closing_balance": round_money(closing),
    }


def cxc_summary(s: "Session", *, as_of: date | None = None) -> dict:
    as_of = as_of or date.today()
    docs = _open_debit_documents(s).all()
    open_balance = sum(float(d.balance_amount) for d in docs)
    overdue = [d for d in docs if (d.due_date or d.document_date) < as_of]
    warnings = []
    for customer in s.query(Customer).filter(Customer.is_active.is_(True)).order_by(Customer.code.asc()).all():
        overview = credit_overview(customer)
        if (customer.credit_limit and overview["usage_percent"] >= CREDIT_WARNING_RATIO) or overview["is_blocked"]:
            warnings.append(overview)
    return {
        "as_of": as_of.isoformat(),
        "open_balance": round_money(open_balance),
        "overdue_balance": round_money(sum(float(d.balance_amount) for d in overdue)),
        "open_documents": len(docs),
        "overdue_documents": len(overdue),
        "customers_with_balance": len({d.customer_id for d in docs}),
        "credit_warnings": warnings,
    }


def due_schedule(s: "Session", *, date_from: date | None = None, date_to: date | None = None, customer_code: str | None = None) -> dict:
    date_from = date_from or date.today()
    date_to = date_to or (date_from + timedelta(days=30))
    if date_to < date_from:
        raise ValueError("La fecha final no puede ser anterior a la inicial")
    customer = _resolve_customer(s, customer_code)
    docs = (
        _open_debit_documents(s, customer_id=customer.id if customer else None)
        .filter(CustomerDocument.due_date >= date_from, CustomerDocument.due_date <= date_to)
        .order_by(CustomerDocument.due_date.asc(), CustomerDocument.id.asc())
        .all()
    )
    items = [
        {
            "document_id": d.id,
            "customer_code": d.customer.code,
            "customer_name": d.customer.name,
            "document_type": d.document_type,
            "document_number": d.document_number,
            "document_date": iso(d.document_date),
            "due_date": iso(d.due_date),
            "balance_amount": d.balance_amount,
        }
        for d in docs
    ]
    return {
        "from": date_from.isoformat(),
        "to": date_to.isoformat(),
        "items": items,
        "total": round_money(sum(float(d.balance_amount) for d in docs)),
    }
