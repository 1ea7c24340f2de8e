"""
Sales, purchase and inventory reports over a date range.

Every function takes inclusive `date_from`/`date_to` dates and returns a plain
dict ready for the JSON envelope. Cancelled invoices are left out of the sales
figures and only reported by `invoice_status`.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING

from app.facturador.modules.catalog.models import Warehouse
from app.facturador.modules.inventory.models import InventoryMovement, InventoryTransaction
from app.facturador.modules.invoices.models import Invoice, InvoiceItem
from app.facturador.utils import clean_code, iso, round_money

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

DEFAULT_RANGE_DAYS = 30


def resolve_range(date_from: date | None, date_to: date | None) -> tuple[date, date]:
    date_to = date_to or datetime.utcnow().date()
    date_from = date_from or (date_to - timedelta(days=DEFAULT_RANGE_DAYS))
    if date_to < date_from:
        raise ValueError("La fecha final no puede ser anterior a la inicial")
    return date_from, date_to


def _bounds(date_from: date, date_to: date) -> tuple[datetime, datetime]:
    return datetime.combine(date_from, time.min), datetime.combine(date_to + timedelta(days=1), time.min)


def _issued_invoices(s: "Session", date_from: date, date_to: date):
    start, end = _bounds(date_from, date_to)
    return s.query(Invoice).filter(
        Invoice.invoice_date >= start,
        Invoice.invoice_date < end,
        Invoice.status != "ANULADA",
    )


def _period(date_from: date, date_to: date) -> dict:
    return {"from": date_from.isoformat(), "to": date_to.isoformat()}


def sales_summary(s: "Session", date_from: date, date_to: date) -> dict:
    invoices = _issued_invoices(s, date_from, date_to).all()
    totals = {"subtotal": 0.0, "service_charge": 0.0, "vat_amount": 0.0, "total_amount": 0.0}
    by_method: dict[str, dict] = {}
    for inv in invoices:
        for key in totals:
            totals[key] += float(getattr(inv, key) or 0)
        for p in inv.payments:
            row = by_method.setdefault(p.payment_method, {"method": p.payment_method, "amount": 0.0, "count": 0})
            row["amount"] = round_money(row["amount"] + float(p.amount))
            row["count"] += 1
    return {
        **_period(date_from, date_to),
        "invoice_count": len(invoices),
        "totals": {k: round_money(v) for k, v in totals.items()},
        "payments": sorted(by_method.values(), key=lambda r: r["method"]),
    }


def waiter_sales(s: "Session", date_from: date, date_to: date) -> dict:
    rows: dict[str, dict] = {}
    for inv in _issued_invoices(s, date_from, date_to).all():
        code = inv.waiter_code or "SIN-MESERO"
        row = rows.setdefault(code, {"waiter_code": code, "invoice_count": 0, "service_charge": 0.0, "total_amount": 0.0})
        row["invoice_count"] += 1
        row["service_charge"] = round_money(row["service_charge"] + float(inv.service_charge or 0))
        row["total_amount"] = round_money(row["total_amount"] + float(inv.total_amount or 0))
    items = sorted(rows.values(), key=lambda r: (-r["total_amount"], r["waiter_code"]))
    return {**_period(date_from, date_to), "items": items}


def top_articles(s: "Session", date_from: date, date_to: date, *, limit: int = 10) -> dict:
    start, end = _bounds(date_from, date_to)
    lines = (
        s.query(InvoiceItem)
        .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
        .filter(Invoice.invoice_date >= start, Invoice.invoice_date < end, Invoice.status != "ANULADA")
        .all()
    )
    rows: dict[str, dict] = {}
    for line in lines:
        key = line.article_code or line.description
        row = rows.setdefault(
            key,
            {"article_code": line.article_code, "description": line.description, "quantity": 0.0, "amount": 0.0},
        )
        row["quantity"] = round(row["quantity"] + float(line.quantity), 4)
        row["amount"] = round_money(row["amount"] + float(line.line_total))
    limit = max(1, min(limit, 100))
    items = sorted(rows.values(), key=lambda r: (-r["quantity"], -r["amount"], r["description"]))[:limit]
    return {**_period(date_from, date_to), "items": items}


def invoice_status(s: "Session", date_from: date, date_to: date) -> dict:
    start, end = _bounds(date_from, date_to)
    invoices = s.query(Invoice).filter(Invoice.invoice_date >= start, Invoice.invoice_date < end).all()
    rows: dict[str, dict] = {}
    for inv in invoices:
        row = rows.setdefault(inv.status, {"status": inv.status, "count": 0, "total_amount": 0.0})
        row["count"] += 1
        row["total_amount"] = round_money(row["total_amount"] + float(inv.total_amount or 0))
    return {**_period(date_from, date_to), "items": sorted(rows.values(), key=lambda r: r["status"])}


def purchases(s: "Session", date_from: date, date_to: date) -> dict:
    start, end = _bounds(date_from, date_to)
    txs = (
        s.query(InventoryTransaction)
        .filter(
            InventoryTransaction.transaction_type == "PURCHASE",
            InventoryTransaction.occurred_at >= start,
            InventoryTransaction.occurred_at < end,
        )
        .order_by(InventoryTransaction.occurred_at.asc(), InventoryTransaction.id.asc())
        .all()
    )
    items = [
        {
            "transaction_code": tx.transaction_code,
            "occurred_at": iso(tx.occurred_at),
            "supplier_name": tx.counterparty_name,
            "reference": tx.reference,
            "status": tx.status,
            "warehouse_code": tx.warehouse.code,
            "total_amount": round_money(tx.total_amount or 0),
        }
        for tx in txs
    ]
    by_status: dict[str, float] = defaultdict(float)
    for item in items:
        by_status[item["status"]] += item["total_amount"]
    return {
        **_period(date_from, date_to),
        "items": items,
        "total_amount": round_money(sum(i["total_amount"] for i in items)),
        "by_status": {k: round_money(v) for k, v in sorted(by_status.items())},
    }


def inventory_movements(s: "Session", date_from: date, date_to: date, *, warehouse_code: str | None = None) -> dict:
    start, end = _bounds(date_from, date_to)
    q = s.query(InventoryMovement).filter(InventoryMovement.created_at >= start, InventoryMovement.created_at < end)
    if clean_code(warehouse_code):
        warehouse = s.query(Warehouse).filter(Warehouse.code == clean_code(warehouse_code)).one_or_none()
        if warehouse is None:
            raise ValueError(f"La bodega {clean_code(warehouse_code)} no existe")
        q = q.filter(InventoryMovement.warehouse_id == warehouse.id)
    rows: dict[int, dict] = {}
    for mv in q.all():
        row = rows.setdefault(
            mv.article_id,
            {"article_code": mv.article.article_code, "article_name": mv.article.name, "in": 0.0, "out": 0.0},
        )
        key = "in" if mv.direction == "IN" else "out"
        row[key] = round(row[key] + float(mv.quantity_retail), 6)
    items = []
    for row in sorted(rows.values(), key=lambda r: r["article_code"]):
        row["net"] = round(row["in"] - row["out"], 6)
        items.append(row)
    return {**_period(date_from, date_to), "warehouse_code": clean_code(warehouse_code) or None, "items": items}
