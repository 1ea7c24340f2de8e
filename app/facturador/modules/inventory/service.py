"""
Inventory transactions, stock levels and the kardex.

Every transaction has one entry per input line and one movement per affected
article and warehouse. KIT articles never hold stock: their movements are
posted against the components.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.facturador.audit import record_event
from app.facturador.modules.catalog.models import Article, Warehouse
from app.facturador.modules.catalog.service import get_article_by_code, get_warehouse_by_code
from app.facturador.modules.inventory.models import (
    InventoryMovement,
    InventoryTransaction,
    InventoryTransactionEntry,
    WarehouseStock,
)
from app.facturador.modules.sequences.service import next_inventory_code
from app.facturador.utils import clean_code, clean_str, iso, parse_datetime, round_money, to_float

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser


logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("PURCHASE", "CONSUMPTION", "ADJUSTMENT", "TRANSFER")
TYPE_PREFIX = {"PURCHASE": "COM", "CONSUMPTION": "CON", "ADJUSTMENT": "AJU", "TRANSFER": "TRA"}
PURCHASE_STATUSES = ("PENDIENTE", "PAGADA", "PARCIAL")
UNITS = ("RETAIL", "STORAGE")
STOCK_TOLERANCE = 1e-6


@dataclass
class ComputedLine:
    article: Article
    quantity: float
    unit: str
    quantity_retail: float
    quantity_storage: float
    conversion_factor: float
    # (article, retail quantity, source kit) per stocked article
    parts: list[tuple[Article, float, Article | None]] = field(default_factory=list)
    kit_multiplier: float | None = None
    cost_per_unit: float | None = None
    subtotal: float | None = None
    notes: str | None = None


# ---------- Line computation ----------
def compute_line(s: "Session", raw: dict, *, quantity: float | None = None) -> ComputedLine:
    """Resolve the article, convert the quantity to retail units and expand kits."""
    code = clean_code(raw.get("article_code"))
    article = get_article_by_code(s, code)
    if not article:
        raise ValueError(f"Artículo {code or '(vacío)'} no encontrado")
    if not article.is_active:
        raise ValueError(f"El artículo {code} está inactivo")

    qty = quantity if quantity is not None else to_float(raw.get("quantity"))
    if qty is None or qty <= 0:
        raise ValueError(f"La cantidad debe ser mayor a cero ({code})")
    unit = clean_code(raw.get("unit") or "RETAIL")
    if unit not in UNITS:
        raise ValueError(f"Unidad inválida para {code}. Debe ser RETAIL o STORAGE")

    factor = float(article.conversion_factor or 1)
    if unit == "STORAGE":
        qty_retail = qty * factor
        qty_storage = qty
    else:
        qty_retail = qty
        qty_storage = qty / factor

    line = ComputedLine(
        article=article,
        quantity=qty,
        unit=unit,
        quantity_retail=qty_retail,
        quantity_storage=qty_storage,
        conversion_factor=factor,
        notes=clean_str(raw.get("notes"), 300),
    )
    if article.article_type == "KIT":
        if not article.components:
            raise ValueError(f"El kit {code} no tiene componentes configurados")
        line.kit_multiplier = qty_retail
        for comp in article.components:
            line.parts.append((comp.component, qty_retail * float(comp.component_qty_retail), article))
    else:
        line.parts.append((article, qty_retail, None))
    return line


# ---------- Stock ----------
def get_stock_row(s: "Session", article: Article, warehouse: Warehouse) -> WarehouseStock | None:
    return (
        s.query(WarehouseStock)
        .filter(WarehouseStock.article_id == article.id, WarehouseStock.warehouse_id == warehouse.id)
        .one_or_none()
    )


def apply_stock_delta(s: "Session", article: Article, warehouse: Warehouse, delta_retail: float) -> WarehouseStock:
    row = get_stock_row(s, article, warehouse)
    if row is None:
        row = WarehouseStock(article_id=article.id, warehouse_id=warehouse.id, quantity_retail=0, quantity_storage=0)
        row.article = article
        row.warehouse = warehouse
        s.add(row)
    new_qty = float(row.quantity_retail or 0) + delta_retail
    if new_qty < -STOCK_TOLERANCE:
        raise ValueError(f"Existencias insuficientes para {article.article_code} en la bodega {warehouse.code}.")
    new_qty = max(0.0, new_qty)
    factor = float(article.conversion_factor or 1)
    row.quantity_retail = new_qty
    row.quantity_storage = new_qty / factor
    row.updated_at = datetime.utcnow()
    s.flush()
    return row


def _require_warehouse(s: "Session", code: str | None) -> Warehouse:
    warehouse = get_warehouse_by_code(s, code)
    if not warehouse:
        raise ValueError(f"La bodega {clean_code(code) or '(vacía)'} no existe o está inactiva")
    return warehouse


# ---------- Posting ----------
def _new_transaction(
    s: "Session",
    *,
    transaction_type: str,
    warehouse: Warehouse,
    occurred_at: datetime,
    user: "AdminUser | None",
    reference: str | None = None,
    counterparty_name: str | None = None,
    status: str = "CONFIRMADO",
    notes: str | None = None,
    authorized_by: str | None = None,
    destination: Warehouse | None = None,
) -> InventoryTransaction:
    code = next_inventory_code(s, transaction_type)
    tx = InventoryTransaction(
        transaction_code=code or f"TMP-{uuid.uuid4().hex}",
        transaction_type=transaction_type,
        warehouse_id=warehouse.id,
        destination_warehouse_id=destination.id if destination else None,
        reference=reference,
        counterparty_name=counterparty_name,
        status=status,
        notes=notes,
        occurred_at=occurred_at,
        authorized_by=authorized_by,
        created_by=user.username if user else None,
    )
    tx.warehouse = warehouse
    tx.destination_warehouse = destination
    s.add(tx)
    s.flush()
    if code is None:
        tx.transaction_code = f"{TYPE_PREFIX[transaction_type]}-{tx.id:06d}"
        s.flush()
    return tx


def _post_line(
    s: "Session",
    tx: InventoryTransaction,
    line: ComputedLine,
    *,
    direction: str,
    legs: list[tuple[str, Warehouse]],
) -> InventoryTransactionEntry:
    """One entry for the line; one movement per stocked article and leg (direction, warehouse)."""
    entry = InventoryTransactionEntry(
        article_id=line.article.id,
        quantity_entered=line.quantity,
        entered_unit=line.unit,
        direction=direction,
        unit_conversion_factor=line.conversion_factor,
        kit_multiplier=line.kit_multiplier,
        cost_per_unit=line.cost_per_unit,
        subtotal=line.subtotal,
        notes=line.notes,
    )
    entry.article = line.article
    tx.entries.append(entry)
    for leg_direction, warehouse in legs:
        for article, qty_retail, source_kit in line.parts:
            delta = qty_retail if leg_direction == "IN" else -qty_retail
            apply_stock_delta(s, article, warehouse, delta)
            mv = InventoryMovement(
                article_id=article.id,
                direction=leg_direction,
                quantity_retail=qty_retail,
                warehouse_id=warehouse.id,
                source_kit_article_id=source_kit.id if source_kit else None,
                created_at=tx.occurred_at,
            )
            mv.article = article
            mv.warehouse = warehouse
            mv.source_kit_article = source_kit
            mv.transaction = tx
            entry.movements.append(mv)
    s.flush()
    return entry


def _occurred_at(value) -> datetime:
    return parse_datetime(value) or datetime.utcnow()


def _require_lines(lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise ValueError("Debes indicar al menos una línea")
    for raw in lines:
        if not isinstance(raw, dict):
            raise ValueError("Cada línea debe ser un objeto")
    return lines


def _audit_transaction(s: "Session", tx: InventoryTransaction, user) -> None:
    record_event(
        s,
        actor=user,
        action=f"inventory.{tx.transaction_type.lower()}.create",
        entity_type="InventoryTransaction",
        entity_id=str(tx.id),
        metadata={
            "transaction_code": tx.transaction_code,
            "warehouse": tx.warehouse.code,
            "lines": len(tx.entries),
            "reference": tx.reference,
        },
    )


def register_purchase(s: "Session", payload: dict, user: "AdminUser") -> InventoryTransaction:
    warehouse = _require_warehouse(s, payload.get("warehouse_code"))
    lines = _require_lines(payload.get("lines"))
    status = clean_code(payload.get("status") or "PAGADA")
    if status not in PURCHASE_STATUSES:
        raise ValueError("Estado de compra inválido. Debe ser PENDIENTE, PAGADA o PARCIAL")

    tx = _new_transaction(
        s,
        transaction_type="PURCHASE",
        warehouse=warehouse,
        occurred_at=_occurred_at(payload.get("occurred_at")),
        user=user,
        reference=clean_str(payload.get("reference"), 120),
        counterparty_name=clean_str(payload.get("supplier_name"), 160),
        status=status,
        notes=clean_str(payload.get("notes"), 400),
    )
    total = 0.0
    for raw in lines:
        line = compute_line(s, raw)
        cost = to_float(raw.get("cost_per_unit"), 0.0) or 0.0
        if cost < 0:
            raise ValueError(f"El costo unitario no puede ser negativo ({line.article.article_code})")
        subtotal = to_float(raw.get("subtotal"))
        if subtotal is None:
            subtotal = line.quantity * cost
        if subtotal < 0:
            raise ValueError(f"El subtotal no puede ser negativo ({line.article.article_code})")
        line.cost_per_unit = cost
        line.subtotal = round_money(subtotal)
        total += line.subtotal
        _post_line(s, tx, line, direction="IN", legs=[("IN", warehouse)])
    tx.total_amount = round_money(total)
    s.flush()
    _audit_transaction(s, tx, user)
    return tx


def register_consumption(s: "Session", payload: dict, user: "AdminUser") -> InventoryTransaction:
    warehouse = _require_warehouse(s, payload.get("warehouse_code"))
    lines = _require_lines(payload.get("lines"))
    tx = _new_transaction(
        s,
        transaction_type="CONSUMPTION",
        warehouse=warehouse,
        occurred_at=_occurred_at(payload.get("occurred_at")),
        user=user,
        reference=clean_str(payload.get("reference"), 120),
        notes=clean_str(payload.get("reason") or payload.get("notes"), 400),
        authorized_by=clean_str(payload.get("authorized_by"), 80),
    )
    for raw in lines:
        _post_line(s, tx, compute_line(s, raw), direction="OUT", legs=[("OUT", warehouse)])
    _audit_transaction(s, tx, user)
    return tx


def register_adjustment(s: "Session", payload: dict, user: "AdminUser") -> InventoryTransaction:
    """Signed quantities: positive lines add stock, negative lines remove it."""
    warehouse = _require_warehouse(s, payload.get("warehouse_code"))
    lines = _require_lines(payload.get("lines"))
    tx = _new_transaction(
        s,
        transaction_type="ADJUSTMENT",
        warehouse=warehouse,
        occurred_at=_occurred_at(payload.get("occurred_at")),
        user=user,
        reference=clean_str(payload.get("reference"), 120),
        notes=clean_str(payload.get("reason") or payload.get("notes"), 400),
        authorized_by=clean_str(payload.get("authorized_by"), 80),
    )
    for raw in lines:
        signed = to_float(raw.get("quantity"))
        if signed is None or signed == 0:
            raise ValueError(f"La cantidad del ajuste no puede ser cero ({clean_code(raw.get('article_code'))})")
        direction = "IN" if signed > 0 else "OUT"
        line = compute_line(s, raw, quantity=abs(signed))
        _post_line(s, tx, line, direction=direction, legs=[(direction, warehouse)])
    _audit_transaction(s, tx, user)
    return tx


def register_transfer(s: "Session", payload: dict, user: "AdminUser") -> InventoryTransaction:
    source = _require_warehouse(s, payload.get("from_warehouse_code"))
    destination = _require_warehouse(s, payload.get("to_warehouse_code"))
    if source.id == destination.id:
        raise ValueError("La bodega de origen y destino deben ser diferentes")
    lines = _require_lines(payload.get("lines"))
    tx = _new_transaction(
        s,
        transaction_type="TRANSFER",
        warehouse=source,
        destination=destination,
        occurred_at=_occurred_at(payload.get("occurred_at")),
        user=user,
        reference=clean_str(payload.get("reference"), 120),
        notes=clean_str(payload.get("notes"), 400),
        authorized_by=clean_str(payload.get("authorized_by"), 80),
    )
    for raw in lines:
        _post_line(s, tx, compute_line(s, raw), direction="OUT", legs=[("OUT", source), ("IN", destination)])
    _audit_transaction(s, tx, user)
    return tx


# ---------- Invoices ----------
def register_invoice_movements(
    s: "Session",
    *,
    invoice_number: str,
    occurred_at: datetime,
    items: list[dict],
    warehouse_code: str | None = None,
    default_warehouse_code: str | None = None,
    user: "AdminUser | None" = None,
) -> list[InventoryTransaction]:
    """
    Consumption for the stocked items of an invoice. Items without an article code
    are skipped. One transaction per resolved warehouse, referenced by invoice number.
    """
    explicit = _require_warehouse(s, warehouse_code) if clean_code(warehouse_code) else None
    fallback = get_warehouse_by_code(s, default_warehouse_code) if clean_code(default_warehouse_code) else None

    grouped: dict[int, tuple[Warehouse, list[ComputedLine]]] = {}
    for item in items:
        if not clean_code(item.get("article_code")):
            continue
        line = compute_line(s, item)
        warehouse = explicit or line.article.default_warehouse or fallback
        if warehouse is None:
            raise ValueError(f"No hay bodega configurada para el artículo {line.article.article_code}")
        grouped.setdefault(warehouse.id, (warehouse, []))[1].append(line)

    created_txs = []
    for warehouse, lines in grouped.values():
        tx = _new_transaction(
            s,
            transaction_type="CONSUMPTION",
            warehouse=warehouse,
            occurred_at=occurred_at,
            user=user,
            reference=invoice_number,
            notes=f"Salida por factura {invoice_number}",
        )
        for line in lines:
            _post_line(s, tx, line, direction="OUT", legs=[("OUT", warehouse)])
        _audit_transaction(s, tx, user)
        created_txs.append(tx)
    return created_txs


def reverse_invoice_movements(s: "Session", invoice_number: str, user: "AdminUser | None" = None) -> int:
    """Post an ADJUSTMENT IN mirroring every OUT movement of the invoice. Returns the movement count."""
    reversal_ref = f"ANUL-{invoice_number}"
    already = (
        s.query(InventoryTransaction)
        .filter(InventoryTransaction.transaction_type == "ADJUSTMENT", InventoryTransaction.reference == reversal_ref)
        .first()
    )
    if already is not None:
        return 0

    originals = (
        s.query(InventoryTransaction)
        .filter(InventoryTransaction.transaction_type == "CONSUMPTION", InventoryTransaction.reference == invoice_number)
        .order_by(InventoryTransaction.id.asc())
        .all()
    )
    count = 0
    for original in originals:
        tx = _new_transaction(
            s,
            transaction_type="ADJUSTMENT",
            warehouse=original.warehouse,
            occurred_at=datetime.utcnow(),
            user=user,
            reference=reversal_ref,
            notes=f"Reversión de salida por anulación de factura {invoice_number}",
        )
        for old_entry in original.entries:
            entry = InventoryTransactionEntry(
                article_id=old_entry.article_id,
                quantity_entered=old_entry.quantity_entered,
                entered_unit=old_entry.entered_unit,
                direction="IN",
                unit_conversion_factor=old_entry.unit_conversion_factor,
                kit_multiplier=old_entry.kit_multiplier,
                notes=f"Reverso de {original.transaction_code}",
            )
            entry.article = old_entry.article
            tx.entries.append(entry)
            for old in old_entry.movements:
                if old.direction != "OUT":
                    continue
                apply_stock_delta(s, old.article, old.warehouse, float(old.quantity_retail))
                mv = InventoryMovement(
                    article_id=old.article_id,
                    direction="IN",
                    quantity_retail=old.quantity_retail,
                    warehouse_id=old.warehouse_id,
                    source_kit_article_id=old.source_kit_article_id,
                    created_at=tx.occurred_at,
                )
                mv.article = old.article
                mv.warehouse = old.warehouse
                mv.source_kit_article = old.source_kit_article
                mv.transaction = tx
                entry.movements.append(mv)
                count += 1
        s.flush()
        _audit_transaction(s, tx, user)
    if count:
        logger.info("Reversed %s inventory movements for invoice %s", count, invoice_number)
    return count


# ---------- Queries ----------
def _range_filters(column, date_from: date | None, date_to: date | None) -> list:
    filters = []
    if date_from:
        filters.append(column >= datetime(date_from.year, date_from.month, date_from.day))
    if date_to:
        end = datetime(date_to.year, date_to.month, date_to.day) + timedelta(days=1)
        filters.append(column < end)
    return filters


def stock_summary(s: "Session", *, warehouse_code: str | None = None, article: str | None = None) -> list[dict]:
    q = s.query(WarehouseStock).join(Article, Article.id == WarehouseStock.article_id).join(
        Warehouse, Warehouse.id == WarehouseStock.warehouse_id
    )
    if clean_code(warehouse_code):
        q = q.filter(Warehouse.code == clean_code(warehouse_code))
    if article and article.strip():
        like = f"%{article.strip()}%"
        q = q.filter(or_(Article.article_code.ilike(like), Article.name.ilike(like)))
    rows = q.order_by(Article.article_code.asc(), Warehouse.code.asc()).all()
    return [
        {
            "article_code": r.article.article_code,
            "article_name": r.article.name,
            "warehouse_code": r.warehouse.code,
            "warehouse_name": r.warehouse.name,
            "quantity_retail": round(float(r.quantity_retail), 6),
            "quantity_storage": round(float(r.quantity_storage), 6),
            "retail_unit": r.article.retail_unit,
            "storage_unit": r.article.storage_unit,
        }
        for r in rows
    ]


def list_kardex(
    s: "Session",
    *,
    article_code: str | None = None,
    warehouse_code: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[dict]:
    """Movements in chronological order with the running balance per article and warehouse."""
    base = s.query(InventoryMovement)
    if clean_code(article_code):
        article = get_article_by_code(s, article_code)
        if not article:
            raise ValueError(f"Artículo {clean_code(article_code)} no encontrado")
        base = base.filter(InventoryMovement.article_id == article.id)
    if clean_code(warehouse_code):
        warehouse = get_warehouse_by_code(s, warehouse_code, active_only=False)
        if not warehouse:
            raise ValueError(f"La bodega {clean_code(warehouse_code)} no existe")
        base = base.filter(InventoryMovement.warehouse_id == warehouse.id)

    balances: dict[tuple[int, int], float] = {}
    if date_from:
        opening = base.filter(*_range_filters(InventoryMovement.created_at, None, date_from - timedelta(days=1))).all()
        for mv in opening:
            key = (mv.article_id, mv.warehouse_id)
            sign = 1 if mv.direction == "IN" else -1
            balances[key] = balances.get(key, 0.0) + sign * float(mv.quantity_retail)

    rows = (
        base.filter(*_range_filters(InventoryMovement.created_at, date_from, date_to))
        .order_by(InventoryMovement.created_at.asc(), InventoryMovement.id.asc())
        .all()
    )
    out = []
    for mv in rows:
        key = (mv.article_id, mv.warehouse_id)
        sign = 1 if mv.direction == "IN" else -1
        balances[key] = balances.get(key, 0.0) + sign * float(mv.quantity_retail)
        out.append(
            {
                "id": mv.id,
                "date": iso(mv.created_at),
                "transaction_code": mv.transaction.transaction_code,
                "transaction_type": mv.transaction.transaction_type,
                "reference": mv.transaction.reference,
                "article_code": mv.article.article_code,
                "article_name": mv.article.name,
                "warehouse_code": mv.warehouse.code,
                "direction": mv.direction,
                "quantity_retail": round(float(mv.quantity_retail), 6),
                "source_kit_code": mv.source_kit_article.article_code if mv.source_kit_article else None,
                "balance": round(balances[key], 6),
            }
        )
    return out


def transaction_to_dict(tx: InventoryTransaction, *, include_entries: bool = False) -> dict:
    data = {
        "id": tx.id,
        "transaction_code": tx.transaction_code,
        "transaction_type": tx.transaction_type,
        "warehouse_code": tx.warehouse.code,
        "warehouse_name": tx.warehouse.name,
        "destination_warehouse_code": tx.destination_warehouse.code if tx.destination_warehouse else None,
        "reference": tx.reference,
        "counterparty_name": tx.counterparty_name,
        "status": tx.status,
        "notes": tx.notes,
        "occurred_at": iso(tx.occurred_at),
        "authorized_by": tx.authorized_by,
        "created_by": tx.created_by,
        "total_amount": tx.total_amount,
        "line_count": len(tx.entries),
    }
    if include_entries:
        data["entries"] = [
            {
                "id": e.id,
                "article_code": e.article.article_code,
                "article_name": e.article.name,
                "quantity": e.quantity_entered,
                "unit": e.entered_unit,
                "direction": e.direction,
                "conversion_factor": e.unit_conversion_factor,
                "kit_multiplier": e.kit_multiplier,
                "cost_per_unit": e.cost_per_unit,
                "subtotal": e.subtotal,
                "notes": e.notes,
                "movements": [
                    {
                        "article_code": m.article.article_code,
                        "warehouse_code": m.warehouse.code,
                        "direction": m.direction,
                        "quantity_retail": m.quantity_retail,
                        "source_kit_code": m.source_kit_article.article_code if m.source_kit_article else None,
                    }
                    for m in e.movements
                ],
            }
            for e in tx.entries
        ]
    return data


def list_transactions(
    s: "Session",
    *,
    types: list[str] | None = None,
    warehouse_codes: list[str] | None = None,
    search: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int | None = None,
) -> list[InventoryTransaction]:
    q = s.query(InventoryTransaction)
    if types:
        invalid = [t for t in types if t not in TRANSACTION_TYPES]
        if invalid:
            raise ValueError(f"Tipo de movimiento inválido: {', '.join(invalid)}")
        q = q.filter(InventoryTransaction.transaction_type.in_(types))
    if warehouse_codes:
        ids = [w.id for w in s.query(Warehouse).filter(Warehouse.code.in_(warehouse_codes)).all()]
        q = q.filter(
            or_(InventoryTransaction.warehouse_id.in_(ids), InventoryTransaction.destination_warehouse_id.in_(ids))
        )
    if search and search.strip():
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(
                InventoryTransaction.transaction_code.ilike(like),
                InventoryTransaction.reference.ilike(like),
                InventoryTransaction.counterparty_name.ilike(like),
                InventoryTransaction.notes.ilike(like),
            )
        )
    q = q.filter(*_range_filters(InventoryTransaction.occurred_at, date_from, date_to))
    limit = 50 if limit is None else max(1, min(200, limit))
    return q.order_by(InventoryTransaction.occurred_at.desc(), InventoryTransaction.id.desc()).limit(limit).all()


def get_transaction_document(s: "Session", code: str) -> InventoryTransaction | None:
    code = (code or "").strip()
    if not code:
        return None
    return s.query(InventoryTransaction).filter(InventoryTransaction.transaction_code == code).one_or_none()
