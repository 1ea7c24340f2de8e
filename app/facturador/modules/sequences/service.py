from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.facturador.audit import record_event
from app.facturador.modules.cash_registers.models import CashRegister
from app.facturador.modules.sequences.models import InventorySequenceSetting, SequenceCounter, SequenceDefinition
from app.facturador.utils import clean_code, clean_str, to_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser


SCOPES = ("INVOICE", "INVENTORY")
SCOPE_LABELS = {"INVOICE": "facturación", "INVENTORY": "inventario"}
INVENTORY_TRANSACTION_TYPES = ("PURCHASE", "CONSUMPTION", "ADJUSTMENT", "TRANSFER")

SCOPE_GLOBAL = "GLOBAL"
SCOPE_CASH_REGISTER = "CASH_REGISTER"
SCOPE_INVENTORY_TYPE = "INVENTORY_TYPE"


def definition_to_dict(d: SequenceDefinition) -> dict:
    return {
        "id": d.id,
        "code": d.code,
        "name": d.name,
        "scope": d.scope,
        "prefix": d.prefix,
        "suffix": d.suffix,
        "padding": d.padding,
        "start_value": d.start_value,
        "step": d.step,
        "is_active": d.is_active,
        "preview": format_sequence(d, d.start_value),
    }


def format_sequence(definition: SequenceDefinition, value: int) -> str:
    return f"{definition.prefix or ''}{str(value).zfill(definition.padding)}{definition.suffix or ''}"


def get_definition_by_code(s: "Session", code: str | None) -> SequenceDefinition | None:
    normalized = clean_code(code)
    if not normalized:
        return None
    return s.query(SequenceDefinition).filter(SequenceDefinition.code == normalized).one_or_none()


def list_definitions(s: "Session", *, scope: str | None = None) -> list[SequenceDefinition]:
    q = s.query(SequenceDefinition)
    if scope:
        q = q.filter(SequenceDefinition.scope == clean_code(scope))
    return q.order_by(SequenceDefinition.scope.asc(), SequenceDefinition.code.asc()).all()


def _apply_numeric_fields(d: SequenceDefinition, payload: dict) -> None:
    if "padding" in payload:
        padding = to_int(payload.get("padding"))
        if padding is None or padding < 1 or padding > 20:
            raise ValueError("El relleno debe estar entre 1 y 20 dígitos")
        d.padding = padding
    if "start_value" in payload:
        start = to_int(payload.get("start_value"))
        if start is None or start < 0:
            raise ValueError("El valor inicial debe ser un entero mayor o igual a cero")
        d.start_value = start
    if "step" in payload:
        step = to_int(payload.get("step"))
        if step is None or step <= 0:
            raise ValueError("El incremento debe ser mayor a cero")
        d.step = step


def create_definition(s: "Session", payload: dict, user: "AdminUser") -> SequenceDefinition:
    code = clean_code(payload.get("code"))
    name = clean_str(payload.get("name"), 120)
    scope = clean_code(payload.get("scope"))
    if not code or not name:
        raise ValueError("El código y el nombre del consecutivo son obligatorios")
    if scope not in SCOPES:
        raise ValueError("El alcance del consecutivo debe ser INVOICE o INVENTORY")
    if get_definition_by_code(s, code):
        raise ValueError("Ya existe un consecutivo con ese código")

    d = SequenceDefinition(
        code=code[:40],
        name=name,
        scope=scope,
        prefix=(clean_str(payload.get("prefix"), 20) or ""),
        suffix=(clean_str(payload.get("suffix"), 20) or ""),
        padding=6,
        start_value=1,
        step=1,
        is_active=bool(payload.get("is_active", True)),
    )
    _apply_numeric_fields(d, payload)
    s.add(d)
    s.flush()
    record_event(s, actor=user, action="sequence.create", entity_type="SequenceDefinition", entity_id=str(d.id), metadata={"code": d.code, "scope": d.scope})
    return d


def update_definition(s: "Session", d: SequenceDefinition, payload: dict, user: "AdminUser") -> SequenceDefinition:
    if "name" in payload:
        name = clean_str(payload.get("name"), 120)
        if not name:
            raise ValueError("El nombre del consecutivo es obligatorio")
        d.name = name
    if "prefix" in payload:
        d.prefix = clean_str(payload.get("prefix"), 20) or ""
    if "suffix" in payload:
        d.suffix = clean_str(payload.get("suffix"), 20) or ""
    if "is_active" in payload:
        d.is_active = bool(payload.get("is_active"))
    _apply_numeric_fields(d, payload)
    d.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=user, action="sequence.edit", entity_type="SequenceDefinition", entity_id=str(d.id), metadata={"code": d.code})
    return d


def next_value(s: "Session", definition: SequenceDefinition, *, scope_type: str = SCOPE_GLOBAL, scope_key: str = "") -> tuple[int, str]:
    """Advance the counter for (definition, scope) and return (value, formatted label)."""
    counter = (
        s.query(SequenceCounter)
        .filter(
            SequenceCounter.sequence_definition_id == definition.id,
            SequenceCounter.scope_type == scope_type,
            SequenceCounter.scope_key == scope_key,
        )
        .with_for_update()
        .one_or_none()
    )
    now = datetime.utcnow()
    if counter is None:
        value = definition.start_value
        counter = SequenceCounter(
            sequence_definition_id=definition.id,
            scope_type=scope_type,
            scope_key=scope_key,
            current_value=value,
            updated_at=now,
        )
        s.add(counter)
    else:
        value = counter.current_value + definition.step
        counter.current_value = value
        counter.updated_at = now
    s.flush()
    return value, format_sequence(definition, value)


def _resolve_for_scope(s: "Session", sequence_code: str | None, scope: str) -> SequenceDefinition:
    d = get_definition_by_code(s, sequence_code)
    if not d:
        raise ValueError("La secuencia indicada no existe")
    if d.scope != scope:
        raise ValueError(f"La secuencia debe ser de tipo {SCOPE_LABELS[scope]}")
    if not d.is_active:
        raise ValueError("La secuencia indicada está inactiva")
    return d


# ---------- Cash registers ----------
def assign_cash_register_sequence(s: "Session", register: "CashRegister", sequence_code: str | None, user: "AdminUser") -> "CashRegister":
    if not clean_code(sequence_code):
        register.invoice_sequence_definition_id = None
        register.invoice_sequence = None
    else:
        d = _resolve_for_scope(s, sequence_code, "INVOICE")
        # counters are per register, so a shared definition would repeat invoice numbers
        holder = (
            s.query(CashRegister)
            .filter(CashRegister.invoice_sequence_definition_id == d.id, CashRegister.id != register.id)
            .first()
        )
        if holder is not None:
            raise ValueError(f"La secuencia ya está asignada a otra caja ({holder.code})")
        register.invoice_sequence_definition_id = d.id
        register.invoice_sequence = d
    register.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="sequence.assign_cash_register",
        entity_type="CashRegister",
        entity_id=str(register.id),
        metadata={"cash_register": register.code, "sequence": register.invoice_sequence.code if register.invoice_sequence else None},
    )
    return register


def next_invoice_number(s: "Session", register: "CashRegister") -> str:
    d = register.invoice_sequence
    if d is None:
        raise ValueError("Configura un consecutivo para la caja antes de facturar")
    if not d.is_active:
        raise ValueError("El consecutivo asignado a la caja está inactivo")
    _value, label = next_value(s, d, scope_type=SCOPE_CASH_REGISTER, scope_key=register.code)
    return label


# ---------- Inventory ----------
def list_inventory_settings(s: "Session") -> list[dict]:
    settings = {row.transaction_type: row for row in s.query(InventorySequenceSetting).all()}
    out = []
    for tx_type in INVENTORY_TRANSACTION_TYPES:
        row = settings.get(tx_type)
        out.append(
            {
                "transaction_type": tx_type,
                "sequence_code": row.definition.code if row else None,
                "sequence_name": row.definition.name if row else None,
            }
        )
    return out


def assign_inventory_sequence(s: "Session", transaction_type: str, sequence_code: str | None, user: "AdminUser") -> InventorySequenceSetting | None:
    tx_type = clean_code(transaction_type)
    if tx_type not in INVENTORY_TRANSACTION_TYPES:
        raise ValueError("Tipo de movimiento de inventario inválido")
    row = s.query(InventorySequenceSetting).filter(InventorySequenceSetting.transaction_type == tx_type).one_or_none()
    if not clean_code(sequence_code):
        if row is not None:
            s.delete(row)
        record_event(s, actor=user, action="sequence.unassign_inventory", entity_type="InventorySequenceSetting", entity_id=tx_type)
        return None

    d = _resolve_for_scope(s, sequence_code, "INVENTORY")
    if row is None:
        row = InventorySequenceSetting(transaction_type=tx_type, sequence_definition_id=d.id)
        s.add(row)
    row.sequence_definition_id = d.id
    row.definition = d
    row.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="sequence.assign_inventory",
        entity_type="InventorySequenceSetting",
        entity_id=tx_type,
        metadata={"sequence": d.code},
    )
    return row


def next_inventory_code(s: "Session", transaction_type: str) -> str | None:
    """Next code for an inventory transaction type, or None when no active sequence is assigned."""
    row = (
        s.query(InventorySequenceSetting)
        .filter(InventorySequenceSetting.transaction_type == clean_code(transaction_type))
        .one_or_none()
    )
    if row is None or not row.definition.is_active:
        return None
    _value, label = next_value(s, row.definition, scope_type=SCOPE_INVENTORY_TYPE, scope_key=row.transaction_type)
    return label
