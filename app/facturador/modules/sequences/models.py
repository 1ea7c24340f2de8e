from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.facturador.models import Base


class SequenceDefinition(Base):
    __tablename__ = "sequence_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    scope: Mapped[str] = mapped_column(String(12), nullable=False)  # INVOICE | INVENTORY
    prefix: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    suffix: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    padding: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    start_value: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"
    __table_args__ = (
        UniqueConstraint("sequence_definition_id", "scope_type", "scope_key", name="uq_sequence_counters_scope"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sequence_definition_id: Mapped[int] = mapped_column(ForeignKey("sequence_definitions.id", ondelete="CASCADE"), nullable=False)
    scope_type: Mapped[str] = mapped_column(String(20), nullable=False)  # GLOBAL | CASH_REGISTER | INVENTORY_TYPE
    scope_key: Mapped[str] = mapped_column(String(60), nullable=False, default="")
    current_value: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    definition: Mapped[SequenceDefinition] = relationship("SequenceDefinition", lazy="selectin")


class InventorySequenceSetting(Base):
    __tablename__ = "inventory_sequence_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    sequence_definition_id: Mapped[int] = mapped_column(ForeignKey("sequence_definitions.id", ondelete="CASCADE"), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    definition: Mapped[SequenceDefinition] = relationship("SequenceDefinition", lazy="selectin")
