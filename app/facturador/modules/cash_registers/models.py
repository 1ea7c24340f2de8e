from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.facturador.models import AdminUser, Base
from app.facturador.modules.catalog.models import Warehouse
from app.facturador.modules.sequences.models import SequenceDefinition


class CashRegister(Base):
    __tablename__ = "cash_registers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    allow_manual_warehouse_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(String(300), nullable=True)
    invoice_sequence_definition_id: Mapped[int | None] = mapped_column(
        ForeignKey("sequence_definitions.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    warehouse: Mapped[Warehouse] = relationship("Warehouse", lazy="selectin")
    invoice_sequence: Mapped[SequenceDefinition | None] = relationship("SequenceDefinition", lazy="selectin")


class CashRegisterUser(Base):
    __tablename__ = "cash_register_users"
    __table_args__ = (
        UniqueConstraint("cash_register_id", "admin_user_id", name="uq_cash_register_users"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cash_register_id: Mapped[int] = mapped_column(ForeignKey("cash_registers.id", ondelete="CASCADE"), nullable=False)
    admin_user_id: Mapped[int] = mapped_column(ForeignKey("admin_users.id", ondelete="CASCADE"), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    cash_register: Mapped[CashRegister] = relationship("CashRegister", lazy="selectin")


class CashRegisterSession(Base):
    __tablename__ = "cash_register_sessions"
    __table_args__ = (
        Index("idx_cash_register_sessions_status", "status", "cash_register_id"),
        Index("idx_cash_register_sessions_user", "admin_user_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cash_register_id: Mapped[int] = mapped_column(ForeignKey("cash_registers.id"), nullable=False)
    admin_user_id: Mapped[int] = mapped_column(ForeignKey("admin_users.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="OPEN")  # OPEN | CLOSED
    opening_amount: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    opening_notes: Mapped[str | None] = mapped_column(String(400), nullable=True)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    closing_amount: Mapped[float | None] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=True)
    closing_notes: Mapped[str | None] = mapped_column(String(400), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    closing_user_id: Mapped[int | None] = mapped_column(ForeignKey("admin_users.id"), nullable=True)
    totals_snapshot: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON
    invoice_sequence_start: Mapped[str | None] = mapped_column(String(60), nullable=True)
    invoice_sequence_end: Mapped[str | None] = mapped_column(String(60), nullable=True)

    cash_register: Mapped[CashRegister] = relationship("CashRegister", lazy="selectin")
    admin_user: Mapped[AdminUser] = relationship("AdminUser", foreign_keys=[admin_user_id], lazy="selectin")
    payments: Mapped[list["CashRegisterSessionPayment"]] = relationship(
        "CashRegisterSessionPayment",
        back_populates="session",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CashRegisterSessionPayment.payment_method",
    )


class CashRegisterSessionPayment(Base):
    __tablename__ = "cash_register_session_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("cash_register_sessions.id", ondelete="CASCADE"), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    expected_amount: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    reported_amount: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    difference_amount: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    session: Mapped[CashRegisterSession] = relationship("CashRegisterSession", back_populates="payments")
