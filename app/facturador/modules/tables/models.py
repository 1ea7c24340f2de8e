from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.facturador.models import Base


class TableZone(Base):
    __tablename__ = "table_zones"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)  # slug of the name
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class DiningTable(Base):
    __tablename__ = "dining_tables"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    label: Mapped[str] = mapped_column(String(120), nullable=False)
    zone_id: Mapped[str | None] = mapped_column(ForeignKey("table_zones.id", ondelete="SET NULL"), nullable=True)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    zone: Mapped[TableZone | None] = relationship("TableZone", lazy="selectin")
    state: Mapped["TableState | None"] = relationship(
        "TableState", back_populates="table", uselist=False, cascade="all, delete-orphan", lazy="selectin"
    )
    reservation: Mapped["TableReservation | None"] = relationship(
        "TableReservation", back_populates="table", uselist=False, cascade="all, delete-orphan", lazy="selectin"
    )


class TableState(Base):
    __tablename__ = "table_states"

    table_id: Mapped[str] = mapped_column(ForeignKey("dining_tables.id", ondelete="CASCADE"), primary_key=True)
    assigned_waiter_id: Mapped[int | None] = mapped_column(ForeignKey("waiters.id", ondelete="SET NULL"), nullable=True)
    assigned_waiter_name: Mapped[str | None] = mapped_column(String(150), nullable=True)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="normal")  # normal | facturado | anulado
    pending_items: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    sent_items: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    table: Mapped[DiningTable] = relationship("DiningTable", back_populates="state")


class TableReservation(Base):
    __tablename__ = "table_reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    table_id: Mapped[str] = mapped_column(ForeignKey("dining_tables.id", ondelete="CASCADE"), nullable=False, unique=True)
    reserved_by: Mapped[str] = mapped_column(String(150), nullable=False)
    contact: Mapped[str | None] = mapped_column(String(150), nullable=True)
    party_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="holding")  # holding | seated
    notes: Mapped[str | None] = mapped_column(String(300), nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("admin_users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    table: Mapped[DiningTable] = relationship("DiningTable", back_populates="reservation")
