from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.facturador.models import Base
from app.facturador.modules.catalog.models import Article, Warehouse


class InventoryTransaction(Base):
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        Index("idx_inventory_transactions_type", "transaction_type", "occurred_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_code: Mapped[str] = mapped_column(String(60), nullable=False, unique=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)  # PURCHASE | CONSUMPTION | ADJUSTMENT | TRANSFER
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    destination_warehouse_id: Mapped[int | None] = mapped_column(ForeignKey("warehouses.id"), nullable=True)  # TRANSFER only
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    counterparty_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="CONFIRMADO")  # PENDIENTE | PAGADA | PARCIAL | CONFIRMADO
    notes: Mapped[str | None] = mapped_column(String(400), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    authorized_by: Mapped[str | None] = mapped_column(String(80), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(80), nullable=True)
    total_amount: Mapped[float | None] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    warehouse: Mapped[Warehouse] = relationship("Warehouse", foreign_keys=[warehouse_id], lazy="selectin")
    destination_warehouse: Mapped[Warehouse | None] = relationship("Warehouse", foreign_keys=[destination_warehouse_id], lazy="selectin")
    entries: Mapped[list["InventoryTransactionEntry"]] = relationship(
        "InventoryTransactionEntry",
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InventoryTransactionEntry.id",
    )


class InventoryTransactionEntry(Base):
    __tablename__ = "inventory_transaction_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("inventory_transactions.id", ondelete="CASCADE"), nullable=False)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id"), nullable=False)
    quantity_entered: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    entered_unit: Mapped[str] = mapped_column(String(12), nullable=False)  # STORAGE | RETAIL
    direction: Mapped[str] = mapped_column(String(3), nullable=False)  # IN | OUT
    unit_conversion_factor: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    kit_multiplier: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    cost_per_unit: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    subtotal: Mapped[float | None] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(300), nullable=True)

    transaction: Mapped[InventoryTransaction] = relationship("InventoryTransaction", back_populates="entries")
    article: Mapped[Article] = relationship("Article", lazy="selectin")
    movements: Mapped[list["InventoryMovement"]] = relationship(
        "InventoryMovement",
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InventoryMovement.id",
    )


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"
    __table_args__ = (
        Index("idx_inventory_movements_article", "article_id", "warehouse_id", "created_at"),
        Index("idx_inventory_movements_transaction", "transaction_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("inventory_transactions.id", ondelete="CASCADE"), nullable=False)
    entry_id: Mapped[int] = mapped_column(ForeignKey("inventory_transaction_entries.id", ondelete="CASCADE"), nullable=False)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id"), nullable=False)
    direction: Mapped[str] = mapped_column(String(3), nullable=False)
    quantity_retail: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    source_kit_article_id: Mapped[int | None] = mapped_column(ForeignKey("articles.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    entry: Mapped[InventoryTransactionEntry] = relationship("InventoryTransactionEntry", back_populates="movements")
    transaction: Mapped[InventoryTransaction] = relationship("InventoryTransaction", lazy="selectin")
    article: Mapped[Article] = relationship("Article", foreign_keys=[article_id], lazy="selectin")
    source_kit_article: Mapped[Article | None] = relationship("Article", foreign_keys=[source_kit_article_id], lazy="selectin")
    warehouse: Mapped[Warehouse] = relationship("Warehouse", lazy="selectin")


class WarehouseStock(Base):
    __tablename__ = "warehouse_stock"
    __table_args__ = (
        UniqueConstraint("article_id", "warehouse_id", name="uq_warehouse_stock"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False)
    quantity_retail: Mapped[float] = mapped_column(Numeric(30, 6, asdecimal=False), nullable=False, default=0)
    quantity_storage: Mapped[float] = mapped_column(Numeric(30, 6, asdecimal=False), nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    article: Mapped[Article] = relationship("Article", lazy="selectin")
    warehouse: Mapped[Warehouse] = relationship("Warehouse", lazy="selectin")
