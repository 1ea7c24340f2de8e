from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.facturador.models import Base


class Unit(Base):
    __tablename__ = "units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(60), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class ArticleClassification(Base):
    __tablename__ = "article_classifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    level: Mapped[int] = mapped_column(SmallInteger, nullable=False)  # 1..6
    code: Mapped[str] = mapped_column(String(8), nullable=False)
    full_code: Mapped[str] = mapped_column(String(24), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    parent_full_code: Mapped[str | None] = mapped_column(String(24), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Warehouse(Base):
    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Article(Base):
    __tablename__ = "articles"
    __table_args__ = (
        Index("idx_articles_classification", "classification_full_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    article_code: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    classification_full_code: Mapped[str | None] = mapped_column(String(24), nullable=True)
    storage_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    retail_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    default_warehouse_id: Mapped[int | None] = mapped_column(ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True)
    article_type: Mapped[str] = mapped_column(String(12), nullable=False, default="TERMINADO")  # TERMINADO | KIT
    conversion_factor: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    default_warehouse: Mapped[Warehouse | None] = relationship("Warehouse", lazy="selectin")
    components: Mapped[list["ArticleKit"]] = relationship(
        "ArticleKit",
        foreign_keys="ArticleKit.kit_article_id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ArticleWarehouse(Base):
    __tablename__ = "article_warehouses"
    __table_args__ = (
        UniqueConstraint("article_id", "warehouse_id", name="uq_article_warehouses"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    warehouse: Mapped[Warehouse] = relationship("Warehouse", lazy="selectin")


class ArticleKit(Base):
    __tablename__ = "article_kits"
    __table_args__ = (
        UniqueConstraint("kit_article_id", "component_article_id", name="uq_article_kits"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kit_article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"), nullable=False)
    component_article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"), nullable=False)
    component_qty_retail: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    component: Mapped[Article] = relationship("Article", foreign_keys=[component_article_id], lazy="selectin")


class PriceList(Base):
    __tablename__ = "price_lists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class ArticlePrice(Base):
    __tablename__ = "article_prices"
    __table_args__ = (
        Index("idx_article_prices_keys", "article_id", "price_list_id", "start_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"), nullable=False)
    price_list_id: Mapped[int] = mapped_column(ForeignKey("price_lists.id", ondelete="CASCADE"), nullable=False)
    price: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    article: Mapped[Article] = relationship("Article", lazy="selectin")
    price_list: Mapped[PriceList] = relationship("PriceList", lazy="selectin")
