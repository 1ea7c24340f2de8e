from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, SmallInteger, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.facturador.models import Base


class PaymentTerm(Base):
    __tablename__ = "payment_terms"
    __table_args__ = (
        Index("ix_payment_terms_active", "is_active", "code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(String(250), nullable=True)
    days: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    grace_days: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        Index("ix_customers_active_status", "is_active", "credit_status", "code"),
        Index("ix_customers_tax_id", "tax_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    trade_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    tax_id: Mapped[str | None] = mapped_column(String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(String(150), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    mobile_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    billing_address: Mapped[str | None] = mapped_column(String(250), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    state: Mapped[str | None] = mapped_column(String(120), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(3), nullable=True, default="NI")
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_term_id: Mapped[int | None] = mapped_column(ForeignKey("payment_terms.id", ondelete="SET NULL"), nullable=True)
    credit_limit: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    credit_used: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    credit_on_hold: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    credit_status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | ON_HOLD | BLOCKED
    credit_hold_reason: Mapped[str | None] = mapped_column(String(250), nullable=True)
    last_credit_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    next_credit_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(String(400), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    payment_term: Mapped[PaymentTerm | None] = relationship("PaymentTerm", lazy="selectin")


class CustomerDocument(Base):
    __tablename__ = "customer_documents"
    __table_args__ = (
        UniqueConstraint("customer_id", "document_type", "document_number", name="uq_customer_documents_number"),
        Index("ix_customer_documents_customer_status", "customer_id", "status", "document_date"),
        Index("ix_customer_documents_invoice", "related_invoice_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    payment_term_id: Mapped[int | None] = mapped_column(ForeignKey("payment_terms.id", ondelete="SET NULL"), nullable=True)
    related_invoice_id: Mapped[int | None] = mapped_column(ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True)
    document_type: Mapped[str] = mapped_column(String(12), nullable=False)
    document_number: Mapped[str] = mapped_column(String(60), nullable=False)
    document_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    original_amount: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False)
    balance_amount: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="PENDIENTE")
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(400), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    customer: Mapped[Customer] = relationship("Customer", lazy="selectin")
    payment_term: Mapped[PaymentTerm | None] = relationship("PaymentTerm", lazy="selectin")


class CustomerDocumentApplication(Base):
    __tablename__ = "customer_document_applications"
    __table_args__ = (
        Index("ix_customer_document_applications_applied", "applied_document_id"),
        Index("ix_customer_document_applications_target", "target_document_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    applied_document_id: Mapped[int] = mapped_column(ForeignKey("customer_documents.id", ondelete="CASCADE"), nullable=False)
    target_document_id: Mapped[int] = mapped_column(ForeignKey("customer_documents.id", ondelete="CASCADE"), nullable=False)
    application_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    amount: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(400), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    applied_document: Mapped[CustomerDocument] = relationship("CustomerDocument", foreign_keys=[applied_document_id], lazy="selectin")
    target_document: Mapped[CustomerDocument] = relationship("CustomerDocument", foreign_keys=[target_document_id], lazy="selectin")


class CustomerCreditLine(Base):
    __tablename__ = "customer_credit_lines"
    __table_args__ = (
        Index("ix_customer_credit_lines_status", "customer_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | PAUSED | BLOCKED
    approved_limit: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    available_limit: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    blocked_amount: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, default=0)
    reviewer_admin_user_id: Mapped[int | None] = mapped_column(ForeignKey("admin_users.id", ondelete="SET NULL"), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(String(400), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    next_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    customer: Mapped[Customer] = relationship("Customer", lazy="selectin")


class CollectionLog(Base):
    __tablename__ = "collection_logs"
    __table_args__ = (
        Index("ix_collection_logs_follow_up", "customer_id", "follow_up_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    document_id: Mapped[int | None] = mapped_column(ForeignKey("customer_documents.id", ondelete="SET NULL"), nullable=True)
    contact_method: Mapped[str | None] = mapped_column(String(120), nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    notes: Mapped[str] = mapped_column(String(512), nullable=False)
    outcome: Mapped[str | None] = mapped_column(String(240), nullable=True)
    follow_up_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("admin_users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    customer: Mapped[Customer] = relationship("Customer", lazy="selectin")
    document: Mapped[CustomerDocument | None] = relationship("CustomerDocument", lazy="selectin")


class CustomerDispute(Base):
    __tablename__ = "customer_disputes"
    __table_args__ = (
        Index("ix_customer_disputes_status", "customer_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    document_id: Mapped[int | None] = mapped_column(ForeignKey("customer_documents.id", ondelete="SET NULL"), nullable=True)
    dispute_code: Mapped[str | None] = mapped_column(String(60), nullable=True)
    description: Mapped[str] = mapped_column(String(600), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN")  # OPEN | IN_PROGRESS | RESOLVED | CLOSED
    resolution_notes: Mapped[str | None] = mapped_column(String(600), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("admin_users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    customer: Mapped[Customer] = relationship("Customer", lazy="selectin")
    document: Mapped[CustomerDocument | None] = relationship("CustomerDocument", lazy="selectin")
