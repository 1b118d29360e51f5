"""SQLAlchemy ORM models for the billing store"""

import uuid
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class UserRecord(Base):
    """Account owning customers; read by the core only for notification recipients"""

    __tablename__ = "app_user"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, nullable=False, unique=True)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CustomerRecord(Base):
    """Customer of a user; the tenancy link between invoices and users"""

    __tablename__ = "customer"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    company_name = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InvoiceRecord(Base):
    """Invoice aggregate root row; `version` guards concurrent writers"""

    __tablename__ = "invoice"
    __table_args__ = (UniqueConstraint("customer_id", "reference", name="uq_invoice_customer_reference"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id = Column(Uuid, ForeignKey("customer.id", ondelete="CASCADE"), nullable=False, index=True)
    reference = Column(Text, nullable=False)
    currency = Column(Text, nullable=False)
    total_amount_cents = Column(BigInteger, nullable=False)
    archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False)

    installments = relationship(
        "InstallmentRecord",
        cascade="all, delete-orphan",
        order_by="InstallmentRecord.position",
    )

    # version is assigned by the repository; SQLAlchemy adds it to the UPDATE's WHERE clause
    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}


class InstallmentRecord(Base):
    """Installment within an invoice"""

    __tablename__ = "installment"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_id = Column(Uuid, ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    amount_due_cents = Column(BigInteger, nullable=False)
    amount_paid_cents = Column(BigInteger, nullable=False, default=0)
    due_date = Column(Date, nullable=False, index=True)
    status = Column(Text, nullable=False, default="PENDING", index=True)
    last_status_change_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    payments = relationship(
        "PaymentRecord",
        cascade="all, delete-orphan",
        order_by="PaymentRecord.position",
    )


class PaymentRecord(Base):
    """Payment applied to an installment"""

    __tablename__ = "payment"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    installment_id = Column(Uuid, ForeignKey("installment.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    amount_cents = Column(BigInteger, nullable=False)
    payment_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class NotificationLogRecord(Base):
    """Append-only delivery ledger; one row per installment at most"""

    __tablename__ = "notification_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # no FK: the audit row outlives the installment it describes
    installment_id = Column(Uuid, nullable=False, unique=True)
    recipient = Column(Text, nullable=False)
    subject = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=False)
