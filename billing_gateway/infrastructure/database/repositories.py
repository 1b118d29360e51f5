"""Data access layer for billing aggregates and notification logs"""

import uuid
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from billing_gateway.domain.exceptions import (
    AlreadyExistsError,
    ConcurrencyConflictError,
    NotificationAlreadyLoggedError,
)
from billing_gateway.domain.installments import Installment
from billing_gateway.domain.invoices import Invoice
from billing_gateway.domain.models import (
    Customer,
    NotificationLog,
    NotificationStatus,
    OverdueEvent,
    Payment,
    PaymentStatus,
    UserContact,
)
from billing_gateway.domain.money import Money
from billing_gateway.infrastructure.database.models import (
    CustomerRecord,
    InstallmentRecord,
    InvoiceRecord,
    NotificationLogRecord,
    PaymentRecord,
    UserRecord,
)
from billing_gateway.utils.date_utils import ensure_utc

NOTIFIABLE_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.PARTIALLY_PAID.value)
REFERENCE_CONSTRAINT = "uq_invoice_customer_reference"


def _is_reference_conflict(error: IntegrityError) -> bool:
    """Unique (customer_id, reference) violation; PostgreSQL names the constraint, SQLite lists the columns"""
    message = str(error.orig)
    return REFERENCE_CONSTRAINT in message or "invoice.customer_id, invoice.reference" in message


def _payment_to_domain(record: PaymentRecord) -> Payment:
    return Payment(
        id=record.id,
        installment_id=record.installment_id,
        amount=Money.from_cents(record.amount_cents),
        payment_date=record.payment_date,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


def _installment_to_domain(record: InstallmentRecord) -> Installment:
    return Installment(
        id=record.id,
        invoice_id=record.invoice_id,
        amount_due=Money.from_cents(record.amount_due_cents),
        due_date=record.due_date,
        status=PaymentStatus(record.status),
        last_status_change_at=ensure_utc(record.last_status_change_at),
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
        payments=[_payment_to_domain(p) for p in record.payments],
    )


def _invoice_to_domain(record: InvoiceRecord) -> Invoice:
    return Invoice(
        id=record.id,
        customer_id=record.customer_id,
        reference=record.reference,
        currency=record.currency,
        total_amount=Money.from_cents(record.total_amount_cents),
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
        archived=record.archived,
        installments=[_installment_to_domain(i) for i in record.installments],
        version=record.version,
    )


class InvoiceRepository:
    """Repository for the invoice aggregate (invoice + installments + payments)"""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(InvoiceRecord).options(
            selectinload(InvoiceRecord.installments).selectinload(InstallmentRecord.payments)
        )

    def save(self, invoice: Invoice) -> Invoice:
        """
        Upsert the whole aggregate.

        Optimistic locking: the stored version must equal the version the
        aggregate was loaded with; the UPDATE is issued with the old version
        in its WHERE clause so a writer that committed in between makes the
        flush fail. Either way a ConcurrencyConflictError is raised and the
        caller's unit of work rolls back.
        """
        record = self._query().filter(InvoiceRecord.id == invoice.id).first()
        if record is None:
            if invoice.version != 0:
                raise ConcurrencyConflictError(f"Invoice {invoice.id} was deleted by another writer")
            record = InvoiceRecord(id=invoice.id, created_at=invoice.created_at)
            self.db.add(record)
        elif record.version != invoice.version:
            raise ConcurrencyConflictError(
                f"Invoice {invoice.id} changed since it was loaded (version {invoice.version}, stored {record.version})"
            )

        record.version = invoice.version + 1
        record.customer_id = invoice.customer_id
        record.reference = invoice.reference
        record.currency = invoice.currency
        record.total_amount_cents = invoice.total_amount.cents
        record.archived = invoice.archived
        record.updated_at = invoice.updated_at
        self._sync_installments(record, invoice)

        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrencyConflictError(f"Invoice {invoice.id} was modified by another writer") from e
        except IntegrityError as e:
            if not _is_reference_conflict(e):
                raise
            raise AlreadyExistsError(
                f"Invoice with reference {invoice.reference} already exists for this customer"
            ) from e

        invoice.version = record.version
        return invoice

    def _sync_installments(self, record: InvoiceRecord, invoice: Invoice) -> None:
        existing = {r.id: r for r in record.installments}
        synced = []
        for position, installment in enumerate(invoice.installments):
            inst_record = existing.get(installment.id)
            if inst_record is None:
                inst_record = InstallmentRecord(
                    id=installment.id,
                    invoice_id=invoice.id,
                    created_at=installment.created_at,
                )
            inst_record.position = position
            inst_record.amount_due_cents = installment.amount_due.cents
            inst_record.amount_paid_cents = installment.amount_paid.cents
            inst_record.due_date = installment.due_date
            inst_record.status = installment.status.value
            inst_record.last_status_change_at = installment.last_status_change_at
            inst_record.updated_at = installment.updated_at
            self._sync_payments(inst_record, installment)
            synced.append(inst_record)
        # installments dropped from the list are deleted as orphans
        record.installments = synced

    @staticmethod
    def _sync_payments(record: InstallmentRecord, installment: Installment) -> None:
        existing = {r.id: r for r in record.payments}
        synced = []
        for position, payment in enumerate(installment.payments):
            pay_record = existing.get(payment.id)
            if pay_record is None:
                pay_record = PaymentRecord(
                    id=payment.id,
                    installment_id=installment.id,
                    created_at=payment.created_at,
                )
            pay_record.position = position
            pay_record.amount_cents = payment.amount.cents
            pay_record.payment_date = payment.payment_date
            pay_record.updated_at = payment.updated_at
            synced.append(pay_record)
        record.payments = synced

    def find_by_id(self, invoice_id: uuid.UUID) -> Optional[Invoice]:
        record = self._query().filter(InvoiceRecord.id == invoice_id).first()
        return _invoice_to_domain(record) if record else None

    def find_by_id_and_owner(self, invoice_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Invoice]:
        """Fetch an invoice only if its customer belongs to the user"""
        record = (
            self._query()
            .join(CustomerRecord, InvoiceRecord.customer_id == CustomerRecord.id)
            .filter(InvoiceRecord.id == invoice_id, CustomerRecord.user_id == user_id)
            .first()
        )
        return _invoice_to_domain(record) if record else None

    def find_by_customer_id_and_reference(self, customer_id: uuid.UUID, reference: str) -> Optional[Invoice]:
        record = (
            self._query()
            .filter(InvoiceRecord.customer_id == customer_id, InvoiceRecord.reference == reference)
            .first()
        )
        return _invoice_to_domain(record) if record else None

    def list_by_customer_id(self, customer_id: uuid.UUID) -> List[Invoice]:
        records = (
            self._query()
            .filter(InvoiceRecord.customer_id == customer_id)
            .order_by(InvoiceRecord.created_at, InvoiceRecord.id)
            .all()
        )
        return [_invoice_to_domain(r) for r in records]

    def list_by_user_id(self, user_id: uuid.UUID) -> List[Invoice]:
        """Every invoice of every customer owned by the user"""
        records = (
            self._query()
            .join(CustomerRecord, InvoiceRecord.customer_id == CustomerRecord.id)
            .filter(CustomerRecord.user_id == user_id)
            .order_by(InvoiceRecord.created_at, InvoiceRecord.id)
            .all()
        )
        return [_invoice_to_domain(r) for r in records]

    def delete_by_id(self, invoice_id: uuid.UUID) -> bool:
        """Delete the invoice and, by cascade, its installments and payments"""
        record = self._query().filter(InvoiceRecord.id == invoice_id).first()
        if record is None:
            return False
        self.db.delete(record)
        self.db.flush()
        return True

    def list_overdue_installments_not_notified(self, today: date) -> List[OverdueEvent]:
        """
        Installments past due, not fully paid, and never notified.

        A notification log of any status excludes the installment, so failed
        deliveries are not picked up again.
        """
        already_notified = (
            self.db.query(NotificationLogRecord.id)
            .filter(NotificationLogRecord.installment_id == InstallmentRecord.id)
            .exists()
        )
        rows = (
            self.db.query(
                InstallmentRecord.id,
                InstallmentRecord.invoice_id,
                CustomerRecord.user_id,
                InstallmentRecord.due_date,
            )
            .join(InvoiceRecord, InstallmentRecord.invoice_id == InvoiceRecord.id)
            .join(CustomerRecord, InvoiceRecord.customer_id == CustomerRecord.id)
            .filter(
                InstallmentRecord.due_date < today,
                InstallmentRecord.status.in_(NOTIFIABLE_STATUSES),
                ~already_notified,
            )
            .order_by(InstallmentRecord.due_date, InstallmentRecord.id)
            .all()
        )
        return [
            OverdueEvent(installment_id=row[0], invoice_id=row[1], user_id=row[2], due_date=row[3])
            for row in rows
        ]


class NotificationLogRepository:
    """Repository for the append-only notification ledger"""

    def __init__(self, db: Session):
        self.db = db

    def save(self, log: NotificationLog) -> NotificationLog:
        self.db.add(
            NotificationLogRecord(
                id=log.id,
                installment_id=log.installment_id,
                recipient=log.recipient,
                subject=log.subject,
                status=log.status.value,
                error_message=log.error_message,
                sent_at=log.sent_at,
            )
        )
        try:
            self.db.flush()
        except IntegrityError as e:
            raise NotificationAlreadyLoggedError(
                f"Notification already logged for installment {log.installment_id}"
            ) from e
        return log

    def exists_by_installment_id(self, installment_id: uuid.UUID) -> bool:
        return self.db.query(
            self.db.query(NotificationLogRecord.id)
            .filter(NotificationLogRecord.installment_id == installment_id)
            .exists()
        ).scalar()

    def find_by_installment_id(self, installment_id: uuid.UUID) -> Optional[NotificationLog]:
        record = (
            self.db.query(NotificationLogRecord)
            .filter(NotificationLogRecord.installment_id == installment_id)
            .first()
        )
        if record is None:
            return None
        return NotificationLog(
            id=record.id,
            installment_id=record.installment_id,
            recipient=record.recipient,
            subject=record.subject,
            status=NotificationStatus(record.status),
            sent_at=ensure_utc(record.sent_at),
            error_message=record.error_message,
        )


class CustomerRepository:
    """Read-only access to customers for tenancy checks"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, customer_id: uuid.UUID) -> Optional[Customer]:
        record = self.db.get(CustomerRecord, customer_id)
        if record is None:
            return None
        return Customer(id=record.id, user_id=record.user_id, name=record.company_name)


class UserRepository:
    """Read-only access to users for notification recipients"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, user_id: uuid.UUID) -> Optional[UserContact]:
        record = self.db.get(UserRecord, user_id)
        if record is None:
            return None
        return UserContact(id=record.id, email=record.email, first_name=record.first_name)
