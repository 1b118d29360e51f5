"""Tenant-scoped billing operations - one aggregate mutation per unit of work"""

import logging
import uuid
from contextlib import contextmanager
from datetime import date
from typing import Iterable, Iterator, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from billing_gateway.domain.exceptions import (
    AlreadyExistsError,
    ConcurrencyConflictError,
    CustomerNotFoundError,
    DomainException,
    InvoiceNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from billing_gateway.domain.installments import Installment
from billing_gateway.domain.invoices import Invoice, normalize_reference
from billing_gateway.domain.money import Money
from billing_gateway.infrastructure.database.repositories import CustomerRepository, InvoiceRepository
from billing_gateway.infrastructure.database.session import read_only, unit_of_work
from billing_gateway.infrastructure.observability.logging import log_billing_mutation
from billing_gateway.infrastructure.observability.metrics import (
    concurrency_conflict_counter,
    record_mutation,
    record_rejection,
)
from billing_gateway.utils.date_utils import parse_iso_date


def _money(value, field: str, required: bool = True) -> Optional[Money]:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, Money):
        return value
    return Money.of(value)


def _date(value, field: str, required: bool = True) -> Optional[date]:
    if value is None and required:
        raise ValidationError(f"{field} is required")
    return parse_iso_date(value, field)


class BillingService:
    """
    Application operations on the invoice aggregate.

    Flow of every mutation:
    1. Parse and validate raw input (counted as a rejection, nothing loaded yet)
    2. Load the invoice owned by the acting user
    3. Apply one aggregate method (validates before it mutates)
    4. Save the whole aggregate and commit, or roll everything back
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _mutation(self, operation: str) -> Iterator[Session]:
        try:
            with unit_of_work(self.session_factory) as db:
                yield db
        except ConcurrencyConflictError as e:
            concurrency_conflict_counter.inc()
            record_rejection(operation, e)
            logging.warning(f"{operation} rejected: {e}")
            raise
        except DomainException as e:
            record_rejection(operation, e)
            logging.warning(f"{operation} rejected: {e}")
            raise
        record_mutation(operation)

    def _check_customer(self, db: Session, user_id: uuid.UUID, customer_id: uuid.UUID) -> None:
        customer = CustomerRepository(db).find_by_id(customer_id)
        if customer is None:
            raise CustomerNotFoundError(f"Customer with ID {customer_id} not found")
        if customer.user_id != user_id:
            raise PermissionDeniedError(
                f"User with ID {user_id} does not have permission to access customer with ID {customer_id}"
            )

    def _load_owned_invoice(self, db: Session, user_id: uuid.UUID, invoice_id: uuid.UUID) -> Invoice:
        repo = InvoiceRepository(db)
        invoice = repo.find_by_id_and_owner(invoice_id, user_id)
        if invoice is not None:
            return invoice
        if repo.find_by_id(invoice_id) is not None:
            raise PermissionDeniedError(
                f"User with ID {user_id} does not have permission to access invoice with ID {invoice_id}"
            )
        raise InvoiceNotFoundError(f"Invoice with ID {invoice_id} not found for user ID {user_id}")

    def _ensure_reference_free(self, db: Session, customer_id: uuid.UUID, reference: str) -> None:
        if InvoiceRepository(db).find_by_customer_id_and_reference(customer_id, reference) is not None:
            raise AlreadyExistsError(f"Invoice with reference {reference} already exists for this customer")

    # Invoices

    def create_invoice(
        self,
        user_id: uuid.UUID,
        customer_id: uuid.UUID,
        reference: str,
        currency: str,
        total_amount,
        installments: Optional[Iterable[Tuple[object, object]]] = None,
    ) -> Invoice:
        """Create an invoice, optionally with its initial (amount_due, due_date) schedule"""
        with self._mutation("create_invoice") as db:
            total = _money(total_amount, "total_amount")
            schedule = [
                (_money(amount, "amount_due"), _date(due, "due_date")) for amount, due in (installments or [])
            ]
            self._check_customer(db, user_id, customer_id)
            invoice = Invoice.create(customer_id, reference, currency, total)
            self._ensure_reference_free(db, customer_id, invoice.reference)
            if schedule:
                invoice.add_installments(
                    Installment.create(uuid.uuid4(), invoice.id, amount, due) for amount, due in schedule
                )
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation("create_invoice", str(user_id), str(saved.id), reference=saved.reference)
        return saved

    def view_invoice(self, user_id: uuid.UUID, invoice_id: uuid.UUID) -> Invoice:
        with read_only(self.session_factory) as db:
            return self._load_owned_invoice(db, user_id, invoice_id)

    def list_invoices_by_user(self, user_id: uuid.UUID) -> List[Invoice]:
        with read_only(self.session_factory) as db:
            return InvoiceRepository(db).list_by_user_id(user_id)

    def list_invoices_by_customer(self, user_id: uuid.UUID, customer_id: uuid.UUID) -> List[Invoice]:
        """Invoices of one customer, which must belong to the acting user"""
        with read_only(self.session_factory) as db:
            self._check_customer(db, user_id, customer_id)
            return InvoiceRepository(db).list_by_customer_id(customer_id)

    def update_invoice(
        self,
        user_id: uuid.UUID,
        invoice_id: uuid.UUID,
        reference: Optional[str] = None,
        currency: Optional[str] = None,
        total_amount=None,
    ) -> Invoice:
        with self._mutation("update_invoice") as db:
            total = _money(total_amount, "total_amount", required=False)
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            if reference is not None:
                new_reference = normalize_reference(reference)
                if new_reference != invoice.reference:
                    self._ensure_reference_free(db, invoice.customer_id, new_reference)
            invoice.update_details(reference=reference, currency=currency, total_amount=total)
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation("update_invoice", str(user_id), str(invoice_id))
        return saved

    def delete_invoice(self, user_id: uuid.UUID, invoice_id: uuid.UUID) -> None:
        with self._mutation("delete_invoice") as db:
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            if not InvoiceRepository(db).delete_by_id(invoice.id):
                raise InvoiceNotFoundError(f"Invoice with ID {invoice_id} not found for user ID {user_id}")

        log_billing_mutation("delete_invoice", str(user_id), str(invoice_id))

    def archive_invoice(self, user_id: uuid.UUID, invoice_id: uuid.UUID) -> Invoice:
        with self._mutation("archive_invoice") as db:
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            invoice.archive()
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation("archive_invoice", str(user_id), str(invoice_id))
        return saved

    def unarchive_invoice(self, user_id: uuid.UUID, invoice_id: uuid.UUID) -> Invoice:
        with self._mutation("unarchive_invoice") as db:
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            invoice.unarchive()
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation("unarchive_invoice", str(user_id), str(invoice_id))
        return saved

    # Installments

    def add_installment(self, user_id: uuid.UUID, invoice_id: uuid.UUID, amount_due, due_date) -> Invoice:
        with self._mutation("add_installment") as db:
            amount = _money(amount_due, "amount_due")
            due = _date(due_date, "due_date")
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            installment = invoice.schedule_installment(amount, due)
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation("add_installment", str(user_id), str(invoice_id), installment_id=str(installment.id))
        return saved

    def update_installment(
        self,
        user_id: uuid.UUID,
        invoice_id: uuid.UUID,
        installment_id: uuid.UUID,
        amount_due=None,
        due_date=None,
    ) -> Invoice:
        with self._mutation("update_installment") as db:
            amount = _money(amount_due, "amount_due", required=False)
            due = _date(due_date, "due_date", required=False)
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            invoice.update_installment(installment_id, amount_due=amount, due_date=due)
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation("update_installment", str(user_id), str(invoice_id), installment_id=str(installment_id))
        return saved

    def remove_installment(self, user_id: uuid.UUID, invoice_id: uuid.UUID, installment_id: uuid.UUID) -> Invoice:
        with self._mutation("remove_installment") as db:
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            invoice.remove_installment(installment_id)
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation("remove_installment", str(user_id), str(invoice_id), installment_id=str(installment_id))
        return saved

    # Payments

    def record_payment(
        self,
        user_id: uuid.UUID,
        invoice_id: uuid.UUID,
        installment_id: uuid.UUID,
        amount,
        payment_date,
    ) -> Invoice:
        with self._mutation("record_payment") as db:
            money = _money(amount, "amount")
            paid_on = _date(payment_date, "payment_date")
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            payment = invoice.record_payment(installment_id, money, paid_on)
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation(
            "record_payment",
            str(user_id),
            str(invoice_id),
            installment_id=str(installment_id),
            payment_id=str(payment.id),
        )
        return saved

    def update_payment(
        self,
        user_id: uuid.UUID,
        invoice_id: uuid.UUID,
        installment_id: uuid.UUID,
        payment_id: uuid.UUID,
        amount=None,
        payment_date=None,
    ) -> Invoice:
        with self._mutation("update_payment") as db:
            money = _money(amount, "amount", required=False)
            paid_on = _date(payment_date, "payment_date", required=False)
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            invoice.update_payment(installment_id, payment_id, amount=money, payment_date=paid_on)
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation("update_payment", str(user_id), str(invoice_id), payment_id=str(payment_id))
        return saved

    def remove_payment(
        self,
        user_id: uuid.UUID,
        invoice_id: uuid.UUID,
        installment_id: uuid.UUID,
        payment_id: uuid.UUID,
    ) -> Invoice:
        with self._mutation("remove_payment") as db:
            invoice = self._load_owned_invoice(db, user_id, invoice_id)
            invoice.remove_payment(installment_id, payment_id)
            saved = InvoiceRepository(db).save(invoice)

        log_billing_mutation("remove_payment", str(user_id), str(invoice_id), payment_id=str(payment_id))
        return saved
