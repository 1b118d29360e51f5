"""Invoice aggregate root - owns installments and guards the invoice ceiling"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, List, Optional

from billing_gateway.domain.exceptions import (
    AmountBelowPaidError,
    DomainInvariantViolation,
    DuplicateDueDateError,
    InstallmentDoesNotBelongToInvoiceError,
    InstallmentExceedsCapacityError,
    InstallmentNotFoundError,
    InvalidMoneyValueError,
    InvoiceArchivedError,
    ValidationError,
)
from billing_gateway.domain.installments import Installment
from billing_gateway.domain.models import Payment, PaymentStatus
from billing_gateway.domain.money import Money
from billing_gateway.utils.date_utils import utc_now

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
MAX_REFERENCE_LENGTH = 64


def normalize_reference(reference: Optional[str]) -> str:
    if reference is None or not reference.strip():
        raise ValidationError("Invoice reference cannot be blank")
    reference = reference.strip()
    if len(reference) > MAX_REFERENCE_LENGTH:
        raise ValidationError(f"Invoice reference cannot exceed {MAX_REFERENCE_LENGTH} characters")
    return reference


def normalize_currency(currency: Optional[str]) -> str:
    value = (currency or "").strip().upper()
    if not _CURRENCY_PATTERN.match(value):
        raise ValidationError(f"Currency must be a three-letter code, got {currency!r}")
    return value


@dataclass
class Invoice:
    """
    Aggregate root for one customer invoice.

    The invoice carries an explicit `total_amount` ceiling; the sum of its
    installments' amounts due never exceeds it. Installments and payments are
    only mutated through the invoice so ownership is re-checked on every call.
    Totals are derived on demand and never cached.
    """

    id: uuid.UUID
    customer_id: uuid.UUID
    reference: str
    currency: str
    total_amount: Money
    created_at: datetime
    updated_at: datetime
    archived: bool = False
    installments: List[Installment] = field(default_factory=list)
    version: int = 0

    @classmethod
    def create(
        cls,
        customer_id: uuid.UUID,
        reference: str,
        currency: str,
        total_amount: Money,
        invoice_id: uuid.UUID | None = None,
    ) -> "Invoice":
        if not total_amount.is_positive():
            raise InvalidMoneyValueError(f"Invoice total must be greater than zero, got {total_amount}")
        now = utc_now()
        return cls(
            id=invoice_id or uuid.uuid4(),
            customer_id=customer_id,
            reference=normalize_reference(reference),
            currency=normalize_currency(currency),
            total_amount=total_amount,
            created_at=now,
            updated_at=now,
        )

    # Derived amounts

    def allocated_amount(self) -> Money:
        """Sum of installment amounts due"""
        return Money.sum(i.amount_due for i in self.installments)

    def unallocated_amount(self) -> Money:
        """Room left under the ceiling for new or larger installments"""
        return self.total_amount.subtract(self.allocated_amount())

    def total_paid(self) -> Money:
        return Money.sum(i.amount_paid for i in self.installments)

    def remaining_amount(self) -> Money:
        return Money.sum(i.remaining() for i in self.installments)

    @property
    def status(self) -> PaymentStatus:
        if self.installments and all(i.is_paid() for i in self.installments):
            return PaymentStatus.PAID
        if self.total_paid().is_positive():
            return PaymentStatus.PARTIALLY_PAID
        return PaymentStatus.PENDING

    def is_fully_paid(self) -> bool:
        return self.status == PaymentStatus.PAID

    def is_overdue(self, today: Optional[date] = None) -> bool:
        return any(i.is_overdue(today) for i in self.installments)

    def find_installment(self, installment_id: uuid.UUID) -> Installment:
        for installment in self.installments:
            if installment.id == installment_id:
                return installment
        raise InstallmentNotFoundError(f"Installment {installment_id} not found on invoice {self.id}")

    # Invoice details

    def update_details(
        self,
        reference: Optional[str] = None,
        currency: Optional[str] = None,
        total_amount: Optional[Money] = None,
    ) -> None:
        self._ensure_not_archived()
        new_reference = normalize_reference(reference) if reference is not None else None
        new_currency = normalize_currency(currency) if currency is not None else None
        if total_amount is not None:
            if not total_amount.is_positive():
                raise InvalidMoneyValueError(f"Invoice total must be greater than zero, got {total_amount}")
            if total_amount < self.allocated_amount():
                raise AmountBelowPaidError(
                    f"Invoice total {total_amount} cannot be less than allocated installments {self.allocated_amount()}"
                )

        if new_reference is None and new_currency is None and total_amount is None:
            return
        if new_reference is not None:
            self.reference = new_reference
        if new_currency is not None:
            self.currency = new_currency
        if total_amount is not None:
            self.total_amount = total_amount
        self._touch()

    def archive(self) -> None:
        if not self.archived:
            self.archived = True
            self._touch()

    def unarchive(self) -> None:
        if self.archived:
            self.archived = False
            self._touch()

    # Installments

    def add_installment(self, installment: Installment) -> None:
        self._ensure_not_archived()
        self._check_new_installment(installment, self.installments, self.unallocated_amount())
        self.installments.append(installment)
        self._touch()

    def add_installments(self, installments: Iterable[Installment]) -> None:
        """Add several installments; either all are added or none"""
        self._ensure_not_archived()
        staged = list(self.installments)
        capacity = self.unallocated_amount()
        for installment in installments:
            self._check_new_installment(installment, staged, capacity)
            staged.append(installment)
            capacity = capacity.subtract(installment.amount_due)
        self.installments = staged
        self._touch()

    def schedule_installment(self, amount_due: Money, due_date: date) -> Installment:
        installment = Installment.create(uuid.uuid4(), self.id, amount_due, due_date)
        self.add_installment(installment)
        return installment

    def update_installment(
        self,
        installment_id: uuid.UUID,
        amount_due: Optional[Money] = None,
        due_date: Optional[date] = None,
    ) -> Installment:
        self._ensure_not_archived()
        installment = self.find_installment(installment_id)

        if amount_due is not None:
            max_allowed = self.unallocated_amount().add(installment.amount_due)
            if amount_due > max_allowed:
                raise InstallmentExceedsCapacityError(
                    f"Installment amount due {amount_due} exceeds remaining invoice capacity {max_allowed}"
                )
        if due_date is not None:
            self._ensure_due_date_free(due_date, self.installments, exclude=installment.id)

        installment.update_details(amount_due=amount_due, due_date=due_date)
        if amount_due is not None or due_date is not None:
            self._touch()
        return installment

    def remove_installment(self, installment_id: uuid.UUID) -> Installment:
        self._ensure_not_archived()
        installment = self.find_installment(installment_id)
        self.installments.remove(installment)
        self._touch()
        return installment

    # Payments

    def add_payment_to_installment(self, installment_id: uuid.UUID, payment: Payment) -> Installment:
        self._ensure_not_archived()
        installment = self.find_installment(installment_id)
        installment.add_payment(payment)
        self._touch()
        return installment

    def record_payment(self, installment_id: uuid.UUID, amount: Money, payment_date: date) -> Payment:
        payment = Payment.create(installment_id, amount, payment_date)
        self.add_payment_to_installment(installment_id, payment)
        return payment

    def update_payment(
        self,
        installment_id: uuid.UUID,
        payment_id: uuid.UUID,
        amount: Optional[Money] = None,
        payment_date: Optional[date] = None,
    ) -> Payment:
        self._ensure_not_archived()
        installment = self.find_installment(installment_id)
        installment.update_payment(payment_id, amount=amount, payment_date=payment_date)
        self._touch()
        return installment.find_payment(payment_id)

    def remove_payment(self, installment_id: uuid.UUID, payment_id: uuid.UUID) -> Payment:
        self._ensure_not_archived()
        installment = self.find_installment(installment_id)
        payment = installment.remove_payment(payment_id)
        self._touch()
        return payment

    # Guards

    def _ensure_not_archived(self) -> None:
        if self.archived:
            raise InvoiceArchivedError(f"Invoice {self.id} is archived and cannot be modified")

    def _check_new_installment(
        self, installment: Installment, existing: List[Installment], capacity: Money
    ) -> None:
        if installment.invoice_id != self.id:
            raise InstallmentDoesNotBelongToInvoiceError(
                f"Installment belongs to invoice {installment.invoice_id}, not {self.id}"
            )
        if any(i.id == installment.id for i in existing):
            raise DomainInvariantViolation(f"Installment {installment.id} is already on invoice {self.id}")
        self._ensure_due_date_free(installment.due_date, existing)
        if installment.amount_due > capacity:
            raise InstallmentExceedsCapacityError(
                f"Installment amount due {installment.amount_due} exceeds remaining invoice capacity {capacity}"
            )

    @staticmethod
    def _ensure_due_date_free(
        due_date: date, existing: List[Installment], exclude: uuid.UUID | None = None
    ) -> None:
        for other in existing:
            if other.id != exclude and other.due_date == due_date:
                raise DuplicateDueDateError(f"An installment with same due date already exists: {due_date}")

    def _touch(self) -> None:
        self.updated_at = utc_now()
