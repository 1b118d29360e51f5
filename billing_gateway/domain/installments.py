"""Installment entity - payments, paid totals and status derivation"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from billing_gateway.domain.exceptions import (
    AmountBelowPaidError,
    DuplicatePaymentError,
    InvalidMoneyValueError,
    PaymentDoesNotBelongToInstallmentError,
    PaymentExceedsRemainingError,
    PaymentNotFoundError,
)
from billing_gateway.domain.models import Payment, PaymentStatus
from billing_gateway.domain.money import Money
from billing_gateway.utils.date_utils import today as current_date
from billing_gateway.utils.date_utils import utc_now


def derive_status(amount_paid: Money, amount_due: Money) -> PaymentStatus:
    """
    Pure status derivation used after every mutation.

    - paid >= due       -> PAID
    - 0 < paid < due    -> PARTIALLY_PAID
    - otherwise         -> PENDING

    LATE and CANCELLED are never produced here.
    """
    if amount_paid >= amount_due:
        return PaymentStatus.PAID
    if amount_paid.is_positive():
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.PENDING


@dataclass
class Installment:
    """
    Scheduled share of an invoice, due on a date, accumulating payments.

    `amount_paid` is never assigned by callers: it is recomputed from
    `payments` on construction and after every mutation, so
    `amount_paid == sum(payments)` and `amount_paid <= amount_due` hold at
    every observable point. Each mutation validates first and only then
    applies, so a rejected call leaves the installment untouched.
    """

    id: uuid.UUID
    invoice_id: uuid.UUID
    amount_due: Money
    due_date: date
    status: PaymentStatus
    last_status_change_at: datetime
    created_at: datetime
    updated_at: datetime
    payments: List[Payment] = field(default_factory=list)
    amount_paid: Money = field(init=False)

    def __post_init__(self) -> None:
        self.amount_paid = Money.sum(p.amount for p in self.payments)

    @classmethod
    def create(
        cls,
        installment_id: uuid.UUID,
        invoice_id: uuid.UUID,
        amount_due: Money,
        due_date: date,
    ) -> "Installment":
        if not amount_due.is_positive():
            raise InvalidMoneyValueError(f"Installment amount due must be greater than zero, got {amount_due}")
        now = utc_now()
        return cls(
            id=installment_id,
            invoice_id=invoice_id,
            amount_due=amount_due,
            due_date=due_date,
            status=PaymentStatus.PENDING,
            last_status_change_at=now,
            created_at=now,
            updated_at=now,
        )

    # Queries

    def remaining(self) -> Money:
        return self.amount_due.subtract(self.amount_paid)

    def is_paid(self) -> bool:
        return self.status == PaymentStatus.PAID

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """Strict overdue check: not paid and due strictly before today"""
        today = today or current_date()
        return not self.is_paid() and self.due_date < today

    def find_payment(self, payment_id: uuid.UUID) -> Payment:
        for payment in self.payments:
            if payment.id == payment_id:
                return payment
        raise PaymentNotFoundError(f"Payment {payment_id} not found in installment {self.id}")

    def last_payment_at(self) -> Optional[datetime]:
        if not self.payments:
            return None
        return max(p.updated_at for p in self.payments)

    # Mutations

    def add_payment(self, payment: Payment) -> None:
        if payment.installment_id != self.id:
            raise PaymentDoesNotBelongToInstallmentError(
                f"Payment belongs to installment {payment.installment_id}, not {self.id}"
            )
        if any(p.id == payment.id for p in self.payments):
            raise DuplicatePaymentError(f"Payment {payment.id} already recorded on installment {self.id}")
        if not payment.amount.is_positive():
            raise InvalidMoneyValueError(f"Payment amount must be greater than zero, got {payment.amount}")
        if payment.amount > self.remaining():
            raise PaymentExceedsRemainingError(
                f"Payment amount {payment.amount} exceeds remaining installment amount {self.remaining()}"
            )

        self.payments.append(payment)
        self._recalculate()

    def update_payment(
        self,
        payment_id: uuid.UUID,
        amount: Optional[Money] = None,
        payment_date: Optional[date] = None,
    ) -> None:
        existing = self.find_payment(payment_id)

        if amount is not None:
            if not amount.is_positive():
                raise InvalidMoneyValueError(f"Payment amount must be greater than zero, got {amount}")
            # the replaced payment's own amount is released before the check
            max_allowed = self.remaining().add(existing.amount)
            if amount > max_allowed:
                raise PaymentExceedsRemainingError(
                    f"Updated payment amount {amount} exceeds remaining installment amount {max_allowed}"
                )

        amount_changed = amount is not None and amount != existing.amount
        date_changed = payment_date is not None and payment_date != existing.payment_date
        if not (amount_changed or date_changed):
            return

        if amount_changed:
            existing.amount = amount
        if date_changed:
            existing.payment_date = payment_date
        existing.updated_at = utc_now()
        self._recalculate()

    def remove_payment(self, payment_id: uuid.UUID) -> Payment:
        payment = self.find_payment(payment_id)
        self.payments.remove(payment)
        self._recalculate()
        return payment

    def update_details(self, amount_due: Optional[Money] = None, due_date: Optional[date] = None) -> None:
        if amount_due is not None:
            if not amount_due.is_positive():
                raise InvalidMoneyValueError(f"Installment amount due must be greater than zero, got {amount_due}")
            if amount_due < self.amount_paid:
                raise AmountBelowPaidError(
                    f"Amount due {amount_due} cannot be less than amount already paid {self.amount_paid}"
                )

        if amount_due is None and due_date is None:
            return

        if amount_due is not None:
            self.amount_due = amount_due
        if due_date is not None:
            self.due_date = due_date
        self._recalculate()

    def _recalculate(self) -> None:
        now = utc_now()
        self.amount_paid = Money.sum(p.amount for p in self.payments)
        new_status = derive_status(self.amount_paid, self.amount_due)
        if new_status != self.status:
            self.status = new_status
            self.last_status_change_at = now
        self.updated_at = now
