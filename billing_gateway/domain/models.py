"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from billing_gateway.domain.exceptions import InvalidMoneyValueError, ValidationError
from billing_gateway.domain.money import Money
from billing_gateway.utils.date_utils import utc_now

_email_adapter = TypeAdapter(EmailStr)


def validate_email(value: str) -> str:
    """Normalize an e-mail address or raise ValidationError"""
    try:
        return _email_adapter.validate_python(value)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid e-mail address: {value!r}") from e


class PaymentStatus(str, Enum):
    """Installment payment status. LATE and CANCELLED are reserved and never derived."""

    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    LATE = "LATE"
    CANCELLED = "CANCELLED"


class NotificationStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"


@dataclass
class Payment:
    """Single monetary application against an installment"""

    id: uuid.UUID
    installment_id: uuid.UUID
    amount: Money
    payment_date: date
    created_at: datetime
    updated_at: datetime

    @classmethod
    def create(
        cls,
        installment_id: uuid.UUID,
        amount: Money,
        payment_date: date,
        payment_id: uuid.UUID | None = None,
    ) -> "Payment":
        if not amount.is_positive():
            raise InvalidMoneyValueError(f"Payment amount must be greater than zero, got {amount}")
        now = utc_now()
        return cls(
            id=payment_id or uuid.uuid4(),
            installment_id=installment_id,
            amount=amount,
            payment_date=payment_date,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True)
class NotificationLog:
    """Append-only record of one delivery attempt for an installment"""

    id: uuid.UUID
    installment_id: uuid.UUID
    recipient: str
    subject: str
    status: NotificationStatus
    sent_at: datetime
    error_message: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.subject or not self.subject.strip():
            raise ValidationError("Subject must be provided for notification log")
        if self.status == NotificationStatus.FAILED and not (self.error_message and self.error_message.strip()):
            raise ValidationError("Error message must be provided for FAILED notifications")
        if self.status == NotificationStatus.SENT and self.error_message is not None:
            raise ValidationError("Error message is only recorded for FAILED notifications")
        object.__setattr__(self, "recipient", validate_email(self.recipient))

    @classmethod
    def sent(cls, installment_id: uuid.UUID, recipient: str, subject: str) -> "NotificationLog":
        return cls(
            id=uuid.uuid4(),
            installment_id=installment_id,
            recipient=recipient,
            subject=subject,
            status=NotificationStatus.SENT,
            sent_at=utc_now(),
        )

    @classmethod
    def failed(
        cls, installment_id: uuid.UUID, recipient: str, subject: str, error_message: str
    ) -> "NotificationLog":
        return cls(
            id=uuid.uuid4(),
            installment_id=installment_id,
            recipient=recipient,
            subject=subject,
            status=NotificationStatus.FAILED,
            sent_at=utc_now(),
            error_message=error_message,
        )


@dataclass(frozen=True)
class OverdueEvent:
    """Published once per overdue, unnotified installment found by the detector"""

    installment_id: uuid.UUID
    invoice_id: uuid.UUID
    user_id: uuid.UUID
    due_date: date


@dataclass(frozen=True)
class Customer:
    """Read model used for tenancy checks"""

    id: uuid.UUID
    user_id: uuid.UUID
    name: str


@dataclass(frozen=True)
class UserContact:
    """Read model for the notification recipient"""

    id: uuid.UUID
    email: str
    first_name: str

