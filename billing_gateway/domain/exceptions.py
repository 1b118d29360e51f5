"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


# Validation: rejected before any mutation is applied


class ValidationError(DomainException):
    """Malformed amount or date, or a missing required field"""

    pass


class InvalidMoneyValueError(ValidationError):
    """Amount is not a valid monetary value for the operation"""

    pass


# Lookups


class NotFoundError(DomainException):
    """Requested resource does not exist"""

    pass


class InvoiceNotFoundError(NotFoundError):
    pass


class InstallmentNotFoundError(NotFoundError):
    pass


class PaymentNotFoundError(NotFoundError):
    pass


class CustomerNotFoundError(NotFoundError):
    pass


class PermissionDeniedError(DomainException):
    """Resource belongs to another tenant"""

    pass


class AlreadyExistsError(DomainException):
    """A resource with the same natural key already exists"""

    pass


# Aggregate invariants: the aggregate is left unchanged


class DomainInvariantViolation(DomainException):
    """Mutation would break a billing invariant"""

    pass


class PaymentExceedsRemainingError(DomainInvariantViolation):
    """Payment amount is larger than what is still unpaid on the installment"""

    pass


class InstallmentExceedsCapacityError(DomainInvariantViolation):
    """Installment amount due is larger than the invoice's unallocated amount"""

    pass


class AmountBelowPaidError(DomainInvariantViolation):
    """Amount due or invoice total would drop below what is already covered"""

    pass


class InvoiceArchivedError(DomainInvariantViolation):
    """Archived invoices accept no mutations"""

    pass


class InstallmentDoesNotBelongToInvoiceError(DomainInvariantViolation):
    pass


class PaymentDoesNotBelongToInstallmentError(DomainInvariantViolation):
    pass


class DuplicateDueDateError(DomainInvariantViolation):
    pass


class DuplicatePaymentError(DomainInvariantViolation):
    pass


# Concurrency


class ConcurrencyConflictError(DomainException):
    """Another writer committed the same aggregate first; caller should retry"""

    pass


class NotificationAlreadyLoggedError(ConcurrencyConflictError):
    """A notification log already exists for the installment"""

    pass


# External services


class MailDeliveryError(DomainException):
    """Mail API rejected the message or is unavailable"""

    pass
