"""Integration tests for tenant-scoped billing operations"""

import uuid
import pytest
from datetime import date
from prometheus_client import REGISTRY

from billing_gateway.domain.models import PaymentStatus
from billing_gateway.domain.money import Money
from billing_gateway.domain.exceptions import (
    AlreadyExistsError,
    CustomerNotFoundError,
    InstallmentExceedsCapacityError,
    InvalidMoneyValueError,
    InvoiceArchivedError,
    InvoiceNotFoundError,
    PaymentExceedsRemainingError,
    PermissionDeniedError,
    ValidationError,
)

DUE = date(2024, 5, 1)


def mutation_count(operation: str) -> float:
    return REGISTRY.get_sample_value("billing_mutations_total", {"operation": operation}) or 0.0


def rejection_count(operation: str, error: str) -> float:
    return (
        REGISTRY.get_sample_value("billing_mutation_rejections_total", {"operation": operation, "error": error})
        or 0.0
    )


@pytest.fixture
def invoice(billing, user_id, customer_id):
    return billing.create_invoice(
        user_id,
        customer_id,
        "INV-2024-001",
        "usd",
        "300.00",
        installments=[("100.00", "2024-05-01"), ("200.00", "2024-06-01")],
    )


def test_create_invoice_with_schedule(billing, user_id, invoice):
    assert invoice.version == 1
    assert invoice.currency == "USD"
    assert [i.amount_due for i in invoice.installments] == [Money.of("100.00"), Money.of("200.00")]

    viewed = billing.view_invoice(user_id, invoice.id)
    assert viewed.id == invoice.id
    assert viewed.allocated_amount() == Money.of("300.00")


def test_create_invoice_schedule_over_total_creates_nothing(billing, user_id, customer_id):
    with pytest.raises(InstallmentExceedsCapacityError):
        billing.create_invoice(
            user_id, customer_id, "INV-X", "USD", "100.00", installments=[("60.00", DUE), ("40.01", "2024-06-01")]
        )
    # the rejected INV-X was never written
    billing.create_invoice(user_id, customer_id, "INV-X", "USD", "100.00")


def test_create_invoice_duplicate_reference(billing, user_id, customer_id, invoice):
    with pytest.raises(AlreadyExistsError):
        billing.create_invoice(user_id, customer_id, " INV-2024-001 ", "USD", "10.00")


def test_create_invoice_checks_customer(billing, user_id, other_customer_id):
    with pytest.raises(PermissionDeniedError):
        billing.create_invoice(user_id, other_customer_id, "INV-1", "USD", "10.00")
    with pytest.raises(CustomerNotFoundError):
        billing.create_invoice(user_id, uuid.uuid4(), "INV-1", "USD", "10.00")


def test_other_tenant_cannot_touch_invoice(billing, other_user_id, invoice):
    """Test another user's invoice is forbidden and an unknown id is not found"""
    with pytest.raises(PermissionDeniedError):
        billing.view_invoice(other_user_id, invoice.id)
    with pytest.raises(PermissionDeniedError):
        billing.record_payment(other_user_id, invoice.id, invoice.installments[0].id, "10.00", DUE)
    with pytest.raises(InvoiceNotFoundError):
        billing.view_invoice(other_user_id, uuid.uuid4())


def test_malformed_input_rejected_before_loading(billing, user_id, invoice):
    installment_id = invoice.installments[0].id
    with pytest.raises(ValidationError):
        billing.record_payment(user_id, invoice.id, installment_id, "ten dollars", DUE)
    with pytest.raises(ValidationError):
        billing.record_payment(user_id, invoice.id, installment_id, "10.00", "2024-13-45")
    with pytest.raises(ValidationError):
        billing.record_payment(user_id, invoice.id, installment_id, None, DUE)
    assert billing.view_invoice(user_id, invoice.id).version == 1


def test_malformed_input_counted_as_rejection(billing, user_id, customer_id, invoice):
    before = rejection_count("record_payment", "InvalidMoneyValueError")
    with pytest.raises(InvalidMoneyValueError):
        billing.record_payment(user_id, invoice.id, invoice.installments[0].id, "ten dollars", DUE)
    assert rejection_count("record_payment", "InvalidMoneyValueError") == before + 1

    before = rejection_count("create_invoice", "ValidationError")
    with pytest.raises(ValidationError):
        billing.create_invoice(user_id, customer_id, "INV-BAD", "USD", "10.00", installments=[("10.00", None)])
    assert rejection_count("create_invoice", "ValidationError") == before + 1


def test_payment_lifecycle(billing, user_id, invoice):
    installment_id = invoice.installments[0].id
    before = mutation_count("record_payment")

    updated = billing.record_payment(user_id, invoice.id, installment_id, "40.00", "2024-05-02")
    installment = updated.find_installment(installment_id)
    assert installment.status == PaymentStatus.PARTIALLY_PAID
    payment_id = installment.payments[0].id
    assert mutation_count("record_payment") == before + 1

    updated = billing.update_payment(user_id, invoice.id, installment_id, payment_id, amount="100.00")
    assert updated.find_installment(installment_id).status == PaymentStatus.PAID

    rejected_before = rejection_count("record_payment", "PaymentExceedsRemainingError")
    with pytest.raises(PaymentExceedsRemainingError):
        billing.record_payment(user_id, invoice.id, installment_id, "0.01", DUE)
    assert rejection_count("record_payment", "PaymentExceedsRemainingError") == rejected_before + 1

    updated = billing.remove_payment(user_id, invoice.id, installment_id, payment_id)
    assert updated.find_installment(installment_id).status == PaymentStatus.PENDING
    assert billing.view_invoice(user_id, invoice.id).version == updated.version


def test_rejected_mutation_leaves_store_unchanged(billing, user_id, invoice):
    installment_id = invoice.installments[0].id
    with pytest.raises(PaymentExceedsRemainingError):
        billing.record_payment(user_id, invoice.id, installment_id, "100.01", DUE)

    stored = billing.view_invoice(user_id, invoice.id)
    assert stored.version == 1
    assert stored.total_paid() == Money.ZERO


def test_installment_operations(billing, user_id, invoice):
    first, second = invoice.installments

    with pytest.raises(InstallmentExceedsCapacityError):
        billing.add_installment(user_id, invoice.id, "0.01", "2024-07-01")

    billing.update_installment(user_id, invoice.id, second.id, amount_due="150.00")
    updated = billing.add_installment(user_id, invoice.id, "50.00", "2024-07-01")
    assert len(updated.installments) == 3
    assert updated.unallocated_amount() == Money.ZERO

    updated = billing.remove_installment(user_id, invoice.id, first.id)
    assert [i.id for i in updated.installments][0] == second.id
    assert updated.unallocated_amount() == Money.of("100.00")


def test_update_invoice_details(billing, user_id, customer_id, invoice):
    billing.create_invoice(user_id, customer_id, "INV-2024-002", "USD", "10.00")
    with pytest.raises(AlreadyExistsError):
        billing.update_invoice(user_id, invoice.id, reference="INV-2024-002")

    updated = billing.update_invoice(user_id, invoice.id, reference="INV-2024-001-R", currency="eur", total_amount="400")
    assert updated.reference == "INV-2024-001-R"
    assert updated.currency == "EUR"
    assert updated.total_amount == Money.of("400.00")


def test_archive_blocks_mutations(billing, user_id, invoice):
    billing.archive_invoice(user_id, invoice.id)
    with pytest.raises(InvoiceArchivedError):
        billing.record_payment(user_id, invoice.id, invoice.installments[0].id, "1.00", DUE)
    with pytest.raises(InvoiceArchivedError):
        billing.add_installment(user_id, invoice.id, "1.00", "2024-08-01")

    billing.unarchive_invoice(user_id, invoice.id)
    billing.record_payment(user_id, invoice.id, invoice.installments[0].id, "1.00", DUE)


def test_delete_invoice(billing, user_id, other_user_id, invoice):
    with pytest.raises(PermissionDeniedError):
        billing.delete_invoice(other_user_id, invoice.id)

    billing.delete_invoice(user_id, invoice.id)
    with pytest.raises(InvoiceNotFoundError):
        billing.view_invoice(user_id, invoice.id)


def test_list_invoices_by_user(billing, user_id, customer_id, other_user_id, other_customer_id, invoice):
    second = billing.create_invoice(user_id, customer_id, "INV-2024-002", "USD", "50.00")
    billing.create_invoice(other_user_id, other_customer_id, "INV-2024-001", "USD", "75.00")

    listed = billing.list_invoices_by_user(user_id)

    assert [i.id for i in listed] == [invoice.id, second.id]
    assert listed[0].allocated_amount() == Money.of("300.00")
    assert [i.reference for i in billing.list_invoices_by_user(other_user_id)] == ["INV-2024-001"]
    assert billing.list_invoices_by_user(uuid.uuid4()) == []


def test_list_invoices_by_customer(billing, user_id, customer_id, other_customer_id, invoice):
    assert [i.id for i in billing.list_invoices_by_customer(user_id, customer_id)] == [invoice.id]

    with pytest.raises(PermissionDeniedError):
        billing.list_invoices_by_customer(user_id, other_customer_id)
    with pytest.raises(CustomerNotFoundError):
        billing.list_invoices_by_customer(user_id, uuid.uuid4())
