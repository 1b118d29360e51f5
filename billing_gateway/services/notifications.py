"""Overdue notification handler - re-validates fresh state, delivers, logs once"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Optional, Union

from sqlalchemy.orm import sessionmaker

from billing_gateway.domain.exceptions import (
    InstallmentNotFoundError,
    NotificationAlreadyLoggedError,
    ValidationError,
)
from billing_gateway.domain.installments import Installment
from billing_gateway.domain.invoices import Invoice
from billing_gateway.domain.models import NotificationLog, OverdueEvent, UserContact, validate_email
from billing_gateway.infrastructure.clients.mailer import Mailer
from billing_gateway.infrastructure.database.repositories import (
    InvoiceRepository,
    NotificationLogRepository,
    UserRepository,
)
from billing_gateway.infrastructure.database.session import read_only, unit_of_work
from billing_gateway.infrastructure.observability.logging import log_notification_outcome
from billing_gateway.infrastructure.observability.metrics import notification_outcome_counter
from billing_gateway.utils.date_utils import today

OVERDUE_SUBJECT = "Action Required: Overdue Payment Detected"


class NotificationState(str, Enum):
    RECEIVED = "RECEIVED"
    DEDUP_CHECKED = "DEDUP_CHECKED"
    AGGREGATE_RELOADED = "AGGREGATE_RELOADED"
    REVALIDATED = "REVALIDATED"
    DELIVERED = "DELIVERED"
    SKIPPED = "SKIPPED"
    LOGGED_FAILURE = "LOGGED_FAILURE"


@dataclass(frozen=True)
class NotificationOutcome:
    state: NotificationState
    reason: Optional[str] = None


def compose_overdue_message(user: UserContact, invoice: Invoice, installment: Installment) -> str:
    return (
        f"Hello {user.first_name},\n\n"
        f"The installment due on {installment.due_date.isoformat()} for invoice {invoice.reference} is overdue.\n"
        f"Amount outstanding: {installment.remaining()} {invoice.currency}.\n"
        "Please check your dashboard."
    )


@dataclass(frozen=True)
class _Delivery:
    recipient: str
    body: str


class OverdueNotificationHandler:
    """
    Consumes OverdueEvents, one independent task per event.

    Never trusts the event payload: the invoice is reloaded and the overdue
    predicate re-evaluated before anything is sent, so a payment committed
    after detection suppresses delivery. Store access runs in worker threads
    and no session is held while the mailer runs. Every delivery attempt,
    successful or not, leaves exactly one log row, which is what keeps later
    scans from picking the installment up again (failed deliveries included).
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        mailer: Mailer,
        clock: Callable[[], date] = today,
    ):
        self.session_factory = session_factory
        self.mailer = mailer
        self.clock = clock

    async def handle(self, event: OverdueEvent) -> NotificationOutcome:
        start_time = time.time()
        try:
            outcome = await self._process(event)
        except Exception:
            logging.exception(
                "Overdue notification handler failed",
                extra={"installment_id": str(event.installment_id)},
            )
            outcome = NotificationOutcome(NotificationState.SKIPPED, "handler_error")

        notification_outcome_counter.labels(outcome=outcome.state.value).inc()
        log_notification_outcome(
            installment_id=str(event.installment_id),
            invoice_id=str(event.invoice_id),
            outcome=outcome.state.value,
            duration_ms=(time.time() - start_time) * 1000,
            reason=outcome.reason,
        )
        return outcome

    def _advance(self, event: OverdueEvent, state: NotificationState) -> None:
        logging.debug(
            "Notification state change",
            extra={"installment_id": str(event.installment_id), "state": state.value},
        )

    async def _process(self, event: OverdueEvent) -> NotificationOutcome:
        self._advance(event, NotificationState.RECEIVED)

        prepared = await asyncio.to_thread(self._prepare, event)
        if isinstance(prepared, NotificationOutcome):
            return prepared

        try:
            await self.mailer.send_email(prepared.recipient, OVERDUE_SUBJECT, prepared.body)
        except Exception as e:
            logging.error(
                "Failed to send overdue notification email",
                exc_info=True,
                extra={"installment_id": str(event.installment_id)},
            )
            error_message = str(e).strip() or type(e).__name__
            log = NotificationLog.failed(event.installment_id, prepared.recipient, OVERDUE_SUBJECT, error_message)
            outcome = NotificationOutcome(NotificationState.LOGGED_FAILURE, error_message)
        else:
            log = NotificationLog.sent(event.installment_id, prepared.recipient, OVERDUE_SUBJECT)
            outcome = NotificationOutcome(NotificationState.DELIVERED)

        await asyncio.to_thread(self._write_log, log)
        return outcome

    def _prepare(self, event: OverdueEvent) -> Union[NotificationOutcome, _Delivery]:
        """Dedup, reload and revalidate; returns a terminal outcome or what to send"""
        with read_only(self.session_factory) as db:
            if NotificationLogRepository(db).exists_by_installment_id(event.installment_id):
                return NotificationOutcome(NotificationState.SKIPPED, "already_notified")
            self._advance(event, NotificationState.DEDUP_CHECKED)

            invoice = InvoiceRepository(db).find_by_id_and_owner(event.invoice_id, event.user_id)
            if invoice is None:
                logging.warning(
                    f"Invoice {event.invoice_id} not found for user {event.user_id} during notification processing"
                )
                return NotificationOutcome(NotificationState.SKIPPED, "invoice_not_found")
            self._advance(event, NotificationState.AGGREGATE_RELOADED)

            try:
                installment = invoice.find_installment(event.installment_id)
            except InstallmentNotFoundError:
                logging.warning(f"Installment {event.installment_id} no longer exists on invoice {event.invoice_id}")
                return NotificationOutcome(NotificationState.SKIPPED, "installment_not_found")

            if not installment.is_overdue(self.clock()):
                logging.info(f"Skipping notification: installment {event.installment_id} is not overdue")
                return NotificationOutcome(NotificationState.SKIPPED, "not_overdue")

            user = UserRepository(db).find_by_id(event.user_id)
            if user is None:
                logging.warning(f"User {event.user_id} not found; cannot notify installment {event.installment_id}")
                return NotificationOutcome(NotificationState.SKIPPED, "recipient_not_found")

            # a log row can only be written for a valid address
            try:
                recipient = validate_email(user.email)
            except ValidationError:
                logging.warning(
                    f"User {event.user_id} has an unusable e-mail address; cannot notify installment {event.installment_id}"
                )
                return NotificationOutcome(NotificationState.SKIPPED, "invalid_recipient")
            self._advance(event, NotificationState.REVALIDATED)

            return _Delivery(recipient=recipient, body=compose_overdue_message(user, invoice, installment))

    def _write_log(self, log: NotificationLog) -> None:
        try:
            with unit_of_work(self.session_factory) as db:
                NotificationLogRepository(db).save(log)
        except NotificationAlreadyLoggedError:
            # a concurrent handler for the same installment logged first
            logging.warning(f"Notification log already present for installment {log.installment_id}")
