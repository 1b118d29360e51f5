"""Overdue detection - selects unnotified overdue installments and publishes events"""

import logging
from datetime import date
from typing import Callable, Protocol

from sqlalchemy.orm import sessionmaker

from billing_gateway.domain.models import OverdueEvent
from billing_gateway.infrastructure.database.repositories import InvoiceRepository
from billing_gateway.infrastructure.database.session import read_only
from billing_gateway.infrastructure.observability.metrics import (
    overdue_events_published_counter,
    overdue_scan_duration_histogram,
)
from billing_gateway.utils.date_utils import today


class EventPublisher(Protocol):
    def publish(self, event: OverdueEvent) -> None: ...


class OverdueDetector:
    """Batch scan run by an external trigger (cron, admin task, scheduler)"""

    def __init__(
        self,
        session_factory: sessionmaker,
        publisher: EventPublisher,
        clock: Callable[[], date] = today,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.clock = clock

    def detect_and_publish_overdue_events(self) -> None:
        """
        Publish one OverdueEvent per installment that is past due, not PAID,
        and has no notification log.

        Events are enqueued inside the read transaction; handlers consume them
        later on their own tasks and re-read the aggregate, so the snapshot
        taken here is allowed to be stale by the time they run.
        """
        scan_date = self.clock()
        with overdue_scan_duration_histogram.time():
            with read_only(self.session_factory) as db:
                candidates = InvoiceRepository(db).list_overdue_installments_not_notified(scan_date)
                for event in candidates:
                    self.publisher.publish(event)

        overdue_events_published_counter.inc(len(candidates))
        logging.info(
            "Overdue scan completed",
            extra={"scan_date": scan_date.isoformat(), "events_published": len(candidates)},
        )
