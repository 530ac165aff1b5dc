"""Background tasks for the core module."""

import structlog
from celery import shared_task
from django.db import transaction

from modules.core.models import OutboxEvent
from shared.domain.events import event_from_payload
from shared.infrastructure.bus import event_bus

logger = structlog.get_logger(__name__)

OUTBOX_BATCH_SIZE = 100
OUTBOX_MAX_RETRIES = 5


@shared_task(name="core.debug_task")
def debug_task():
    """Diagnostic task confirming the Celery worker is reachable."""
    logger.info("debug_task.executed", status="ok")
    return {"status": "ok", "message": "Celery is working"}


@shared_task(name="core.dispatch_outbox_events")
def dispatch_outbox_events(batch_size: int = OUTBOX_BATCH_SIZE) -> dict:
    """Publish pending outbox rows on the in-process event bus.

    Rows that fail are marked ``FAILED`` and retried on the next run
    until ``OUTBOX_MAX_RETRIES`` is reached.
    """
    published = failed = 0

    with transaction.atomic():
        pending = list(
            OutboxEvent.objects.select_for_update().dispatchable(OUTBOX_MAX_RETRIES)[
                :batch_size
            ]
        )

        for row in pending:
            log = logger.bind(outbox_id=str(row.id), event_type=row.event_type)
            try:
                event = event_from_payload(row.event_type, row.payload)
                event_bus.publish(event)
            except Exception as exc:
                row.mark_as_failed(str(exc))
                failed += 1
                log.warning("outbox.dispatch_failed", error=str(exc))
                continue
            row.mark_as_published()
            published += 1
            log.info("outbox.dispatched")

    logger.info("outbox.batch_completed", published=published, failed=failed)
    return {"published": published, "failed": failed}
