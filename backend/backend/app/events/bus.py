from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.events.outbox import OutboxEvent

logger = get_logger("events.bus")

TOPIC_PO_RECEIVED = "inventory.po.received"
TOPIC_PO_UNRECEIVED = "inventory.po.unreceived"
TOPIC_REPROCESS_COMPLETED = "inventory.reprocess.completed"


def publish(
    db: Session,
    topic: str,
    payload: dict,
    *,
    tenant_id: str,
    available_at: datetime | None = None,
    commit: bool = True,
) -> OutboxEvent:
    """Publish an event by writing to the transactional outbox.

    With commit=False the row joins the caller's transaction and becomes
    visible to the dispatcher only when the caller commits.
    """
    evt = OutboxEvent(
        tenant_id=tenant_id,
        topic=topic,
        payload=payload or {},
        available_at=available_at or datetime.utcnow(),
        delivered=False,
        attempt_count=0,
    )
    db.add(evt)
    if commit:
        db.commit()
        db.refresh(evt)
    logger.debug("Outbox event queued", extra={"topic": topic, "committed": commit})
    return evt
