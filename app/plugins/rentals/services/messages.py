from typing import Any, Dict

import structlog

from core.events import INDEXING_REMINDER, INVOICE_DELETED, INVOICE_ISSUED, EventBus
from plugins.rentals.helpers import new_id
from plugins.rentals.storage.store import MESSAGES, DocumentStore
from utils.date_helper import utcnow

logger = structlog.get_logger(__name__)


def describe(event: str, payload: Dict[str, Any]) -> str:
    if event == INVOICE_ISSUED:
        return f"Invoice {payload.get('number') or payload.get('id')} issued for {payload.get('contractName')} ({payload.get('partner')})"
    if event == INVOICE_DELETED:
        return f"Invoice {payload.get('id')} deleted"
    if event == INDEXING_REMINDER:
        return (f"Indexing for {payload.get('contractName')} due on {payload.get('nextIndexing')} "
                f"in {payload.get('daysUntil')} days [{payload.get('urgency')}]")
    return event


class MessageRecorder:
    """Subscriber writing user-facing notifications to the ``messages`` collection."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def __call__(self, event: str, payload: Dict[str, Any]) -> None:
        await self.store.insert(MESSAGES, {
            "id": new_id("msg_"),
            "event": event,
            "text": describe(event, payload),
            "contractId": payload.get("contractId"),
            "createdAt": utcnow().isoformat(),
        })


def log_event(event: str, payload: Dict[str, Any]) -> None:
    logger.info("domain_event", event_name=event, contract_id=payload.get("contractId"))


def register_subscribers(events: EventBus, store: DocumentStore) -> None:
    recorder = MessageRecorder(store)
    for event in (INVOICE_ISSUED, INVOICE_DELETED, INDEXING_REMINDER):
        events.subscribe(event, recorder)
    events.subscribe("*", log_event)
