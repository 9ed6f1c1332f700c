# app/core/events.py - In-process domain event bus

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Union

import structlog

logger = structlog.get_logger(__name__)

EventHandler = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]

INVOICE_ISSUED = "invoice.issued"
INVOICE_DELETED = "invoice.deleted"
CONTRACT_UPSERTED = "contract.upserted"
CONTRACT_DELETED = "contract.deleted"
DEPOSIT_CHANGED = "deposit.changed"
INDEXING_REMINDER = "indexing.reminder"
EXCHANGE_RATE_UPDATED = "exchange.updated"


class EventBus:
    """
    Fan-out of domain events to subscribers.

    Each subscriber runs on its own: a failure is logged and the remaining
    subscribers still run. ``publish`` never raises because of a subscriber,
    so the operation that emitted the event keeps its result.
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event: str, handler: EventHandler) -> None:
        """Register ``handler`` for ``event``; ``"*"`` receives every event."""
        self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: EventHandler) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    async def publish(self, event: str, payload: Dict[str, Any]) -> int:
        """Deliver an event; returns how many subscribers handled it successfully."""
        delivered = 0
        for handler in [*self._handlers.get(event, []), *self._handlers.get("*", [])]:
            try:
                result = handler(event, payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "event_subscriber_failed",
                    event_name=event,
                    subscriber=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )
        return delivered
