from datetime import date
from typing import Iterable, List, Optional

import structlog

from core.events import INDEXING_REMINDER, EventBus
from plugins.rentals.billing.indexing import days_until, next_pending_indexing_date
from plugins.rentals.services.contracts import ContractService
from plugins.rentals.storage.store import NOTIFICATION_LOG, DocumentStore
from utils.date_helper import utcnow
from utils.exceptions import UniqueConstraintError

logger = structlog.get_logger(__name__)

DEFAULT_THRESHOLDS = (60, 30, 20)


def urgency_for(threshold: int) -> str:
    if threshold >= 60:
        return "notice"
    if threshold >= 30:
        return "soon"
    return "urgent"


def reminder_key(contract_id: str, indexing_date: date, threshold: int) -> str:
    return f"indexing_reminder_{contract_id}_{indexing_date.isoformat()}_{threshold}"


class IndexingReminderService:
    """
    Notify when an active contract's next pending indexing date is exactly
    N days away for N in ``thresholds``. Each (contract, date, threshold) is
    logged once, so re-running on the same day sends nothing new.
    """

    def __init__(self, store: DocumentStore, contracts: ContractService, events: EventBus,
                 thresholds: Iterable[int] = DEFAULT_THRESHOLDS):
        self.store = store
        self.contracts = contracts
        self.events = events
        self.thresholds = tuple(sorted(set(thresholds), reverse=True))

    async def run(self, as_of: date) -> List[dict]:
        sent: List[dict] = []
        for contract in await self.contracts.active_contracts(as_of):
            target = next_pending_indexing_date(contract, as_of)
            if target is None:
                continue
            days = days_until(target, as_of)
            if days not in self.thresholds:
                continue
            reminder = await self._record(contract.id, contract.name, target, days, as_of)
            if reminder:
                sent.append(reminder)
        logger.info("indexing_reminders_run", as_of=as_of.isoformat(), sent=len(sent))
        return sent

    async def _record(self, contract_id: str, contract_name: str, target: date, threshold: int,
                      as_of: date) -> Optional[dict]:
        key = reminder_key(contract_id, target, threshold)
        entry = {
            "id": key,
            "key": key,
            "contractId": contract_id,
            "nextIndexing": target.isoformat(),
            "threshold": threshold,
            "sentAt": utcnow().isoformat(),
        }
        try:
            await self.store.insert(NOTIFICATION_LOG, entry)
        except UniqueConstraintError:
            return None

        reminder = {
            **entry,
            "contractName": contract_name,
            "daysUntil": threshold,
            "urgency": urgency_for(threshold),
            "asOf": as_of.isoformat(),
        }
        logger.info("indexing_reminder_sent", contract_id=contract_id, next_indexing=target.isoformat(),
                    threshold=threshold)
        await self.events.publish(INDEXING_REMINDER, reminder)
        return reminder
