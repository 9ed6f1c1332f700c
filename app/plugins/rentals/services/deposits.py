from typing import List

import structlog

from core.events import DEPOSIT_CHANGED, EventBus
from plugins.rentals.helpers import new_id
from plugins.rentals.models.deposit import Deposit, DepositCreate, DepositSummary, DepositUpdate
from plugins.rentals.storage.store import DEPOSITS, DocumentStore
from utils.date_helper import utcnow
from utils.exceptions import NotFoundError

logger = structlog.get_logger(__name__)


class DepositService:
    def __init__(self, store: DocumentStore, events: EventBus):
        self.store = store
        self.events = events

    async def list_deposits(self, contract_id: str) -> List[Deposit]:
        docs = await self.store.find(DEPOSITS, {"contractId": contract_id}, sort=[("createdAt", 1)])
        return [Deposit.model_validate(d) for d in docs]

    async def get_deposit(self, deposit_id: str) -> Deposit:
        doc = await self.store.get(DEPOSITS, deposit_id)
        if not doc:
            raise NotFoundError(f"Deposit {deposit_id} not found")
        return Deposit.model_validate(doc)

    async def create_deposit(self, data: DepositCreate) -> Deposit:
        now = utcnow()
        deposit = Deposit(id=new_id("dep_"), created_at=now, updated_at=now, **data.model_dump())
        await self.store.insert(DEPOSITS, deposit.to_document())
        await self._changed("created", deposit)
        return deposit

    async def update_deposit(self, deposit_id: str, data: DepositUpdate) -> Deposit:
        current = await self.get_deposit(deposit_id)
        merged = current.model_dump()
        merged.update(data.model_dump(exclude_unset=True))
        merged["updated_at"] = utcnow()
        deposit = Deposit.model_validate(merged)
        await self.store.upsert(DEPOSITS, deposit.to_document())
        await self._changed("updated", deposit)
        return deposit

    async def toggle_deposited(self, deposit_id: str) -> Deposit:
        current = await self.get_deposit(deposit_id)
        return await self.update_deposit(deposit_id, DepositUpdate(is_deposited=not current.is_deposited))

    async def delete_deposit(self, deposit_id: str) -> None:
        deposit = await self.get_deposit(deposit_id)
        await self.store.delete(DEPOSITS, deposit_id)
        await self._changed("deleted", deposit)

    async def summary(self, contract_id: str) -> DepositSummary:
        summary = DepositSummary(contract_id=contract_id)
        for dep in await self.list_deposits(contract_id):
            summary.count += 1
            summary.deposited_count += int(dep.is_deposited)
            summary.returned_count += int(dep.returned)
            if dep.is_deposited and not dep.returned:
                summary.held_eur += dep.amount_eur or 0
                summary.held_ron += dep.amount_ron or 0
        return summary

    async def _changed(self, action: str, deposit: Deposit) -> None:
        logger.info("deposit_changed", action=action, deposit_id=deposit.id, contract_id=deposit.contract_id)
        await self.events.publish(DEPOSIT_CHANGED, {"action": action, "id": deposit.id,
                                                    "contractId": deposit.contract_id})
