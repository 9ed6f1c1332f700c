from datetime import date
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError

from core.events import CONTRACT_DELETED, CONTRACT_UPSERTED, EXCHANGE_RATE_UPDATED, EventBus
from plugins.rentals.billing.indexing import refresh_indexing_dates
from plugins.rentals.billing.rent import effective_end_date
from plugins.rentals.helpers import slugify
from plugins.rentals.models.contract import Contract
from plugins.rentals.storage.store import CONTRACTS, DocumentStore
from utils.date_helper import ensure_datetime, today_utc, utcnow
from utils.exceptions import NotFoundError

logger = structlog.get_logger(__name__)


class ContractService:
    """Contract repository: validation on write, indexing dates kept in sync with the schedule."""

    def __init__(self, store: DocumentStore, events: EventBus):
        self.store = store
        self.events = events

    def _parse(self, doc: dict) -> Optional[Contract]:
        try:
            return Contract.model_validate(doc)
        except ValidationError as e:
            logger.warning("contract_skipped_invalid", contract_id=doc.get("id"), errors=e.error_count())
            return None

    async def list_contracts(self, query: Optional[dict] = None) -> List[Contract]:
        docs = await self.store.find(CONTRACTS, query, sort=[("name", 1)])
        return [c for c in (self._parse(d) for d in docs) if c is not None]

    async def list_by_asset(self, asset_id: str) -> List[Contract]:
        return await self.list_contracts({"assetId": asset_id})

    async def active_contracts(self, as_of: Optional[date] = None) -> List[Contract]:
        """Contracts whose effective end is on or after ``as_of``."""
        as_of = as_of or today_utc()
        return [c for c in await self.list_contracts() if effective_end_date(c) >= as_of]

    async def get_contract(self, contract_id: str) -> Contract:
        doc = await self.store.get(CONTRACTS, contract_id)
        if not doc:
            raise NotFoundError(f"Contract {contract_id} not found")
        return Contract.model_validate(doc)

    async def upsert_contract(self, data: Union[Contract, Dict[str, Any]]) -> Contract:
        """
        Validate and store a contract. Generated indexing dates are merged
        with the ones already on the contract, whose metadata wins.
        Raises pydantic.ValidationError on invalid input.
        """
        if isinstance(data, Contract):
            data = data.model_dump(by_alias=True, exclude_none=True)
        payload = dict(data)
        if not payload.get("id") and payload.get("name"):
            payload["id"] = slugify(payload["name"])
        contract = Contract.model_validate(payload)

        existing = await self.store.get(CONTRACTS, contract.id)
        now = utcnow()
        contract.indexing_dates = refresh_indexing_dates(contract)
        contract.created_at = contract.created_at or ensure_datetime((existing or {}).get("createdAt")) or now
        contract.updated_at = now
        await self.store.upsert(CONTRACTS, contract.to_document())

        logger.info("contract_upserted", contract_id=contract.id, created=existing is None)
        await self.events.publish(CONTRACT_UPSERTED, {"contractId": contract.id, "created": existing is None})
        return contract

    async def delete_contract(self, contract_id: str) -> None:
        if not await self.store.delete(CONTRACTS, contract_id):
            raise NotFoundError(f"Contract {contract_id} not found")
        logger.info("contract_deleted", contract_id=contract_id)
        await self.events.publish(CONTRACT_DELETED, {"contractId": contract_id})

    async def update_exchange_rate(self, rate: float, as_of: Optional[date] = None) -> int:
        """Set ``exchangeRateRON`` on every active contract; returns how many changed."""
        if rate <= 0:
            raise ValueError("exchange rate must be positive")
        updated = 0
        stamp = utcnow().isoformat()
        for contract in await self.active_contracts(as_of):
            if contract.exchange_rate_ron == rate:
                continue
            await self.store.update_fields(CONTRACTS, contract.id, {"exchangeRateRON": rate, "updatedAt": stamp})
            updated += 1
        logger.info("contracts_exchange_rate_updated", rate=rate, updated=updated)
        await self.events.publish(EXCHANGE_RATE_UPDATED, {"rate": rate, "updated": updated})
        return updated
