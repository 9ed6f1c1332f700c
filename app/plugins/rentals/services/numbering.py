from datetime import date
from typing import Optional

import structlog
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from plugins.rentals.helpers import slugify
from plugins.rentals.models.invoice import InvoiceSettings, InvoiceSettingsUpdate
from plugins.rentals.storage.store import INVOICE_SETTINGS, DocumentStore
from utils.date_helper import today_utc, utcnow
from utils.exceptions import InvoiceNumberAllocationError, StoreUnavailableError

logger = structlog.get_logger(__name__)


def owner_key(owner_id: Optional[str], owner_name: Optional[str]) -> str:
    """Sequence id for an owner: its id, else a slug of its name, else ``owner``."""
    if owner_id and owner_id.strip():
        return owner_id.strip()
    return slugify(owner_name, default="owner")


def _seed(key: str) -> dict:
    return InvoiceSettings(id=key).model_dump(by_alias=True, exclude_none=True)


class InvoiceNumbering:
    """
    Per-owner invoice number sequences.

    Numbers come from one atomic read-and-increment on the store. When the
    primary store fails and a ``fallback`` store is configured, numbers are
    taken from it instead; that path is logged because the local store is
    only safe inside a single process.
    """

    def __init__(self, store: DocumentStore, fallback: Optional[DocumentStore] = None):
        self.store = store
        self.fallback = fallback

    async def get_invoice_settings(self, owner_id: Optional[str], owner_name: Optional[str]) -> InvoiceSettings:
        key = owner_key(owner_id, owner_name)
        doc = await self.store.get(INVOICE_SETTINGS, key)
        return InvoiceSettings.model_validate(doc) if doc else InvoiceSettings(id=key)

    async def save_invoice_settings(
        self,
        owner_id: Optional[str],
        owner_name: Optional[str],
        update: InvoiceSettingsUpdate,
    ) -> InvoiceSettings:
        current = await self.get_invoice_settings(owner_id, owner_name)
        merged = current.model_dump(by_alias=True)
        merged.update(update.model_dump(by_alias=True, exclude_none=True))
        merged["updatedAt"] = utcnow()
        settings = InvoiceSettings.model_validate(merged)
        await self.store.upsert(INVOICE_SETTINGS, settings.model_dump(mode="json", by_alias=True, exclude_none=True))
        logger.info("invoice_settings_saved", owner_key=settings.id, series=settings.series,
                    next_number=settings.next_number)
        return settings

    async def _take(self, store: DocumentStore, key: str) -> InvoiceSettings:
        before = await store.increment(INVOICE_SETTINGS, key, "nextNumber", _seed(key))
        try:
            return InvoiceSettings.model_validate(before)
        except ValidationError as e:
            raise InvoiceNumberAllocationError(f"Corrupt invoice settings for {key}: {e}") from e

    async def allocate_invoice_number(
        self,
        owner_id: Optional[str],
        owner_name: Optional[str],
        as_of: Optional[date] = None,
    ) -> str:
        key = owner_key(owner_id, owner_name)
        year = (as_of or today_utc()).year
        try:
            settings = await self._take(self.store, key)
            store = self.store
        except (PyMongoError, StoreUnavailableError) as e:
            if self.fallback is None:
                raise InvoiceNumberAllocationError(f"Cannot allocate invoice number for {key}: {e}") from e
            logger.warning("invoice_number_local_fallback", owner_key=key, error=str(e),
                           limitation=self.fallback.limitation)
            settings = await self._take(self.fallback, key)
            store = self.fallback

        if not store.concurrency_safe:
            logger.warning("invoice_number_not_concurrency_safe", owner_key=key, store=store.mode)
        number = settings.format_number(settings.next_number, year)
        logger.info("invoice_number_allocated", owner_key=key, number=number)
        return number
