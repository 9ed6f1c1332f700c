import os
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from core.cache import TTLCache, build_cache
from core.config import Settings, settings as default_settings
from core.events import EventBus
from plugins.rentals.services.contracts import ContractService
from plugins.rentals.services.deposits import DepositService
from plugins.rentals.services.exchange import ExchangeRateService
from plugins.rentals.services.inflation import InflationService
from plugins.rentals.services.invoices import InvoiceService, PdfWriter
from plugins.rentals.services.messages import register_subscribers
from plugins.rentals.services.numbering import InvoiceNumbering
from plugins.rentals.services.reminders import IndexingReminderService
from plugins.rentals.storage.store import DocumentStore, LocalJsonStore


@dataclass
class RentalsServices:
    store: DocumentStore
    events: EventBus
    invoice_cache: TTLCache
    contracts: ContractService
    numbering: InvoiceNumbering
    invoices: InvoiceService
    inflation: InflationService
    exchange: ExchangeRateService
    reminders: IndexingReminderService
    deposits: DepositService


def build_services(
    store: DocumentStore,
    config: Settings = default_settings,
    pdf_writer: Optional[PdfWriter] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    invoice_cache: Optional[TTLCache] = None,
    inflation_cache: Optional[TTLCache] = None,
) -> RentalsServices:
    events = EventBus()
    register_subscribers(events, store)

    invoice_cache = invoice_cache or build_cache(config.CACHE_BACKEND, config.INVOICE_CACHE_TTL, config.REDIS_URL)
    inflation_cache = inflation_cache or build_cache(
        config.CACHE_BACKEND, config.INFLATION_CACHE_TTL, config.REDIS_URL, prefix="rentals:hicp:"
    )

    fallback = None if isinstance(store, LocalJsonStore) else LocalJsonStore(config.DATA_DIR)
    contracts = ContractService(store, events)
    numbering = InvoiceNumbering(store, fallback=fallback)
    invoices = InvoiceService(
        store, contracts, numbering, invoice_cache, events,
        pdf_writer=pdf_writer, default_owner=config.DEFAULT_OWNER,
    )
    inflation = InflationService(
        store,
        inflation_cache,
        ecb_url=config.ECB_HICP_URL,
        eurostat_url=config.EUROSTAT_HICP_URL,
        timeout=config.INFLATION_HTTP_TIMEOUT,
        override_path=os.path.join(config.DATA_DIR, "hicp-fallback.json"),
        transport=transport,
    )
    exchange = ExchangeRateService(
        store, contracts, config.BNR_RATES_URL, timeout=config.EXCHANGE_HTTP_TIMEOUT, transport=transport
    )
    reminders = IndexingReminderService(store, contracts, events, thresholds=config.REMINDER_THRESHOLDS)
    deposits = DepositService(store, events)
    return RentalsServices(
        store=store,
        events=events,
        invoice_cache=invoice_cache,
        contracts=contracts,
        numbering=numbering,
        invoices=invoices,
        inflation=inflation,
        exchange=exchange,
        reminders=reminders,
        deposits=deposits,
    )


def get_services(request: Request) -> RentalsServices:
    return request.app.state.rentals
