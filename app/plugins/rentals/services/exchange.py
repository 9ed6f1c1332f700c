import xml.etree.ElementTree as ET
from datetime import date
from typing import Optional

import httpx
import structlog
import tenacity

from plugins.rentals.services.contracts import ContractService
from plugins.rentals.storage.store import EXCHANGE_RATES, DocumentStore
from utils.date_helper import ensure_date, today_utc, utcnow
from utils.exceptions import ExternalServiceError

logger = structlog.get_logger(__name__)

RATE_KEY = "EURRON"


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_bnr_eur_rate(xml: str):
    """(publication date, RON per 1 EUR) from the BNR daily reference rates feed."""
    try:
        root = ET.fromstring(xml or "")
    except ET.ParseError as e:
        raise ValueError(f"Malformed BNR feed: {e}") from e

    for cube in root.iter():
        if _local(cube.tag) != "Cube":
            continue
        for rate in cube:
            if _local(rate.tag) == "Rate" and rate.get("currency") == "EUR":
                multiplier = int(rate.get("multiplier") or 1)
                value = float((rate.text or "").strip()) / multiplier
                return ensure_date(cube.get("date")), value
    raise ValueError("EUR rate missing from BNR feed")


class ExchangeRateService:
    """Daily EUR/RON reference rate, cached per day in ``exchange_rates``."""

    def __init__(
        self,
        store: DocumentStore,
        contracts: ContractService,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.contracts = contracts
        self.url = url
        self.timeout = timeout
        self.transport = transport

    @tenacity.retry(
        wait=tenacity.wait_exponential(multiplier=1, min=1, max=5),
        stop=tenacity.stop_after_attempt(3),
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _fetch_feed(self) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.get(self.url)
            resp.raise_for_status()
            return resp.text

    async def get_eur_ron(self, as_of: Optional[date] = None, force_refresh: bool = False) -> dict:
        day = as_of or today_utc()
        doc_id = f"{RATE_KEY}:{day.isoformat()}"
        if not force_refresh:
            cached = await self.store.get(EXCHANGE_RATES, doc_id)
            if cached:
                return {**cached, "cached": True}

        try:
            published, rate = parse_bnr_eur_rate(await self._fetch_feed())
        except (httpx.HTTPError, ValueError) as e:
            logger.error("bnr_rate_fetch_failed", error=str(e))
            raise ExternalServiceError(f"BNR rate unavailable: {e}") from e

        doc = {
            "id": doc_id,
            "key": RATE_KEY,
            "date": day.isoformat(),
            "publishedAt": (published or day).isoformat(),
            "rate": rate,
            "source": "bnr",
            "fetchedAt": utcnow().isoformat(),
        }
        await self.store.upsert(EXCHANGE_RATES, doc)
        logger.info("bnr_rate_fetched", rate=rate, published=doc["publishedAt"])
        return {**doc, "cached": False}

    async def refresh_contracts(self, as_of: Optional[date] = None, force_refresh: bool = False) -> dict:
        """Apply today's rate to all active contracts."""
        rate_doc = await self.get_eur_ron(as_of, force_refresh=force_refresh)
        updated = await self.contracts.update_exchange_rate(rate_doc["rate"], as_of=as_of)
        return {"rate": rate_doc["rate"], "date": rate_doc["date"], "updated": updated}
