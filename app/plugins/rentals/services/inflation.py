"""
Euro-area HICP lookup (2015 = 100) used to justify rent indexing.

Series resolution, first hit wins:
    1. the ``inflation_cache`` collection, when it already covers the month
    2. the ECB data API, then Eurostat when the ECB call fails; each request
       is bounded by a timeout and the result is written back to the cache
    3. the bundled fallback table plus the locally maintained override file

``get_euro_inflation_percent`` returns ``None`` when no tier has data.
``None`` means "unknown", callers must not read it as 0%.
"""
import json
import os
from datetime import date
from typing import Dict, Optional, Tuple

import httpx
import structlog

from core.cache import TTLCache
from plugins.rentals.models.stats import InflationResult
from plugins.rentals.storage.store import INFLATION_CACHE, DocumentStore
from utils.date_helper import ensure_date, is_month_key, month_key, parse_month_key, today_utc, utcnow

logger = structlog.get_logger(__name__)

SERIES_KEY = "EA_HICP_2015"
RATE_SERIES_BOUND = 50.0
TRAILING_MONTHS = 12

BUNDLED_FALLBACK = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "data", "hicp_fallback.json")

Series = Dict[str, float]


# ===============================================================
# Pure helpers
# ===============================================================

def is_rate_series(series: Series) -> bool:
    """
    Heuristic kept on purpose: an index (2015 = 100) never falls inside
    [-50, 50] in the covered years, while annual rates always do. A series
    made only of such values is treated as already expressed in percent.
    """
    return bool(series) and all(-RATE_SERIES_BOUND <= v <= RATE_SERIES_BOUND for v in series.values())


def pick_le(series: Series, month: str) -> Optional[Tuple[str, float]]:
    """Latest (month, value) on or before ``month``."""
    candidates = [m for m in series if m <= month]
    if not candidates:
        return None
    best = max(candidates)
    return best, series[best]


def percent_change(series: Series, from_month: str, to_month: str) -> Optional[dict]:
    """
    Index series: ``(index[to] / index[from] - 1) * 100``, each side taken at
    the latest month on or before the one requested. A ``from_month`` older
    than the series gives ``None`` rather than a shorter window.
    Rate series: mean of the trailing 12 values ending at ``to_month``.
    """
    if not series:
        return None
    if is_rate_series(series):
        window = sorted(m for m in series if m <= to_month)[-TRAILING_MONTHS:]
        if not window:
            return None
        return {
            "percent": sum(series[m] for m in window) / len(window),
            "method": "rate_average",
            "start_month": window[0],
            "end_month": window[-1],
        }
    start, end = pick_le(series, from_month), pick_le(series, to_month)
    if not start or not end or start[1] <= 0:
        return None
    return {
        "percent": (end[1] / start[1] - 1) * 100,
        "method": "index_ratio",
        "start_month": start[0],
        "end_month": end[0],
        "start_index": start[1],
        "end_index": end[1],
    }


def parse_ecb_sdmx(payload: dict) -> Series:
    """SDMX-JSON: observations keyed by position, periods in the structure block."""
    series_block = payload["dataSets"][0]["series"]
    first = next(iter(series_block.values()), None)
    if first is None:
        raise ValueError("SDMX payload holds no series")
    observations = first["observations"]
    periods = payload["structure"]["dimensions"]["observation"][0]["values"]
    out: Series = {}
    for position, values in observations.items():
        period = periods[int(position)]["id"]
        if values and values[0] is not None and is_month_key(period):
            out[period] = float(values[0])
    return out


def parse_eurostat_jsonstat(payload: dict) -> Series:
    """JSON-stat 2.0: time labels like ``2024M03`` mapped to flat value positions."""
    time_index = payload["dimension"]["time"]["category"]["index"]
    values = payload["value"]
    out: Series = {}
    for label, position in time_index.items():
        value = values.get(str(position)) if isinstance(values, dict) else values[position]
        if value is None:
            continue
        month = label.replace("M", "-")
        if is_month_key(month):
            out[month] = float(value)
    return out


def _clean(raw: dict) -> Series:
    return {
        k: float(v) for k, v in (raw or {}).items()
        if is_month_key(k) and isinstance(v, (int, float)) and not isinstance(v, bool)
    }


# ===============================================================
# Service
# ===============================================================

class InflationService:
    def __init__(
        self,
        store: DocumentStore,
        cache: TTLCache,
        ecb_url: str,
        eurostat_url: str,
        timeout: float = 5.0,
        override_path: Optional[str] = None,
        bundled_path: str = BUNDLED_FALLBACK,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.cache = cache
        self.ecb_url = ecb_url
        self.eurostat_url = eurostat_url
        self.timeout = timeout
        self.override_path = override_path
        self.bundled_path = bundled_path
        self.transport = transport

    # ---- tier 1: collection cache -------------------------------------

    async def _read_cached(self) -> Tuple[Series, Optional[str]]:
        try:
            docs = await self.store.find(INFLATION_CACHE, {"key": SERIES_KEY})
        except Exception as e:
            logger.warning("hicp_cache_read_failed", error=str(e))
            return {}, None
        series = _clean({d.get("month"): d.get("index") for d in docs})
        fetched = max((str(d.get("fetchedAt") or "") for d in docs), default="") or None
        return series, fetched

    async def _write_cached(self, series: Series) -> None:
        """Best effort: a failed write leaves the fetched series usable."""
        fetched_at = utcnow().isoformat()
        try:
            for month, value in sorted(series.items()):
                await self.store.upsert(INFLATION_CACHE, {
                    "id": f"{SERIES_KEY}:{month}",
                    "key": SERIES_KEY,
                    "month": month,
                    "index": value,
                    "fetchedAt": fetched_at,
                })
        except Exception as e:
            logger.warning("hicp_cache_write_failed", months=len(series), error=str(e))

    # ---- tier 2: remote sources ---------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _fetch_ecb(self, end_month: str) -> Series:
        params = {"startPeriod": "2000-01", "endPeriod": end_month, "detail": "dataonly", "format": "jsondata"}
        async with self._client() as client:
            resp = await client.get(self.ecb_url, params=params, headers={"Accept": "application/json"})
            resp.raise_for_status()
            return parse_ecb_sdmx(resp.json())

    async def _fetch_eurostat(self, end_month: str) -> Series:
        params = {"format": "JSON", "geo": "EA", "coicop": "CP00", "unit": "I15",
                  "sinceTimePeriod": "2000M01", "untilTimePeriod": end_month.replace("-", "M")}
        async with self._client() as client:
            resp = await client.get(self.eurostat_url, params=params)
            resp.raise_for_status()
            return parse_eurostat_jsonstat(resp.json())

    async def _fetch_remote(self, end_month: str) -> Tuple[Series, Optional[str]]:
        for source, fetch in (("ecb", self._fetch_ecb), ("eurostat", self._fetch_eurostat)):
            try:
                series = await fetch(end_month)
            except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
                logger.warning("hicp_source_failed", source=source, error=str(e))
                continue
            if series:
                logger.info("hicp_source_fetched", source=source, months=len(series))
                return series, source
            logger.warning("hicp_source_empty", source=source)
        return {}, None

    # ---- tier 3: fallback tables --------------------------------------

    def _read_json(self, path: Optional[str]) -> Series:
        if not path or not os.path.exists(path):
            return {}
        with open(path, "r", encoding="utf-8") as fh:
            try:
                return _clean(json.load(fh))
            except json.JSONDecodeError as e:
                logger.error("hicp_fallback_unreadable", path=path, error=str(e))
                return {}

    def read_fallback(self) -> Series:
        """Bundled table overlaid with the locally maintained entries."""
        series = self._read_json(self.bundled_path)
        series.update(self._read_json(self.override_path))
        return series

    def _write_override(self, series: Series) -> None:
        os.makedirs(os.path.dirname(self.override_path) or ".", exist_ok=True)
        with open(self.override_path, "w", encoding="utf-8") as fh:
            json.dump(dict(sorted(series.items())), fh, indent=2)

    def upsert_hicp_fallback(self, month: str, index: float) -> Series:
        if not self.override_path:
            raise ValueError("No fallback override file configured")
        month = month.strip()
        parse_month_key(month)
        if index is None or index <= 0:
            raise ValueError("index must be a positive number")
        current = self._read_json(self.override_path)
        current[month] = float(index)
        self._write_override(current)
        return current

    def delete_hicp_fallback(self, month: str) -> Series:
        if not self.override_path:
            raise ValueError("No fallback override file configured")
        current = self._read_json(self.override_path)
        current.pop(month.strip(), None)
        self._write_override(current)
        return current

    # ---- resolution ----------------------------------------------------

    async def get_series(self, needed_month: str, force_refresh: bool = False,
                         as_of: Optional[date] = None) -> Tuple[Series, str]:
        """Series covering ``needed_month`` as far as any tier allows, with its source."""
        memo_key = f"hicp:{SERIES_KEY}"
        if not force_refresh:
            memo = await self.cache.get(memo_key)
            if memo and max(memo["series"], default="") >= needed_month:
                return memo["series"], memo["source"]

        today = as_of or today_utc()
        if not force_refresh:
            cached, fetched_at = await self._read_cached()
            fresh_today = bool(fetched_at) and fetched_at[:10] == today.isoformat()
            if cached and (max(cached) >= needed_month or fresh_today):
                await self.cache.set(memo_key, {"series": cached, "source": "cache"})
                return cached, "cache"

        series, source = await self._fetch_remote(month_key(today))
        if series:
            await self._write_cached(series)
            await self.cache.set(memo_key, {"series": series, "source": source})
            return series, source

        cached, _ = await self._read_cached()
        if cached:
            return cached, "cache"
        fallback = self.read_fallback()
        if fallback:
            logger.warning("hicp_using_fallback", months=len(fallback))
        return fallback, "fallback"

    async def get_euro_inflation_percent(
        self,
        from_,
        to=None,
        force_refresh: bool = False,
        as_of: Optional[date] = None,
    ) -> Optional[InflationResult]:
        """
        Percent change of the HICP between two months (``to`` defaults to the
        month of ``as_of``). Accepts ``YYYY-MM`` or any date-like value.
        """
        today = as_of or today_utc()
        from_month = from_ if isinstance(from_, str) and is_month_key(from_) else month_key(ensure_date(from_))
        to_month = (to if isinstance(to, str) and is_month_key(to) else month_key(ensure_date(to))) if to else month_key(today)
        if from_month > to_month:
            raise ValueError("from month must not be after to month")

        series, source = await self.get_series(to_month, force_refresh=force_refresh, as_of=today)
        change = percent_change(series, from_month, to_month)
        if change is None:
            logger.info("inflation_unknown", from_month=from_month, to_month=to_month)
            return None
        return InflationResult(from_month=from_month, to_month=to_month, source=source, **change)

    async def get_hicp_index(self, month: str, as_of: Optional[date] = None) -> Optional[float]:
        series, _ = await self.get_series(month, as_of=as_of)
        if is_rate_series(series):
            return None
        picked = pick_le(series, month)
        return picked[1] if picked else None

