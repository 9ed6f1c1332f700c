# test/rentals/test_exchange.py - BNR EUR/RON reference rate

from datetime import date

import httpx
import pytest

from plugins.rentals.services.contracts import ContractService
from plugins.rentals.services.exchange import ExchangeRateService, parse_bnr_eur_rate
from plugins.rentals.storage.store import CONTRACTS
from utils.exceptions import ExternalServiceError

from .factories import contract_doc

BNR_XML = """<?xml version="1.0" encoding="utf-8"?>
<DataSet xmlns="http://www.bnr.ro/xsd">
  <Body>
    <Subject>Reference rates</Subject>
    <OrigCurrency>RON</OrigCurrency>
    <Cube date="2024-02-14">
      <Rate currency="AED">1.2562</Rate>
      <Rate currency="EUR">4.9754</Rate>
      <Rate currency="HUF" multiplier="100">1.2801</Rate>
    </Cube>
  </Body>
</DataSet>
"""

AS_OF = date(2024, 2, 14)


class TestParser:

    def test_eur_rate_and_date(self):
        assert parse_bnr_eur_rate(BNR_XML) == (date(2024, 2, 14), 4.9754)

    def test_multiplier(self):
        published, rate = parse_bnr_eur_rate('<Cube date="2024-02-14"><Rate currency="EUR" multiplier="100">497.54</Rate></Cube>')
        assert rate == pytest.approx(4.9754)

    def test_attribute_order_does_not_matter(self):
        published, rate = parse_bnr_eur_rate('<Cube date="2024-02-14"><Rate multiplier="100" currency="EUR">497.54</Rate></Cube>')
        assert (published, rate) == (date(2024, 2, 14), pytest.approx(4.9754))

    def test_malformed_feed(self):
        with pytest.raises(ValueError):
            parse_bnr_eur_rate("<DataSet><Body>")

    def test_missing_eur(self):
        with pytest.raises(ValueError):
            parse_bnr_eur_rate('<Cube date="2024-02-14"><Rate currency="USD">4.6</Rate></Cube>')


class TestExchangeRateService:

    def _service(self, services, handler):
        return ExchangeRateService(
            services.store,
            services.contracts,
            "https://bnr.test/nbrfxrates.xml",
            timeout=1.0,
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_fetch_then_cached_for_the_day(self, services):
        calls = []

        def handler(request):
            calls.append(str(request.url))
            return httpx.Response(200, text=BNR_XML)

        service = self._service(services, handler)
        first = await service.get_eur_ron(AS_OF)
        second = await service.get_eur_ron(AS_OF)

        assert first["rate"] == 4.9754 and not first["cached"]
        assert second["rate"] == 4.9754 and second["cached"]
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_http_error(self, services):
        service = self._service(services, lambda request: httpx.Response(500))
        with pytest.raises(ExternalServiceError):
            await service.get_eur_ron(AS_OF)

    @pytest.mark.asyncio
    async def test_refresh_updates_active_contracts(self, services):
        await services.contracts.upsert_contract(contract_doc())
        await services.contracts.upsert_contract(contract_doc(id="old", name="Old", startDate="2020-01-01",
                                                              signedAt="2019-12-01", endDate="2022-12-31"))
        service = self._service(services, lambda request: httpx.Response(200, text=BNR_XML))

        result = await service.refresh_contracts(AS_OF)

        assert result == {"rate": 4.9754, "date": "2024-02-14", "updated": 1}
        assert (await services.store.get(CONTRACTS, "shop-a"))["exchangeRateRON"] == 4.9754
        assert (await services.store.get(CONTRACTS, "old"))["exchangeRateRON"] == 5.0

    @pytest.mark.asyncio
    async def test_rate_must_be_positive(self, services):
        with pytest.raises(ValueError):
            await ContractService(services.store, services.events).update_exchange_rate(0)
