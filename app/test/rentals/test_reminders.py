# test/rentals/test_reminders.py - Indexing reminders

from datetime import date, timedelta

import pytest

from core.events import INDEXING_REMINDER
from plugins.rentals.services.reminders import urgency_for
from plugins.rentals.storage.store import MESSAGES, NOTIFICATION_LOG

from .factories import contract_doc

NEXT_INDEXING = date(2025, 3, 1)


def _indexed_contract(**overrides):
    return contract_doc(indexingDay=1, indexingMonth=3, **overrides)


@pytest.mark.parametrize("threshold,urgency", [(60, "notice"), (30, "soon"), (20, "urgent")])
def test_urgency(threshold, urgency):
    assert urgency_for(threshold) == urgency


class TestIndexingReminders:

    @pytest.mark.asyncio
    async def test_sent_at_threshold(self, services):
        received = []
        services.events.subscribe(INDEXING_REMINDER, lambda event, payload: received.append(payload))
        await services.contracts.upsert_contract(_indexed_contract())

        sent = await services.reminders.run(NEXT_INDEXING - timedelta(days=30))

        assert len(sent) == 1
        assert sent[0]["daysUntil"] == 30
        assert sent[0]["urgency"] == "soon"
        assert sent[0]["nextIndexing"] == "2025-03-01"
        assert received == sent
        assert len(await services.store.find(MESSAGES, {"event": INDEXING_REMINDER})) == 1

    @pytest.mark.asyncio
    async def test_same_day_rerun_sends_nothing(self, services):
        await services.contracts.upsert_contract(_indexed_contract())
        as_of = NEXT_INDEXING - timedelta(days=60)

        assert len(await services.reminders.run(as_of)) == 1
        assert await services.reminders.run(as_of) == []
        assert len(await services.store.find(NOTIFICATION_LOG)) == 1

    @pytest.mark.asyncio
    async def test_each_threshold_once(self, services):
        await services.contracts.upsert_contract(_indexed_contract())

        for days in (60, 30, 20):
            assert len(await services.reminders.run(NEXT_INDEXING - timedelta(days=days))) == 1
        assert len(await services.store.find(NOTIFICATION_LOG)) == 3

    @pytest.mark.asyncio
    async def test_off_threshold_days(self, services):
        await services.contracts.upsert_contract(_indexed_contract())
        assert await services.reminders.run(NEXT_INDEXING - timedelta(days=45)) == []

    @pytest.mark.asyncio
    async def test_done_indexing_is_skipped(self, services):
        await services.contracts.upsert_contract(_indexed_contract(
            indexingDates=[{"forecastDate": "2025-03-01", "done": True, "newRentAmount": 1100}],
        ))
        assert await services.reminders.run(NEXT_INDEXING - timedelta(days=30)) == []

    @pytest.mark.asyncio
    async def test_expired_contract_is_skipped(self, services):
        await services.contracts.upsert_contract(_indexed_contract(endDate="2024-12-31"))
        assert await services.reminders.run(date(2025, 1, 30)) == []
