# test/rentals/test_workers.py - Broker, scheduled actors and scheduler wiring

from unittest.mock import AsyncMock

import pytest
from dramatiq.brokers.stub import StubBroker

from core.scheduler_decorators import SCHEDULED_TASKS, run_cron, run_every_day
from plugins.rentals.storage.store import NOTIFICATION_LOG, LocalJsonStore
from plugins.rentals.tasks import rental_tasks
from workers import build_broker, find_task_modules
from workers.scheduler import build_scheduler

from .factories import contract_doc


def test_stub_broker():
    assert isinstance(build_broker("stub"), StubBroker)


def test_task_modules_are_found():
    assert "plugins.rentals.tasks.rental_tasks" in find_task_modules()


def test_rentals_actors_are_scheduled():
    names = {task["name"] for task in SCHEDULED_TASKS}
    assert {"send_indexing_reminders", "refresh_exchange_rate"} <= names

    reminders = next(t for t in SCHEDULED_TASKS if t["name"] == "send_indexing_reminders")
    assert reminders["trigger"] == "cron"
    assert reminders["trigger_args"] == {"hour": 6, "minute": 0}


def test_scheduler_has_one_job_per_task():
    tasks = [t for t in SCHEDULED_TASKS if t["name"] in {"send_indexing_reminders", "refresh_exchange_rate"}]
    scheduler = build_scheduler(tasks)

    assert sorted(job.id for job in scheduler.get_jobs()) == ["refresh_exchange_rate", "send_indexing_reminders"]


@pytest.mark.parametrize("hour,minute", [(24, 0), (0, 60), (-1, 0)])
def test_run_every_day_validates(hour, minute):
    with pytest.raises(ValueError):
        run_every_day(hour=hour, minute=minute)


def test_run_cron_validates():
    with pytest.raises(ValueError):
        run_cron("0 2 * *")


def test_reminder_actor_runs_against_store(tmp_path, monkeypatch):
    store = LocalJsonStore(str(tmp_path / "data"))
    monkeypatch.setattr(rental_tasks, "select_store", AsyncMock(return_value=store))
    monkeypatch.setattr(rental_tasks.settings, "DATA_DIR", str(tmp_path / "data"))
    store._write("contracts", [contract_doc(indexingDay=1, indexingMonth=3)])

    rental_tasks.send_indexing_reminders("2025-01-30")

    log = store._read(NOTIFICATION_LOG)
    assert [entry["nextIndexing"] for entry in log] == ["2025-03-01"]
