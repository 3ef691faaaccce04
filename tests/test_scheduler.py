from datetime import datetime

import pytest
from dateutil import tz

from harvester.infra.scheduler import Scheduler


async def noop():
    pass


@pytest.mark.parametrize("expression, valid", [
    ("0 6 * * *", True),
    ("*/15 * * * 1-5", True),
    ("0 6 * *", False),
    ("61 6 * * *", False),
])
def test_validate_cron_expression(expression, valid):
    assert Scheduler.validate_cron_expression(expression) is valid


def test_next_fire_time_follows_cron():
    scheduler = Scheduler()
    assert scheduler.next_fire_time("0 6 * * *", base=datetime(2026, 10, 17, 5, 0)) == datetime(2026, 10, 17, 6, 0)
    assert scheduler.next_fire_time("0 6 * * *", base=datetime(2026, 10, 17, 7, 0)) == datetime(2026, 10, 18, 6, 0)


def test_next_fire_time_uses_scheduler_timezone():
    new_york = Scheduler(timezone="America/New_York").next_fire_time("0 6 * * *")
    tokyo = Scheduler(timezone="Asia/Tokyo").next_fire_time("0 6 * * *")

    assert new_york.tzinfo is not None
    assert new_york.astimezone(tz.gettz("America/New_York")).hour == 6
    assert tokyo.astimezone(tz.gettz("Asia/Tokyo")).hour == 6
    assert new_york != tokyo


def test_add_cron_job_rejects_invalid_expression():
    with pytest.raises(ValueError):
        Scheduler().add_cron_job(noop, "every morning", job_id="harvest")


@pytest.mark.asyncio
async def test_cron_job_is_registered():
    scheduler = Scheduler(timezone="UTC")
    scheduler.add_cron_job(noop, "0 6 * * *", job_id="harvest")
    await scheduler.start()
    try:
        jobs = scheduler.list_jobs()
        assert list(jobs) == ["harvest"]
        assert jobs["harvest"]["next_run"] is not None
        assert scheduler.running
    finally:
        await scheduler.stop()
    assert not scheduler.running
