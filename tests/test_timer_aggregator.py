"""Tests for timer reporting."""

from datetime import datetime, timedelta

import pytest
from pytz import UTC

from timekeeper.models.time_logs import TimeLog
from timekeeper.utils.timer_aggregator import TimerAggregator, calculate_trend, get_period_ranges


def utc(*args):
    return datetime(*args, tzinfo=UTC)


async def add_stopped(store, log_id, begin, duration, user_id="U1", org_id="O1", task_id=None):
    await store.insert(TimeLog(
        id=log_id, user_id=user_id, org_id=org_id, task_id=task_id,
        begin=begin, end=begin + timedelta(seconds=duration), duration=duration,
    ))


async def add_running(store, log_id, begin, user_id="U1", org_id="O1"):
    await store.insert(TimeLog(id=log_id, user_id=user_id, org_id=org_id, begin=begin))


class TestActiveTimers:
    """Active timer listing and total running time."""

    @pytest.mark.asyncio
    async def test_summary(self, engine, aggregator, clock):
        await engine.start("U1", "O1")
        clock.advance(100)

        summary = await aggregator.active_summary("U1", "O1")

        assert len(summary["timers"]) == 1
        assert summary["total_active_time"] == 100

    @pytest.mark.asyncio
    async def test_recomputed_every_call(self, engine, aggregator, clock):
        await engine.start("U1", "O1")
        clock.advance(10)
        first = await aggregator.active_summary("U1", "O1")
        clock.advance(10)
        second = await aggregator.active_summary("U1", "O1")

        assert (first["total_active_time"], second["total_active_time"]) == (10, 20)

    @pytest.mark.asyncio
    async def test_empty(self, aggregator):
        assert await aggregator.active_summary("U1", "O1") == {"timers": [], "total_active_time": 0}

    @pytest.mark.asyncio
    async def test_reports_more_than_one(self, loose_store, clock, caplog):
        aggregator = TimerAggregator(loose_store, clock)
        await add_running(loose_store, "a", clock.now())
        await add_running(loose_store, "b", clock.advance(30))
        clock.advance(30)

        with caplog.at_level("WARNING"):
            timers = await aggregator.active_timers("U1", "O1")

        assert [timer.id for timer in timers] == ["b", "a"]
        assert aggregator.total_active_time(timers) == 90
        assert "2 active timers" in caplog.text
        # reporting never repairs data
        assert len(await loose_store.find_active("U1", "O1")) == 2


class TestPeriodRanges:
    """Calendar boundaries for stats."""

    def test_utc(self):
        ranges = get_period_ranges(utc(2026, 3, 4, 9, 0))

        assert ranges["today"] == (utc(2026, 3, 4), utc(2026, 3, 5))
        assert ranges["yesterday"] == (utc(2026, 3, 3), utc(2026, 3, 4))
        assert ranges["this_week"] == (utc(2026, 3, 2), utc(2026, 3, 9))
        assert ranges["last_week"] == (utc(2026, 2, 23), utc(2026, 3, 2))

    def test_timezone_shifts_boundaries(self):
        # 04:00 in New York (UTC-5)
        ranges = get_period_ranges(utc(2026, 3, 4, 9, 0), "America/New_York")
        assert ranges["today"] == (utc(2026, 3, 4, 5), utc(2026, 3, 5, 5))

    def test_local_date_differs_from_utc_date(self):
        # 23:30 UTC on the 4th is already the 5th in Tokyo
        ranges = get_period_ranges(utc(2026, 3, 4, 23, 30), "Asia/Tokyo")
        assert ranges["today"] == (utc(2026, 3, 4, 15), utc(2026, 3, 5, 15))

    def test_daylight_saving_week(self):
        # US clocks move forward on Sunday 2026-03-08
        ranges = get_period_ranges(utc(2026, 3, 9, 12, 0), "America/New_York")

        start, end = ranges["last_week"]
        assert start == utc(2026, 3, 2, 5)
        assert end == utc(2026, 3, 9, 4)
        assert end - start == timedelta(days=7) - timedelta(hours=1)


class TestTrend:
    """Trend of one period against the previous one."""

    def test_up(self):
        assert calculate_trend(900, 500) == {"percentage": 80.0, "direction": "up"}

    def test_down(self):
        assert calculate_trend(50, 100) == {"percentage": 50.0, "direction": "down"}

    def test_no_previous(self):
        assert calculate_trend(100, 0) == {"percentage": 0.0, "direction": "neutral"}

    def test_equal(self):
        assert calculate_trend(60, 60) == {"percentage": 0.0, "direction": "neutral"}


class TestStats:
    """Totals of completed timers per period."""

    @pytest.mark.asyncio
    async def test_utc_periods(self, store, aggregator):
        await add_stopped(store, "today-1", utc(2026, 3, 4, 8), 600)
        await add_stopped(store, "today-2", utc(2026, 3, 4, 6), 300)
        await add_stopped(store, "yesterday", utc(2026, 3, 3, 10), 500)
        await add_stopped(store, "monday", utc(2026, 3, 2, 10), 1000)
        await add_stopped(store, "last-week", utc(2026, 2, 25, 10), 2000)
        await add_stopped(store, "other-user", utc(2026, 3, 4, 8), 999, user_id="U2")
        await add_running(store, "running", utc(2026, 3, 4, 8, 30))

        stats = await aggregator.stats("U1", "O1")

        assert stats["timezone"] == "UTC"
        assert (stats["today"]["count"], stats["today"]["total_duration"]) == (2, 900)
        assert (stats["yesterday"]["count"], stats["yesterday"]["total_duration"]) == (1, 500)
        assert (stats["this_week"]["count"], stats["this_week"]["total_duration"]) == (4, 2400)
        assert (stats["last_week"]["count"], stats["last_week"]["total_duration"]) == (1, 2000)
        assert stats["today_trend"] == {"percentage": 80.0, "direction": "up"}
        assert stats["week_trend"] == {"percentage": 20.0, "direction": "up"}

    @pytest.mark.asyncio
    async def test_range_end_is_exclusive(self, store, aggregator):
        await add_stopped(store, "midnight", utc(2026, 3, 5), 100)
        await add_stopped(store, "start-of-day", utc(2026, 3, 4), 50)

        stats = await aggregator.stats("U1", "O1")

        assert stats["today"]["total_duration"] == 50

    @pytest.mark.asyncio
    async def test_timezone(self, store, aggregator):
        # 22:00 on the 3rd in New York, but the 4th in UTC
        await add_stopped(store, "late", utc(2026, 3, 4, 3), 120)

        in_utc = await aggregator.stats("U1", "O1")
        in_new_york = await aggregator.stats("U1", "O1", "America/New_York")

        assert in_utc["today"]["total_duration"] == 120
        assert in_new_york["today"]["total_duration"] == 0
        assert in_new_york["yesterday"]["total_duration"] == 120
        assert in_new_york["timezone"] == "America/New_York"


class TestRecentAndHistory:
    """Recent entries and paginated history."""

    @pytest.mark.asyncio
    async def test_recent_includes_running_first(self, store, aggregator, clock):
        for i in range(4):
            await add_stopped(store, f"s{i}", utc(2026, 3, 3, 8 + i), 60)
        await add_running(store, "running", clock.now())

        recent = await aggregator.recent_entries("U1", "O1", 3)

        assert [log.id for log in recent] == ["running", "s3", "s2"]

    @pytest.mark.asyncio
    async def test_history_pages(self, store, aggregator, clock):
        for i in range(5):
            await add_stopped(store, f"s{i}", utc(2026, 3, 3, 8 + i), 60, task_id="T1" if i % 2 else "T2")
        await add_running(store, "running", clock.now())

        page = await aggregator.history("U1", "O1", page=2, limit=2)

        assert [log.id for log in page["timers"]] == ["s2", "s1"]
        assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}

    @pytest.mark.asyncio
    async def test_history_by_task(self, store, aggregator):
        for i in range(5):
            await add_stopped(store, f"s{i}", utc(2026, 3, 3, 8 + i), 60, task_id="T1" if i % 2 else "T2")

        page = await aggregator.history("U1", "O1", task_id="T1")

        assert [log.id for log in page["timers"]] == ["s3", "s1"]
        assert page["pagination"]["total"] == 2
        assert page["pagination"]["pages"] == 1


class TestTeamActivity:
    """Per-user summaries for an organization."""

    @pytest.mark.asyncio
    async def test_groups_by_user(self, store, aggregator, clock):
        await add_stopped(store, "u1-a", utc(2026, 3, 4, 6), 60)
        await add_stopped(store, "u1-b", utc(2026, 3, 4, 7), 90)
        await add_running(store, "u1-running", clock.now())
        await add_stopped(store, "u2-a", utc(2026, 3, 4, 5), 30, user_id="U2")
        await add_stopped(store, "other-org", utc(2026, 3, 4, 5), 30, org_id="O2")

        activity = await aggregator.team_activity("O1")

        by_user = {summary["user_id"]: summary for summary in activity["team_activity"]}
        assert activity["total_logs"] == 4
        assert by_user["U1"]["active_timer"].id == "u1-running"
        assert by_user["U1"]["total_time"] == 150
        assert by_user["U1"]["total_entries"] == 2
        assert [log.id for log in by_user["U1"]["recent_entries"]] == ["u1-b", "u1-a"]
        assert by_user["U2"]["active_timer"] is None
        assert by_user["U2"]["total_time"] == 30

    @pytest.mark.asyncio
    async def test_date_range(self, store, aggregator):
        await add_stopped(store, "early", utc(2026, 3, 1, 8), 100)
        await add_stopped(store, "inside", utc(2026, 3, 3, 8), 200)
        await add_stopped(store, "late", utc(2026, 3, 6, 8), 400)

        activity = await aggregator.team_activity("O1", utc(2026, 3, 2), utc(2026, 3, 5))

        assert activity["total_logs"] == 1
        assert activity["team_activity"][0]["total_time"] == 200

    @pytest.mark.asyncio
    async def test_recent_limit_does_not_cap_totals(self, store, aggregator):
        for i in range(4):
            await add_stopped(store, f"s{i}", utc(2026, 3, 3, 8 + i), 10)

        activity = await aggregator.team_activity("O1", recent_limit=2)

        summary = activity["team_activity"][0]
        assert len(summary["recent_entries"]) == 2
        assert summary["total_entries"] == 4
        assert summary["total_time"] == 40

    @pytest.mark.asyncio
    async def test_empty_org(self, aggregator):
        assert await aggregator.team_activity("O1") == {"team_activity": [], "total_logs": 0}
