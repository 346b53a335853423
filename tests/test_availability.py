"""
Tests for the uptime calculator.
"""
from datetime import timedelta

import pytest

from app.exceptions import InvalidRange
from app.models.availability import StateChangeEvent
from app.services import availability

from conftest import T0, add_events


def _event(status, offset_seconds, reason=None):
    return StateChangeEvent(
        account_id=1,
        device_id="dev-1",
        status=status,
        occurred_at=T0 + timedelta(seconds=offset_seconds),
        detection_method="polling",
        reason=reason,
        retry_attempts=0,
    )


class TestComputeAvailability:
    def test_window_fully_attributed_when_first_event_at_start(self):
        events = [_event("up", 0), _event("down", 1800, "Device is disconnected")]

        report = availability.compute_availability("dev-1", events, T0, T0 + timedelta(hours=1))

        assert report.uptime_seconds == 1800
        assert report.downtime_seconds == 1800
        assert report.total_seconds == 3600
        assert report.uptime_percentage == 50.0
        assert len(report.outages) == 1
        assert report.outages[0].duration_seconds == 1800
        assert report.outages[0].reason == "Device is disconnected"
        assert report.outages[0].end == T0 + timedelta(hours=1)

    def test_leading_gap_is_not_attributed(self):
        events = [_event("down", 600), _event("up", 1200)]

        report = availability.compute_availability("dev-1", events, T0, T0 + timedelta(hours=1))

        assert report.uptime_seconds == 2400
        assert report.downtime_seconds == 600
        assert report.total_seconds == 3000
        assert report.uptime_percentage == 80.0

    def test_outage_spans_until_next_event(self):
        events = [_event("up", 0), _event("down", 100), _event("up", 400), _event("down", 3000)]

        report = availability.compute_availability("dev-1", events, T0, T0 + timedelta(hours=1))

        assert [o.duration_seconds for o in report.outages] == [300, 600]
        assert report.outages[0].start == T0 + timedelta(seconds=100)
        assert report.outages[0].end == T0 + timedelta(seconds=400)
        assert report.downtime_seconds == 900
        assert report.uptime_seconds == 2700

    def test_empty_reason_is_reported_as_none(self):
        events = [_event("down", 0, reason="")]

        report = availability.compute_availability("dev-1", events, T0, T0 + timedelta(minutes=5))

        assert report.outages[0].reason is None

    def test_event_at_window_end_contributes_nothing(self):
        events = [_event("up", 0), _event("down", 3600)]

        report = availability.compute_availability("dev-1", events, T0, T0 + timedelta(hours=1))

        assert report.uptime_seconds == 3600
        assert report.downtime_seconds == 0
        assert report.uptime_percentage == 100.0

    @pytest.mark.parametrize("status, up, down, pct", [
        ("up", 3600, 0, 100.0),
        ("down", 0, 3600, 0.0),
    ])
    def test_no_events_uses_latest_known_status(self, status, up, down, pct):
        latest = _event(status, -7200)

        report = availability.compute_availability("dev-1", [], T0, T0 + timedelta(hours=1), latest)

        assert report.uptime_seconds == up
        assert report.downtime_seconds == down
        assert report.uptime_percentage == pct
        assert report.current_status == status
        assert report.last_state_change == T0 - timedelta(hours=2)
        assert report.outages == []

    def test_no_history_reports_unknown_with_zero_percentage(self):
        report = availability.compute_availability("dev-1", [], T0, T0 + timedelta(hours=1))

        assert report.current_status == "unknown"
        assert report.total_seconds == 0
        assert report.uptime_percentage == 0.0
        assert report.last_state_change is None

    def test_percentage_is_rounded_to_two_decimals(self):
        events = [_event("up", 0), _event("down", 3599)]

        report = availability.compute_availability("dev-1", events, T0, T0 + timedelta(hours=1))

        assert report.uptime_percentage == 99.97
        assert 0.0 <= report.uptime_percentage <= 100.0

    def test_rejects_empty_window(self):
        with pytest.raises(InvalidRange):
            availability.compute_availability("dev-1", [], T0, T0)

    def test_rejects_inverted_window(self):
        with pytest.raises(InvalidRange):
            availability.compute_availability("dev-1", [], T0 + timedelta(seconds=1), T0)


async def test_report_reads_events_in_window(db):
    await add_events(db, ["up", "down", "up"], start=T0, step_seconds=600)

    report = await availability.get_availability_report(db, 1, "dev-1", T0, T0 + timedelta(hours=1))

    assert report.uptime_seconds == 600 + 2400
    assert report.downtime_seconds == 600
    assert report.current_status == "up"
    assert report.last_state_change == T0 + timedelta(seconds=1200)


async def test_report_ignores_other_devices_and_accounts(db):
    await add_events(db, ["down"], start=T0, device_id="dev-2")
    await add_events(db, ["down"], start=T0, account_id=2)
    await add_events(db, ["up"], start=T0)

    report = await availability.get_availability_report(db, 1, "dev-1", T0, T0 + timedelta(hours=1))

    assert report.uptime_seconds == 3600
    assert report.downtime_seconds == 0


async def test_report_falls_back_to_status_before_window(db):
    await add_events(db, ["up", "down"], start=T0 - timedelta(hours=3), step_seconds=3600)

    report = await availability.get_availability_report(db, 1, "dev-1", T0, T0 + timedelta(hours=1))

    assert report.downtime_seconds == 3600
    assert report.uptime_percentage == 0.0
    assert report.current_status == "down"


async def test_report_for_preset_periods(db):
    await add_events(db, ["up", "down"], start=T0 - timedelta(hours=2), step_seconds=5400)

    last_hour = await availability.get_availability_for_period(db, 1, "dev-1", "1h", now=T0)
    last_day = await availability.get_availability_for_period(db, 1, "dev-1", "24h", now=T0)

    assert last_hour.downtime_seconds == 1800
    assert last_hour.uptime_seconds == 0
    assert last_day.uptime_seconds == 5400
    assert last_day.downtime_seconds == 1800
    assert last_day.uptime_percentage == 75.0
    assert last_day.window_start == T0 - timedelta(hours=24)


async def test_report_for_unknown_period(db):
    with pytest.raises(InvalidRange):
        await availability.get_availability_for_period(db, 1, "dev-1", "90d", now=T0)


async def test_reports_cover_every_period(db):
    await add_events(db, ["up"], start=T0 - timedelta(days=40))

    reports = await availability.get_availability_reports(db, 1, "dev-1", now=T0)

    assert list(reports) == ["5m", "1h", "24h", "7d", "30d"]
    assert all(r.uptime_percentage == 100.0 for r in reports.values())
    assert reports["7d"].uptime_seconds == 7 * 24 * 3600


async def test_recent_outages_newest_first(db):
    await add_events(db, ["down", "up", "down", "up", "down"], start=T0, step_seconds=60)

    outages = await availability.get_recent_outages(db, 1, "dev-1", limit=2)

    assert [o.start for o in outages] == [T0 + timedelta(seconds=240), T0 + timedelta(seconds=120)]
    assert all(o.detection_method == "polling" for o in outages)


async def test_devices_stats_cover_each_device_of_account(db):
    await add_events(db, ["up"], start=T0 - timedelta(hours=2), device_id="a")
    await add_events(db, ["up", "down"], start=T0 - timedelta(hours=1), step_seconds=1800, device_id="b")
    await add_events(db, ["down"], start=T0 - timedelta(hours=1), device_id="c", account_id=2)

    stats = await availability.get_devices_availability_stats(db, 1, "24h", now=T0)

    assert [(s.device_id, s.uptime_percentage, s.last_status) for s in stats] == [
        ("a", 100.0, "up"),
        ("b", 50.0, "down"),
    ]


async def test_devices_stats_empty_account(db):
    assert await availability.get_devices_availability_stats(db, 1, now=T0) == []
