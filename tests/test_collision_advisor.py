from __future__ import annotations

import asyncio
import logging

import pytest

from bullets.config.models import Settings
from bullets.patterns.collisions import CollisionAdvisor, compute_signature, detect_collisions
from bullets.patterns.models import CollisionReport
from bullets.utils.scheduling import Scheduler


def _duplicate_bar_settings() -> Settings:
    return Settings(
        enabled_by_id={"decision": False},
        pattern_override_by_id={"downRight90": "|", "conclusion": "|"},
    )


def test_default_table_has_only_prefix_overlaps() -> None:
    report = detect_collisions(Settings())

    assert report.duplicates == []
    assert sorted(tuple(issue.pattern_ids) for issue in report.overlaps) == [
        ("doubleArrow", "equal"),
        ("hypothesis", "question"),
    ]
    assert all(issue.severity == "note" for issue in report.overlaps)


def test_duplicate_trigger_names_both_ids_earlier_first() -> None:
    report = detect_collisions(_duplicate_bar_settings())

    assert len(report.duplicates) == 1
    issue = report.duplicates[0]
    assert issue.pattern_ids == ["downRight90", "conclusion"]
    assert issue.triggers == ["|", "|"]
    assert issue.severity == "error"
    assert 'only "downRight90" will ever match' in issue.message


def test_disabled_patterns_are_not_checked() -> None:
    settings = Settings(enabled_by_id={"equal": False, "question": False})

    assert detect_collisions(settings).issues == []


def test_signature_ignores_disabled_patterns_and_tracks_overrides() -> None:
    base = compute_signature(Settings())

    assert compute_signature(Settings(enabled_by_id={"plus": False})) != base
    assert compute_signature(Settings(pattern_override_by_id={"conclusion": "so"})) != base
    assert compute_signature(Settings(pattern_override_by_id={"arrow": "so"})) == base


@pytest.mark.anyio
async def test_advisor_reports_once_for_repeated_schedules(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="bullets.collisions")
    advisor = CollisionAdvisor(_duplicate_bar_settings(), Scheduler(), settle_s=0.0)
    reports: list[CollisionReport] = []
    advisor.add_listener(reports.append)

    scheduled = [advisor.schedule(), advisor.schedule(), advisor.schedule()]
    await asyncio.sleep(0.01)

    assert scheduled == [True, False, False]
    assert len(reports) == 1
    assert [issue.pattern_ids for issue in reports[0].duplicates] == [
        ["downRight90", "conclusion"]
    ]
    assert advisor.last_report is reports[0]
    assert any("WARNING" in record.message for record in caplog.records)


@pytest.mark.anyio
async def test_advisor_debounces_changes_within_settle_window() -> None:
    settings = Settings()
    advisor = CollisionAdvisor(settings, Scheduler(), settle_s=0.02)
    reports: list[CollisionReport] = []
    advisor.add_listener(reports.append)

    advisor.schedule()
    settings.enabled_by_id["plus"] = False
    advisor.schedule()
    await asyncio.sleep(0.05)

    assert len(reports) == 1
    assert "plus:" not in reports[0].signature


@pytest.mark.anyio
async def test_advisor_force_reschedules_same_signature() -> None:
    advisor = CollisionAdvisor(Settings(), Scheduler(), settle_s=0.0)
    reports: list[CollisionReport] = []
    advisor.add_listener(reports.append)

    advisor.schedule()
    await asyncio.sleep(0.01)
    assert advisor.schedule(force=True) is True
    await asyncio.sleep(0.01)

    assert len(reports) == 2


@pytest.mark.anyio
async def test_advisor_cancel_drops_pending_report() -> None:
    advisor = CollisionAdvisor(Settings(), Scheduler(), settle_s=0.05)
    reports: list[CollisionReport] = []
    advisor.add_listener(reports.append)

    advisor.schedule()
    advisor.cancel()
    await asyncio.sleep(0.08)

    assert reports == []
