import asyncio

import pytest

from policyvault.workflows.change_monitor import (
    ChangeMonitor,
    build_change_summary,
    count_high_severity,
    normalize_category,
    run_analyzer,
)
from policyvault.workflows.diff_engine import DiffEngine
from policyvault.workflows.errors import AnalysisError, PolicyVaultError, VersionNotFound
from policyvault.workflows.models import AnalysisResult
from policyvault.workflows.version_cache import VersionCache
from policyvault.workflows.version_store import InMemoryVersionStore

from helpers import FakeClock, FakeTransport, FakeWallClock, make_cascade, ok, policy_html

URL = "https://example.com/privacy"
CHANGED = policy_html(extra="<p>We now share personal data with advertising partners.</p>")


class ScriptedAnalyzer:
    """Async analyzer handing out canned results in order."""

    def __init__(self, *results):
        self.results = list(results)
        self.texts = []

    async def __call__(self, text):
        self.texts.append(text)
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]


def _monitor(transport, *, analyzer=None, pauses=None):
    clock = FakeClock()
    wall = FakeWallClock()
    cache = VersionCache(InMemoryVersionStore(), clock=wall)
    cascade = make_cascade(transport, clock=clock)
    pauses = pauses or FakeClock()
    return ChangeMonitor(cache, cascade, analyzer=analyzer, sleep=pauses.sleep, clock=wall, delay=2.0)


def test_summary_reports_score_and_new_findings():
    old = {"key_findings": [{"category": "THREAT", "text": "Sells data"}]}
    new = {
        "key_findings": [
            {"category": "CONCERNING", "text": "Sells data"},
            {"category": "NOTABLE", "severity": "high"},
            "Retains biometric data (threat)",
        ]
    }

    summary = build_change_summary(old, new, 60, 65)

    assert summary == "Score improved by 5 points (60 → 65). 2 new high-severity finding(s) detected"


def test_summary_reports_decrease_and_resolved_findings():
    old = {"key_findings": ["Tracking is a threat", {"severity": "CRITICAL"}]}

    assert build_change_summary({}, {}, 70, 62) == "Score decreased by 8 points (70 → 62)"
    assert build_change_summary(old, {"key_findings": []}) == "2 high-severity finding(s) resolved"
    assert build_change_summary({}, {}, 70, 70) == "Policy content has been updated"
    assert build_change_summary(None, None) == "Policy content has been updated"


def test_legacy_categories_are_mapped():
    assert normalize_category("threat") == "CONCERNING"
    assert normalize_category(" Good ") == "POSITIVE"
    assert normalize_category("EXCELLENT") == "EXCELLENT"
    assert count_high_severity({"key_findings": "not a list"}) == 0


def test_first_recheck_tracks_new_policy():
    monitor = _monitor(FakeTransport({URL: ok(policy_html())}))

    result = asyncio.run(monitor.recheck("www.example.com", "privacy"))

    assert result.has_changes
    assert result.domain == "example.com"
    assert result.change_record.change_type == "new_policy"
    assert result.change_record.summary == "New policy tracked"
    assert result.change_record.previous_version_id is None
    assert len(monitor.cache.list_versions("example.com", "privacy")) == 1
    assert [r.id for r in monitor.pending_changes("example.com")] == [result.change_record.id]


def test_unchanged_recheck_writes_nothing():
    monitor = _monitor(FakeTransport({URL: ok(policy_html())}))

    async def run():
        await monitor.recheck("example.com", "privacy")
        return await monitor.recheck("example.com", "privacy")

    result = asyncio.run(run())

    assert not result.has_changes
    assert result.change_record is None
    assert result.new_version_id is None
    assert len(monitor.cache.list_versions("example.com", "privacy")) == 1
    assert len(monitor.store.list_change_records(include_dismissed=True)) == 1


def test_content_change_without_analyzer_carries_previous_analysis():
    transport = FakeTransport({URL: [ok(policy_html()), ok(CHANGED)]})
    monitor = _monitor(transport)

    async def run():
        first = await monitor.recheck("example.com", "privacy")
        second = await monitor.recheck("example.com", "privacy")
        return first, second

    first, second = asyncio.run(run())

    record = second.change_record
    assert second.has_changes
    assert record.change_type == "content_changed"
    assert record.previous_version_id == first.new_version_id
    assert record.current_version_id == second.new_version_id != first.new_version_id
    assert record.summary == "Policy content has been updated"
    assert record.score_delta is None
    assert record.previous_analysis == {"score": None}
    assert transport.urls() == [URL, URL]


def test_analyzed_change_records_score_delta_and_snapshot():
    analyzer = ScriptedAnalyzer(
        AnalysisResult(score=70, structured_findings={"summary": "Fair", "key_findings": []}),
        AnalysisResult(score=62, structured_findings={"summary": "Worse", "key_findings": [{"category": "THREAT"}]}),
    )
    monitor = _monitor(FakeTransport({URL: [ok(policy_html()), ok(CHANGED)]}), analyzer=analyzer)

    async def run():
        await monitor.recheck("example.com", "privacy")
        return await monitor.recheck("example.com", "privacy")

    result = asyncio.run(run())

    record = result.change_record
    assert record.change_type == "score_changed"
    assert record.score_delta == -8
    assert record.summary == "Score decreased by 8 points (70 → 62). 1 new high-severity finding(s) detected"
    assert record.previous_analysis == {"summary": "Fair", "key_findings": [], "score": 70}
    assert monitor.cache.get_latest_version("example.com", "privacy").score == 62
    assert "advertising partners" in analyzer.texts[-1]


def test_score_only_change_reuses_version():
    analyzer = ScriptedAnalyzer(AnalysisResult(score=80), AnalysisResult(score=75))
    monitor = _monitor(FakeTransport({URL: ok(policy_html())}), analyzer=analyzer)

    async def run():
        first = await monitor.recheck("example.com", "privacy")
        second = await monitor.recheck("example.com", "privacy")
        return first, second

    first, second = asyncio.run(run())

    assert second.has_changes
    assert second.new_version_id == first.new_version_id
    assert second.change_record.change_type == "score_changed"
    assert len(monitor.cache.list_versions("example.com", "privacy")) == 1


def test_score_only_change_diffs_against_analysis_snapshot():
    analyzer = ScriptedAnalyzer(AnalysisResult(score=80), AnalysisResult(score=75))
    monitor = _monitor(FakeTransport({URL: ok(policy_html())}), analyzer=analyzer)

    async def run():
        first = await monitor.recheck("example.com", "privacy")
        second = await monitor.recheck("example.com", "privacy")
        return first, second

    first, second = asyncio.run(run())
    record = second.change_record
    engine = DiffEngine(monitor.store)

    diff = engine.compare_change(record)

    assert record.previous_version_id == record.current_version_id
    assert record.score_delta == -5
    assert diff.score_delta == -5
    assert diff.old_version.score == 80
    assert diff.new_version.score == 75
    assert diff.changed_fields() == ["score"]
    assert diff.added == [] and diff.removed == []
    assert engine.compare(record.previous_version_id, record.current_version_id).score_delta == 0
    with pytest.raises(VersionNotFound):
        engine.compare_change(first.change_record)


def test_content_change_diff_uses_snapshot_for_old_side():
    analyzer = ScriptedAnalyzer(
        AnalysisResult(score=70, structured_findings={"summary": "Fair"}),
        AnalysisResult(score=60, structured_findings={"summary": "Shares data"}),
    )
    monitor = _monitor(FakeTransport({URL: [ok(policy_html()), ok(CHANGED)]}), analyzer=analyzer)

    async def run():
        await monitor.recheck("example.com", "privacy")
        return await monitor.recheck("example.com", "privacy")

    second = asyncio.run(run())

    diff = DiffEngine(monitor.store).compare_change(second.change_record)

    assert diff.old_version.id == second.change_record.previous_version_id
    assert diff.score_delta == -10
    assert "summary" in diff.changed_fields()
    assert any("advertising partners" in p for p in diff.added)


def test_analyzer_exceptions_become_analysis_errors():
    def analyzer(text):
        raise ValueError("analysis backend down")

    with pytest.raises(AnalysisError) as excinfo:
        asyncio.run(run_analyzer(analyzer, "text"))

    assert isinstance(excinfo.value.__cause__, ValueError)
    assert "analysis backend down" in str(excinfo.value)


def test_recheck_all_continues_after_analyzer_failure():
    calls = []

    def analyzer(text):
        calls.append(text)
        if len(calls) == 1:
            raise ValueError("analysis backend down")
        return AnalysisResult(score=50)

    pauses = FakeClock()
    monitor = _monitor(FakeTransport(default=ok(policy_html())), analyzer=analyzer, pauses=pauses)

    results = asyncio.run(monitor.recheck_all([("example.com", "privacy"), ("other.org", "privacy")]))

    assert [r.ok for r in results] == [False, True]
    assert "ValueError" in results[0].error
    assert results[1].has_changes
    assert monitor.cache.get_latest_version("example.com", "privacy") is None


def test_recheck_without_known_url_raises():
    monitor = _monitor(FakeTransport())

    with pytest.raises(PolicyVaultError):
        asyncio.run(monitor.recheck("example.com", "unknown-type"))


def test_recheck_all_isolates_failures_and_pauses_between_items():
    pauses = FakeClock()
    monitor = _monitor(FakeTransport({URL: ok(policy_html())}), pauses=pauses)
    pairs = [("example.com", "privacy"), ("example.com", "unknown-type"), ("missing.org", "privacy")]

    results = asyncio.run(monitor.recheck_all(pairs))

    assert [r.ok for r in results] == [True, False, False]
    assert "No URL known" in results[1].error
    assert results[2].domain == "missing.org"
    assert pauses.sleeps == [2.0, 2.0]


def test_acknowledge_dismisses_pending_changes():
    monitor = _monitor(FakeTransport({URL: ok(policy_html())}))
    asyncio.run(monitor.recheck("example.com", "privacy"))

    assert monitor.acknowledge("WWW.example.com", "privacy") == 1
    assert monitor.pending_changes() == []
    assert monitor.acknowledge("example.com", "privacy") == 0
