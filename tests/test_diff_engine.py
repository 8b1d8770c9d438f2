from datetime import datetime, timedelta, timezone

from policyvault.workflows.diff_engine import DiffEngine, diff_versions, paragraph_diff, split_paragraphs
from policyvault.workflows.hashing import content_hash, word_count
from policyvault.workflows.models import PolicyVersion
from policyvault.workflows.version_store import InMemoryVersionStore

from helpers import POLICY_PARAGRAPHS, POLICY_TEXT

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _version(version_id, text, *, at=T0, score=None, analysis=None):
    return PolicyVersion(
        id=version_id,
        domain="example.com",
        document_type="privacy",
        source_url="https://example.com/privacy",
        content_hash=content_hash(text),
        normalized_text=text,
        structured_analysis=analysis or {},
        score=score,
        word_count=word_count(text),
        analyzed_at=at,
    )


def test_split_paragraphs_ignores_blank_runs():
    assert split_paragraphs("a\n\n\n  \nb\n\nc\n") == ["a", "b", "c"]
    assert split_paragraphs("") == []


def test_appended_paragraph_is_the_only_addition():
    new_text = POLICY_TEXT + "\n\nWe now share data with advertisers."

    added, removed, unchanged = paragraph_diff(POLICY_TEXT, new_text)

    assert added == ["We now share data with advertisers."]
    assert removed == []
    assert unchanged == len(POLICY_PARAGRAPHS)


def test_reordering_and_case_are_not_changes():
    reordered = "\n\n".join(reversed([p.upper() for p in POLICY_PARAGRAPHS]))

    added, removed, unchanged = paragraph_diff(POLICY_TEXT, reordered)

    assert (added, removed) == ([], [])
    assert unchanged == len(POLICY_PARAGRAPHS)


def test_diff_orders_versions_by_time():
    old = _version("ver_old", POLICY_TEXT, score=70)
    new = _version("ver_new", POLICY_TEXT + "\n\nExtra clause here.", at=T0 + timedelta(days=1), score=62)

    forward = diff_versions(old, new)
    backward = diff_versions(new, old)

    for diff in (forward, backward):
        assert diff.old_version.id == "ver_old"
        assert diff.added == ["Extra clause here."]
        assert diff.score_delta == -8
        assert diff.word_count_delta == 3
        assert diff.has_changes


def test_field_changes_fall_back_to_version_score():
    old = _version("a", POLICY_TEXT, score=70, analysis={"summary": "Fine", "user_rights": ["access"]})
    new = _version(
        "b",
        POLICY_TEXT,
        at=T0 + timedelta(hours=1),
        score=70,
        analysis={"summary": "Fine", "user_rights": ["access", "deletion"]},
    )

    diff = diff_versions(old, new)

    assert diff.changed_fields() == ["user_rights"]
    score_change = next(fc for fc in diff.field_changes if fc.key == "score")
    assert (score_change.old, score_change.new, score_change.changed) == (70, 70, False)
    assert diff.has_changes
    assert diff.to_dict()["has_changes"] is True


def test_missing_score_gives_no_delta():
    diff = diff_versions(_version("a", "x", score=None), _version("b", "x", at=T0 + timedelta(1), score=50))

    assert diff.score_delta is None
    assert not diff.added and not diff.removed


def test_engine_loads_versions_from_store():
    store = InMemoryVersionStore()
    store.upsert_version(_version("ver_1", POLICY_TEXT))
    store.upsert_version(_version("ver_2", POLICY_TEXT.replace("secure", "safe"), at=T0 + timedelta(days=3)))

    diff = DiffEngine(store).compare("ver_2", "ver_1")

    assert diff.new_version.id == "ver_2"
    assert len(diff.added) == 1 and len(diff.removed) == 1
    assert "safe" in diff.added[0]
