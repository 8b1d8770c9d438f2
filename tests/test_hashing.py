from datetime import datetime, timezone

from policyvault.workflows.hashing import content_hash, normalize_for_hash, stable_json_dumps, word_count


def test_hash_ignores_case_and_whitespace():
    base = content_hash("We collect your email address.")

    assert content_hash("  we   COLLECT your\n\nemail address. ") == base
    assert content_hash("We collect your\temail address.") == base


def test_single_word_change_changes_hash():
    assert content_hash("We collect your email address.") != content_hash("We collect your postal address.")


def test_normalization_is_idempotent():
    once = normalize_for_hash(" Privacy\n\nPolicy  ")

    assert once == "privacy policy"
    assert normalize_for_hash(once) == once


def test_word_count_and_stable_dumps():
    assert word_count("one two\nthree") == 3
    assert word_count("") == 0
    assert stable_json_dumps({"b": 1, "a": [2]}) == '{"a":[2],"b":1}'
    when = datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert stable_json_dumps({"at": when}) == '{"at":"2025-01-01T00:00:00+00:00"}'
