import json

import pytest
import typer
from typer.testing import CliRunner

from policyvault import cli
from policyvault.service import PolicyService
from policyvault.workflows.errors import ContentTooShort, Forbidden, ServerError, VersionNotFound
from policyvault.workflows.sqlite_store import SqliteVersionStore
from policyvault.workflows.version_cache import VersionCache
from policyvault.workflows.version_store import InMemoryVersionStore

from helpers import FakeTransport, make_cascade, ok, policy_html, status

runner = CliRunner()
URL = "https://example.com/privacy"


def _fake_service(monkeypatch, transport):
    monkeypatch.setattr(
        cli,
        "build_service",
        lambda **kwargs: PolicyService(InMemoryVersionStore(), make_cascade(transport)),
    )


def _last_json(output):
    return json.loads(output.strip().splitlines()[-1])


def test_no_args_prints_minimal_help():
    result = runner.invoke(cli.app, [])

    assert result.exit_code == 0
    assert "Usage:" in result.output
    assert "policyvault recheck-all" in result.output


def test_help_full_lists_exit_codes():
    result = runner.invoke(cli.app, ["--help-full"])

    assert result.exit_code == 0
    assert "Exit codes:" in result.output
    assert "POLICYVAULT_CACHE_TTL_DAYS" in result.output


def test_find_searches_index():
    result = runner.invoke(cli.app, ["--find", "recheck"])

    assert result.exit_code == 0
    assert "command recheck - Force a live re-acquisition." in result.output
    assert "env POLICYVAULT_RECHECK_DELAY - Batch recheck spacing." in result.output


def test_doctor_json(tmp_path, monkeypatch):
    monkeypatch.setenv("POLICYVAULT_DB_PATH", str(tmp_path / "vault.sqlite3"))

    result = runner.invoke(cli.app, ["doctor", "--json"])

    payload = _last_json(result.output)
    names = [check["name"] for check in payload["checks"]]
    assert "POLICYVAULT_DB_PATH" in names
    assert result.exit_code == (0 if payload["ok"] else 2)


def test_parse_pairs():
    assert cli.parse_pairs("example.com:privacy, other.org:Terms,") == [
        ("example.com", "privacy"),
        ("other.org", "terms"),
    ]
    with pytest.raises(typer.BadParameter):
        cli.parse_pairs("example.com")
    with pytest.raises(typer.BadParameter):
        cli.parse_pairs("example.com:eula")


@pytest.mark.parametrize(
    "exc, code",
    [
        (Forbidden("no"), 4),
        (ServerError("boom"), 5),
        (ContentTooShort("tiny"), 2),
        (VersionNotFound("gone"), 2),
        (RuntimeError("bug"), 3),
    ],
)
def test_exit_code_mapping(exc, code):
    assert cli._exit_code_for(exc) == code


def test_unknown_document_type_is_usage_error(tmp_path):
    result = runner.invoke(cli.app, ["history", "example.com", "eula", "--db", str(tmp_path / "v.db")])

    assert result.exit_code == 2


def test_history_and_compare_read_the_store(tmp_path):
    db = tmp_path / "vault.sqlite3"
    cache = VersionCache(SqliteVersionStore(db))
    first = cache.save_version("example.com", "privacy", URL, "Alpha clause.\n\nBeta clause.", score=70)
    second = cache.save_version("example.com", "privacy", URL, "Alpha clause.\n\nGamma clause.", score=66)

    history = runner.invoke(cli.app, ["history", "example.com", "privacy", "--db", str(db), "--json"])
    compare = runner.invoke(cli.app, ["compare", first, second, "--db", str(db)])

    assert history.exit_code == 0
    assert {v["id"] for v in _last_json(history.output)} == {first, second}
    assert compare.exit_code == 0
    assert "added=1 removed=1 unchanged=1" in compare.output
    assert "+ Gamma clause." in compare.output
    assert "score_delta=-4" in compare.output


def test_compare_unknown_version_reports_json_error(tmp_path):
    result = runner.invoke(cli.app, ["compare", "ver_a", "ver_b", "--db", str(tmp_path / "v.db"), "--json"])

    assert result.exit_code == 2
    payload = _last_json(result.output)
    assert payload["ok"] is False
    assert payload["error_type"] == "VersionNotFound"


def test_empty_changes_and_acknowledge(tmp_path):
    db = str(tmp_path / "v.db")

    changes = runner.invoke(cli.app, ["changes", "--db", db])
    ack = runner.invoke(cli.app, ["acknowledge", "example.com", "privacy", "--db", db])

    assert "no pending changes" in changes.output
    assert "dismissed 0 change record(s)" in ack.output


def test_get_prints_extraction_summary(monkeypatch):
    _fake_service(monkeypatch, FakeTransport({URL: ok(policy_html())}))

    result = runner.invoke(cli.app, ["get", URL, "--type", "privacy", "--json"])

    assert result.exit_code == 0
    payload = _last_json(result.output)
    assert payload["extraction"]["title"] == "Privacy Policy"
    assert payload["acquisition"]["strategy"] == "direct"
    assert "# Privacy Policy" in payload["text"]


def test_blocked_fetch_exits_with_guidance(monkeypatch):
    _fake_service(monkeypatch, FakeTransport(default=status(403)))

    result = runner.invoke(cli.app, ["fetch", "example.com", "privacy", URL, "--json"])

    assert result.exit_code == 4
    payload = _last_json(result.output)
    assert payload["error_type"] == "AllStrategiesExhausted"
    assert "paste the policy text manually" in payload["guidance"]


def test_recheck_all_reports_failures(monkeypatch):
    _fake_service(monkeypatch, FakeTransport({URL: ok(policy_html())}))

    result = runner.invoke(
        cli.app,
        ["recheck-all", "--domains", "example.com:privacy,missing.org:privacy", "--delay", "0"],
    )

    assert result.exit_code == 5
    assert "example.com/privacy: New policy tracked" in result.output
    assert "missing.org/privacy: error:" in result.output
