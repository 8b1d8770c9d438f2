from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import typer
from dotenv import load_dotenv

from .service import PolicyService, build_service
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.errors import ExtractionError, FetchError, VersionNotFound
from .workflows.policy_config import DEFAULT_HISTORY_LIMIT, DOCUMENT_TYPES

app = typer.Typer(add_help_option=False, no_args_is_help=False)

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_FATAL = 3
EXIT_BLOCKED = 4
EXIT_TRANSIENT = 5


def _minimal_help() -> str:
    return """policyvault (policy document acquisition CLI)

Usage:
  policyvault get <url> [--type <TYPE>] [--json]
  policyvault fetch <domain> <type> <url> [--force] [--json]
  policyvault check <domain> <type> [--json]
  policyvault history <domain> <type> [--limit N] [--json]
  policyvault compare <id1> <id2> [--json]
  policyvault recheck <domain> <type> [--json]
  policyvault recheck-all --domains <domain:type,...> [--delay S] [--json]
  policyvault changes [--domain <domain>] [--json]
  policyvault acknowledge <domain> <type>
  policyvault doctor

Common options:
  --db <PATH>     SQLite store path (default: POLICYVAULT_DB_PATH or run/policyvault.sqlite3).
  --json          Print machine-readable JSON to stdout.
  -v, --verbose   Log cascade decisions to stderr.

Discoverability:
  --help-full     Expanded help + env vars + exit codes.
  --find <query>  Search commands, flags, env vars.
  --doctor        Run environment diagnostics and exit.
"""


def _help_full() -> str:
    return """policyvault CLI

Commands:
  get            Acquire and extract one URL (nothing is stored).
  fetch          Cached pipeline: check cache, acquire, extract, save a version.
  check          Report cache freshness for a domain/type (revalidates stale entries).
  history        List stored versions, newest first.
  compare        Paragraph and field diff between two stored versions.
  recheck        Force a live re-acquisition and record any change.
  recheck-all    Sequential recheck for several domain:type pairs.
  changes        List pending (unacknowledged) change records.
  acknowledge    Dismiss pending change records for a domain/type.
  doctor         Print environment and dependency diagnostics.

Document types:
  privacy, terms, cookies, security

Important env vars:
  POLICYVAULT_DB_PATH
  POLICYVAULT_CACHE_TTL_DAYS
  POLICYVAULT_MIN_INTERVAL_MS
  POLICYVAULT_MAX_JITTER_MS
  POLICYVAULT_MAX_RETRIES
  POLICYVAULT_TIMEOUT
  POLICYVAULT_ARCHIVE_TIMEOUT
  POLICYVAULT_ENABLE_CACHE_MIRROR
  POLICYVAULT_ENABLE_WAYBACK
  POLICYVAULT_RECHECK_DELAY

Exit codes:
  0  ok
  2  usage / validation / doctor failure
  3  fatal
  4  blocked or forbidden (try later or paste the text manually)
  5  transient failure (retry)
"""


_FIND_INDEX = [
    ("command", "get", "Acquire and extract one URL."),
    ("command", "fetch", "Cached pipeline with version save."),
    ("command", "check", "Report cache freshness."),
    ("command", "history", "List stored versions."),
    ("command", "compare", "Diff two stored versions."),
    ("command", "recheck", "Force a live re-acquisition."),
    ("command", "recheck-all", "Sequential recheck for several pairs."),
    ("command", "changes", "List pending change records."),
    ("command", "acknowledge", "Dismiss pending change records."),
    ("command", "doctor", "Print environment and dependency diagnostics."),
    ("flag", "--db", "SQLite store path."),
    ("flag", "--json", "Print JSON to stdout only."),
    ("flag", "--force", "Skip the cache check in fetch."),
    ("flag", "--limit", "Max versions listed by history."),
    ("flag", "--domains", "Comma separated domain:type pairs for recheck-all."),
    ("flag", "--delay", "Seconds between rechecks."),
    ("flag", "--verbose", "Log cascade decisions to stderr."),
    ("flag", "--help-full", "Expanded help, env vars, exit codes."),
    ("flag", "--find", "Search commands, flags, env vars."),
    ("flag", "--doctor", "Run environment diagnostics and exit."),
    ("env", "POLICYVAULT_DB_PATH", "SQLite store path."),
    ("env", "POLICYVAULT_CACHE_TTL_DAYS", "Freshness TTL in days."),
    ("env", "POLICYVAULT_MIN_INTERVAL_MS", "Per-domain request spacing."),
    ("env", "POLICYVAULT_MAX_JITTER_MS", "Random spacing jitter."),
    ("env", "POLICYVAULT_MAX_RETRIES", "Retries per user agent."),
    ("env", "POLICYVAULT_TIMEOUT", "Primary request timeout."),
    ("env", "POLICYVAULT_ARCHIVE_TIMEOUT", "Archival request timeout."),
    ("env", "POLICYVAULT_ENABLE_CACHE_MIRROR", "Toggle the cache mirror source."),
    ("env", "POLICYVAULT_ENABLE_WAYBACK", "Toggle archival snapshots."),
    ("env", "POLICYVAULT_RECHECK_DELAY", "Batch recheck spacing."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _validate_type(document_type: str) -> str:
    lowered = (document_type or "").strip().lower()
    if lowered not in DOCUMENT_TYPES:
        raise typer.BadParameter(f"Unknown document type {document_type!r}; expected one of {', '.join(DOCUMENT_TYPES)}")
    return lowered


def parse_pairs(value: str) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for token in (value or "").split(","):
        token = token.strip()
        if not token:
            continue
        domain, sep, document_type = token.partition(":")
        if not sep or not domain.strip():
            raise typer.BadParameter(f"Expected domain:type, got {token!r}")
        pairs.append((domain.strip(), _validate_type(document_type)))
    return pairs


def _exit_code_for(exc: BaseException) -> int:
    if isinstance(exc, FetchError):
        return EXIT_BLOCKED if exc.kind == "blocked" else EXIT_TRANSIENT
    if isinstance(exc, (ExtractionError, VersionNotFound)):
        return EXIT_USAGE
    return EXIT_FATAL


def _fail(exc: BaseException, json_out: bool) -> None:
    code = _exit_code_for(exc)
    if json_out:
        payload = {"ok": False, "error": str(exc), "error_type": type(exc).__name__}
        if isinstance(exc, FetchError):
            payload["guidance"] = exc.user_guidance
        sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
    else:
        label = "fatal" if code == EXIT_FATAL else "error"
        typer.echo(f"{label}: {exc}", err=True)
        if isinstance(exc, FetchError):
            typer.echo(f"hint: {exc.user_guidance}", err=True)
    raise typer.Exit(code=code)


def _run_with_service(
    db: Optional[Path],
    action: Callable[[PolicyService], Awaitable[Any]],
    json_out: bool,
    *,
    in_memory: bool = False,
) -> Any:
    async def runner() -> Any:
        async with build_service(db_path=db, in_memory=in_memory) as service:
            return await action(service)

    try:
        return asyncio.run(runner())
    except Exception as exc:
        _fail(exc, json_out)


def _emit(payload: Any, json_out: bool, text: str) -> None:
    if json_out:
        sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
    else:
        typer.echo(text)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, env vars."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log cascade decisions to stderr."),
) -> None:
    load_dotenv(override=False)
    _configure_logging(verbose)
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd(json_out: bool = typer.Option(False, "--json", help="Print the report as JSON.")) -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report()
    if json_out:
        sys.stdout.write(json.dumps(report, ensure_ascii=False) + "\n")
    else:
        typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("get", add_help_option=True)
def get_url(
    url: str = typer.Argument(..., help="URL to acquire."),
    document_type: Optional[str] = typer.Option(None, "--type", help="Document type used for titles."),
    json_out: bool = typer.Option(False, "--json", help="Print summary JSON to stdout only."),
    show_text: bool = typer.Option(False, "--text", help="Print the extracted markdown."),
) -> None:
    """Acquire and extract one URL without touching the store."""
    doc_type = _validate_type(document_type) if document_type else None

    async def action(service: PolicyService):
        return await service.extract_url(url, doc_type)

    acquired, extracted = _run_with_service(None, action, json_out, in_memory=True)
    summary = {
        "ok": True,
        "url": url,
        "acquisition": acquired.to_dict(),
        "extraction": extracted.to_dict(),
    }
    if show_text or json_out:
        summary["text"] = extracted.normalized_text
    text = extracted.normalized_text if show_text else (
        f"{extracted.title}: {extracted.length} chars via {acquired.strategy} ({acquired.final_url})"
    )
    _emit(summary, json_out, text)


@app.command("fetch", add_help_option=True)
def fetch_document(
    domain: str = typer.Argument(..., help="Domain the policy belongs to."),
    document_type: str = typer.Argument(..., help="privacy, terms, cookies or security."),
    url: str = typer.Argument(..., help="Resolved policy URL."),
    force: bool = typer.Option(False, "--force", help="Skip the cache check."),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite store path."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout only."),
) -> None:
    """Run the cached pipeline and save a version."""
    doc_type = _validate_type(document_type)

    async def action(service: PolicyService):
        return await service.get_document(domain, doc_type, url, force=force)

    result = _run_with_service(db, action, json_out)
    origin = "cache" if result.from_cache else "live"
    _emit(
        {"ok": True, **result.to_dict()},
        json_out,
        f"{result.version.domain}/{result.version.document_type}: {result.version.id} ({origin}, {result.version.word_count} words)",
    )


@app.command("check", add_help_option=True)
def check_cache(
    domain: str = typer.Argument(...),
    document_type: str = typer.Argument(...),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite store path."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout only."),
) -> None:
    """Report cache freshness for a domain/type."""
    doc_type = _validate_type(document_type)

    async def action(service: PolicyService):
        return await service.check_cache(domain, doc_type)

    check = _run_with_service(db, action, json_out)
    version_id = check.version.id if check.version else "-"
    _emit(
        check.to_dict(),
        json_out,
        f"cached={check.is_cached} up_to_date={check.is_up_to_date} reason={check.reason} version={version_id}",
    )


@app.command("history", add_help_option=True)
def history(
    domain: str = typer.Argument(...),
    document_type: str = typer.Argument(...),
    limit: int = typer.Option(DEFAULT_HISTORY_LIMIT, "--limit", min=1, help="Max versions listed."),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite store path."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout only."),
) -> None:
    """List stored versions, newest first."""
    doc_type = _validate_type(document_type)

    async def action(service: PolicyService):
        return service.list_versions(domain, doc_type, limit)

    versions = _run_with_service(db, action, json_out)
    lines = [
        f"{v.id}  {v.analyzed_at.isoformat()}  score={v.score}  words={v.word_count}  {v.content_hash[:12]}"
        for v in versions
    ]
    _emit([v.to_dict() for v in versions], json_out, "\n".join(lines) or "no versions stored")


@app.command("compare", add_help_option=True)
def compare(
    version_a: str = typer.Argument(..., help="First version id."),
    version_b: str = typer.Argument(..., help="Second version id."),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite store path."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout only."),
) -> None:
    """Paragraph and field diff between two stored versions."""

    async def action(service: PolicyService):
        return service.compare_versions(version_a, version_b)

    diff = _run_with_service(db, action, json_out)
    lines = [
        f"{diff.old_version.id} -> {diff.new_version.id}",
        f"added={len(diff.added)} removed={len(diff.removed)} unchanged={diff.unchanged}",
        f"score_delta={diff.score_delta} word_count_delta={diff.word_count_delta}",
    ]
    changed = diff.changed_fields()
    if changed:
        lines.append(f"changed fields: {', '.join(changed)}")
    lines.extend(f"+ {p}" for p in diff.added)
    lines.extend(f"- {p}" for p in diff.removed)
    _emit(diff.to_dict(), json_out, "\n".join(lines))


@app.command("recheck", add_help_option=True)
def recheck(
    domain: str = typer.Argument(...),
    document_type: str = typer.Argument(...),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite store path."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout only."),
) -> None:
    """Force a live re-acquisition and record any change."""
    doc_type = _validate_type(document_type)

    async def action(service: PolicyService):
        return await service.recheck(domain, doc_type)

    result = _run_with_service(db, action, json_out)
    text = f"{result.domain}/{result.document_type}: "
    text += result.change_record.summary if result.change_record else "no changes"
    _emit(result.to_dict(), json_out, text)


@app.command("recheck-all", add_help_option=True)
def recheck_all(
    domains: str = typer.Option(..., "--domains", help="Comma separated domain:type pairs."),
    delay: Optional[float] = typer.Option(None, "--delay", min=0.0, help="Seconds between rechecks."),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite store path."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout only."),
) -> None:
    """Sequential recheck for several domain:type pairs."""
    pairs = parse_pairs(domains)
    if not pairs:
        raise typer.BadParameter("No domain:type pairs given", param_hint="--domains")

    async def action(service: PolicyService):
        return await service.recheck_all(pairs, delay=delay)

    results = _run_with_service(db, action, json_out)
    lines = []
    for result in results:
        if result.error:
            status = f"error: {result.error}"
        elif result.change_record:
            status = result.change_record.summary
        else:
            status = "no changes"
        lines.append(f"{result.domain}/{result.document_type}: {status}")
    _emit([r.to_dict() for r in results], json_out, "\n".join(lines))
    if any(r.error for r in results):
        raise typer.Exit(code=EXIT_TRANSIENT)


@app.command("changes", add_help_option=True)
def changes(
    domain: Optional[str] = typer.Option(None, "--domain", help="Only this domain."),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite store path."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout only."),
) -> None:
    """List pending change records."""

    async def action(service: PolicyService):
        return service.pending_changes(domain)

    records = _run_with_service(db, action, json_out)
    lines = [
        f"{r.detected_at.isoformat()}  {r.domain}/{r.document_type}  [{r.change_type}]  {r.summary}"
        for r in records
    ]
    _emit([r.to_dict() for r in records], json_out, "\n".join(lines) or "no pending changes")


@app.command("acknowledge", add_help_option=True)
def acknowledge(
    domain: str = typer.Argument(...),
    document_type: str = typer.Argument(...),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite store path."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON to stdout only."),
) -> None:
    """Dismiss pending change records for a domain/type."""
    doc_type = _validate_type(document_type)

    async def action(service: PolicyService):
        return service.acknowledge(domain, doc_type)

    count = _run_with_service(db, action, json_out)
    _emit({"ok": True, "dismissed": count}, json_out, f"dismissed {count} change record(s)")


__all__ = ["app", "parse_pairs"]
