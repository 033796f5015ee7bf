import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from recallmem import __version__
from recallmem.cli import app

runner = CliRunner()


def _remember(db_path: Path, title: str, content: str, *extra: str):
    return runner.invoke(
        app,
        [
            "remember",
            "--title",
            title,
            "--content",
            content,
            "--project",
            "demo",
            "--db-path",
            str(db_path),
            *extra,
        ],
    )


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in (
        "init-db",
        "remember",
        "search",
        "context",
        "recent",
        "stats",
        "embed",
        "stale",
        "consolidate",
        "purge",
        "export",
        "import",
    ):
        assert command in result.stdout


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_init_db_creates_file(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "mem.sqlite"
    result = runner.invoke(app, ["init-db", "--db-path", str(db_path)])
    assert result.exit_code == 0
    assert "Initialized database" in result.stdout
    assert db_path.exists()


def test_remember_then_search(tmp_path: Path) -> None:
    db_path = tmp_path / "mem.sqlite"
    first = _remember(db_path, "Cache layer", "Redis fronts sessions")
    assert first.exit_code == 0
    assert "Stored observation 1" in first.stdout

    again = _remember(db_path, "Cache layer", "Redis fronts sessions")
    assert again.exit_code == 0
    assert "Duplicate observation skipped" in again.stdout

    result = runner.invoke(
        app, ["search", "redis", "--project", "demo", "--db-path", str(db_path)]
    )
    assert result.exit_code == 0
    assert "[1] (discovery) Cache layer" in result.stdout
    assert "source=keyword" in result.stdout

    as_json = runner.invoke(
        app, ["search", "redis", "--project", "demo", "--json", "--db-path", str(db_path)]
    )
    payload = json.loads(as_json.stdout)
    assert [(item["id"], item["source"]) for item in payload] == [(1, "keyword")]

    missing = runner.invoke(
        app, ["search", "redis", "--project", "other", "--db-path", str(db_path)]
    )
    assert "No matching observations" in missing.stdout


def test_remember_knowledge_with_metadata(tmp_path: Path) -> None:
    db_path = tmp_path / "mem.sqlite"
    result = _remember(
        db_path,
        "Keep SQLite",
        "One file ships everywhere",
        "--type",
        "decision",
        "--metadata",
        '{"alternatives": ["Postgres"]}',
    )
    assert result.exit_code == 0
    context = runner.invoke(app, ["context", "--project", "demo", "--db-path", str(db_path)])
    assert context.exit_code == 0
    assert "Context for demo" in context.stdout
    assert "* [1] (decision) Keep SQLite" in context.stdout


def test_remember_rejects_bad_input(tmp_path: Path) -> None:
    db_path = tmp_path / "mem.sqlite"
    bad_json = _remember(db_path, "Title", "Body", "--type", "decision", "--metadata", "{oops")
    assert bad_json.exit_code == 1
    assert "Invalid --metadata JSON" in bad_json.stdout

    bad_severity = _remember(
        db_path, "Title", "Body", "--type", "constraint", "--metadata", '{"severity": "meh"}'
    )
    assert bad_severity.exit_code == 1
    assert "severity" in bad_severity.stdout


def test_project_defaults_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECALLMEM_PROJECT", "from-env")
    db_path = tmp_path / "mem.sqlite"
    result = runner.invoke(
        app,
        ["remember", "--title", "Env project", "--content", "x", "--db-path", str(db_path)],
    )
    assert result.exit_code == 0
    found = runner.invoke(
        app, ["recent", "--project", "from-env", "--db-path", str(db_path)]
    )
    assert "Env project" in found.stdout


def test_recent_pages_and_rejects_bad_cursor(tmp_path: Path) -> None:
    db_path = tmp_path / "mem.sqlite"
    _remember(db_path, "First note", "a")
    _remember(db_path, "Second note", "b")
    first = runner.invoke(
        app, ["recent", "--project", "demo", "--limit", "1", "--db-path", str(db_path)]
    )
    assert first.exit_code == 0
    assert "Second note" in first.stdout
    cursor = first.stdout.split("--cursor ")[1].split()[0]

    second = runner.invoke(
        app,
        ["recent", "--project", "demo", "--limit", "1", "--cursor", cursor, "--db-path", str(db_path)],
    )
    assert "First note" in second.stdout

    bad = runner.invoke(
        app, ["recent", "--project", "demo", "--cursor", "???", "--db-path", str(db_path)]
    )
    assert bad.exit_code == 1
    assert "invalid cursor" in bad.stdout


def test_export_then_import(tmp_path: Path) -> None:
    source_db = tmp_path / "source.sqlite"
    _remember(source_db, "Exported one", "a")
    _remember(source_db, "Exported two", "b")
    out = tmp_path / "export.jsonl"
    exported = runner.invoke(
        app, ["export", str(out), "--project", "demo", "--db-path", str(source_db)]
    )
    assert exported.exit_code == 0
    assert "Exported 2 records" in exported.stdout
    assert len(out.read_text().splitlines()) == 3

    target_db = tmp_path / "target.sqlite"
    dry = runner.invoke(app, ["import", str(out), "--dry-run", "--db-path", str(target_db)])
    assert "Would import 2 of 2 records" in dry.stdout
    imported = runner.invoke(app, ["import", str(out), "--db-path", str(target_db)])
    assert imported.exit_code == 0
    assert "Imported 2 of 2 records (0 skipped, 0 errors)" in imported.stdout

    missing = runner.invoke(app, ["import", str(tmp_path / "nope.jsonl")])
    assert missing.exit_code == 1


def test_export_rejects_bad_date(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["export", "-", "--since", "yesterday", "--db-path", str(tmp_path / "mem.sqlite")],
    )
    assert result.exit_code == 1
    assert "Invalid --since date" in result.stdout


def test_maintenance_commands(tmp_path: Path) -> None:
    db_path = str(tmp_path / "mem.sqlite")
    _remember(Path(db_path), "Something", "body")

    stats = runner.invoke(app, ["stats", "--project", "demo", "--db-path", db_path])
    assert stats.exit_code == 0
    assert "Observations: 1" in stats.stdout
    assert "Embeddings" in stats.stdout

    embed = runner.invoke(app, ["embed", "--project", "demo", "--db-path", db_path])
    assert "Embeddings are disabled" in embed.stdout

    stale = runner.invoke(
        app, ["stale", "--project", "demo", "--root", str(tmp_path), "--db-path", db_path]
    )
    assert "No stale observations" in stale.stdout

    consolidate = runner.invoke(
        app, ["consolidate", "--project", "demo", "--dry-run", "--db-path", db_path]
    )
    assert "Would merge 0 groups" in consolidate.stdout

    purge = runner.invoke(
        app, ["purge", "--older-than-days", "30", "--project", "demo", "--db-path", db_path]
    )
    assert purge.exit_code == 0
    assert "Deleted 0 observations older than 30 days" in purge.stdout

    bad_purge = runner.invoke(app, ["purge", "--older-than-days", "0", "--db-path", db_path])
    assert bad_purge.exit_code == 1
