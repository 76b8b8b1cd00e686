"""
Tests for the migration runner
"""
import sqlite3
import pytest

from svitlo.migrate import (
    migrate,
    get_migration_files,
    get_current_version,
    get_connection,
    reset_and_migrate,
    show_status,
    main,
)


def table_names(db_path):
    conn = sqlite3.connect(db_path)
    try:
        return {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    finally:
        conn.close()


def test_migration_files_are_ordered():
    versions = [version for version, _ in get_migration_files()]
    assert versions == sorted(versions)
    assert versions[:2] == [1, 2]


def test_migrate_creates_schema(tmp_path):
    db_path = str(tmp_path / "data" / "svitlo.db")
    assert migrate(db_path)
    assert {"users", "settings", "power_history", "schema_version"} <= table_names(db_path)

    conn = get_connection(db_path)
    try:
        assert get_current_version(conn) == len(get_migration_files())
        columns = {row[1] for row in conn.execute("PRAGMA table_info(users)")}
    finally:
        conn.close()
    assert {"telegram_id", "region", "queue", "schedule_caption", "picture_only"} <= columns


def test_migrate_is_idempotent(tmp_path):
    db_path = str(tmp_path / "svitlo.db")
    assert migrate(db_path)
    assert migrate(db_path)

    conn = get_connection(db_path)
    try:
        assert conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0] == len(get_migration_files())
    finally:
        conn.close()


def test_reset_drops_data(tmp_path):
    db_path = str(tmp_path / "svitlo.db")
    assert migrate(db_path)
    conn = sqlite3.connect(db_path)
    conn.execute("INSERT INTO users (telegram_id, region, queue) VALUES ('1', 'kyiv', '1.1')")
    conn.commit()
    conn.close()

    assert reset_and_migrate(db_path)

    conn = sqlite3.connect(db_path)
    try:
        assert conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 0
    finally:
        conn.close()


def test_status_output(tmp_path, capsys):
    db_path = str(tmp_path / "svitlo.db")
    show_status(db_path)
    assert "does not exist" in capsys.readouterr().out

    migrate(db_path)
    show_status(db_path)
    out = capsys.readouterr().out
    assert "001_initial_schema.sql [✓ applied]" in out


def write_steps(directory, steps):
    directory.mkdir(exist_ok=True)
    for name, sql in steps.items():
        (directory / name).write_text(sql, encoding='utf-8')
    return directory


def test_step_below_latest_version_is_still_applied(tmp_path):
    steps = write_steps(tmp_path / "steps", {
        "001_a.sql": "CREATE TABLE a (id INTEGER);",
        "003_c.sql": "CREATE TABLE c (id INTEGER);",
    })
    db_path = str(tmp_path / "svitlo.db")
    assert migrate(db_path, steps)

    write_steps(steps, {"002_b.sql": "CREATE TABLE b (id INTEGER);"})
    assert migrate(db_path, steps)
    assert {"a", "b", "c"} <= table_names(db_path)


def test_files_without_version_are_skipped(tmp_path):
    steps = write_steps(tmp_path / "steps", {
        "001_a.sql": "CREATE TABLE a (id INTEGER);",
        "notes.sql": "CREATE TABLE notes (id INTEGER);",
    })
    assert [m.name for m in get_migration_files(steps)] == ["001_a.sql"]


def test_failed_step_stops_and_is_not_recorded(tmp_path):
    steps = write_steps(tmp_path / "steps", {
        "001_a.sql": "CREATE TABLE a (id INTEGER);",
        "002_broken.sql": "CREATE TABLE;",
        "003_c.sql": "CREATE TABLE c (id INTEGER);",
    })
    db_path = str(tmp_path / "svitlo.db")
    assert migrate(db_path, steps) is False

    conn = get_connection(db_path)
    try:
        assert get_current_version(conn) == 1
    finally:
        conn.close()
    assert "c" not in table_names(db_path)


def test_cli_reset_without_prompt(tmp_path):
    db_path = str(tmp_path / "svitlo.db")
    assert migrate(db_path)

    with pytest.raises(SystemExit) as exc_info:
        main(["--db-path", db_path, "--reset", "--yes"])
    assert exc_info.value.code == 0
    assert "users" in table_names(db_path)


def test_cli_reset_aborts_without_confirmation(tmp_path, monkeypatch, capsys):
    db_path = str(tmp_path / "svitlo.db")
    monkeypatch.setattr("builtins.input", lambda prompt: "no")
    main(["--db-path", db_path, "--reset"])
    assert "Aborted." in capsys.readouterr().out
    assert not (tmp_path / "svitlo.db").exists()
