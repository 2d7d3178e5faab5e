"""Tests for the relata command line."""

import json
import sqlite3

import pytest
import structlog

from relata import configure_logging
from relata.cli import main

MODELS = '''
from relata import ForeignKey, Mapped, Record, mapped_column


class CliAuthor(Record):
    __tablename__ = "{prefix}_authors"

    id: Mapped[int] = mapped_column("id", "primary key,auto_increment")
    name: Mapped[str] = mapped_column("name", "not null")


class CliBook(Record):
    __tablename__ = "{prefix}_books"

    id: Mapped[int] = mapped_column("id", "primary key,auto_increment")
    title: Mapped[str] = mapped_column("title")
    author_id: Mapped[int] = mapped_column(ForeignKey("{prefix}_authors.id"))
'''


@pytest.fixture
def models_module(tmp_path, monkeypatch):
    """Write an importable models module and return its name."""

    def make(name):
        (tmp_path / f"{name}.py").write_text(MODELS.format(prefix=name))
        monkeypatch.syspath_prepend(str(tmp_path))
        return name

    return make


class TestMigrate:
    """Tests for ``relata migrate``."""

    def test_writes_migration(self, tmp_path, models_module, capsys):
        module = models_module("cli_migrate")
        out_dir = tmp_path / "migrations"

        code = main(
            ["migrate", "init", "--url", "sqlite::memory:", "-m", module, "-d", str(out_dir)]
        )

        assert code == 0
        files = list(out_dir.glob("*_init.sql"))
        assert len(files) == 1
        script = files[0].read_text()
        assert 'CREATE TABLE IF NOT EXISTS "cli_migrate_authors"' in script
        assert "fk_cli_migrate_books_author" in script
        assert "Created migration:" in capsys.readouterr().out

    def test_config_file(self, tmp_path, models_module):
        """URL, models and directory come from relata.ini."""
        module = models_module("cli_config")
        ini = tmp_path / "relata.ini"
        ini.write_text(
            f"[relata]\nurl = postgresql://localhost/app\nmodels = {module}\n"
            "migrations_dir = out\nlog_level = WARNING\n"
        )

        assert main(["migrate", "first", "-c", str(ini)]) == 0
        script = next((tmp_path / "out").glob("*_first.sql")).read_text()
        assert '"id" SERIAL PRIMARY KEY' in script


class TestPush:
    """Tests for ``relata push``."""

    def test_push_and_repeat(self, tmp_path, models_module, capsys):
        module = models_module("cli_push")
        url = f"sqlite:///{tmp_path}/app.db"

        assert main(["push", "--url", url, "-m", module]) == 0
        assert "Applied" in capsys.readouterr().out

        with sqlite3.connect(tmp_path / "app.db") as conn:
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        assert {"cli_push_authors", "cli_push_books"} <= tables

        assert main(["push", "--url", url, "-m", module]) == 0
        assert "Schema is up to date." in capsys.readouterr().out


class TestErrors:
    """Tests for failing invocations."""

    def test_no_command(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_bad_models_module(self, capsys):
        code = main(["migrate", "x", "--url", "sqlite::memory:", "-m", "no_such_models_module"])
        assert code == 1
        out = capsys.readouterr().out
        assert "Error importing models" in out
        assert "No records found" in out

    def test_missing_url(self, models_module, monkeypatch, capsys):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        module = models_module("cli_nourl")
        assert main(["migrate", "x", "-m", module]) == 1
        assert "No database URL configured" in capsys.readouterr().out

    def test_missing_config_file(self, tmp_path, capsys):
        assert main(["push", "-c", str(tmp_path / "missing.ini")]) == 1
        assert "Config file not found" in capsys.readouterr().out


class TestConfigureLogging:
    """Tests for the logging setup used by the CLI."""

    def test_json_output(self, capsys):
        configure_logging("INFO", json=True)
        structlog.get_logger("relata.test").info("cli.event", table="users")
        line = capsys.readouterr().err.strip()
        entry = json.loads(line)
        assert entry["event"] == "cli.event"
        assert entry["level"] == "info"
        assert entry["table"] == "users"

    def test_level_filters(self, capsys):
        configure_logging("WARNING", json=True)
        logger = structlog.get_logger("relata.test")
        logger.info("hidden")
        logger.warning("shown")
        err = capsys.readouterr().err
        assert "hidden" not in err
        assert "shown" in err
