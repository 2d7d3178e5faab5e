"""Tests for table building, schema diffing and migration scripts."""

from __future__ import annotations

from datetime import datetime

import pytest
from structlog.testing import capture_logs

from relata import Mapped, QueryResult, Record, get_dialect, mapped_column
from relata.migrations import (
    SchemaManager,
    build_migration,
    build_table,
    render_migration,
    sort_tables,
    types_match,
    write_migration,
)
from relata.migrations.builder import slugify
from relata.schema import ForeignKeyDef, TableDef


class SchemaUser(Record):
    __tablename__ = "schema_users"

    id: Mapped[int] = mapped_column("id", "primary key,auto_increment")
    name: Mapped[str] = mapped_column("name", "not null")
    email: Mapped[str] = mapped_column("email", "unique,index")


class SchemaPost(Record):
    __tablename__ = "schema_posts"

    id: Mapped[int] = mapped_column("id", "primary key,auto_increment")
    title: Mapped[str] = mapped_column("title", "not null,length:200")
    schema_user_id: Mapped[int] = mapped_column("schema_user_id", "not null")


class SchemaAccount(Record):
    __tablename__ = "schema_accounts"

    id: Mapped[int] = mapped_column("id", "primary key,auto_increment")
    name: Mapped[str] = mapped_column("name")
    plan: Mapped[str | None] = mapped_column("plan", "default:'free'")


NOW = datetime(2024, 1, 2, 3, 4, 5)


class TestBuildTable:
    """Tests for deriving table descriptions from records."""

    def test_columns(self):
        table = build_table(SchemaUser, get_dialect("postgres"))
        assert [c.to_sql() for c in table.columns] == [
            '"id" SERIAL PRIMARY KEY',
            '"name" VARCHAR(255) NOT NULL',
            '"email" VARCHAR(255) UNIQUE',
        ]

    def test_indexes(self):
        """Index clauses and *_id columns get an index."""
        users = build_table(SchemaUser, get_dialect("postgres"))
        posts = build_table(SchemaPost, get_dialect("postgres"))
        assert [(i.name, i.columns, i.unique) for i in users.indexes] == [
            ("idx_schema_users_email", ["email"], True)
        ]
        assert [i.name for i in posts.indexes] == ["idx_schema_posts_schema_user_id"]

    def test_conventional_foreign_key(self):
        """<name>_id references <name>s when that table is known."""
        table = build_table(SchemaPost, get_dialect("postgres"), {"schema_users", "schema_posts"})
        assert table.foreign_keys == [
            ForeignKeyDef(
                "fk_schema_posts_schema_user",
                "schema_user_id",
                "schema_users",
                "id",
                "ON DELETE CASCADE",
            )
        ]

    def test_unknown_table_no_foreign_key(self):
        table = build_table(SchemaPost, get_dialect("postgres"), {"schema_posts"})
        assert table.foreign_keys == []

    def test_sort_tables(self):
        """Referenced tables come first; cycles do not loop."""
        a = TableDef("a", foreign_keys=[ForeignKeyDef("fk_a_b", "b_id", "b")])
        b = TableDef("b", foreign_keys=[ForeignKeyDef("fk_b_c", "c_id", "c")])
        c = TableDef("c")
        assert [t.name for t in sort_tables([a, b, c])] == ["c", "b", "a"]

        x = TableDef("x", foreign_keys=[ForeignKeyDef("fk_x_y", "y_id", "y")])
        y = TableDef("y", foreign_keys=[ForeignKeyDef("fk_y_x", "x_id", "x")])
        assert sorted(t.name for t in sort_tables([x, y])) == ["x", "y"]


class TestMigration:
    """Tests for migration building and rendering."""

    def test_build(self):
        migration = build_migration("Create schema!", [SchemaPost, SchemaUser], get_dialect("sqlite"), NOW)
        assert migration.name == "20240102030405_create_schema.sql"
        assert migration.timestamp == "2024-01-02 03:04:05"
        assert [t.name for t in migration.tables] == ["schema_users", "schema_posts"]
        assert migration.drop_order == ["schema_posts", "schema_users"]
        assert [(o.table, o.name) for o in migration.index_order] == [
            ("schema_users", "idx_schema_users_email"),
            ("schema_posts", "idx_schema_posts_schema_user_id"),
        ]

    def test_render(self):
        dialect = get_dialect("sqlite")
        migration = build_migration("init", [SchemaUser, SchemaPost], dialect, NOW)
        script = render_migration(migration, dialect)
        lines = script.splitlines()

        assert lines[0] == "-- Migration: 20240102030405_init.sql"
        assert lines[1] == "-- Created at: 2024-01-02 03:04:05"
        assert 'CREATE TABLE IF NOT EXISTS "schema_users" (' in lines
        assert (
            '  CONSTRAINT fk_schema_posts_schema_user FOREIGN KEY ("schema_user_id") '
            'REFERENCES "schema_users" ("id") ON DELETE CASCADE'
        ) in lines
        assert (
            'CREATE UNIQUE INDEX IF NOT EXISTS "idx_schema_users_email" '
            'ON "schema_users" ("email");'
        ) in lines
        rollback = lines[lines.index("/*") + 1 : lines.index("*/")]
        assert rollback == [
            'DROP TABLE IF EXISTS "schema_posts";',
            'DROP TABLE IF EXISTS "schema_users";',
            "",
            'DROP INDEX IF EXISTS "idx_schema_users_email";',
            'DROP INDEX IF EXISTS "idx_schema_posts_schema_user_id";',
        ]

    def test_write(self, tmp_path):
        path = write_migration("init", [SchemaUser], get_dialect("postgres"), tmp_path / "m", now=NOW)
        assert path == tmp_path / "m" / "20240102030405_init.sql"
        assert path.read_text().startswith("-- Migration: 20240102030405_init.sql\n")

    @pytest.mark.parametrize(
        ("text", "slug"),
        [("Add users", "add_users"), ("  x--y  ", "x_y"), ("!!!", "migration"), ("a" * 50, "a" * 40)],
    )
    def test_slugify(self, text, slug):
        assert slugify(text) == slug


class TestTypesMatch:
    """Tests for declared vs live column type comparison."""

    @pytest.mark.parametrize(
        ("declared", "live", "match"),
        [
            ("INTEGER", "integer", True),
            ("SERIAL", "integer", True),
            ("VARCHAR(255)", "character varying", True),
            ("BOOLEAN", "tinyint(1)", True),
            ("TIMESTAMP", "datetime", True),
            ("INTEGER", "text", False),
            ("JSONB", "json", True),
        ],
    )
    def test_types_match(self, declared, live, match):
        assert types_match(declared, live) is match


class TestSchemaManager:
    """Tests for planning and pushing schema changes."""

    async def test_push_creates_tables(self, sqlite_pool):
        manager = SchemaManager(sqlite_pool, [SchemaPost, SchemaUser])
        statements = await manager.push()
        assert statements[0].startswith('CREATE TABLE IF NOT EXISTS "schema_users"')
        assert any("idx_schema_posts_schema_user_id" in s for s in statements)

        dialect = sqlite_pool.dialect
        assert await dialect.table_exists(sqlite_pool, "schema_users")
        assert await dialect.table_exists(sqlite_pool, "schema_posts")
        fks = await dialect.get_foreign_keys(sqlite_pool, "schema_posts")
        assert list(fks) == ["fk_schema_posts_schema_user"]

    async def test_push_is_idempotent(self, sqlite_pool):
        manager = SchemaManager(sqlite_pool, [SchemaUser, SchemaPost])
        await manager.push()
        assert await manager.push() == []

    async def test_adds_missing_column(self, sqlite_pool):
        await sqlite_pool.execute(
            "CREATE TABLE schema_accounts (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT)"
        )
        statements = await SchemaManager(sqlite_pool, [SchemaAccount]).push()
        assert statements == [
            'ALTER TABLE "schema_accounts" ADD COLUMN "plan" TEXT DEFAULT \'free\''
        ]
        columns = await sqlite_pool.dialect.get_columns(sqlite_pool, "schema_accounts")
        assert list(columns) == ["id", "name", "plan"]

    async def test_sqlite_skips_foreign_key_on_existing_table(self, sqlite_pool):
        """Constraints SQLite cannot add are skipped with a warning."""
        await sqlite_pool.execute("CREATE TABLE schema_users (id INTEGER PRIMARY KEY, name TEXT, email TEXT)")
        await sqlite_pool.execute(
            "CREATE TABLE schema_posts (id INTEGER PRIMARY KEY, title TEXT, schema_user_id INTEGER)"
        )
        manager = SchemaManager(sqlite_pool, [SchemaUser, SchemaPost])
        with capture_logs() as logs:
            statements = await manager.plan()
        assert statements == []
        warning = next(e for e in logs if e["event"] == "schema.foreign_key_skipped")
        assert warning["log_level"] == "warning"
        assert warning["constraint"] == "fk_schema_posts_schema_user"

    async def test_alter_columns_opt_in(self, sqlite_pool):
        await sqlite_pool.execute("CREATE TABLE schema_accounts (id INTEGER PRIMARY KEY, name INTEGER, plan TEXT)")
        assert await SchemaManager(sqlite_pool, [SchemaAccount]).plan() == []
        with capture_logs() as logs:
            planned = await SchemaManager(sqlite_pool, [SchemaAccount], alter_columns=True).plan()
        assert planned == []
        assert any(e["event"] == "schema.column_change_skipped" for e in logs)

    async def test_postgres_plan_for_existing_tables(self, make_executor):
        """Missing columns, their indexes and missing foreign keys are planned."""
        executor = make_executor(
            "postgres",
            [
                QueryResult(["exists"], [(True,)]),
                QueryResult(
                    ["column_name", "data_type", "is_nullable", "column_default", "extra"],
                    [
                        ("id", "integer", "NO", None, ""),
                        ("name", "character varying", "NO", None, ""),
                        ("email", "character varying", "YES", None, ""),
                    ],
                ),
                QueryResult([], []),
                QueryResult(["exists"], [(True,)]),
                QueryResult(
                    ["column_name", "data_type", "is_nullable", "column_default", "extra"],
                    [("id", "integer", "NO", None, ""), ("title", "text", "NO", None, "")],
                ),
                QueryResult([], []),
            ],
        )
        statements = await SchemaManager(executor, [SchemaUser, SchemaPost]).plan()
        assert statements == [
            'ALTER TABLE "schema_posts" ADD COLUMN "schema_user_id" INTEGER NOT NULL',
            'CREATE INDEX IF NOT EXISTS "idx_schema_posts_schema_user_id" '
            'ON "schema_posts" ("schema_user_id")',
            'ALTER TABLE "schema_posts" ADD CONSTRAINT fk_schema_posts_schema_user '
            'FOREIGN KEY ("schema_user_id") REFERENCES "schema_users" ("id") ON DELETE CASCADE',
        ]

    async def test_migrate(self, sqlite_pool, tmp_path):
        path = SchemaManager(sqlite_pool, [SchemaUser]).migrate("users", tmp_path, now=NOW)
        assert path.name == "20240102030405_users.sql"
        assert "CREATE TABLE IF NOT EXISTS \"schema_users\"" in path.read_text()
