"""Unit tests for DDL normalisation and drift detection."""

import pytest

from ERD2DDL.ddl.diff import (
    diff_ddl,
    extract_table_columns,
    normalize_ddl,
    split_sql_list,
    split_statements,
    statement_identity,
    strip_sql_comments,
    unquote_identifier,
)


BASELINE = """
-- Generated by ERD2DDL. Do not edit by hand.

CREATE TABLE Post (id UUID PRIMARY KEY, title TEXT);

CREATE TABLE Tag (id UUID PRIMARY KEY);

ALTER TABLE Post ADD CONSTRAINT fk_post_tag_id FOREIGN KEY (tag_id) REFERENCES Tag (id);
"""


class TestNormalisation:
    """Comment stripping, whitespace folding and statement splitting."""

    def test_comments_and_whitespace(self):
        ddl = "-- header\nCREATE  TABLE a (\n  id INT /* key */\n);\n\n\n"
        assert normalize_ddl(ddl) == "CREATE TABLE a (id INT);"

    def test_string_literals_are_untouched(self):
        ddl = "COMMENT ON TABLE a IS 'two  spaces -- not a comment; really';"
        assert split_statements(ddl) == ["COMMENT ON TABLE a IS 'two  spaces -- not a comment; really'"]

    def test_dollar_quoted_bodies(self):
        ddl = (
            "CREATE FUNCTION f() RETURNS trigger AS $$ BEGIN NEW.x := 1; RETURN NEW; END $$ LANGUAGE plpgsql;\n"
            "CREATE TABLE b (id INT);"
        )
        statements = split_statements(ddl)
        assert len(statements) == 2
        assert statements[1] == "CREATE TABLE b (id INT)"

    def test_strip_comments_keeps_quoted_dashes(self):
        assert strip_sql_comments("SELECT '--x' -- gone\n") == "SELECT '--x' \n"


@pytest.mark.parametrize(
    "statement, identity",
    [
        ("CREATE TABLE Post (id UUID)", "table:Post"),
        ('CREATE TABLE IF NOT EXISTS "Order" (id UUID)', 'table:"Order"'),
        ("CREATE TABLE billing.Invoice (id UUID)", "table:billing.Invoice"),
        ("ALTER TABLE Post ADD CONSTRAINT fk_post_a FOREIGN KEY (a) REFERENCES A (id)", "constraint:Post.fk_post_a"),
        ("ALTER TABLE Doc ENABLE ROW LEVEL SECURITY", "rls:Doc"),
        ("CREATE INDEX idx_a_fts ON A USING GIN (x)", "index:idx_a_fts"),
        ("CREATE MATERIALIZED VIEW IF NOT EXISTS mv AS SELECT 1", "materialized_view:mv"),
        ("CREATE OR REPLACE VIEW A_active AS SELECT * FROM A", "view:A_active"),
        ("CREATE TRIGGER trg_a BEFORE INSERT ON A FOR EACH ROW EXECUTE PROCEDURE f()", "trigger:trg_a"),
        ("CREATE POLICY mine ON Doc USING (true)", "policy:Doc.mine"),
        ("CREATE TYPE Status AS ENUM ('a')", "type:Status"),
        ("CREATE EXTENSION IF NOT EXISTS pgcrypto", "extension:pgcrypto"),
        ("COMMENT ON COLUMN Item.tags IS 'set'", "comment:Item.tags"),
        (
            "DO $$ BEGIN CREATE TYPE Status AS ENUM ('a'); EXCEPTION WHEN duplicate_object THEN NULL; END $$",
            "type:Status",
        ),
        (
            "DO $$ BEGIN CREATE POLICY mine ON Doc USING (true); EXCEPTION WHEN duplicate_object THEN NULL; END $$",
            "policy:Doc.mine",
        ),
    ],
)
def test_statement_identity(statement, identity) -> None:
    assert statement_identity(statement) == identity


def test_unknown_statements_are_hashed() -> None:
    identity = statement_identity("GRANT SELECT ON Post TO reader")
    assert identity.startswith("statement:")
    assert identity == statement_identity("GRANT SELECT ON Post TO reader")
    assert identity != statement_identity("GRANT SELECT ON Tag TO reader")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Post", "Post"),
        ('"Order"', "Order"),
        ('billing."order"', "billing.order"),
        ('"a/b"', "a/b"),
        ('"we""ird"', 'we"ird'),
    ],
)
def test_unquote_identifier(name, expected) -> None:
    assert unquote_identifier(name) == expected


def test_split_sql_list() -> None:
    assert split_sql_list("a INT, b NUMERIC(10, 2), CHECK (a > 0), c TEXT DEFAULT 'x, y'") == [
        "a INT",
        "b NUMERIC(10, 2)",
        "CHECK (a > 0)",
        "c TEXT DEFAULT 'x, y'",
    ]


def test_extract_table_columns() -> None:
    ddl = (
        'CREATE TABLE "Order" (id UUID PRIMARY KEY, "user" TEXT, total NUMERIC(10, 2), '
        "PRIMARY KEY (id), UNIQUE (total), CHECK (total > 0));\n"
        "CREATE INDEX idx ON \"Order\" (total);"
    )
    assert extract_table_columns(ddl) == {"Order": ["id", "user", "total"]}


class TestDiff:
    """diff_ddl results."""

    def test_formatting_only_changes_are_not_drift(self):
        reformatted = (
            "ALTER TABLE Post ADD CONSTRAINT fk_post_tag_id\n  FOREIGN KEY (tag_id) REFERENCES Tag (id);\n"
            "CREATE TABLE Tag (\n  id UUID PRIMARY KEY\n);\n"
            "/* reordered */ CREATE TABLE Post (id UUID PRIMARY KEY,\n title TEXT);"
        )
        diff = diff_ddl(BASELINE, reformatted)
        assert diff.has_drift is False
        assert diff.summary() == "No drift"

    def test_added_removed_and_changed(self):
        current = (
            "CREATE TABLE Post (id UUID PRIMARY KEY, title VARCHAR(200), body TEXT);\n"
            "CREATE TABLE Comment (id UUID PRIMARY KEY);\n"
            "ALTER TABLE Post ADD CONSTRAINT fk_post_tag_id FOREIGN KEY (tag_id) REFERENCES Tag (id);\n"
        )
        diff = diff_ddl(BASELINE, current)
        assert [(c.kind, c.identity) for c in diff.changes] == [
            ("changed", "table:Post"),
            ("added", "table:Comment"),
            ("removed", "table:Tag"),
        ]
        changed = diff.of_kind("changed")[0]
        assert changed.details == [
            "column added: body",
            "column changed: title TEXT -> title VARCHAR(200)",
        ]
        assert changed.previous == "CREATE TABLE Post (id UUID PRIMARY KEY, title TEXT)"

    def test_removed_column(self):
        diff = diff_ddl("CREATE TABLE A (id INT, x INT);", "CREATE TABLE A (id INT);")
        assert diff.changes[0].details == ["column removed: x"]

    def test_constraint_only_table_change(self):
        diff = diff_ddl("CREATE TABLE A (id INT);", "CREATE TABLE A (id INT, UNIQUE (id));")
        assert diff.changes[0].details == ["table constraints or options changed"]

    def test_summary(self):
        diff = diff_ddl("CREATE TABLE A (id INT);", "CREATE TABLE A (id BIGINT);\nCREATE TABLE B (id INT);")
        assert diff.summary() == (
            "2 change(s): 1 added, 0 removed, 1 changed\n"
            "  ~ table:A\n"
            "      column changed: id INT -> id BIGINT\n"
            "  + table:B"
        )

    def test_repeated_statements_are_counted(self):
        diff = diff_ddl("GRANT SELECT ON A TO r;", "GRANT SELECT ON A TO r;\nGRANT SELECT ON A TO r;")
        assert len(diff.of_kind("added")) == 1
        assert diff.of_kind("added")[0].identity.endswith("#2")
