"""Unit tests for DDL compilation."""

import pytest

from ERD2DDL.ddl.compiler import (
    DEFAULT_HEADER,
    CodegenOptions,
    compile_ddl,
    object_slug,
    quote_identifier,
)
from ERD2DDL.ir.models.sidecar import SidecarOverlay
from ERD2DDL.utils.dsl.builder import build_schema_model
from ERD2DDL.utils.dsl.parser import parse_erd


def _compile(source: str, **kwargs):
    return compile_ddl(build_schema_model(parse_erd(source)), **kwargs)


def _sql(source: str, **kwargs) -> str:
    return _compile(source, **kwargs).sql


BLOG = """
:Post
  UUID $.id PK
  TEXT $.title NOT NULL
:Tag
  UUID $.id PK
:PostTags
  UUID $.post_id FK
  UUID $.tag_id FK
  PK(post_id, tag_id)
"""


class TestTables:
    """CREATE TABLE rendering."""

    def test_organization_table(self):
        sql = _sql(":Organization\n  UUID $.id PK\n  VARCHAR(255) $.domain UNIQUE NOT NULL\n")
        assert "CREATE TABLE Organization (id UUID PRIMARY KEY, domain VARCHAR(255) UNIQUE NOT NULL);" in sql

    def test_composite_key_is_a_table_constraint(self):
        sql = _sql(BLOG)
        assert "CREATE TABLE PostTags (post_id UUID, tag_id UUID, PRIMARY KEY (post_id, tag_id));" in sql
        assert sql.count("PRIMARY KEY (post_id, tag_id)") == 1

    def test_inline_key_inside_composite_is_not_repeated(self):
        sql = _sql(":Pair\n  INT $.a PK\n  INT $.b\n  PK(a, b)\n")
        assert "CREATE TABLE Pair (a INT, b INT, PRIMARY KEY (a, b));" in sql

    def test_list_fields_produce_no_column(self):
        sql = _sql(":Account\n  UUID $.id PK\n  Post @.posts\n:Post\n  UUID $.id PK\n")
        assert "CREATE TABLE Account (id UUID PRIMARY KEY);" in sql
        assert "posts" not in sql

    def test_set_fields(self):
        sql = _sql(":Item\n  UUID $.id PK\n  TEXT %.tags\n  JSONB %.meta\n")
        assert "CREATE TABLE Item (id UUID PRIMARY KEY, tags TEXT[], meta JSONB);" in sql

    def test_unique_set_field_gets_a_stub(self):
        sql = _sql(":Item\n  UUID $.id PK\n  TEXT %.tags UNIQUE\n")
        assert "tags TEXT[]," not in sql
        assert "tags TEXT[])" in sql
        assert "COMMENT ON COLUMN Item.tags IS 'set: elements are unique';" in sql

    @pytest.mark.parametrize(
        "line, rendered",
        [
            ("INT $.n DEFAULT 5", "n INT DEFAULT 5"),
            ("TEXT $.s DEFAULT 'it''s'", "s TEXT DEFAULT 'it''s'"),
            ("BOOLEAN $.b DEFAULT true", "b BOOLEAN DEFAULT TRUE"),
            ("TIMESTAMPTZ $.t NOT NULL DEFAULT now()", "t TIMESTAMPTZ NOT NULL DEFAULT now()"),
            ("TEXT %.tags DEFAULT ['a', 'b']", "tags TEXT[] DEFAULT ARRAY['a', 'b']"),
            ("INT $.qty CHECK (qty > 0)", "qty INT CHECK (qty > 0)"),
            ("TEXT $.code NULL", "code TEXT"),
        ],
    )
    def test_column_definitions(self, line, rendered):
        sql = _sql(f":T\n  UUID $.id PK\n  {line}\n")
        assert f"CREATE TABLE T (id UUID PRIMARY KEY, {rendered});" in sql

    def test_constraint_order_in_column(self):
        sql = _sql(":T\n  INT $.n CHECK (n > 0) DEFAULT 1 NOT NULL UNIQUE PK\n")
        assert "(n INT PRIMARY KEY UNIQUE NOT NULL DEFAULT 1 CHECK (n > 0))" in sql

    def test_entity_level_constraints(self):
        sql = _sql(":Range\n  UUID $.id PK\n  INT $.lo\n  INT $.hi\n  UNIQUE(lo, hi)\n  CHECK (lo < hi)\n")
        assert "CREATE TABLE Range (id UUID PRIMARY KEY, lo INT, hi INT, UNIQUE (lo, hi), CHECK (lo < hi));" in sql

    def test_enum_types(self):
        sql = _sql("enum Status { active, archived }\n:Task\n  UUID $.id PK\n  Status $.status DEFAULT 'active'\n")
        assert "CREATE TYPE Status AS ENUM ('active', 'archived');" in sql
        assert "status Status DEFAULT 'active'" in sql
        assert sql.index("CREATE TYPE") < sql.index("CREATE TABLE")

    def test_reserved_and_qualified_names(self):
        sql = _sql(":Order\n  UUID $.id PK\n  TEXT $.user\n:billing.Invoice\n  UUID $.id PK\n")
        assert 'CREATE TABLE "Order" (id UUID PRIMARY KEY, "user" TEXT);' in sql
        assert "CREATE TABLE billing.Invoice (id UUID PRIMARY KEY);" in sql

    def test_if_not_exists(self):
        sql = _sql(":A\n  UUID $.id PK\n", options=CodegenOptions(if_not_exists=True))
        assert "CREATE TABLE IF NOT EXISTS A (id UUID PRIMARY KEY);" in sql

    def test_if_not_exists_guards_every_statement(self):
        source = (
            "enum Status { a, b }\n"
            ":Account\n  UUID $.id PK\n"
            ":Doc\n  UUID $.id PK\n  UUID $.account_id FK\n  Status $.status\n"
            "  TIMESTAMPTZ $.deleted_at\n  TEXT $.body\n"
            "  FTS(body)\n  RLS ENABLE\n  POLICY mine USING (true)\n  AUDITABLE\n  SOFT_DELETE(deleted_at)\n"
            "TRIGGER trg_touch BEFORE UPDATE ON Doc\n  FOR EACH ROW EXECUTE PROCEDURE touch()\n"
        )
        statements = _compile(source, options=CodegenOptions(if_not_exists=True)).ddl_statements
        unguarded = [
            s for s in statements
            if not (
                s.startswith("DO $$ BEGIN ")
                or "IF NOT EXISTS" in s
                or s.startswith("CREATE OR REPLACE ")
                or s.endswith("ENABLE ROW LEVEL SECURITY;")
            )
        ]
        assert unguarded == []
        assert (
            "DO $$ BEGIN CREATE TYPE Status AS ENUM ('a', 'b'); "
            "EXCEPTION WHEN duplicate_object THEN NULL; END $$;"
        ) in statements
        assert sum(s.startswith("DO $$ BEGIN CREATE TRIGGER") for s in statements) == 3
        assert any(s.startswith("DO $$ BEGIN ALTER TABLE Doc ADD CONSTRAINT fk_doc_account_id") for s in statements)
        assert any(s.startswith("DO $$ BEGIN CREATE POLICY mine ON Doc") for s in statements)

    def test_guards_are_off_by_default(self):
        sql = _sql("enum Status { a }\n:A\n  UUID $.id PK\n  Status $.s\n")
        assert "DO $$" not in sql
        assert "CREATE TYPE Status AS ENUM ('a');" in sql

    def test_empty_composite_key_keeps_inline_key(self):
        sql = _sql(":A\n  UUID $.id PK\n  TEXT $.name\n  PK()\n")
        assert "CREATE TABLE A (id UUID PRIMARY KEY, name TEXT);" in sql


class TestForeignKeys:
    """ALTER TABLE ... FOREIGN KEY statements."""

    def test_join_table_foreign_keys(self):
        sql = _sql(BLOG)
        assert (
            "ALTER TABLE PostTags ADD CONSTRAINT fk_posttags_post_id FOREIGN KEY (post_id) REFERENCES Post (id);"
            in sql
        )
        assert (
            "ALTER TABLE PostTags ADD CONSTRAINT fk_posttags_tag_id FOREIGN KEY (tag_id) REFERENCES Tag (id);"
            in sql
        )

    def test_foreign_keys_follow_every_table(self):
        sql = _sql(":Comment\n  UUID $.id PK\n  UUID $.post_id FK\n:Post\n  UUID $.id PK\n")
        assert sql.index("CREATE TABLE Post") < sql.index("FOREIGN KEY (post_id)")

    def test_referential_actions(self):
        sql = _sql(
            ":Account\n  UUID $.id PK\n"
            ":Post\n  UUID $.id PK\n  UUID $.account_id FK(on_delete=CASCADE, on_update=SET NULL)\n"
        )
        assert "REFERENCES Account (id) ON DELETE CASCADE ON UPDATE SET NULL;" in sql

    def test_entity_typed_field_takes_key_type(self):
        sql = _sql(":Post\n  UUID $.id PK\n  Account $.author FK\n:Account\n  BIGINT $.id PK\n")
        assert "CREATE TABLE Post (id UUID PRIMARY KEY, author BIGINT);" in sql
        assert "FOREIGN KEY (author) REFERENCES Account (id);" in sql

    def test_explicit_referenced_column(self):
        sql = _sql(":Account\n  UUID $.id PK\n  TEXT $.email UNIQUE\n:Invite\n  TEXT $.sender FK(Account.email)\n")
        assert "FOREIGN KEY (sender) REFERENCES Account (email);" in sql

    def test_unresolved_foreign_key_is_skipped(self):
        output = _compile(":Order\n  UUID $.id PK\n  UUID $.customer_id FK\n")
        assert "FOREIGN KEY" not in output.sql
        assert 'CREATE TABLE "Order" (id UUID PRIMARY KEY, customer_id UUID);' in output.sql

    def test_reserved_target_is_quoted(self):
        sql = _sql(":User\n  UUID $.id PK\n:Session\n  UUID $.user_id FK\n")
        assert 'FOREIGN KEY (user_id) REFERENCES "User" (id);' in sql

    def test_composite_key_target_is_skipped(self):
        sql = _sql(
            ":PostTags\n  UUID $.post_id\n  UUID $.tag_id\n  PK(post_id, tag_id)\n"
            ":Note\n  UUID $.id PK\n  PostTags $.pt FK\n"
        )
        assert "FOREIGN KEY" not in sql
        assert "CREATE TABLE Note (id UUID PRIMARY KEY, pt UUID);" in sql


class TestFeatures:
    """Extended feature lowering."""

    def test_partition(self):
        sql = _sql(":Event\n  BIGINT $.id\n  TIMESTAMPTZ $.created_at\n  PARTITION BY RANGE (created_at)\n")
        assert "CREATE TABLE Event (id BIGINT, created_at TIMESTAMPTZ) PARTITION BY RANGE (created_at);" in sql

    def test_ttl_stub(self):
        sql = _sql(":Session\n  UUID $.id PK\n  TIMESTAMPTZ $.created_at\n  TTL(created_at, '30 days')\n")
        assert "-- TTL: rows of Session expire 30 days after created_at; schedule a purge job" in sql
        assert "COMMENT ON TABLE Session IS 'ttl: created_at + 30 days';" in sql

    def test_fts_index(self):
        sql = _sql(":Article\n  UUID $.id PK\n  TEXT $.title\n  TEXT $.body\n  FTS(title, body)\n")
        assert (
            "CREATE INDEX idx_article_fts ON Article USING GIN "
            "(to_tsvector('english', coalesce(title, '') || ' ' || coalesce(body, '')));"
        ) in sql

    def test_fts_language_option(self):
        sql = _sql(
            ":Article\n  UUID $.id PK\n  TEXT $.body\n  FTS(body)\n",
            options=CodegenOptions(fts_language="german"),
        )
        assert "to_tsvector('german', coalesce(body, ''))" in sql

    def test_rls_and_policies(self):
        sql = _sql(
            ":Doc\n  UUID $.id PK\n  TEXT $.owner\n  RLS ENABLE\n"
            "  POLICY owner_only FOR SELECT TO app_user USING (owner = current_user)\n"
        )
        assert "ALTER TABLE Doc ENABLE ROW LEVEL SECURITY;" in sql
        assert "CREATE POLICY owner_only ON Doc FOR SELECT TO app_user USING (owner = current_user);" in sql

    def test_audit_triggers(self):
        sql = _sql(
            ":Invoice\n  UUID $.id PK\n  TIMESTAMPTZ $.created_at\n  TIMESTAMPTZ $.updated_at\n  AUDITABLE\n"
        )
        assert (
            "CREATE TRIGGER trg_invoice_audit_created BEFORE INSERT ON Invoice "
            "FOR EACH ROW EXECUTE PROCEDURE set_created_at();"
        ) in sql
        assert (
            "CREATE TRIGGER trg_invoice_audit_updated BEFORE UPDATE ON Invoice "
            "FOR EACH ROW EXECUTE PROCEDURE set_updated_at();"
        ) in sql

    def test_soft_delete_view(self):
        sql = _sql(":Customer\n  UUID $.id PK\n  TIMESTAMPTZ $.deleted_at\n  SOFT_DELETE(deleted_at)\n")
        assert "CREATE VIEW Customer_active AS SELECT * FROM Customer WHERE deleted_at IS NULL;" in sql

    def test_feature_statements_follow_their_table(self):
        output = _compile(
            ":Customer\n  UUID $.id PK\n  TIMESTAMPTZ $.deleted_at\n  SOFT_DELETE(deleted_at)\n"
            ":Other\n  UUID $.id PK\n"
        )
        statements = output.ddl_statements
        assert statements[0].startswith("CREATE TABLE Customer")
        assert statements[1].startswith("CREATE VIEW Customer_active")
        assert statements[2].startswith("CREATE TABLE Other")


class TestSidecar:
    """Sidecar overlay merge."""

    SOURCE = ":Event\n  UUID $.id PK\n  TEXT $.region\n  PARTITION BY RANGE (id)\n:Other\n  UUID $.id PK\n"

    def test_sidecar_wins_over_inline(self):
        overlay = SidecarOverlay.from_mapping({"Event": {"partitions": "LIST (region)", "rls": True}})
        sql = _sql(self.SOURCE, sidecar=overlay)
        assert "PARTITION BY LIST (region);" in sql
        assert "PARTITION BY RANGE" not in sql
        assert "ALTER TABLE Event ENABLE ROW LEVEL SECURITY;" in sql

    def test_post_migration_text(self):
        overlay = SidecarOverlay.from_mapping({"Event": {"migrations.post": "GRANT SELECT ON Event TO reader;\n"}})
        output = _compile(self.SOURCE, sidecar=overlay)
        assert output.ddl_statements[1] == "GRANT SELECT ON Event TO reader;"
        assert output.ddl_statements[2].startswith("CREATE TABLE Other")

    def test_unknown_entity_warns(self):
        overlay = SidecarOverlay.from_mapping({"Ghost": {"rls": True}})
        output = _compile(self.SOURCE, sidecar=overlay)
        assert [d.code for d in output.diagnostics] == ["sidecar-unknown-entity"]
        assert output.diagnostics[0].entity == "Ghost"
        assert "Ghost" not in output.sql


class TestStatementsAndLayout:
    """Pass-through statements and artifact layout."""

    SOURCE = """
INDEX idx_post_title ON Post (title)
EXTENSION pgcrypto
:Post
  UUID $.id PK
  TEXT $.title
:Comment
  UUID $.id PK
  UUID $.post_id FK
enum Mood { happy }
MATERIALIZED VIEW post_titles AS
  SELECT title FROM Post
"""

    def test_section_order(self):
        statements = _compile(self.SOURCE).ddl_statements
        assert statements == [
            "CREATE EXTENSION pgcrypto;",
            "CREATE TYPE Mood AS ENUM ('happy');",
            "CREATE TABLE Post (id UUID PRIMARY KEY, title TEXT);",
            "CREATE TABLE Comment (id UUID PRIMARY KEY, post_id UUID);",
            "ALTER TABLE Comment ADD CONSTRAINT fk_comment_post_id FOREIGN KEY (post_id) REFERENCES Post (id);",
            "CREATE INDEX idx_post_title ON Post (title);",
            "CREATE MATERIALIZED VIEW post_titles AS\n  SELECT title FROM Post;",
        ]

    def test_artifact_text(self):
        sql = _sql(":A\n  UUID $.id PK\n:B\n  UUID $.id PK\n")
        assert sql == (
            f"{DEFAULT_HEADER}\n\n"
            "CREATE TABLE A (id UUID PRIMARY KEY);\n\n"
            "CREATE TABLE B (id UUID PRIMARY KEY);\n"
        )

    def test_no_header(self):
        sql = _sql(":A\n  UUID $.id PK\n", options=CodegenOptions(header=None))
        assert sql == "CREATE TABLE A (id UUID PRIMARY KEY);\n"

    def test_if_not_exists_for_pass_through(self):
        statements = _compile(self.SOURCE, options=CodegenOptions(if_not_exists=True)).ddl_statements
        assert "CREATE EXTENSION IF NOT EXISTS pgcrypto;" in statements
        assert "CREATE INDEX IF NOT EXISTS idx_post_title ON Post (title);" in statements
        assert "CREATE MATERIALIZED VIEW IF NOT EXISTS post_titles AS\n  SELECT title FROM Post;" in statements

    def test_trigger_pass_through(self):
        sql = _sql(":Post\n  UUID $.id PK\nTRIGGER trg_touch BEFORE UPDATE ON Post\n  FOR EACH ROW EXECUTE PROCEDURE touch()\n")
        assert "CREATE TRIGGER trg_touch BEFORE UPDATE ON Post\n  FOR EACH ROW EXECUTE PROCEDURE touch();" in sql

    def test_compilation_is_deterministic(self):
        assert _sql(self.SOURCE) == _sql(self.SOURCE)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Organization", "Organization"),
        ("post_id", "post_id"),
        ("order", '"order"'),
        ("User", '"User"'),
        ("billing.Invoice", "billing.Invoice"),
        ("billing.order", 'billing."order"'),
        ("a/b", '"a/b"'),
        ('we"ird', '"we""ird"'),
        ("2fa", '"2fa"'),
    ],
)
def test_quote_identifier(name, expected) -> None:
    assert quote_identifier(name) == expected


@pytest.mark.parametrize(
    "name, expected",
    [
        ("PostTags", "posttags"),
        ("billing.Invoice", "billing_invoice"),
        ("a/b", "a_b"),
    ],
)
def test_object_slug(name, expected) -> None:
    assert object_slug(name) == expected


def test_options_from_config(tmp_path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text("codegen:\n  if_not_exists: true\n  fts_language: simple\n  unknown_key: 1\n")
    options = CodegenOptions.from_config(config_file)
    assert options.if_not_exists is True
    assert options.fts_language == "simple"
    assert options.header == DEFAULT_HEADER
