"""Tests for statement plugins: registration, parsing and emission."""

import pytest

from ERD2DDL.utils.dsl import PluginRegistry, StatementPlugin, compile_erd, parse_erd
from ERD2DDL.utils.dsl.models import CompilationStage


SOURCE = ":Post\n  UUID $.id PK\nGRANT SELECT ON Post\n  TO reader\n"


def _grant_plugin(**kwargs) -> StatementPlugin:
    kwargs.setdefault("emit", lambda payload, model: [f"GRANT {payload}"])
    return StatementPlugin(keyword="GRANT", **kwargs)


class TestRegistration:
    """PluginRegistry bookkeeping."""

    def test_register_and_lookup(self):
        registry = PluginRegistry([_grant_plugin(description="privileges")])
        assert "GRANT" in registry
        assert len(registry) == 1
        assert registry.keywords == ["GRANT"]
        assert registry.get("GRANT").description == "privileges"
        assert registry.get("REVOKE") is None
        assert [p.keyword for p in registry] == ["GRANT"]

    @pytest.mark.parametrize("keyword", ["INDEX", "PK", "enum", "has", "", "bad-key", "2FA"])
    def test_rejected_keywords(self, keyword):
        with pytest.raises(ValueError):
            PluginRegistry().register(StatementPlugin(keyword=keyword, emit=lambda payload, model: []))

    def test_duplicate_keyword(self):
        registry = PluginRegistry([_grant_plugin()])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(_grant_plugin())


class TestParsing:
    """Plugin blocks in the parser."""

    def test_block_is_collected_with_continuation_lines(self):
        document = parse_erd(SOURCE, registry=PluginRegistry([_grant_plugin()]))
        assert document.errors == ()
        plugin_statement = document.statements[1]
        assert plugin_statement.keyword == "GRANT"
        assert plugin_statement.body == "SELECT ON Post\n  TO reader"
        assert plugin_statement.payload == plugin_statement.body

    def test_parse_hook_payload(self):
        registry = PluginRegistry([_grant_plugin(parse=lambda text: text.split())])
        document = parse_erd(SOURCE, registry=registry)
        assert document.statements[1].payload == ["SELECT", "ON", "Post", "TO", "reader"]

    def test_unregistered_keyword_is_a_parse_error(self):
        document = parse_erd(SOURCE)
        assert len(document.errors) == 1
        assert document.errors[0].found == "GRANT"
        assert [e.name for e in document.entities] == ["Post"]


class TestCompilation:
    """Plugin emission inside the pipeline."""

    def test_emitted_statements(self):
        result = compile_erd(SOURCE, registry=PluginRegistry([_grant_plugin()]))
        assert result.overall_success
        assert result.ddl_statements[-1] == "GRANT SELECT ON Post\n  TO reader;"

    def test_emit_receives_model(self):
        plugin = StatementPlugin(
            keyword="NOTE",
            emit=lambda payload, model: f"-- {payload}: {', '.join(model.entity_names)}",
        )
        result = compile_erd(SOURCE.replace("GRANT", "NOTE"), registry=PluginRegistry([plugin]))
        assert result.ddl_statements[-1] == "-- SELECT ON Post\n  TO reader: Post"

    def test_parse_hook_failure(self):
        def parse(text):
            raise ValueError("cannot parse grant")

        result = compile_erd(SOURCE, registry=PluginRegistry([_grant_plugin(parse=parse)]))
        assert [d.code for d in result.errors] == ["plugin-parse-failed"]
        error = result.errors[0]
        assert error.stage == CompilationStage.SYNTAX
        assert error.error_type == "ValueError"
        assert error.message == "cannot parse grant"
        assert error.line == 3
        assert result.generation_allowed is True
        assert "CREATE TABLE Post (id UUID PRIMARY KEY);" in result.ddl
        assert "GRANT" not in result.ddl

    def test_emit_hook_failure(self):
        def emit(payload, model):
            raise RuntimeError("emit exploded")

        result = compile_erd(SOURCE, registry=PluginRegistry([_grant_plugin(emit=emit)]))
        assert [d.code for d in result.errors] == ["plugin-emit-failed"]
        assert result.errors[0].stage == CompilationStage.CODEGEN
        assert result.stage_failed == CompilationStage.CODEGEN
        assert "CREATE TABLE Post" in result.ddl
