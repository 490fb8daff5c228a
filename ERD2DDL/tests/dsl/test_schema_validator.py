"""Unit tests for the semantic validator."""

import pytest

from ERD2DDL.ir.models.schema import (
    Constraint,
    ConstraintKind,
    Entity,
    EntityField,
    SchemaModel,
    Sigil,
    TypeRef,
)
from ERD2DDL.utils.dsl.builder import build_schema_model
from ERD2DDL.utils.dsl.models import CompilationStage, ErrorSeverity
from ERD2DDL.utils.dsl.parser import parse_erd
from ERD2DDL.utils.dsl.validator import is_balanced, validate_schema


def _validate(source: str):
    return validate_schema(build_schema_model(parse_erd(source)))


def _codes(result):
    return [d.code for d in result.diagnostics]


class TestPrimaryKeys:
    """Primary key presence and uniqueness."""

    def test_missing_keys_are_warnings(self):
        result = _validate(":A\n  TEXT $.name\n:B\n  TEXT $.title\n")
        assert result.success is True
        assert result.error_count == 0
        assert result.warning_count == 2
        assert _codes(result) == ["pk-missing", "pk-missing"]
        assert [d.entity for d in result.warnings] == ["A", "B"]

    def test_two_inline_keys(self):
        result = _validate(":A\n  UUID $.a PK\n  UUID $.b PK\n")
        assert _codes(result) == ["pk-multiple"]
        assert result.errors[0].error_type == "ValidationError"

    def test_inline_key_outside_composite(self):
        result = _validate(":A\n  INT $.x PK\n  INT $.a\n  INT $.b\n  PK(a, b)\n")
        assert _codes(result) == ["pk-multiple"]

    def test_inline_key_inside_composite_is_accepted(self):
        result = _validate(":A\n  INT $.a PK\n  INT $.b\n  PK(a, b)\n")
        assert result.diagnostics == []


class TestReferences:
    """Foreign key targets and type references."""

    def test_unresolved_foreign_key(self):
        result = _validate(":Order\n  UUID $.id PK\n  UUID $.customer_id FK\n")
        assert result.error_count == 1
        error = result.errors[0]
        assert error.code == "fk-unresolved"
        assert error.error_type == "UnresolvedReferenceError"
        assert (error.entity, error.field) == ("Order", "customer_id")
        assert error.line == 3

    def test_unresolved_enum_type(self):
        result = _validate(":Task\n  UUID $.id PK\n  Status $.status\n")
        assert result.error_count == 1
        error = result.errors[0]
        assert error.code == "enum-unresolved"
        assert error.error_type == "UnresolvedReferenceError"
        assert error.field == "status"

    def test_composite_target_arity(self):
        source = (
            ":Tag\n  UUID $.id PK\n:Post\n  UUID $.id PK\n"
            ":PostTags\n  UUID $.post_id FK\n  UUID $.tag_id FK\n  PK(post_id, tag_id)\n"
            ":Vote\n  UUID $.id PK\n  PostTags $.link FK\n"
        )
        result = _validate(source)
        assert _codes(result) == ["fk-composite-arity"]
        assert result.success is False
        assert result.errors[0].severity == ErrorSeverity.ERROR
        assert result.errors[0].field == "link"

    def test_target_without_key(self):
        result = _validate(":Log\n  TEXT $.message\n:Entry\n  UUID $.id PK\n  Log $.log FK\n")
        assert _codes(result) == ["pk-missing", "fk-target-key-missing"]
        assert result.success is True

    def test_duplicate_declarations(self):
        result = _validate(":User\n  UUID $.id PK\n:User\n  UUID $.id PK\n")
        assert _codes(result) == ["duplicate-declaration"]
        error = result.errors[0]
        assert error.error_type == "DuplicateDeclarationError"
        assert error.stage == CompilationStage.MODEL
        assert error.line == 3
        assert "line 1" in error.message


class TestStructure:
    """Composite lists, duplicate members and CHECK expressions."""

    @pytest.mark.parametrize(
        "body, code",
        [
            ("  INT $.a\n  PK(a, missing)\n", "composite-key-unknown-field"),
            ("  INT $.a\n  UNIQUE()\n  PK(a)\n", "composite-key-empty"),
            ("  INT $.a\n  Other @.others\n  PK(a, others)\n", "composite-key-list-field"),
            ("  INT $.a PK\n  TEXT $.a\n", "field-duplicate"),
            ("  INT $.a PK PK\n", "constraint-duplicate"),
            ("  INT $.a PK\n  CHECK ()\n", "check-empty"),
        ],
    )
    def test_structural_errors(self, body, code):
        result = _validate(":Other\n  UUID $.id PK\n:A\n" + body)
        assert _codes(result) == [code]
        assert result.success is False

    def test_duplicate_enum_variant(self):
        result = _validate("enum Color { red, red }\n")
        assert _codes(result) == ["enum-variant-duplicate"]
        assert result.errors[0].statement == "enum Color"

    def test_unbalanced_check_expression(self):
        entity = Entity(
            name="A",
            fields=[
                EntityField(
                    name="x",
                    sigil=Sigil.SCALAR,
                    type=TypeRef(name="INT"),
                    constraints=[
                        Constraint(kind=ConstraintKind.PRIMARY_KEY),
                        Constraint(kind=ConstraintKind.CHECK, expression="(x > 1"),
                    ],
                )
            ],
        )
        result = validate_schema(SchemaModel(entities=[entity]))
        assert _codes(result) == ["check-unbalanced"]
        assert result.errors[0].field == "x"

    def test_quoted_identifier_in_check_expression(self):
        entity = Entity(
            name="A",
            fields=[
                EntityField(
                    name="x",
                    sigil=Sigil.SCALAR,
                    type=TypeRef(name="INT"),
                    constraints=[
                        Constraint(kind=ConstraintKind.PRIMARY_KEY),
                        Constraint(kind=ConstraintKind.CHECK, expression='"a)" > 0'),
                    ],
                )
            ],
        )
        assert _codes(validate_schema(SchemaModel(entities=[entity]))) == []


class TestDefaultsAndFeatures:
    """DEFAULT compatibility and feature references."""

    @pytest.mark.parametrize(
        "line",
        [
            "INT $.n DEFAULT 'abc'",
            "BOOLEAN $.b DEFAULT 1",
            "TEXT $.t DEFAULT ['a']",
            "Status $.s DEFAULT 'gone'",
        ],
    )
    def test_default_mismatch_is_warning(self, line):
        result = _validate(f"enum Status {{ active }}\n:A\n  UUID $.id PK\n  {line}\n")
        assert _codes(result) == ["default-type-mismatch"]
        assert result.warnings[0].severity == ErrorSeverity.WARNING

    @pytest.mark.parametrize(
        "line",
        [
            "INT $.n DEFAULT 0",
            "TIMESTAMPTZ $.t DEFAULT now()",
            "TEXT %.tags DEFAULT ['a', 'b']",
            "Status $.s DEFAULT 'active'",
            "TEXT $.t DEFAULT NULL",
            "JSONB $.meta DEFAULT '{}'",
        ],
    )
    def test_compatible_defaults(self, line):
        result = _validate(f"enum Status {{ active }}\n:A\n  UUID $.id PK\n  {line}\n")
        assert result.diagnostics == []

    def test_feature_unknown_field(self):
        result = _validate(":A\n  UUID $.id PK\n  SOFT_DELETE(deleted_at)\n")
        assert _codes(result) == ["feature-unknown-field"]

    def test_feature_without_fields(self):
        result = _validate(":A\n  UUID $.id PK\n  FTS()\n")
        assert _codes(result) == ["feature-no-fields"]

    def test_map_set_field(self):
        result = _validate(":A\n  UUID $.id PK\n  HSTORE %.attrs\n")
        assert _codes(result) == ["set-map-unsupported"]

    def test_constraint_on_list_field(self):
        result = _validate(":A\n  UUID $.id PK\n  B @.bs NOT NULL\n:B\n  UUID $.id PK\n")
        assert _codes(result) == ["list-field-constraint"]
        assert result.success is True


def test_every_check_runs() -> None:
    source = (
        ":A\n  TEXT $.name\n"
        ":B\n  UUID $.id PK\n  UUID $.ghost_id FK\n  Mood $.mood\n  CHECK ()\n"
    )
    result = _validate(source)
    assert _codes(result) == ["pk-missing", "fk-unresolved", "enum-unresolved", "check-empty"]
    assert result.error_count == 3


@pytest.mark.parametrize(
    "text, expected",
    [
        ("a > 0", True),
        ("(a > 0) AND (b < 1)", True),
        ("name <> ')'", True),
        ('"a)" > 0', True),
        ("\"weird(\" = '('", True),
        ('"a)" > 0)', False),
        ("(a > 0", False),
        ("a > 0)", False),
        (")(", False),
    ],
)
def test_is_balanced(text, expected) -> None:
    assert is_balanced(text) is expected


@pytest.mark.parametrize(
    "type_name",
    ["INT2", "INT4", "INT8", "FLOAT4", "FLOAT8", "VARBIT(8)", "TSQUERY", "POINT", "GEOMETRY", "geography"],
)
def test_postgres_type_aliases_resolve(type_name) -> None:
    result = _validate(f":A\n  UUID $.id PK\n  {type_name} $.x\n")
    assert _codes(result) == []
