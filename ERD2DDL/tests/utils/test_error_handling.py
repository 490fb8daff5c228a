"""Unit tests for plugin failure containment."""

import pytest

from ERD2DDL.utils.error_handling import (
    ErrorContext,
    handle_stage_error,
    create_error_response,
)
from ERD2DDL.utils.dsl.models import CompilationStage, Diagnostic


class TestErrorContext:
    """ErrorContext location helpers."""

    def test_defaults(self):
        context = ErrorContext(stage="codegen")
        assert context.location() == {}
        assert context.describe() == "stage codegen"

    def test_describe(self):
        context = ErrorContext(
            stage="parse", statement="GRANT", line=7, column=1, entity_name="Customer", field_name="email"
        )
        assert context.describe() == "stage parse, statement GRANT, entity Customer.email, line 7:1"

    def test_location_keeps_line_zero(self):
        assert ErrorContext(stage="parse", line=0).location() == {"line": 0}


class TestCreateErrorResponse:
    """create_error_response structure."""

    def test_response_fields(self):
        context = ErrorContext(stage="parse", statement="GRANT", line=3, column=1)
        response = create_error_response(ValueError("Test error"), context)

        assert response["success"] is False
        error = response["error"]
        assert error["type"] == "ValueError"
        assert error["message"] == "Test error"
        assert error["stage"] == "parse"
        assert (error["statement"], error["line"], error["column"]) == ("GRANT", 3, 1)
        assert "timestamp" in error
        assert "entity_name" not in error
        assert "traceback" not in error

    def test_traceback_is_captured(self):
        try:
            raise KeyError("missing")
        except KeyError as e:
            response = create_error_response(e, ErrorContext(stage="codegen"))

        assert "traceback" in response["error"]
        assert len(response["error"]["traceback"]) <= 500

    def test_response_converts_to_diagnostic(self):
        context = ErrorContext(stage="codegen", statement="GRANT", line=3, column=1)
        response = create_error_response(RuntimeError("emit failed"), context)

        diagnostic = Diagnostic.from_error_response(response, code="plugin-emit-failed", stage=CompilationStage.CODEGEN)

        assert diagnostic.is_error
        assert diagnostic.error_type == "RuntimeError"
        assert diagnostic.location == "GRANT"
        assert diagnostic.format_message() == "3:1 error[plugin-emit-failed] GRANT: emit failed"


class TestHandleStageError:
    """handle_stage_error logging and response."""

    def test_returns_response(self):
        context = ErrorContext(stage="codegen", statement="GRANT", line=7, column=1)
        response = handle_stage_error(ValueError("Test error"), context)

        assert response["success"] is False
        assert response["error"]["statement"] == "GRANT"
        assert response["error"]["line"] == 7

    def test_logs_with_location(self, caplog):
        context = ErrorContext(stage="codegen", statement="GRANT", line=2, column=1)

        with caplog.at_level("ERROR"):
            handle_stage_error(RuntimeError("boom"), context)

        record = caplog.records[-1]
        assert record.levelname == "ERROR"
        assert record.getMessage() == "RuntimeError in stage codegen, statement GRANT, line 2:1: boom"


@pytest.mark.parametrize("stage", ["parse", "codegen"])
def test_stage_is_reported(stage) -> None:
    response = create_error_response(RuntimeError("x"), ErrorContext(stage=stage))
    assert response["error"]["stage"] == stage
