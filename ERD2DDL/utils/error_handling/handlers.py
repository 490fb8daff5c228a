"""Error handling for failures raised by code the compiler does not own.

Statement plugins run user code during parsing and code generation. A plugin
exception must not abort compilation: it is logged with its location and
turned into an error response that the caller converts into a Diagnostic.
"""

from typing import Dict, Any, Optional
from dataclasses import dataclass
from datetime import datetime
import traceback

from ERD2DDL.utils.logging import get_logger

logger = get_logger(__name__)

# Innermost frames are kept; the caller side of a plugin traceback is ours
TRACEBACK_LIMIT = 500


@dataclass
class ErrorContext:
    """Where in the document a failure happened."""
    stage: str
    statement: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    entity_name: Optional[str] = None
    field_name: Optional[str] = None

    def describe(self) -> str:
        parts = [f"stage {self.stage}"]
        if self.statement:
            parts.append(f"statement {self.statement}")
        if self.entity_name:
            parts.append(f"entity {self.entity_name}" + (f".{self.field_name}" if self.field_name else ""))
        if self.line is not None:
            parts.append(f"line {self.line}" + (f":{self.column}" if self.column is not None else ""))
        return ", ".join(parts)

    def location(self) -> Dict[str, Any]:
        """Non-empty location keys, named as the error response carries them."""
        values = {
            "statement": self.statement,
            "line": self.line,
            "column": self.column,
            "entity_name": self.entity_name,
            "field_name": self.field_name,
        }
        return {key: value for key, value in values.items() if value is not None}


def create_error_response(error: Exception, context: ErrorContext) -> Dict[str, Any]:
    """Error response dictionary (``{"success": False, "error": {...}}``)."""
    detail: Dict[str, Any] = {
        "type": type(error).__name__,
        "message": str(error),
        "stage": context.stage,
        "timestamp": datetime.now().isoformat(),
    }
    detail.update(context.location())
    if error.__traceback__ is not None:
        frames = "".join(traceback.format_tb(error.__traceback__))
        detail["traceback"] = frames[-TRACEBACK_LIMIT:]
    return {"success": False, "error": detail}


def handle_stage_error(error: Exception, context: ErrorContext) -> Dict[str, Any]:
    """Log a contained failure with its traceback and return the error response."""
    logger.error(f"{type(error).__name__} in {context.describe()}: {error}", exc_info=error)
    return create_error_response(error, context)
