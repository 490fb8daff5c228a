"""DDL generation and drift detection."""

from .compiler import CodegenOptions, DDLCompilationOutput, DDLCompiler, compile_ddl, quote_identifier
from .diff import DDLDiff, StatementChange, diff_ddl, extract_table_columns, normalize_ddl, split_statements

__all__ = [
    "CodegenOptions",
    "DDLCompilationOutput",
    "DDLCompiler",
    "compile_ddl",
    "quote_identifier",
    "DDLDiff",
    "StatementChange",
    "diff_ddl",
    "extract_table_columns",
    "normalize_ddl",
    "split_statements",
]
