"""Logging utilities for ERD2DDL."""

from .setup import setup_logging, setup_logging_from_config, ensure_logging, get_logger

__all__ = ["setup_logging", "setup_logging_from_config", "ensure_logging", "get_logger"]
