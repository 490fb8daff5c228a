"""Intermediate representation of ERD documents."""

from .models import SchemaModel, SidecarOverlay

__all__ = ["SchemaModel", "SidecarOverlay"]
