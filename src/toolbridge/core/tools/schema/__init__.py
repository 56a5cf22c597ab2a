"""Tool input schema validation and normalization."""

from .schema_validator import SchemaValidator, EMPTY_OBJECT_SCHEMA

__all__ = ["SchemaValidator", "EMPTY_OBJECT_SCHEMA"]
