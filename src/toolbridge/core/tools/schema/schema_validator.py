from typing import Any, Dict, Optional, Set

import jsonref  # type: ignore

from ...exceptions import ToolValidationError
from ...logger import get_logger

logger = get_logger(__name__)

EMPTY_OBJECT_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}, "additionalProperties": False}


class SchemaValidator:
    """
    Helper class for validating and normalizing the input schemas of discovered tools.
    """

    @staticmethod
    def assert_no_recursive_refs(schema: Dict[str, Any]) -> None:
        """
        Checks if the schema contains recursive references by traversing the graph.
        Raises ToolValidationError if a cycle is detected.

        Args:
            schema: The JSON schema to check.

        Raises:
            ToolValidationError: If a recursive reference is found.
        """
        defs = schema.get("$defs", {}) or schema.get("definitions", {})

        def check(node: Any, path: Set[str]) -> None:
            if isinstance(node, dict):
                if "$ref" in node:
                    ref = node["$ref"]
                    if ref in path:
                        msg = f"Recursive structure detected: {ref}. Recursive tool input schemas are not supported."
                        raise ToolValidationError(msg)

                    # Follow local refs, e.g. #/$defs/MyModel
                    if isinstance(ref, str) and ref.startswith("#"):
                        parts = ref.split("/")
                        if len(parts) >= 3:
                            def_name = parts[-1]
                            if def_name in defs:
                                check(defs[def_name], path | {ref})
                    return

                for v in node.values():
                    check(v, path)
            elif isinstance(node, list):
                for item in node:
                    check(item, path)

        check(schema, set())

    @staticmethod
    def resolve_refs(schema: Dict[str, Any]) -> Dict[str, Any]:
        """Inline every local ``$ref`` of the schema.

        proxies=False returns plain dicts instead of JsonRef objects.
        """
        return jsonref.replace_refs(schema, proxies=False)  # type: ignore[no-any-return]

    @staticmethod
    def sanitize_schema(schema: Any) -> Any:
        """
        Cleans up the schema for better compatibility with LLM providers.
        Removes $defs, $schema, $id, title.
        Simplifies Optional fields (anyOf with null).
        Enforces additionalProperties: false for objects.

        Args:
            schema: The JSON schema to sanitize.

        Returns:
            The sanitized schema.
        """
        if not isinstance(schema, dict):
            return schema

        new_schema = schema.copy()

        for key in ["$defs", "$schema", "$id", "title", "definitions"]:
            new_schema.pop(key, None)

        # anyOf with a single non-null member is an Optional field
        if "anyOf" in new_schema and isinstance(new_schema["anyOf"], list):
            non_null = [x for x in new_schema["anyOf"] if not (isinstance(x, dict) and x.get("type") == "null")]

            if len(non_null) == 1 and isinstance(non_null[0], dict):
                merged = non_null[0].copy()
                if "description" in new_schema:
                    merged["description"] = new_schema["description"]
                return SchemaValidator.sanitize_schema(merged)

        if new_schema.get("type") == "object" and "additionalProperties" not in new_schema:
            new_schema["additionalProperties"] = False

        for key, value in new_schema.items():
            # property names are user data, not schema keywords
            if key == "properties" and isinstance(value, dict):
                new_schema[key] = {
                    prop: SchemaValidator.sanitize_schema(prop_schema) for prop, prop_schema in value.items()
                }
            elif isinstance(value, dict):
                new_schema[key] = SchemaValidator.sanitize_schema(value)
            elif isinstance(value, list):
                new_schema[key] = [
                    SchemaValidator.sanitize_schema(item) if isinstance(item, dict) else item for item in value
                ]

        return new_schema

    @staticmethod
    def normalize_to_object_schema(schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Guarantee an object-rooted schema.

        Empty schemas become an empty object schema; object roots get deduplicated
        ``required`` entries and ``additionalProperties: false`` when unset.

        Raises:
            ToolValidationError: If the root is not an object. Tool arguments are
                always sent as a JSON object, so such a tool cannot be called.
        """
        if not schema:
            return {**EMPTY_OBJECT_SCHEMA, "properties": {}}

        schema_type = schema.get("type")
        is_object_root = (
            schema_type == "object"
            or (isinstance(schema_type, list) and "object" in schema_type)
            or (schema_type is None and isinstance(schema.get("properties"), dict))
        )

        if is_object_root:
            normalized = dict(schema)
            normalized.setdefault("additionalProperties", False)
            normalized["required"] = list(dict.fromkeys(normalized.get("required") or []))
            return normalized

        raise ToolValidationError(f"Tool input schema must have an object root, got type {schema_type!r}.")

    @classmethod
    def prepare_input_schema(cls, schema: Optional[Dict[str, Any]], tool_name: str = "") -> Dict[str, Any]:
        """Turn a raw input schema announced by a tool server into the form exposed to models.

        Recursive schemas cannot be inlined; they are only normalized at the root.
        """
        if not schema:
            return cls.normalize_to_object_schema(None)

        try:
            cls.assert_no_recursive_refs(schema)
        except ToolValidationError as exc:
            logger.warning("Keeping unresolved refs in schema of tool '%s': %s", tool_name, exc)
            return cls.normalize_to_object_schema(schema)

        resolved = cls.resolve_refs(schema)
        return cls.normalize_to_object_schema(cls.sanitize_schema(resolved))
