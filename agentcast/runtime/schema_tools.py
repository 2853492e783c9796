"""
schema_tools.py - Strict JSON Schema validation and example generation.

Both the bridge's ``validate`` tool and the orchestrator's final check use
SchemaValidator, so a candidate the agent saw as valid is judged the same way
when it is submitted.

Strict mode means:
- no type coercion: ``"30"`` is not an integer, ``30.0`` is not an integer,
  ``true`` is not a number
- object schemas that declare ``properties`` but say nothing about
  ``additionalProperties`` / ``patternProperties`` are treated as closed
  (branches of ``allOf``, ``anyOf``, ``oneOf``, ``if``/``then``/``else``,
  ``not`` and ``dependencies`` are left open, since they only describe part
  of the object)
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

import jsonschema
from jsonschema import Draft7Validator, validators

from .errors import InvalidSchemaError, SchemaViolation

logger = logging.getLogger(__name__)

# Keywords whose subschemas describe a whole value.
_VALUE_KEYWORDS = ("items", "additionalItems", "additionalProperties", "contains", "propertyNames")
_VALUE_MAP_KEYWORDS = ("properties", "patternProperties")
_DEFINITION_KEYWORDS = ("definitions", "$defs")
# Applicator keywords whose subschemas describe part of a value.
_BRANCH_KEYWORDS = ("if", "then", "else", "not")
_BRANCH_LIST_KEYWORDS = ("allOf", "anyOf", "oneOf")
# Keywords whose value maps names to subschemas.
_MAP_KEYWORDS = _VALUE_MAP_KEYWORDS + _DEFINITION_KEYWORDS + ("dependencies",)

_MAX_EXAMPLE_DEPTH = 12

_FORMAT_EXAMPLES = {
    "date": "2024-01-01",
    "date-time": "2024-01-01T00:00:00Z",
    "time": "00:00:00Z",
    "email": "user@example.com",
    "idn-email": "user@example.com",
    "hostname": "example.com",
    "idn-hostname": "example.com",
    "ipv4": "192.0.2.1",
    "ipv6": "2001:db8::1",
    "uri": "https://example.com",
    "iri": "https://example.com",
    "uri-reference": "https://example.com",
    "uuid": "00000000-0000-0000-0000-000000000000",
    "regex": ".*",
}


# =============================================================================
# Validation
# =============================================================================


@dataclass(frozen=True)
class ValidationIssue:
    """One field-level validation failure."""

    path: str  # JSON pointer to the offending value ("/" for the root)
    message: str
    schema_path: Optional[str] = None
    value: Optional[Any] = None

    def __str__(self) -> str:
        return f"At path '{self.path}': {self.message}"


def _is_strict_integer(checker: Any, instance: Any) -> bool:
    return isinstance(instance, int) and not isinstance(instance, bool)


def _strict_validator_class(schema: Dict[str, Any]) -> Any:
    base = validators.validator_for(schema, default=Draft7Validator)
    type_checker = base.TYPE_CHECKER.redefine("integer", _is_strict_integer)
    return validators.extend(base, type_checker=type_checker)


def close_objects(schema: Any) -> Any:
    """Return a copy of ``schema`` with undeclared object schemas closed.

    Only subschemas in value positions (``properties``, ``items``,
    ``additionalProperties``, definitions, ...) are closed. Branches of the
    applicators (``allOf``, ``anyOf``, ``oneOf``, ``if``/``then``/``else``,
    ``not``, schema ``dependencies``) describe part of an object whose other
    fields are declared elsewhere, so they stay open. Definitions an ``allOf``
    branch extends through a local ``$ref`` stay open too; definitions used as
    whole alternatives (``anyOf: [{"$ref": ...}]``) are closed.
    """
    return _close(schema, False, _branch_refs(schema), "#")


def _close(schema: Any, partial: bool, open_refs: Set[str], pointer: Optional[str] = None) -> Any:
    if not isinstance(schema, dict):
        return schema
    result = dict(schema)

    if (
        not partial
        and pointer not in open_refs
        and "properties" in result
        and "additionalProperties" not in result
        and "patternProperties" not in result
    ):
        result["additionalProperties"] = False

    for key in _VALUE_KEYWORDS:
        if key in result:
            value = result[key]
            if isinstance(value, list):  # tuple-form "items"
                result[key] = [_close(v, False, open_refs) for v in value]
            else:
                result[key] = _close(value, False, open_refs)
    for key in _VALUE_MAP_KEYWORDS:
        if isinstance(result.get(key), dict):
            result[key] = {name: _close(sub, False, open_refs) for name, sub in result[key].items()}
    for key in _DEFINITION_KEYWORDS:
        if isinstance(result.get(key), dict):
            result[key] = {
                name: _close(sub, False, open_refs, f"{pointer}/{key}/{name}" if pointer else None)
                for name, sub in result[key].items()
            }
    for key in _BRANCH_KEYWORDS:
        if key in result:
            result[key] = _close(result[key], True, open_refs)
    for key in _BRANCH_LIST_KEYWORDS:
        if isinstance(result.get(key), list):
            result[key] = [_close(sub, True, open_refs) for sub in result[key]]
    if isinstance(result.get("dependencies"), dict):
        result["dependencies"] = {
            name: _close(sub, True, open_refs) if isinstance(sub, dict) else sub
            for name, sub in result["dependencies"].items()
        }
    return result


def _branch_refs(schema: Any) -> Set[str]:
    """Collect local ``$ref`` targets extended by ``allOf`` branches."""
    refs: Set[str] = set()

    def visit(node: Any, is_branch: bool) -> None:
        if isinstance(node, list):
            for item in node:
                visit(item, False)
            return
        if not isinstance(node, dict):
            return
        ref = node.get("$ref")
        if is_branch and isinstance(ref, str) and ref.startswith("#/"):
            refs.add(ref)
        for key, value in node.items():
            if key == "allOf" and isinstance(value, list):
                for sub in value:
                    visit(sub, True)
            elif key in _BRANCH_LIST_KEYWORDS:
                visit(value, False)
            elif key in _MAP_KEYWORDS and isinstance(value, dict):
                for sub in value.values():
                    visit(sub, False)
            elif key in _BRANCH_KEYWORDS + _VALUE_KEYWORDS:
                visit(value, False)

    visit(schema, False)
    return refs


class SchemaValidator:
    """Validates candidates against one schema.

    Args:
        schema: The JSON Schema (Draft 7 unless ``$schema`` says otherwise).
        strict: Close objects that don't declare additionalProperties.

    Raises:
        InvalidSchemaError: If the schema itself is invalid.
    """

    def __init__(self, schema: Dict[str, Any], strict: bool = True):
        if not isinstance(schema, dict):
            raise InvalidSchemaError("schema must be a JSON object")
        cls = _strict_validator_class(schema)
        try:
            cls.check_schema(schema)
        except jsonschema.SchemaError as e:
            raise InvalidSchemaError(e.message) from e

        self.schema = copy.deepcopy(schema)
        self.strict = strict
        effective = close_objects(self.schema) if strict else self.schema
        self._validator = cls(effective, format_checker=jsonschema.FormatChecker())

    def validate(self, candidate: Any) -> List[ValidationIssue]:
        """Return every violation, ordered by path then message.

        An empty list means the candidate is valid. The same candidate always
        produces the same list.
        """
        errors = sorted(
            self._validator.iter_errors(candidate),
            key=lambda e: ([str(p) for p in e.absolute_path], e.message),
        )
        return [
            ValidationIssue(
                path=_pointer(e.absolute_path),
                message=e.message,
                schema_path="/".join(str(p) for p in e.absolute_schema_path) or None,
                value=e.instance,
            )
            for e in errors
        ]

    def check(self, candidate: Any) -> None:
        """Raise SchemaViolation carrying every issue if ``candidate`` is invalid."""
        issues = self.validate(candidate)
        if issues:
            raise SchemaViolation(issues)

    def error_messages(self, candidate: Any) -> List[str]:
        return [str(issue) for issue in self.validate(candidate)]

    def is_valid(self, candidate: Any) -> bool:
        return not self.validate(candidate)


def _pointer(path: Any) -> str:
    parts = [str(p).replace("~", "~0").replace("/", "~1") for p in path]
    return "/" + "/".join(parts) if parts else "/"


# =============================================================================
# Example generation
# =============================================================================


def build_example(schema: Dict[str, Any]) -> Any:
    """Build a deterministic sample value for ``schema``.

    Preference order per subschema: ``default``, ``const``, first ``enum``
    value, first ``examples`` value, then a value derived from the type.
    Local ``$ref`` pointers are resolved against ``schema``.
    """
    return _example(schema, schema, 0)


def _example(schema: Any, root: Dict[str, Any], depth: int) -> Any:
    if not isinstance(schema, dict) or depth > _MAX_EXAMPLE_DEPTH:
        return None

    if "$ref" in schema:
        target = _resolve_ref(schema["$ref"], root)
        if target is not None:
            return _example(target, root, depth + 1)

    if "default" in schema:
        return copy.deepcopy(schema["default"])
    if "const" in schema:
        return copy.deepcopy(schema["const"])
    if isinstance(schema.get("enum"), list) and schema["enum"]:
        return copy.deepcopy(schema["enum"][0])
    if isinstance(schema.get("examples"), list) and schema["examples"]:
        return copy.deepcopy(schema["examples"][0])

    if isinstance(schema.get("allOf"), list) and schema["allOf"]:
        return _example(_merge_all_of(schema, root), root, depth + 1)
    for key in ("anyOf", "oneOf"):
        if isinstance(schema.get(key), list) and schema[key]:
            return _example(schema[key][0], root, depth + 1)

    schema_type = _primary_type(schema)
    if schema_type == "object":
        return _object_example(schema, root, depth)
    if schema_type == "array":
        return _array_example(schema, root, depth)
    if schema_type == "string":
        return _string_example(schema)
    if schema_type == "integer":
        return _integer_example(schema)
    if schema_type == "number":
        return _number_example(schema)
    if schema_type == "boolean":
        return True
    if schema_type == "null":
        return None
    return "example"


def _resolve_ref(ref: str, root: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not isinstance(ref, str) or not ref.startswith("#"):
        logger.debug("Ignoring non-local $ref %r", ref)
        return None
    node: Any = root
    for part in ref.lstrip("#").strip("/").split("/"):
        if not part:
            continue
        part = part.replace("~1", "/").replace("~0", "~")
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node if isinstance(node, dict) else None


def _merge_all_of(schema: Dict[str, Any], root: Dict[str, Any]) -> Dict[str, Any]:
    merged = {k: v for k, v in schema.items() if k != "allOf"}
    for part in schema["allOf"]:
        if isinstance(part, dict) and "$ref" in part:
            part = _resolve_ref(part["$ref"], root) or {}
        if not isinstance(part, dict):
            continue
        for key, value in part.items():
            if key == "properties":
                merged.setdefault("properties", {})
                merged["properties"] = {**merged["properties"], **value}
            elif key == "required":
                merged["required"] = list(dict.fromkeys(list(merged.get("required", [])) + list(value)))
            else:
                merged.setdefault(key, value)
    return merged


def _primary_type(schema: Dict[str, Any]) -> Optional[str]:
    declared = schema.get("type")
    if isinstance(declared, list):
        non_null = [t for t in declared if t != "null"]
        return non_null[0] if non_null else "null"
    if isinstance(declared, str):
        return declared
    # Infer from keywords when type is omitted.
    if any(k in schema for k in ("properties", "required", "additionalProperties")):
        return "object"
    if any(k in schema for k in ("items", "minItems", "maxItems")):
        return "array"
    if any(k in schema for k in ("minLength", "maxLength", "pattern", "format")):
        return "string"
    if any(k in schema for k in ("minimum", "maximum", "multipleOf")):
        return "number"
    return None


def _object_example(schema: Dict[str, Any], root: Dict[str, Any], depth: int) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    properties = schema.get("properties") or {}
    for name, subschema in properties.items():
        result[name] = _example(subschema, root, depth + 1)
    for name in schema.get("required") or []:
        if name not in result:
            result[name] = "example"
    return result


def _array_example(schema: Dict[str, Any], root: Dict[str, Any], depth: int) -> List[Any]:
    items = schema.get("items")
    if isinstance(items, list):
        return [_example(sub, root, depth + 1) for sub in items]
    count = max(1, int(schema.get("minItems", 1)))
    if "maxItems" in schema:
        count = min(count, int(schema["maxItems"]))
    if not isinstance(items, dict):
        return ["example"] * count
    if schema.get("uniqueItems") and count > 1:
        first = _example(items, root, depth + 1)
        if isinstance(first, (int, float)) and not isinstance(first, bool):
            return [first + i for i in range(count)]
        if isinstance(first, str):
            return [first if i == 0 else f"{first}-{i}" for i in range(count)]
        return [first]
    return [_example(items, root, depth + 1) for _ in range(count)]


def _string_example(schema: Dict[str, Any]) -> str:
    value = _FORMAT_EXAMPLES.get(str(schema.get("format", "")), "example")
    min_length = int(schema.get("minLength", 0))
    if len(value) < min_length:
        value = value + "x" * (min_length - len(value))
    if "maxLength" in schema:
        value = value[: int(schema["maxLength"])]
    return value


def _integer_example(schema: Dict[str, Any]) -> int:
    value = 1
    if "minimum" in schema:
        value = max(value, math.ceil(schema["minimum"]))
    if "exclusiveMinimum" in schema and value <= schema["exclusiveMinimum"]:
        value = math.floor(schema["exclusiveMinimum"]) + 1
    if "maximum" in schema and value > schema["maximum"]:
        value = math.floor(schema["maximum"])
    if "exclusiveMaximum" in schema and value >= schema["exclusiveMaximum"]:
        value = math.ceil(schema["exclusiveMaximum"]) - 1
    multiple = schema.get("multipleOf")
    if isinstance(multiple, int) and multiple > 0 and value % multiple:
        value += multiple - value % multiple
    return value


def _number_example(schema: Dict[str, Any]) -> float:
    value = 1.5
    if "minimum" in schema and value < schema["minimum"]:
        value = float(schema["minimum"])
    if "exclusiveMinimum" in schema and value <= schema["exclusiveMinimum"]:
        value = float(schema["exclusiveMinimum"]) + 1
    if "maximum" in schema and value > schema["maximum"]:
        value = float(schema["maximum"])
    if "exclusiveMaximum" in schema and value >= schema["exclusiveMaximum"]:
        value = float(schema["exclusiveMaximum"]) - 1
    return value
