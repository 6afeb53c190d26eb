"""Schema validation for action inputs and outputs.

Manifests declare schemas in one of two shapes:

- Full JSON Schema (validated with jsonschema's Draft 2020-12 validator)
- Simplified per-field form used by newer manifests:

    input:
      text: {type: string, required: true}
      language: {type: string, default: en}

Legacy single-file actions may also embed pydantic models as validators.

The strategy is picked once by build_validator() when an action is loaded.
Validation never raises for bad data; it returns a ValidationResult.
"""

import copy
from typing import Any, Optional

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from pai.exceptions import DefinitionError


FIELD_SPEC_KEYS = {"type", "required", "default", "description", "enum"}

# Top-level keys that mark a mapping as JSON Schema unless they hold a field spec
JSON_SCHEMA_KEYWORDS = {
    "$schema", "$id", "$ref", "$defs", "$comment", "definitions",
    "type", "properties", "required", "additionalProperties", "patternProperties",
    "propertyNames", "minProperties", "maxProperties", "dependentRequired",
    "items", "prefixItems", "contains", "minItems", "maxItems", "uniqueItems",
    "enum", "const", "allOf", "anyOf", "oneOf", "not", "if", "then", "else",
    "minLength", "maxLength", "pattern", "format", "minimum", "maximum",
    "title", "description", "default", "examples",
}

FIELD_TYPES = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


class ValidationResult(BaseModel):
    """Outcome of validating a value against a schema."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    value: Any = Field(None, description="Validated value (defaults applied, models coerced)")


class SchemaValidator:
    """Base class for validator strategies."""

    kind = "none"

    def validate(self, value: Any) -> ValidationResult:
        raise NotImplementedError


class NullValidator(SchemaValidator):
    """Accepts everything. Used when no schema is declared."""

    kind = "none"

    def validate(self, value: Any) -> ValidationResult:
        return ValidationResult(valid=True, value=value)


class JsonSchemaValidator(SchemaValidator):
    """Structural validation with a full JSON Schema."""

    kind = "json_schema"

    def __init__(self, schema: dict):
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as e:
            raise DefinitionError(f"Invalid JSON schema: {e.message}")
        self.schema = schema
        self._validator = Draft202012Validator(schema)

    def validate(self, value: Any) -> ValidationResult:
        errors = sorted(self._validator.iter_errors(value), key=lambda e: list(e.absolute_path))
        if not errors:
            return ValidationResult(valid=True, value=value)

        messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            messages.append(f"{path}: {error.message}")
        return ValidationResult(valid=False, errors=messages, value=value)


class FieldValidator(SchemaValidator):
    """Lightweight presence/type check for the per-field schema form."""

    kind = "fields"

    def __init__(self, fields: dict[str, dict]):
        for name, spec in fields.items():
            if not isinstance(spec, dict):
                raise DefinitionError(f"Field '{name}' must be a mapping, got {type(spec).__name__}")
            unknown = sorted(set(spec) - FIELD_SPEC_KEYS)
            if unknown:
                raise DefinitionError(f"Unsupported keys for field '{name}': {', '.join(unknown)}")
            field_type = spec.get("type", "any")
            if field_type != "any" and (not isinstance(field_type, str) or field_type not in FIELD_TYPES):
                raise DefinitionError(f"Unknown type '{field_type}' for field '{name}'")
            if "enum" in spec and not isinstance(spec["enum"], list):
                raise DefinitionError(f"'enum' for field '{name}' must be a list")
        self.fields = fields

    def validate(self, value: Any) -> ValidationResult:
        if not isinstance(value, dict):
            return ValidationResult(
                valid=False,
                errors=[f"(root): expected an object, got {type(value).__name__}"],
                value=value,
            )

        result = dict(value)
        errors = []

        for name, spec in self.fields.items():
            if name not in result or result[name] is None:
                if "default" in spec:
                    result[name] = copy.deepcopy(spec["default"])
                elif spec.get("required", False):
                    errors.append(f"{name}: required field is missing")
                continue

            field_type = spec.get("type", "any")
            if not _matches_type(result[name], field_type):
                errors.append(
                    f"{name}: expected {field_type}, got {type(result[name]).__name__}"
                )
            elif "enum" in spec and result[name] not in spec["enum"]:
                errors.append(f"{name}: expected one of {spec['enum']!r}, got {result[name]!r}")

        return ValidationResult(valid=not errors, errors=errors, value=result)


class ModelValidator(SchemaValidator):
    """Validation through an embedded pydantic model (legacy actions)."""

    kind = "model"

    def __init__(self, model: type[BaseModel]):
        self.model = model

    def validate(self, value: Any) -> ValidationResult:
        if isinstance(value, self.model):
            return ValidationResult(valid=True, value=value.model_dump())
        try:
            instance = self.model.model_validate(value)
        except PydanticValidationError as e:
            messages = []
            for error in e.errors():
                loc = ".".join(str(p) for p in error["loc"]) or "(root)"
                messages.append(f"{loc}: {error['msg']}")
            return ValidationResult(valid=False, errors=messages, value=value)
        return ValidationResult(valid=True, value=instance.model_dump())


def _matches_type(value: Any, field_type: str) -> bool:
    if field_type == "any":
        return True
    # bool is an int subclass; keep booleans out of numeric fields
    if field_type in ("number", "integer") and isinstance(value, bool):
        return False
    return isinstance(value, FIELD_TYPES[field_type])


def is_field_schema(schema: dict) -> bool:
    """Detect the simplified per-field shape.

    A mapping is JSON Schema when one of its keys is a JSON Schema keyword
    holding something other than a field spec. Anything else is per-field,
    so a per-field schema may still declare a field called ``type`` or
    ``required``. The empty mapping is the accept-all JSON Schema.
    """
    if not schema:
        return False
    return not any(
        key in JSON_SCHEMA_KEYWORDS and not _looks_like_field_spec(spec)
        for key, spec in schema.items()
    )


def _looks_like_field_spec(spec: Any) -> bool:
    if not isinstance(spec, dict):
        return False
    return isinstance(spec.get("type"), str) or isinstance(spec.get("required"), bool) or "default" in spec


def build_validator(schema: Optional[Any]) -> SchemaValidator:
    """Pick a validator strategy for a declared schema.

    Args:
        schema: None, a JSON Schema mapping, a per-field mapping, or a
            pydantic model class

    Returns:
        SchemaValidator instance

    Raises:
        DefinitionError: If the schema is not a mapping or not valid JSON Schema
    """
    if schema is None:
        return NullValidator()

    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return ModelValidator(schema)

    if not isinstance(schema, dict):
        raise DefinitionError(f"Schema must be a mapping, got {type(schema).__name__}")

    if is_field_schema(schema):
        return FieldValidator(schema)

    return JsonSchemaValidator(schema)


def validate(value: Any, schema: Optional[Any]) -> ValidationResult:
    """Validate a value against a schema of either shape.

    Example:
        >>> validate({"text": "hi"}, {"text": {"type": "string", "required": True}}).valid
        True
    """
    return build_validator(schema).validate(value)


def format_errors(prefix: str, result: ValidationResult) -> str:
    """Build the uniform validation failure message."""
    return f"{prefix} validation failed: {'; '.join(result.errors)}"
