"""
Schema Validator

Validates arbitrary payloads against JSON-Schema (draft-07) definitions and
turns jsonschema's errors into a ``field path -> message`` map that the UI can
show as-is.

Rules:
  - Vendor keywords (``x-format``, ``x-field-order``, embedded ``ui``) are
    accepted and ignored.
  - A field that is both missing and "wrong type" only reports the required
    error. A ``None`` value for a required property counts as missing.
  - Display names prefer the property's ``title``; otherwise the raw key is
    capitalised.
  - One message per field, first error wins.

Usage:
    from app.services.schema_validator import schema_validator

    result = schema_validator.validate(schema, data)
    schema_validator.validate_proposal_data(template, data)   # raises ValidationError
    check = schema_validator.check_schema(schema)              # admin pre-flight
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft7Validator, FormatChecker
from jsonschema.exceptions import SchemaError

from app.core.exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

ROOT_FIELD = "root"


@dataclass
class SchemaValidationResult:
    valid: bool
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": dict(self.errors)}


@dataclass
class SchemaCheckResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors)}


def _format_limit(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, float):
        return f"{int(value):,}" if value.is_integer() else f"{value:,}"
    return str(value)


def _capitalize(name: str) -> str:
    return name[:1].upper() + name[1:] if name else name


def _walk(schema: Any, path: list) -> Any:
    node = schema
    for key in path:
        if isinstance(node, dict) and key in node:
            node = node[key]
        elif isinstance(node, list) and isinstance(key, int) and key < len(node):
            node = node[key]
        else:
            return None
    return node


def _resolve_pointer(schema: dict, ref: str) -> bool:
    """True if a local ``#/...`` JSON pointer resolves inside ``schema``."""
    pointer = ref[1:]
    if not pointer:
        return True
    parts = [p.replace("~1", "/").replace("~0", "~") for p in pointer.lstrip("/").split("/")]
    node: Any = schema
    for part in parts:
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return False
    return True


def _collect_refs(node: Any, found: list[str]) -> None:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str):
            found.append(ref)
        for value in node.values():
            _collect_refs(value, found)
    elif isinstance(node, list):
        for item in node:
            _collect_refs(item, found)


class SchemaValidator:
    """jsonschema-backed validator with human-readable, per-field errors."""

    def __init__(self) -> None:
        self._format_checker = FormatChecker()

    # ── Public API ───────────────────────────────────────────────────────

    def validate(self, schema: dict, data: Any) -> SchemaValidationResult:
        """Validate ``data`` against ``schema``.

        Raises:
            ConfigurationError: the schema itself is not a valid draft-07 schema.
        """
        try:
            Draft7Validator.check_schema(schema)
        except SchemaError as exc:
            raise ConfigurationError(f"Invalid schema: {exc.message}") from exc

        validator = Draft7Validator(schema, format_checker=self._format_checker)
        raw_errors = list(validator.iter_errors(data))
        if not raw_errors:
            return SchemaValidationResult(valid=True)

        errors: dict[str, str] = {}
        required_fields: set[str] = set()

        # First pass: required (missing or null) properties.
        for error in raw_errors:
            if error.validator == "required":
                parent_path = [str(p) for p in error.absolute_path]
                instance = error.instance if isinstance(error.instance, dict) else {}
                for prop in error.validator_value or []:
                    if prop in instance:
                        continue
                    self._add_required(errors, required_fields, parent_path, prop, error.schema)
            elif error.validator == "type" and error.instance is None:
                prop, parent_schema = self._parent_of(schema, error)
                if prop is not None and prop in (parent_schema.get("required") or []):
                    parent_path = [str(p) for p in list(error.absolute_path)[:-1]]
                    self._add_required(errors, required_fields, parent_path, prop, parent_schema)

        # Second pass: everything else, never a type error on a required field.
        for error in raw_errors:
            if error.validator == "required":
                continue
            field_path = self._field_path(error)
            if field_path in required_fields:
                continue
            if field_path not in errors:
                errors[field_path] = self._format_message(error, field_path)

        return SchemaValidationResult(valid=False, errors=errors)

    def validate_proposal_data(self, proposal_template: dict, proposal_data: Any) -> None:
        """Validate proposal data, raising a structured failure.

        Raises:
            ValidationError: ``str(exc)`` lists every field error;
                             ``exc.details`` is the field -> message map.
        """
        result = self.validate(proposal_template, proposal_data)
        if not result.valid:
            summary = ", ".join(f"{name}: {message}" for name, message in result.errors.items())
            raise ValidationError(f"Proposal validation failed: {summary}", result.errors)

    def check_schema(self, schema: Any) -> SchemaCheckResult:
        """Pre-flight check that a schema document is well-formed and compilable.

        Independent of any data. Collects every meta-schema violation plus
        unresolvable or external ``$ref`` pointers.
        """
        if not isinstance(schema, dict):
            return SchemaCheckResult(valid=False, errors=["Schema must be a JSON object"])

        meta = Draft7Validator(Draft7Validator.META_SCHEMA)
        problems = []
        for error in sorted(meta.iter_errors(schema), key=lambda e: [str(p) for p in e.absolute_path]):
            location = "/".join(str(p) for p in error.absolute_path) or ROOT_FIELD
            problems.append(f"{location}: {error.message}")

        refs: list[str] = []
        _collect_refs(schema, refs)
        for ref in refs:
            if not ref.startswith("#"):
                problems.append(f"$ref '{ref}': external references are not supported")
            elif not _resolve_pointer(schema, ref):
                problems.append(f"$ref '{ref}': pointer does not resolve")

        return SchemaCheckResult(valid=not problems, errors=problems)

    def assert_valid_schema(self, schema: Any, label: str = "schema") -> None:
        """Raise ValidationError if ``check_schema`` fails."""
        result = self.check_schema(schema)
        if not result.valid:
            logger.info("Rejected %s: %d schema problem(s)", label, len(result.errors))
            raise ValidationError(
                f"Invalid {label}: {'; '.join(result.errors)}",
                {label: "; ".join(result.errors)},
            )

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _add_required(errors, required_fields, parent_path, prop, parent_schema) -> None:
        field_path = ".".join(parent_path + [prop])
        required_fields.add(field_path)
        title = None
        if isinstance(parent_schema, dict):
            title = ((parent_schema.get("properties") or {}).get(prop) or {}).get("title")
        errors[field_path] = f"{title or _capitalize(prop)} is required"

    @staticmethod
    def _parent_of(root_schema: dict, error) -> tuple[str | None, dict]:
        """For a property-level error, return (property name, owning object schema)."""
        path = list(error.absolute_path)
        schema_path = list(error.absolute_schema_path)
        if not path or len(schema_path) < 3 or schema_path[-3] != "properties":
            return None, {}
        parent = _walk(root_schema, schema_path[:-3])
        return str(path[-1]), parent if isinstance(parent, dict) else {}

    @staticmethod
    def _field_path(error) -> str:
        path = [str(p) for p in error.absolute_path]
        return ".".join(path) if path else ROOT_FIELD

    @staticmethod
    def _display_name(error, field_path: str) -> str:
        title = error.schema.get("title") if isinstance(error.schema, dict) else None
        if title and field_path != ROOT_FIELD:
            return title
        return _capitalize(field_path.split(".")[-1])

    def _format_message(self, error, field_path: str) -> str:
        name = self._display_name(error, field_path)
        keyword = error.validator
        limit = error.validator_value

        if keyword == "type":
            expected = limit if isinstance(limit, list) else [limit]
            if "number" in expected or "integer" in expected:
                return f"{name} must be a number"
            if "string" in expected:
                return f"{name} must be text"
            return f"{name} has an invalid format"
        if keyword == "minimum":
            return f"{name} must be at least {_format_limit(limit)}"
        if keyword == "maximum":
            return f"{name} cannot exceed {_format_limit(limit)}"
        if keyword == "exclusiveMinimum":
            return f"{name} must be greater than {_format_limit(limit)}"
        if keyword == "exclusiveMaximum":
            return f"{name} must be less than {_format_limit(limit)}"
        if keyword == "minLength":
            return f"{name} must be at least {_format_limit(limit)} characters"
        if keyword == "maxLength":
            return f"{name} cannot exceed {_format_limit(limit)} characters"
        if keyword == "minItems":
            return f"{name} must have at least {_format_limit(limit)} items"
        if keyword == "maxItems":
            return f"{name} cannot have more than {_format_limit(limit)} items"
        if keyword == "enum":
            return f"{name} must be one of: {', '.join(str(v) for v in limit)}"
        if keyword == "const":
            return f"{name} must be {limit}"
        if keyword in ("oneOf", "anyOf"):
            allowed = [
                str(option["const"]) for option in limit or []
                if isinstance(option, dict) and "const" in option
            ]
            if allowed:
                return f"{name} must be one of: {', '.join(allowed)}"
            return f"{name} is invalid"
        if keyword == "format":
            return f"{name} has an invalid {limit} format"
        if keyword == "pattern":
            return f"{name} has an invalid format"
        return f"{name} is invalid"


# Module-level singleton
schema_validator = SchemaValidator()
