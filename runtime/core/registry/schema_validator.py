"""JSON Schema validation for documents crossing the runtime boundary.

Schemas live under `schemas/` and are expressed as YAML but are valid JSON
Schema Draft 2020-12 documents. Today the only boundary document is the Event
handed to the runtime by the driving scheduler.

This module is intentionally strict:
- Unknown kinds are rejected.
- Validation errors are surfaced with stable JSON Pointer-like paths.

The runtime must not rely on network access for schema resolution, so the
Draft 2020-12 meta-schema is pre-registered locally.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from referencing import Registry, Resource

from errors import PolicyViolationError, SchemaValidationError, SchemaViolation

_KIND_TO_SCHEMA_FILENAME: dict[str, str] = {
    "Event": "event.schema.yaml",
}


def _load_yaml_object(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise PolicyViolationError(f"Failed to parse YAML: {path}: {e}") from e
    if not isinstance(raw, dict):
        raise PolicyViolationError(f"Expected YAML object at root: {path}")
    return raw


def _escape_json_pointer_token(token: str) -> str:
    # RFC 6901 escaping.
    return token.replace("~", "~0").replace("/", "~1")


def _json_pointer(path: Iterable[Any]) -> str:
    parts: list[str] = []
    for p in path:
        if isinstance(p, int):
            parts.append(str(p))
        else:
            parts.append(_escape_json_pointer_token(str(p)))
    return "/" + "/".join(parts) if parts else "/"


@dataclass(frozen=True)
class SchemaBundle:
    kind: str
    schema: dict[str, Any]
    source_path: Path


class SchemaValidator:
    """Loads boundary schemas and validates documents by kind."""

    def __init__(self, bundles: dict[str, SchemaBundle]):
        self._bundles = dict(bundles)
        self._validators: dict[str, Draft202012Validator] = {}

    @classmethod
    def load_from_dir(cls, schemas_dir: Path) -> "SchemaValidator":
        schemas_dir = schemas_dir.resolve()
        if not schemas_dir.exists():
            raise PolicyViolationError(f"Schemas directory not found: {schemas_dir}")

        bundles: dict[str, SchemaBundle] = {}
        for kind, filename in _KIND_TO_SCHEMA_FILENAME.items():
            path = (schemas_dir / filename).resolve()
            if not path.exists():
                raise PolicyViolationError(f"Missing required schema file for {kind}: {path}")
            bundles[kind] = SchemaBundle(kind=kind, schema=_load_yaml_object(path), source_path=path)

        return cls(bundles)

    def validate(self, kind: str, document: Any) -> None:
        """Validate a document against the schema for its kind."""
        validator = self._get_or_build_validator(kind)

        violations: list[SchemaViolation] = []
        # Use iter_errors so we can return all violations in one response.
        for err in validator.iter_errors(document):
            violations.append(SchemaViolation(path=_json_pointer(err.absolute_path), message=err.message))

        if violations:
            # Stable order: helps tests and makes errors easier to scan.
            violations.sort(key=lambda v: (v.path, v.message))
            raise SchemaValidationError(kind=kind, violations=violations)

    def _require_bundle(self, kind: str) -> SchemaBundle:
        if kind not in self._bundles:
            raise PolicyViolationError(f"Unknown schema kind: {kind}")
        return self._bundles[kind]

    def _get_or_build_validator(self, kind: str) -> Draft202012Validator:
        if kind in self._validators:
            return self._validators[kind]

        bundle = self._require_bundle(kind)
        meta = Draft202012Validator.META_SCHEMA
        meta_id = str(meta.get("$id", "https://json-schema.org/draft/2020-12/schema"))
        registry = Registry().with_resource(meta_id, Resource.from_contents(meta))

        try:
            # Ensure the schema itself is sane.
            Draft202012Validator.check_schema(bundle.schema)
        except SchemaError as e:
            raise PolicyViolationError(f"Invalid schema for {kind} in {bundle.source_path}: {e.message}") from e

        validator = Draft202012Validator(bundle.schema, registry=registry)
        self._validators[kind] = validator
        return validator
