"""JSON Schema validation infrastructure.

Schemas ship with the package under ``facetcut/schemas/``:
- ``interface.schema.json``          module interface descriptions (ABI)
- ``address-map.schema.json``        module name -> address
- ``deployment-ledger.schema.json``  versioned deployment history
- ``diamond-ledger.schema.json``     cut-in facets and fund transfers

Validators are cached; the registry makes every bundled schema resolvable by
its ``$id``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from facetcut.core import load_json

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"


@lru_cache(maxsize=1)
def _schema_registry() -> Registry:
    resources = []
    for schema_path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.facetcut.dev/{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    """Return a validator for a bundled schema, e.g. ``"address-map"``."""
    schema_path = SCHEMAS_DIR / f"{name}.schema.json"
    if not schema_path.exists():
        raise FileNotFoundError(f"unknown schema: {name}")
    return Draft202012Validator(load_json(schema_path), registry=_schema_registry())


def validate_against_schema(obj: Any, name: str) -> List[str]:
    """Validate an object against a bundled schema.

    Returns list of validation error messages (empty if valid).
    """
    validator = schema_validator(name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]
