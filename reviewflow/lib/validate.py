"""
JSON Schema checks for .ai-review.yml and JSON reports.

Schemas ship in reviewflow/schemas. A validator is built once per schema and
collects every violation, so `rf config validate` reports all problems in a
config file at once instead of the first one.
"""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


class SchemaError(Exception):
    """A document does not match its schema."""

    def __init__(self, schema_name: str, problems: list[str], target: Path | None = None):
        self.schema_name = schema_name
        self.problems = problems
        self.target = target
        where = f"Refusing to write invalid {schema_name} to {target}" if target else f"Invalid {schema_name}"
        super().__init__(f"{where}: {'; '.join(problems)}")


@lru_cache(maxsize=None)
def _validator(schema_name: str):
    schema = json.loads((SCHEMAS_DIR / f"{schema_name}.schema.json").read_text())
    cls = jsonschema.validators.validator_for(schema)
    cls.check_schema(schema)
    return cls(schema)


def schema_problems(data, schema_name: str) -> list[str]:
    """Every violation of the named schema as "<path>: <message>", in document order."""
    errors = sorted(
        _validator(schema_name).iter_errors(data),
        key=lambda e: [str(p) for p in e.absolute_path],
    )
    return [
        f"{'.'.join(str(p) for p in e.absolute_path) or '(root)'}: {e.message}"
        for e in errors
    ]


def ensure_valid(data, schema_name: str, target: Path | None = None) -> None:
    """
    Raise SchemaError unless data matches the schema.

    Args:
        data: Parsed document
        schema_name: "review_config" or "report"
        target: File the caller is about to write, named in the error
    """
    problems = schema_problems(data, schema_name)
    if problems:
        raise SchemaError(schema_name, problems, target)
