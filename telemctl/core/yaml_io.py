"""JSON/YAML document reading and packaged-schema validation.

Project and settings files share one loader. JSON is a subset of YAML, so both
formats go through PyYAML; duplicate keys are rejected and only the JSON
spellings of booleans are recognised ("on", "yes" and friends stay strings).
"""

from __future__ import annotations

import functools
import json
import re
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from telemctl.core.errors import TelemctlError

_BOOL_TAG = "tag:yaml.org,2002:bool"
_JSON_BOOL_RE = re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$")


class DuplicateKeyError(yaml.YAMLError):
    pass


class DocumentLoader(yaml.SafeLoader):
    """Safe loader with duplicate-key detection and JSON-only booleans."""

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        seen: dict[Any, Any] = {}
        for key_node, value_node in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                line = key_node.start_mark.line + 1
                raise DuplicateKeyError(f"Duplicate key '{key}' on line {line}")
            seen[key] = self.construct_object(value_node, deep=deep)
        return seen


def _without_yaml11_bools(resolvers: dict[str, list]) -> dict[str, list]:
    return {
        first_char: [(tag, regexp) for tag, regexp in entries if tag != _BOOL_TAG]
        for first_char, entries in resolvers.items()
    }


DocumentLoader.yaml_implicit_resolvers = _without_yaml11_bools(yaml.SafeLoader.yaml_implicit_resolvers)
DocumentLoader.add_implicit_resolver(_BOOL_TAG, _JSON_BOOL_RE, list("tTfF"))
DocumentLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    DocumentLoader.construct_mapping,
)


@functools.lru_cache(maxsize=None)
def load_schema_validator(name: str) -> Any:
    """Return a validator for a JSON schema shipped in ``telemctl.schemas``."""
    schema = json.loads(resources.files("telemctl.schemas").joinpath(name).read_text(encoding="utf-8"))
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def read_document(
    path: Path,
    *,
    load_error: type[TelemctlError],
    validation_error: type[TelemctlError],
) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise load_error(f"Could not read {path}: {exc}") from exc
    return parse_document(content, source=str(path), validation_error=validation_error)


def parse_document(content: str, *, source: str, validation_error: type[TelemctlError]) -> dict[str, Any]:
    try:
        document = yaml.load(content, Loader=DocumentLoader)
    except yaml.YAMLError as exc:
        raise validation_error(f"Invalid document {source}: {exc}") from exc

    if not isinstance(document, dict):
        raise validation_error(f"{source} must contain a mapping at root")
    return document


def validate_document(
    validator: Any,
    doc: dict[str, Any],
    *,
    source: str,
    validation_error: type[TelemctlError],
) -> None:
    try:
        validator.validate(doc)
    except ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path)
        where = f" at {location}" if location else ""
        raise validation_error(f"Schema validation failed for {source}{where}: {exc.message}") from exc
