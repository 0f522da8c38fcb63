"""
FILE DESCRIPTION: Extraction target schemas backed by pydantic models.
KEY FUNCTIONS/CLASSES: Schema, ModelSchema, schema_from_dict, schema_from_file
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from crawlsmith.errors import ResponseParseError, SchemaGenerationError
from crawlsmith.models import ValidationError

logger = logging.getLogger(__name__)


class Schema(ABC):
    """What the extractor needs from a target schema."""

    name = "schema"

    @abstractmethod
    def validate(self, data) -> List[ValidationError]:
        pass

    @abstractmethod
    def to_json_schema(self) -> Dict[str, Any]:
        """Raises SchemaGenerationError."""
        pass

    @abstractmethod
    def unmarshal(self, raw: str):
        """Raises ResponseParseError."""
        pass

    @abstractmethod
    def to_prompt_description(self) -> str:
        pass


def _field_path(loc):
    return ".".join(str(part) for part in loc) or "(root)"


def _resolve(node, defs):
    ref = node.get("$ref")
    if ref and ref.startswith("#/$defs/"):
        return defs.get(ref[len("#/$defs/"):], {})
    return node


def _type_name(node, defs):
    node = _resolve(node, defs)
    if "type" in node:
        return node["type"]
    # Optional[X] renders as anyOf [X, null]
    for option in node.get("anyOf", []):
        option = _resolve(option, defs)
        if option.get("type") != "null":
            return option.get("type", "object")
    return "object"


def _non_null(node, defs):
    node = _resolve(node, defs)
    for option in node.get("anyOf", []):
        option = _resolve(option, defs)
        if option.get("type") != "null":
            return option
    return node


class ModelSchema(Schema):
    """
    FLOW: Decodes the model reply as JSON -> Validates it with the pydantic model ->
    Reports each failure as a field-path ValidationError. Data is returned as plain JSON values.
    """

    def __init__(self, model, name=None, description=""):
        self.model = model
        self.name = name or model.__name__
        self.description = description or (model.__doc__ or "").strip()

    def unmarshal(self, raw):
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ResponseParseError(f"failed to parse response as JSON: {e}", raw_response=raw) from e

    def validate(self, data):
        try:
            self.model.model_validate(data)
        except PydanticValidationError as e:
            return [
                ValidationError(field=_field_path(err["loc"]), message=err["msg"], value=err.get("input"))
                for err in e.errors()
            ]
        return []

    def to_json_schema(self):
        try:
            return self.model.model_json_schema()
        except Exception as e:
            raise SchemaGenerationError(f"failed to generate JSON schema for {self.name}: {e}") from e

    def to_prompt_description(self):
        lines = ["## Content Type"]
        lines.append(self.description or "Extract the following structured data.")
        lines.append("")
        lines.append("## Fields to Extract")

        try:
            doc = self.model.model_json_schema()
        except Exception as e:
            logger.warning(f"[EXTRACT] no field listing for {self.name}: {e}")
            return "\n".join(lines) + "\n"

        defs = doc.get("$defs", {})
        self._describe_object(doc, defs, lines, 0)
        return "\n".join(lines) + "\n"

    def _describe_object(self, node, defs, lines, indent):
        node = _resolve(node, defs)
        required = set(node.get("required", []))
        for field_name, prop in node.get("properties", {}).items():
            self._describe_field(field_name, prop, field_name in required, defs, lines, indent)

    def _describe_field(self, field_name, prop, required, defs, lines, indent):
        prefix = "  " * indent
        type_name = _type_name(prop, defs)
        line = f"{prefix}- {field_name} ({type_name}{', required' if required else ''})"
        description = prop.get("description") or _resolve(prop, defs).get("description")
        if description:
            line += f": {description}"
        lines.append(line)

        target = _non_null(prop, defs)
        if type_name == "array":
            items = _resolve(target.get("items", {}), defs)
            if items.get("properties"):
                lines.append(f"{prefix}  Each item:")
                self._describe_object(items, defs, lines, indent + 2)
        elif type_name == "object" and target.get("properties"):
            self._describe_object(target, defs, lines, indent + 1)


# === SCHEMA FILES ===

_SCALAR_TYPES = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
}


def _python_type(field_spec, model_name):
    kind = field_spec.get("type", "string")
    if kind in _SCALAR_TYPES:
        return _SCALAR_TYPES[kind]
    if kind == "array":
        items = field_spec.get("items") or {"type": "string"}
        item_name = f"{model_name}_{field_spec.get('name', 'item')}_item"
        return List[_python_type(items, item_name)]
    if kind == "object":
        properties = field_spec.get("properties") or []
        if not properties:
            return Dict[str, Any]
        return _build_model(f"{model_name}_{field_spec.get('name', 'object')}", properties)
    raise ValueError(f"unsupported field type: {kind!r}")


def _build_model(model_name, fields, doc=""):
    definitions = {}
    for spec in fields:
        field_name = spec.get("name")
        if not field_name:
            raise ValueError(f"field without a name in {model_name}")
        annotation = _python_type(spec, model_name)
        description = spec.get("description") or None
        if spec.get("required"):
            definitions[field_name] = (annotation, Field(..., description=description))
        else:
            definitions[field_name] = (Optional[annotation], Field(spec.get("default"), description=description))
    model = create_model(model_name, **definitions)
    if doc:
        model.__doc__ = doc
    return model


def schema_from_dict(data):
    """
    Builds a ModelSchema from a declarative definition:
    {name, description, fields: [{name, type, description, required, items, properties}]}
    """
    if not isinstance(data, dict):
        raise ValueError("schema definition must be a mapping")
    fields = data.get("fields")
    if not fields:
        raise ValueError("schema definition has no fields")

    name = data.get("name") or "Extraction"
    description = data.get("description", "")
    model_name = "".join(ch if ch.isalnum() else "_" for ch in name)
    model = _build_model(model_name, fields, doc=description)
    return ModelSchema(model, name=name, description=description)


def schema_from_file(path):
    """Loads a schema definition from a .json, .yaml or .yml file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    return schema_from_dict(data)
