"""JSON Schema documents for the entity shapes exchanged at the engine boundary.

Entities cross the persistence and import/export boundaries as camelCase JSON
objects. Each shape has a Draft 7 schema here; from_dict() on the models and
import_form() on the runtime check incoming dicts against them before trusting
any field, and translate jsonschema errors into the engine's own
InvalidConfiguration so callers never see jsonschema types.
"""

from typing import Any, Dict, List

import jsonschema
from jsonschema import Draft7Validator

from formbuilder.errors import InvalidConfiguration


_ID = {"type": ["integer", "string"]}
_TIMESTAMP = {"type": "string", "minLength": 1}
_STATUS = {"type": "string", "enum": ["draft", "active", "archived"]}
_ANSWER_TYPE = {
    "type": "string",
    "enum": [
        "text", "textarea", "number", "date", "dropdown",
        "radio", "checkbox", "lookup", "formula",
    ],
}

VALIDATION_RULE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {
            "type": "string",
            "enum": ["required", "minLength", "maxLength", "pattern", "range", "custom"],
        },
        "operand": {},
        "message": {"type": ["string", "null"]},
    },
    "required": ["type"],
}

VISIBILITY_RULE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "controllingQuestionTkey": {"type": "string", "minLength": 1},
        "operator": {"type": "string", "enum": ["equals", "notEquals", "contains", "isEmpty"]},
        "value": {},
        "action": {"type": "string", "enum": ["show", "hide", "require", "disable"]},
    },
    "required": ["controllingQuestionTkey", "operator", "action"],
}

PICKLIST_OPTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": ["integer", "string", "null"]},
        "label": {"type": "string"},
        "value": {"type": ["string", "number", "boolean"]},
        "order": {"type": ["integer", "null"]},
        "isDefault": {"type": "boolean"},
        "isActive": {"type": "boolean"},
    },
    "required": ["label", "value"],
}

STORAGE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "column": {"type": ["string", "null"]},
        "encrypted": {"type": "boolean"},
        "indexed": {"type": "boolean"},
        "persistToTable": {"type": ["string", "null"]},
    },
}

FORM_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": _ID,
        "name": {"type": "string", "minLength": 1},
        "slug": {"type": "string"},
        "description": {"type": ["string", "null"]},
        "formType": {"type": "string", "minLength": 1},
        "regionId": {"type": "integer"},
        "status": _STATUS,
        "etag": {"type": "string"},
        "version": {"type": "integer", "minimum": 1},
        "hasPublishedVersion": {"type": "boolean"},
        "publishedAt": {"type": ["string", "null"]},
        "createdAt": _TIMESTAMP,
        "updatedAt": _TIMESTAMP,
        "createdBy": {"type": ["string", "null"]},
        "updatedBy": {"type": ["string", "null"]},
    },
    "required": ["id", "name", "formType", "regionId"],
}

SECTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": _ID,
        "formId": _ID,
        "slug": {"type": "string"},
        "name": {"type": "string", "minLength": 1},
        "description": {"type": ["string", "null"]},
        "order": {"type": "integer", "minimum": 1},
        "isActive": {"type": "boolean"},
        "status": _STATUS,
        "etag": {"type": "string"},
        "version": {"type": "integer", "minimum": 1},
        "createdAt": _TIMESTAMP,
        "updatedAt": _TIMESTAMP,
        "createdBy": {"type": ["string", "null"]},
        "updatedBy": {"type": ["string", "null"]},
    },
    "required": ["id", "formId", "name"],
}

QUESTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": _ID,
        "formId": _ID,
        "sectionId": _ID,
        "order": {"type": "integer", "minimum": 1},
        "questionTemplateId": {"type": ["integer", "string", "null"]},
        "tkey": {"type": "string", "minLength": 1},
        "label": {"type": "string", "minLength": 1},
        "helperText": {"type": ["string", "null"]},
        "answerType": _ANSWER_TYPE,
        "required": {"type": "boolean"},
        "validation": {"type": ["array", "object"]},
        "visibility": {"type": "array", "items": VISIBILITY_RULE_SCHEMA},
        "defaultValue": {},
        "options": {"type": "array", "items": PICKLIST_OPTION_SCHEMA},
        "optionsApi": {"type": ["string", "null"]},
        "dependsOn": {"type": "array", "items": {"type": "string"}},
        "storage": {"anyOf": [STORAGE_SCHEMA, {"type": "null"}]},
        "status": _STATUS,
        "etag": {"type": "string"},
        "version": {"type": "integer", "minimum": 1},
        "createdAt": _TIMESTAMP,
        "updatedAt": _TIMESTAMP,
        "createdBy": {"type": ["string", "null"]},
        "updatedBy": {"type": ["string", "null"]},
    },
    "required": ["id", "formId", "sectionId", "tkey", "label", "answerType"],
}

TEMPLATE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": _ID,
        "tkey": {"type": "string", "minLength": 1},
        "label": {"type": "string", "minLength": 1},
        "answerType": _ANSWER_TYPE,
        "helperText": {"type": ["string", "null"]},
        "validation": {"type": ["array", "object"]},
        "defaultValue": {},
        "options": {"type": "array", "items": PICKLIST_OPTION_SCHEMA},
        "optionsApi": {"type": ["string", "null"]},
        "storageMetadata": {"anyOf": [STORAGE_SCHEMA, {"type": "null"}]},
        "availableRegions": {"type": "array", "items": {"type": "integer"}},
        "isGlobal": {"type": "boolean"},
        "category": {"type": ["string", "null"]},
        "tags": {"type": "array", "items": {"type": "string"}},
        "status": _STATUS,
        "etag": {"type": "string"},
        "version": {"type": "integer", "minimum": 1},
        "createdBy": {"type": ["string", "null"]},
        "createdAt": _TIMESTAMP,
        "updatedAt": _TIMESTAMP,
    },
    "required": ["id", "tkey", "label", "answerType"],
}

HISTORY_ENTRY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "entryId": {"type": "string"},
        "formId": _ID,
        "version": {"type": "integer", "minimum": 1},
        "action": {
            "type": "string",
            "enum": ["created", "updated", "published", "unpublished", "archived"],
        },
        "entity": {"type": "string", "enum": ["form", "section", "question", "template"]},
        "entityId": _ID,
        "changes": {"type": ["object", "null"]},
        "actor": {
            "type": "object",
            "properties": {"kind": {"type": "string"}, "id": {"type": "string"}},
            "required": ["id"],
        },
        "timestamp": _TIMESTAMP,
        "description": {"type": ["string", "null"]},
    },
    "required": ["entryId", "formId", "version", "action", "entity", "entityId", "actor", "timestamp"],
}

# Shape returned by a remote options endpoint; either a bare list or {"data": [...]}
ENDPOINT_OPTIONS_SCHEMA: Dict[str, Any] = {
    "anyOf": [
        {"type": "array", "items": PICKLIST_OPTION_SCHEMA},
        {
            "type": "object",
            "properties": {"data": {"type": "array", "items": PICKLIST_OPTION_SCHEMA}},
            "required": ["data"],
        },
    ],
}

# Export document consumed by import_form; ids are ignored on import
EXPORT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "form": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "slug": {"type": "string"},
                "description": {"type": ["string", "null"]},
                "formType": {"type": "string", "minLength": 1},
                "regionId": {"type": "integer"},
            },
            "required": ["name", "formType", "regionId"],
        },
        "sections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "description": {"type": ["string", "null"]},
                    "order": {"type": "integer", "minimum": 1},
                    "isActive": {"type": "boolean"},
                    "questions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "tkey": {"type": "string", "minLength": 1},
                                "label": {"type": "string", "minLength": 1},
                                "answerType": _ANSWER_TYPE,
                                "order": {"type": "integer", "minimum": 1},
                                "required": {"type": "boolean"},
                                "validation": {"type": ["array", "object", "null"]},
                                "visibility": {"type": "array", "items": VISIBILITY_RULE_SCHEMA},
                                "options": {"type": "array", "items": PICKLIST_OPTION_SCHEMA},
                            },
                            "required": ["tkey", "label", "answerType"],
                        },
                    },
                },
                "required": ["name"],
            },
        },
    },
    "required": ["form"],
}

_VALIDATORS: Dict[int, Draft7Validator] = {}


def _validator_for(schema: Dict[str, Any]) -> Draft7Validator:
    key = id(schema)
    validator = _VALIDATORS.get(key)
    if validator is None:
        Draft7Validator.check_schema(schema)
        validator = Draft7Validator(schema)
        _VALIDATORS[key] = validator
    return validator


def _describe(error: jsonschema.ValidationError) -> str:
    """Render a jsonschema error as "<path>: <problem>"."""
    path = ".".join(str(p) for p in error.absolute_path) or "<root>"

    if error.validator == "required":
        missing = error.message.split("'")[1] if "'" in error.message else "field"
        where = f"{path}.{missing}" if path != "<root>" else missing
        return f"{where}: is required"

    if error.validator == "type":
        return (
            f"{path}: expected {error.validator_value}, "
            f"got {type(error.instance).__name__}"
        )

    if error.validator == "enum":
        return f"{path}: must be one of {error.validator_value}"

    return f"{path}: {error.message}"


def payload_errors(schema: Dict[str, Any], data: Any) -> List[str]:
    """Return every schema violation in data as a readable string, sorted by path."""
    errors = sorted(
        _validator_for(schema).iter_errors(data),
        key=lambda e: [str(p) for p in e.absolute_path],
    )
    return [_describe(e) for e in errors]


def check_payload(schema: Dict[str, Any], data: Any, what: str) -> None:
    """Raise InvalidConfiguration if data does not satisfy schema.

    Args:
        schema: One of the schema documents in this module
        data: The decoded JSON payload
        what: Name of the entity, used in the error message

    Raises:
        InvalidConfiguration: Listing every violation found
    """
    problems = payload_errors(schema, data)
    if problems:
        raise InvalidConfiguration(
            f"Invalid {what} payload: " + "; ".join(problems),
            details={"errors": problems},
        )


__all__ = [
    "VALIDATION_RULE_SCHEMA",
    "VISIBILITY_RULE_SCHEMA",
    "PICKLIST_OPTION_SCHEMA",
    "FORM_SCHEMA",
    "SECTION_SCHEMA",
    "QUESTION_SCHEMA",
    "TEMPLATE_SCHEMA",
    "HISTORY_ENTRY_SCHEMA",
    "ENDPOINT_OPTIONS_SCHEMA",
    "EXPORT_SCHEMA",
    "payload_errors",
    "check_payload",
]
