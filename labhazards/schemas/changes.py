"""
JSON schemas for relation-change lists.

Every many-to-many edit arrives as a list of change records tagged
``New`` or ``Deleted``. ``Default`` marks an entry the client echoes back
unchanged; it is accepted and ignored.
"""

_STATUS = {
    "type": "string",
    "enum": ["New", "Deleted", "Default"],
    "description": "New links, Deleted unlinks, Default leaves untouched.",
}

HOLDER_CHANGES_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Holder changes",
    "type": "array",
    "items": {
        "type": "object",
        "required": ["status", "sciper"],
        "properties": {
            "status": _STATUS,
            "sciper": {"type": "integer", "minimum": 1},
        },
    },
}

ENTITY_CHANGES_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Room / unit changes",
    "description": "Target named by natural key (name) or internal id.",
    "type": "array",
    "items": {
        "type": "object",
        "required": ["status"],
        "anyOf": [{"required": ["name"]}, {"required": ["id"]}],
        "properties": {
            "status": _STATUS,
            "name": {"type": "string", "minLength": 1, "maxLength": 255},
            "id": {"type": "integer", "minimum": 1},
        },
    },
}

TEXT_CHANGES_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Free-text changes (CAS codes, radiation sources, tickets)",
    "type": "array",
    "items": {
        "type": "object",
        "required": ["status", "name"],
        "properties": {
            "status": _STATUS,
            "name": {"type": "string", "minLength": 1, "maxLength": 255},
        },
    },
}
