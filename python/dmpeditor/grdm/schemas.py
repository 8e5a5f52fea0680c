"""
JSON Schemas for the GRDM API responses used by this client, along with the function
that validates response bodies against them.

The schemas only constrain the properties this client reads; the JSON:API payloads carry
many more, which are allowed to pass through.  Missing or mistyped properties that the
client depends on, however, make the whole response unusable.
"""
from collections.abc import Mapping

import jsonschema
from jsonschema.exceptions import best_match

from .exceptions import MalformedResponse

_nullable_str = { "type": ["string", "null"] }

USER = {
    "type": "object",
    "required": [ "id", "attributes", "links" ],
    "properties": {
        "id": { "type": "string" },
        "attributes": {
            "type": "object",
            "required": [ "full_name", "timezone", "email" ],
            "properties": {
                "full_name":   { "type": "string" },
                "given_name":  _nullable_str,
                "family_name": _nullable_str,
                "timezone":    { "type": "string" },
                "email":       { "type": "string" },
                "employment":  { "type": ["array", "null"], "items": { "type": "object" } },
                "social":      { "type": ["object", "null"] }
            }
        },
        "links": {
            "type": "object",
            "required": [ "profile_image" ],
            "properties": {
                "html":          { "type": "string" },
                "profile_image": { "type": "string" },
                "self":          { "type": "string" }
            }
        }
    }
}

PROJECT = {
    "type": "object",
    "required": [ "id", "type", "attributes", "links" ],
    "properties": {
        "id": { "type": "string" },
        "type": { "const": "nodes" },
        "attributes": {
            "type": "object",
            "required": [ "title", "category", "date_created", "date_modified" ],
            "properties": {
                "title":         { "type": "string" },
                "description":   _nullable_str,
                "category":      { "type": "string" },
                "date_created":  { "type": "string" },
                "date_modified": { "type": "string" }
            }
        },
        "links": {
            "type": "object",
            "required": [ "html", "self" ],
            "properties": {
                "html": { "type": "string" },
                "self": { "type": "string" }
            }
        }
    }
}

FILE = {
    "type": "object",
    "required": [ "id", "type", "attributes" ],
    "properties": {
        "id": { "type": "string" },
        "type": { "const": "files" },
        "attributes": {
            "type": "object",
            "required": [ "name", "kind", "path" ],
            "properties": {
                "name":              { "type": "string" },
                "kind":              { "enum": [ "file", "folder" ] },
                "path":              { "type": "string" },
                "materialized_path": _nullable_str,
                "provider":          { "type": "string" },
                "size":              { "type": ["integer", "null"] },
                "date_created":      _nullable_str,
                "date_modified":     _nullable_str,
                "last_touched":      _nullable_str,
                "extra": {
                    "type": ["object", "null"],
                    "properties": {
                        "hashes": {
                            "type": ["object", "null"],
                            "properties": {
                                "md5":    _nullable_str,
                                "sha256": _nullable_str
                            }
                        }
                    }
                }
            }
        },
        "links": {
            "type": "object",
            "properties": {
                "upload":     { "type": "string" },
                "new_folder": { "type": "string" },
                "download":   { "type": "string" },
                "move":       { "type": "string" },
                "delete":     { "type": "string" }
            }
        },
        "relationships": {
            "type": "object",
            "properties": {
                "files": {
                    "type": "object",
                    "required": [ "links" ],
                    "properties": {
                        "links": {
                            "type": "object",
                            "required": [ "related" ],
                            "properties": {
                                "related": {
                                    "type": "object",
                                    "required": [ "href" ],
                                    "properties": { "href": { "type": "string" } }
                                }
                            }
                        }
                    }
                }
            }
        }
    }
}

def single_schema(item_schema: Mapping) -> Mapping:
    """
    return a schema for a response that wraps a single item under ``data``
    """
    return {
        "type": "object",
        "required": [ "data" ],
        "properties": { "data": item_schema }
    }

_page_schemas = {}

def page_schema(item_schema: Mapping) -> Mapping:
    """
    return a schema for one page of a paginated listing of items matching ``item_schema``.
    The same schema instance is returned for repeated calls with the same item schema.
    """
    key = id(item_schema)
    if key not in _page_schemas:
        _page_schemas[key] = (item_schema, {
            "type": "object",
            "required": [ "data", "links" ],
            "properties": {
                "data": { "type": "array", "items": item_schema },
                "links": {
                    "type": "object",
                    "properties": { "next": _nullable_str }
                }
            }
        })
    return _page_schemas[key][1]

USER_RESPONSE = single_schema(USER)
PROJECT_RESPONSE = single_schema(PROJECT)
PROJECT_PAGE = page_schema(PROJECT)
FILE_PAGE = page_schema(FILE)

_validators = {}

def _validator_for(schema: Mapping):
    key = id(schema)
    if key not in _validators:
        jsonschema.Draft7Validator.check_schema(schema)
        _validators[key] = (schema, jsonschema.Draft7Validator(schema))
    return _validators[key][1]

def validate(data, schema: Mapping, url: str=None):
    """
    check that a parsed response body conforms to a schema.

    :param      data:  the parsed JSON response body
    :param Mapping schema:  the schema the body must match
    :param str     url:  the URL the body came from (for error messages)
    :raises MalformedResponse:  if the body does not match the schema
    :return:  the input data, unchanged
    """
    err = best_match(_validator_for(schema).iter_errors(data))
    if err:
        where = "/".join(str(p) for p in err.absolute_path) or "(root)"
        raise MalformedResponse(f"Response failed schema validation at {where}: {err.message}",
                                url, cause=err)
    return data
