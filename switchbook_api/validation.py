# Switchbook - Mechanical Keyboard Switch Catalogue
# Copyright (C) 2025 Mariano Rozanski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# JSON Schema request validation plus the image URL safety checks

import ipaddress
import re
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

import jsonschema

from .config import BULK_CONFIG
from .errors import ValidationFailed
from .models import ClickType, SwitchTechnology, SwitchType, SWITCH_SPEC_FIELDS, to_camel
from .normalization import parse_date

FORMAT_CHECKER = jsonschema.FormatChecker(formats=())

@FORMAT_CHECKER.checks("calendar-date", raises=ValueError)
def _is_calendar_date(value: Any) -> bool:
    if isinstance(value, str) and value:
        parse_date(value)
    return True

def _nullable(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Allow null alongside the given type."""
    result = dict(schema)
    result['type'] = [schema['type'], 'null']
    return result

def _enum_or_blank(values: List[str]) -> Dict[str, Any]:
    return {"type": ["string", "null"], "enum": values + ["", None]}

FORCE = _nullable({"type": "number", "minimum": 0, "maximum": 1000})
TRAVEL = _nullable({"type": "number", "minimum": 0, "maximum": 10})
SHORT_TEXT = _nullable({"type": "string", "maxLength": 100})
TINY_TEXT = _nullable({"type": "string", "maxLength": 50})

SWITCH_PROPERTIES = {
    "name": {"type": "string", "minLength": 1, "maxLength": 100},
    "chineseName": SHORT_TEXT,
    "type": _enum_or_blank([t.value for t in SwitchType]),
    "technology": _enum_or_blank([t.value for t in SwitchTechnology]),
    "manufacturer": SHORT_TEXT,
    "compatibility": SHORT_TEXT,
    "initialForce": FORCE,
    "actuationForce": FORCE,
    "tactileForce": FORCE,
    "tactilePosition": TRAVEL,
    "bottomOutForce": FORCE,
    "preTravel": TRAVEL,
    "bottomOut": TRAVEL,
    "springWeight": TINY_TEXT,
    "springLength": TINY_TEXT,
    "progressiveSpring": {"type": ["boolean", "null"]},
    "doubleStage": {"type": ["boolean", "null"]},
    "clickType": _enum_or_blank([t.value for t in ClickType]),
    "topHousing": SHORT_TEXT,
    "bottomHousing": SHORT_TEXT,
    "stem": SHORT_TEXT,
    "topHousingColor": TINY_TEXT,
    "bottomHousingColor": TINY_TEXT,
    "stemColor": TINY_TEXT,
    "stemShape": TINY_TEXT,
    "markings": SHORT_TEXT,
    "magnetOrientation": TINY_TEXT,
    "magnetPosition": TINY_TEXT,
    "magnetPolarity": TINY_TEXT,
    "initialMagneticFlux": _nullable({"type": "number", "minimum": 0}),
    "bottomOutMagneticFlux": _nullable({"type": "number", "minimum": 0}),
    "pcbThickness": _nullable({"type": "string", "maxLength": 20}),
    "notes": _nullable({"type": "string", "maxLength": 500}),
    "imageUrl": _nullable({"type": "string", "maxLength": 2048}),
    "personalNotes": _nullable({"type": "string", "maxLength": 2000}),
    "dateObtained": _nullable({"type": "string", "maxLength": 40, "format": "calendar-date"}),
}

SWITCH_SCHEMA = {
    "type": "object",
    "properties": SWITCH_PROPERTIES,
    "required": ["name"]
}

SWITCH_UPDATE_SCHEMA = {
    "type": "object",
    "properties": {**SWITCH_PROPERTIES, "id": {"type": "string", "minLength": 1}},
    "required": ["id", "name"]
}

BULK_CREATE_SCHEMA = {
    "type": "object",
    "properties": {
        "switches": {
            "type": "array",
            "items": SWITCH_SCHEMA,
            "minItems": 1,
            "maxItems": BULK_CONFIG['MAX_SWITCHES_PER_REQUEST']
        },
        "batchId": {"type": ["string", "null"], "maxLength": 100}
    },
    "required": ["switches"]
}

BULK_UPDATE_SCHEMA = {
    "type": "object",
    "properties": {
        "switches": {
            "type": "array",
            "items": SWITCH_UPDATE_SCHEMA,
            "minItems": 1,
            "maxItems": BULK_CONFIG['MAX_SWITCHES_PER_REQUEST']
        }
    },
    "required": ["switches"]
}

MASTER_SWITCH_SUBMISSION_SCHEMA = {
    "type": "object",
    "properties": {
        **{key: value for key, value in SWITCH_PROPERTIES.items()
           if key not in ("personalNotes", "dateObtained")},
        "manufacturer": {"type": "string", "minLength": 1, "maxLength": 100},
        "submissionNotes": {"type": "string", "minLength": 10, "maxLength": 2000},
        "sourceSwitchId": {"type": ["string", "null"]},
        "confirmNotDuplicate": {"type": "boolean"}
    },
    "required": ["name", "manufacturer", "submissionNotes"]
}

SUGGEST_EDIT_SCHEMA = {
    "type": "object",
    "properties": {
        **{key: value for key, value in SWITCH_PROPERTIES.items()
           if key not in ("personalNotes", "dateObtained")},
        "editReason": {"type": "string", "minLength": 10, "maxLength": 2000},
        "changedFields": {
            "type": "array",
            "items": {"type": "string", "enum": [to_camel(f) for f in SWITCH_SPEC_FIELDS]},
            "minItems": 1,
            "uniqueItems": True
        }
    },
    "required": ["name", "editReason", "changedFields"]
}

REJECTION_SCHEMA = {
    "type": "object",
    "properties": {
        "reason": {"type": "string", "minLength": 1, "maxLength": 2000}
    },
    "required": ["reason"]
}

NOTES_SCHEMA = {
    "type": "object",
    "properties": {
        "personalNotes": _nullable({"type": "string", "maxLength": 2000})
    },
    "required": ["personalNotes"]
}

WISHLIST_SCHEMA = {
    "type": "object",
    "properties": {
        "masterSwitchId": {"type": ["string", "null"]},
        "customName": _nullable({"type": "string", "minLength": 1, "maxLength": 100}),
        "customManufacturer": SHORT_TEXT,
        "customNotes": _nullable({"type": "string", "maxLength": 500})
    },
    "anyOf": [
        {"required": ["masterSwitchId"], "properties": {"masterSwitchId": {"type": "string"}}},
        {"required": ["customName"], "properties": {"customName": {"type": "string"}}}
    ]
}

MANUFACTURER_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1, "maxLength": 100},
        "aliases": {"type": "array", "items": {"type": "string", "minLength": 1, "maxLength": 100}},
        "verified": {"type": "boolean"}
    },
    "required": ["name"]
}

MANUFACTURER_MERGE_SCHEMA = {
    "type": "object",
    "properties": {
        "sourceId": {"type": "string", "minLength": 1},
        "targetId": {"type": "string", "minLength": 1}
    },
    "required": ["sourceId", "targetId"]
}

IMAGE_LINK_SCHEMA = {
    "type": "object",
    "properties": {
        "url": {"type": "string", "minLength": 1, "maxLength": 2048},
        "caption": _nullable({"type": "string", "maxLength": 200})
    },
    "required": ["url"]
}

IMAGE_REORDER_SCHEMA = {
    "type": "object",
    "properties": {
        "imageIds": {"type": "array", "items": {"type": "string"}, "minItems": 1}
    },
    "required": ["imageIds"]
}

IMAGE_UPDATE_SCHEMA = {
    "type": "object",
    "properties": {
        "caption": _nullable({"type": "string", "maxLength": 200}),
        "order": {"type": "integer", "minimum": 0}
    }
}

REGISTER_SCHEMA = {
    "type": "object",
    "properties": {
        "email": {"type": "string", "pattern": r"^[^@\s]+@[^@\s]+\.[^@\s]+$", "maxLength": 120},
        "username": {"type": "string", "pattern": r"^[A-Za-z0-9_-]{3,30}$"},
        "password": {"type": "string", "minLength": 8, "maxLength": 128}
    },
    "required": ["email", "username", "password"]
}

LOGIN_SCHEMA = {
    "type": "object",
    "properties": {
        "email": {"type": "string", "minLength": 1},
        "password": {"type": "string", "minLength": 1}
    },
    "required": ["email", "password"]
}

def _format_error(error: jsonschema.ValidationError) -> Dict[str, str]:
    path = '.'.join(str(part) for part in error.absolute_path)
    return {'field': path or '(root)', 'message': error.message}

def collect_errors(data: Any, schema: Dict[str, Any]) -> List[Dict[str, str]]:
    """All schema violations for data, in document order."""
    validator = jsonschema.Draft7Validator(schema, format_checker=FORMAT_CHECKER)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    return [_format_error(error) for error in errors]

def validate_payload(data: Any, schema: Dict[str, Any],
                     message: str = 'Invalid input data') -> Dict[str, Any]:
    """
    Validate a request body against a schema.

    Raises:
        ValidationFailed: with field-level details when the body does not conform
    """
    if not isinstance(data, dict):
        raise ValidationFailed('Request body must be a JSON object')

    details = collect_errors(data, schema)
    details.extend(_image_url_errors(data, schema))
    if details:
        raise ValidationFailed(message, {'details': details})
    return data

def switch_item_errors(item: Any, schema: Dict[str, Any]) -> List[Dict[str, str]]:
    """Schema and image URL problems for a single switch payload."""
    if not isinstance(item, dict):
        return [{"field": "(root)", "message": "Switch payload must be an object"}]
    return collect_errors(item, schema) + _image_url_errors(item, schema)

def _image_url_errors(data: Dict[str, Any], schema: Dict[str, Any]) -> List[Dict[str, str]]:
    """Apply validate_image_url to every imageUrl the schema allows."""
    errors = []
    if 'imageUrl' in schema.get('properties', {}):
        problem = validate_image_url(data.get('imageUrl'))
        if problem:
            errors.append({'field': 'imageUrl', 'message': problem})

    switches = data.get('switches')
    if 'switches' in schema.get('properties', {}) and isinstance(switches, list):
        for index, item in enumerate(switches):
            if isinstance(item, dict):
                problem = validate_image_url(item.get('imageUrl'))
                if problem:
                    errors.append({'field': f'switches.{index}.imageUrl', 'message': problem})
    return errors

# Image URL safety

BLOCKED_HOSTNAMES = {
    'localhost', '127.0.0.1', '0.0.0.0', '::1',
    'metadata.google.internal', '169.254.169.254', 'metadata.azure.com',
}

PRIVATE_IP_PATTERNS = [
    re.compile(r'^10\.'),
    re.compile(r'^172\.(1[6-9]|2[0-9]|3[0-1])\.'),
    re.compile(r'^192\.168\.'),
    re.compile(r'^127\.'),
    re.compile(r'^169\.254\.'),
    re.compile(r'^fe80:', re.IGNORECASE),
    re.compile(r'^fc00:', re.IGNORECASE),
    re.compile(r'^fd00:', re.IGNORECASE),
    re.compile(r'^::1$'),
]

BLOCKED_TLDS = ('.local', '.internal', '.lan', '.intranet')

ALLOWED_IMAGE_URL_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.webp', '.avif', '.bmp', '.ico')

MAX_IMAGE_URL_LENGTH = 2048

def _is_private_address(hostname: str) -> bool:
    if any(pattern.search(hostname) for pattern in PRIVATE_IP_PATTERNS):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local or address.is_reserved

def validate_image_url(url: Optional[str]) -> Optional[str]:
    """
    Check that an image URL is safe to store and fetch.

    Blank values are allowed. Only HTTPS URLs to public hosts pass; internal
    hostnames, private address ranges, cloud metadata endpoints, path
    traversal and non-image file extensions are rejected.

    Returns:
        None when the URL is acceptable, otherwise a message describing why not
    """
    if url is None or url == '':
        return None
    if not isinstance(url, str):
        return 'Invalid URL'
    if len(url) > MAX_IMAGE_URL_LENGTH:
        return 'Image URL is too long'

    try:
        parsed = urlparse(url)
    except ValueError:
        return 'Invalid URL'

    if parsed.scheme != 'https':
        return 'Image URL must use HTTPS'

    hostname = (parsed.hostname or '').lower()
    if not hostname:
        return 'Invalid URL'

    if hostname in BLOCKED_HOSTNAMES:
        return 'Image URL host is not allowed'

    if _is_private_address(hostname):
        return 'Image URL points to a private network address'

    if hostname.endswith(BLOCKED_TLDS):
        return 'Image URL host is not allowed'

    raw_path = parsed.path or ''
    if '..' in raw_path or '%2e%2e' in raw_path.lower() or '..' in unquote(raw_path):
        return 'Image URL path is not allowed'

    last_segment = unquote(raw_path).rsplit('/', 1)[-1].lower()
    if '.' in last_segment and not last_segment.endswith(ALLOWED_IMAGE_URL_EXTENSIONS):
        return 'Image URL must point to an image file'

    return None
