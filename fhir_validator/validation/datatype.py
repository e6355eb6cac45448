"""
Structural datatype predicates for FHIR element values.

Each type code maps to a predicate over the JSON value. Primitive types
check the JSON shape plus the lexical form FHIR prescribes; complex types
check the fields the validator relies on elsewhere; any other type code is
accepted as long as the value is an object.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, List
from urllib.parse import urlparse

from ..core.errors import Issue, IssueCode, create_issue
from ..core.schemas import ElementRule
from ..core.value import as_items, is_absent, is_mapping, is_number, is_sequence
from .paths import display_path

_ID = re.compile(r"^[A-Za-z0-9\-.]{1,64}$")
_URI_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:.+")
_DATE = re.compile(r"^\d{4}(-\d{2}(-\d{2})?)?$")
_DATE_TIME = re.compile(
    r"^\d{4}(-\d{2}(-\d{2}(T\d{2}(:\d{2}(:\d{2}(\.\d+)?)?)?(Z|[+-]\d{2}:\d{2})?)?)?)?$"
)
_INSTANT = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$")
_TIME = re.compile(r"^\d{2}:\d{2}:\d{2}(\.\d+)?$")
_OID = re.compile(r"^urn:oid:[0-2](\.(0|[1-9][0-9]*))+$")
_UUID = re.compile(r"^urn:uuid:[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


def _is_string(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


def _is_uri(value: Any) -> bool:
    if not _is_string(value):
        return False
    parsed = urlparse(value)
    if parsed.scheme and parsed.netloc:
        return True
    return bool(_URI_SCHEME.match(value))


def _is_url(value: Any) -> bool:
    if not _is_string(value):
        return False
    parsed = urlparse(value)
    return bool(parsed.scheme) and (bool(parsed.netloc) or parsed.scheme in ("urn", "mailto", "data"))


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, int) or (isinstance(value, float) and value.is_integer())


def _is_quantity(value: Any) -> bool:
    return (
        is_mapping(value)
        and is_number(value.get("value"))
        and all(isinstance(value.get(k), str) for k in ("unit", "system", "code"))
    )


def _is_codeable_concept(value: Any) -> bool:
    return is_mapping(value) and (is_sequence(value.get("coding")) or isinstance(value.get("text"), str))


def _is_coding(value: Any) -> bool:
    return is_mapping(value) and (isinstance(value.get("code"), str) or isinstance(value.get("system"), str))


def _is_object(value: Any) -> bool:
    return is_mapping(value)


TYPE_PREDICATES: Dict[str, Callable[[Any], bool]] = {
    "string": _is_string,
    "markdown": lambda v: isinstance(v, str),
    "xhtml": _is_string,
    "base64Binary": lambda v: isinstance(v, str),
    "code": _is_string,
    "id": lambda v: isinstance(v, str) and bool(_ID.match(v)),
    "uri": _is_uri,
    "url": _is_url,
    "canonical": _is_uri,
    "oid": lambda v: isinstance(v, str) and bool(_OID.match(v)),
    "uuid": lambda v: isinstance(v, str) and bool(_UUID.match(v)),
    "dateTime": lambda v: isinstance(v, str) and bool(_DATE_TIME.match(v)),
    "date": lambda v: isinstance(v, str) and bool(_DATE.match(v)),
    "instant": lambda v: isinstance(v, str) and bool(_INSTANT.match(v)),
    "time": lambda v: isinstance(v, str) and bool(_TIME.match(v)),
    "boolean": lambda v: isinstance(v, bool),
    "integer": _is_integer,
    "positiveInt": lambda v: _is_integer(v) and v > 0,
    "unsignedInt": lambda v: _is_integer(v) and v >= 0,
    "decimal": is_number,
    "Quantity": _is_quantity,
    "CodeableConcept": _is_codeable_concept,
    "Coding": _is_coding,
    "Extension": lambda v: is_mapping(v) and isinstance(v.get("url"), str),
    "Narrative": lambda v: is_mapping(v) and isinstance(v.get("status"), str) and isinstance(v.get("div"), str),
}

# FHIRPath system types used by primitive ``value`` elements
TYPE_PREDICATES.update({
    "String": TYPE_PREDICATES["string"],
    "Boolean": TYPE_PREDICATES["boolean"],
    "Integer": TYPE_PREDICATES["integer"],
    "Decimal": TYPE_PREDICATES["decimal"],
    "Date": TYPE_PREDICATES["date"],
    "DateTime": TYPE_PREDICATES["dateTime"],
    "Time": TYPE_PREDICATES["time"],
})


def matches_type(value: Any, type_code: str) -> bool:
    predicate = TYPE_PREDICATES.get(type_code, _is_object)
    return predicate(value)


def matches_any(value: Any, type_codes: List[str]) -> bool:
    return any(matches_type(value, code) for code in type_codes)


def check(path: str, value: Any, rule: ElementRule) -> List[Issue]:
    """TypeMismatch when no candidate type accepts the value (every item, for lists)."""
    type_codes = rule.type_codes
    if not type_codes or is_absent(value):
        return []

    if all(matches_any(item, type_codes) for item in as_items(value)):
        return []

    return [create_issue(
        IssueCode.TYPE_MISMATCH,
        display_path(path),
        f"Invalid type for {path}. Expected {' or '.join(type_codes)}.",
    )]
