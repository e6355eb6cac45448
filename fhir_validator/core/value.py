"""
JSON value model used by the validation engine.

Instance documents are plain JSON trees (``dict``/``list``/scalars). This
module gives them an explicit shape: a ``ValueKind`` tag, a ``MISSING``
sentinel that keeps "property not present" apart from JSON ``null``, and
dotted-path accessors used by the checkers and the walker.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

JSONScalar = Union[None, bool, int, float, str]
Value = Union[JSONScalar, Sequence["Value"], Mapping[str, "Value"]]


class _Missing:
    """Marker for a property that does not occur in the document."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


class ValueKind(str, Enum):
    MISSING = "missing"
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    SEQUENCE = "sequence"
    MAPPING = "mapping"


def kind_of(value: Any) -> ValueKind:
    if value is MISSING:
        return ValueKind.MISSING
    if value is None:
        return ValueKind.NULL
    # bool is a subclass of int, test it first
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, Mapping):
        return ValueKind.MAPPING
    if isinstance(value, (list, tuple)):
        return ValueKind.SEQUENCE
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


def is_absent(value: Any) -> bool:
    return value is MISSING or value is None


def is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def is_mapping(value: Any) -> bool:
    return isinstance(value, Mapping)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_empty(value: Any) -> bool:
    """Absent, or a collection/string with nothing in it."""
    if is_absent(value):
        return True
    if isinstance(value, (str, list, tuple)) or is_mapping(value):
        return len(value) == 0
    return False


def as_items(value: Any) -> List[Any]:
    """Occurrences of a property: a list stays a list, a scalar becomes one item, absent becomes none."""
    if is_absent(value):
        return []
    if is_sequence(value):
        return list(value)
    return [value]


def get_property(obj: Any, name: str) -> Any:
    if is_mapping(obj) and name in obj:
        return obj[name]
    return MISSING


def get_path(obj: Any, dotted: str) -> Any:
    """Follow a dotted path through mappings; lists fan out to their first item."""
    current = obj
    for part in dotted.split("."):
        if is_sequence(current):
            current = current[0] if current else MISSING
        current = get_property(current, part)
        if current is MISSING:
            return MISSING
    return current


def collect_path(obj: Any, dotted: str) -> List[Any]:
    """All values reachable by a dotted path, flattening lists along the way."""
    current: List[Any] = as_items(obj)
    for part in dotted.split("."):
        following: List[Any] = []
        for item in current:
            following.extend(as_items(get_property(item, part)))
        current = following
    return current


def choice_property_name(base: str, type_code: str) -> str:
    return base + type_code[:1].upper() + type_code[1:]


def resolve_choice(obj: Any, name: str, type_codes: Iterable[str]) -> Tuple[Optional[str], Any]:
    """Find the concrete property for a ``foo[x]`` element.

    Returns the property name and its value, or ``(None, MISSING)``.
    """
    if not name.endswith("[x]"):
        value = get_property(obj, name)
        return (name if value is not MISSING else None), value

    base = name[:-3]
    for code in type_codes:
        candidate = choice_property_name(base, code)
        value = get_property(obj, candidate)
        if value is not MISSING:
            return candidate, value

    # Profile did not list the type; accept any typed variant of the base name
    if is_mapping(obj):
        for key, value in obj.items():
            if key.startswith(base) and key[len(base):len(base) + 1].isupper():
                return key, value
    return None, MISSING


def matches_choice(property_name: str, choice_name: str) -> bool:
    """True if ``effectiveDateTime`` is a typed variant of ``effective[x]``."""
    if not choice_name.endswith("[x]"):
        return False
    base = choice_name[:-3]
    rest = property_name[len(base):]
    return property_name.startswith(base) and rest[:1].isupper()


def freeze(value: Any) -> Any:
    """Read-only deep view of a JSON tree."""
    if is_mapping(value):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if is_sequence(value):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of ``freeze``: plain dicts and lists again."""
    if is_mapping(value):
        return {k: thaw(v) for k, v in value.items()}
    if is_sequence(value):
        return [thaw(v) for v in value]
    return value


def json_equal(left: Any, right: Any) -> bool:
    """Structural equality that does not confuse ``True`` with ``1``."""
    if is_mapping(left) and is_mapping(right):
        return left.keys() == right.keys() and all(json_equal(left[k], right[k]) for k in left)
    if is_sequence(left) and is_sequence(right):
        return len(left) == len(right) and all(json_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


Document = Dict[str, Any]
