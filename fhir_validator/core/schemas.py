from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


ConstraintSeverity = Literal["error", "warning"]
SlicingRules = Literal["open", "closed", "openAtEnd"]


def normalize_type_code(code: str) -> str:
    """``http://hl7.org/fhirpath/System.String`` -> ``String``; plain codes pass through."""
    if code.startswith("http"):
        return code.rsplit(".", 1)[-1].rsplit("/", 1)[-1]
    return code


class TypeRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    profile: Tuple[str, ...] = ()

    @field_validator("code", mode="before")
    @classmethod
    def _normalize(cls, v: str) -> str:
        return normalize_type_code(v)

    @field_validator("profile", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, str):
            return (v,)
        return tuple(v)


class Constraint(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str
    severity: ConstraintSeverity = "error"
    expression: str = ""
    human_message: str = Field(default="", alias="human")


class Discriminator(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = "value"
    path: str = "$this"


class Slicing(BaseModel):
    model_config = ConfigDict(frozen=True)

    discriminator: Tuple[Discriminator, ...] = ()
    rules: SlicingRules = "open"
    ordered: bool = False


class ElementRule(BaseModel):
    """Cardinality, type, pattern, constraint and binding rules for one element path."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    path: str
    min: int = 0
    max: Union[int, Literal["*"]] = "*"
    types: Tuple[TypeRef, ...] = ()
    constraints: Tuple[Constraint, ...] = ()
    binding_value_set: Optional[str] = None
    binding_strength: Optional[str] = None
    pattern_by_kind: Mapping[str, Any] = Field(default_factory=dict)
    fixed_by_kind: Mapping[str, Any] = Field(default_factory=dict)
    slice_name: Optional[str] = None
    slicing: Optional[Slicing] = None

    @field_validator("max", mode="before")
    @classmethod
    def _parse_max(cls, v: Any) -> Any:
        if v is None or v == "*":
            return "*"
        return int(v)

    @property
    def max_count(self) -> Optional[int]:
        """Numeric maximum, or None when unbounded."""
        return None if self.max == "*" else int(self.max)

    @property
    def type_codes(self) -> List[str]:
        return [t.code for t in self.types]

    @property
    def name(self) -> str:
        return self.path.rsplit(".", 1)[-1]

    @property
    def depth(self) -> int:
        return self.path.count(".")

    @property
    def is_slice_member(self) -> bool:
        """Slice roots and everything below them carry ``:sliceName`` in their id."""
        return ":" in self.id

    @classmethod
    def from_element_definition(cls, element: Dict[str, Any]) -> "ElementRule":
        binding = element.get("binding") or {}
        slicing = element.get("slicing")
        return cls(
            id=element.get("id") or element["path"],
            path=element["path"],
            min=element.get("min", 0) or 0,
            max=element.get("max", "*"),
            types=tuple(TypeRef(code=t["code"], profile=t.get("profile")) for t in element.get("type") or []),
            constraints=tuple(Constraint(**c) for c in element.get("constraint") or []),
            binding_value_set=binding.get("valueSet"),
            binding_strength=binding.get("strength"),
            pattern_by_kind={k[len("pattern"):]: v for k, v in element.items() if k.startswith("pattern")},
            fixed_by_kind={k[len("fixed"):]: v for k, v in element.items() if k.startswith("fixed")},
            slice_name=element.get("sliceName"),
            slicing=Slicing(
                discriminator=tuple(Discriminator(**d) for d in slicing.get("discriminator") or []),
                rules=slicing.get("rules", "open"),
                ordered=slicing.get("ordered", False),
            ) if slicing else None,
        )


class Profile(BaseModel):
    """A canonical profile: an ordered list of element rules for one resource type."""

    model_config = ConfigDict(frozen=True)

    canonical_url: str
    resource_type: str
    name: Optional[str] = None
    version: Optional[str] = None
    elements: Optional[Tuple[ElementRule, ...]] = None

    @classmethod
    def from_structure_definition(cls, definition: Dict[str, Any]) -> "Profile":
        """Build a profile from a StructureDefinition, preferring its snapshot."""
        raw_elements = None
        for view in ("snapshot", "differential"):
            section = definition.get(view)
            if isinstance(section, dict) and isinstance(section.get("element"), list):
                raw_elements = section["element"]
                break

        return cls(
            canonical_url=definition.get("url", ""),
            resource_type=definition.get("type") or definition.get("id", ""),
            name=definition.get("name"),
            version=definition.get("version"),
            elements=tuple(ElementRule.from_element_definition(e) for e in raw_elements)
            if raw_elements is not None else None,
        )


def profile_from_structure_definition(definition: Dict[str, Any]) -> Profile:
    return Profile.from_structure_definition(definition)


class Concept(BaseModel):
    """One member of an expanded value set."""

    model_config = ConfigDict(frozen=True)

    code: str
    display: Optional[str] = None
    system: Optional[str] = None

    def label(self) -> str:
        if not self.display or self.code.lower() == self.display.lower():
            return self.code
        return f"{self.code} - {self.display}"
