"""
Per-call lookup structure derived from a Profile.

A ``ProfileIndex`` is built fresh for every validation call and dropped
with it; nothing here is cached on a long-lived object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from .exceptions import MalformedProfileError
from .schemas import ElementRule, Profile


@dataclass(frozen=True)
class SliceDefinition:
    """A slice root together with the rules that only apply inside it."""

    rule: ElementRule
    children: Mapping[str, ElementRule]

    @property
    def name(self) -> str:
        return self.rule.slice_name or self.rule.id.rsplit(":", 1)[-1]

    @property
    def base_path(self) -> str:
        return self.rule.path


@dataclass(frozen=True)
class ProfileIndex:
    profile: Profile
    path_to_rule: Mapping[str, ElementRule]
    slices_by_base_path: Mapping[str, Tuple[ElementRule, ...]]
    slice_definitions: Mapping[str, Tuple[SliceDefinition, ...]] = field(default_factory=dict)
    _children: Mapping[str, Tuple[ElementRule, ...]] = field(default_factory=dict, repr=False)

    @property
    def root_path(self) -> str:
        return self.profile.resource_type

    def rule_for(self, path: str) -> Optional[ElementRule]:
        return self.path_to_rule.get(path)

    def child_rules(self, path: str, rules: Optional[Mapping[str, ElementRule]] = None) -> Tuple[ElementRule, ...]:
        """Rules exactly one segment below ``path``, in profile order."""
        if rules is None or rules is self.path_to_rule:
            return self._children.get(path, ())
        return _children_of(path, rules)

    def slices_for(self, path: str) -> Tuple[SliceDefinition, ...]:
        return self.slice_definitions.get(path, ())

    def rules_for_slice(self, definition: SliceDefinition) -> Mapping[str, ElementRule]:
        """Base rules overlaid with the rules a slice redefines."""
        merged: Dict[str, ElementRule] = dict(self.path_to_rule)
        merged.update(definition.children)
        return MappingProxyType(merged)


def _children_of(path: str, rules: Mapping[str, ElementRule]) -> Tuple[ElementRule, ...]:
    prefix = path + "."
    depth = path.count(".") + 1
    return tuple(
        rule for p, rule in rules.items()
        if p.startswith(prefix) and p.count(".") == depth
    )


def build(profile: Profile) -> ProfileIndex:
    """Index a profile's element list by path and group its slices.

    Raises MalformedProfileError when the profile carries no element list.
    """
    if profile.elements is None:
        raise MalformedProfileError(f"Profile {profile.canonical_url or profile.resource_type} has no element list")

    path_to_rule: Dict[str, ElementRule] = {}
    slices: Dict[str, List[ElementRule]] = {}
    slice_children: Dict[str, Dict[str, ElementRule]] = {}

    for rule in profile.elements:
        if rule.slice_name:
            slices.setdefault(rule.path, []).append(rule)
            slice_children.setdefault(rule.id, {})
            continue
        if rule.is_slice_member:
            # Observation.component:systolic.code -> belongs to slice "Observation.component:systolic"
            owner = rule.id.split(".")
            slice_id = next(
                (".".join(owner[: i + 1]) for i in range(len(owner) - 1, -1, -1) if ":" in owner[i]),
                None,
            )
            if slice_id is not None:
                slice_children.setdefault(slice_id, {})[rule.path] = rule
            continue
        # first occurrence of a path wins
        path_to_rule.setdefault(rule.path, rule)

    # differential-only definitions often leave out the root element
    root = profile.resource_type
    if root and root not in path_to_rule:
        path_to_rule[root] = ElementRule(id=root, path=root, min=0, max="*")

    children: Dict[str, List[ElementRule]] = {}
    for path, rule in path_to_rule.items():
        if "." in path:
            children.setdefault(path.rsplit(".", 1)[0], []).append(rule)

    definitions = {
        base: tuple(
            SliceDefinition(rule=r, children=MappingProxyType(dict(slice_children.get(r.id, {}))))
            for r in rules
        )
        for base, rules in slices.items()
    }

    return ProfileIndex(
        profile=profile,
        path_to_rule=MappingProxyType(path_to_rule),
        slices_by_base_path=MappingProxyType({k: tuple(v) for k, v in slices.items()}),
        slice_definitions=MappingProxyType(definitions),
        _children=MappingProxyType({k: tuple(v) for k, v in children.items()}),
    )
