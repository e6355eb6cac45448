import pytest

from fhir_validator.core import profile_index
from fhir_validator.core.exceptions import MalformedProfileError
from fhir_validator.core.schemas import ElementRule, Profile, normalize_type_code


def test_normalize_type_code():
    assert normalize_type_code("http://hl7.org/fhirpath/System.String") == "String"
    assert normalize_type_code("CodeableConcept") == "CodeableConcept"


def test_element_rule_from_element_definition():
    rule = ElementRule.from_element_definition({
        "id": "Observation.code",
        "path": "Observation.code",
        "min": 1,
        "max": "1",
        "type": [{"code": "CodeableConcept"}],
        "patternCodeableConcept": {"coding": [{"system": "http://loinc.org", "code": "85354-9"}]},
        "binding": {"strength": "extensible", "valueSet": "http://example.org/vs"},
        "constraint": [{"key": "obs-1", "severity": "warning", "human": "Needs a code", "expression": "exists()"}],
    })
    assert rule.min == 1
    assert rule.max_count == 1
    assert rule.type_codes == ["CodeableConcept"]
    assert list(rule.pattern_by_kind) == ["CodeableConcept"]
    assert rule.binding_strength == "extensible"
    assert rule.constraints[0].human_message == "Needs a code"
    assert rule.name == "code"
    assert not rule.is_slice_member


def test_unbounded_max():
    rule = ElementRule(id="Patient.name", path="Patient.name", max="*")
    assert rule.max_count is None


def test_profile_falls_back_to_differential():
    profile = Profile.from_structure_definition({
        "url": "http://example.org/p",
        "type": "Patient",
        "differential": {"element": [{"path": "Patient"}, {"path": "Patient.name", "min": 1}]},
    })
    assert [e.path for e in profile.elements] == ["Patient", "Patient.name"]


def test_profile_without_elements_is_malformed():
    profile = Profile.from_structure_definition({"url": "http://example.org/p", "type": "Patient"})
    assert profile.elements is None
    with pytest.raises(MalformedProfileError):
        profile_index.build(profile)


def test_build_indexes_paths_and_children(patient_profile):
    index = profile_index.build(patient_profile)
    assert index.root_path == "Patient"
    assert index.rule_for("Patient.name").max_count == 2
    assert index.rule_for("Patient.unknown") is None
    names = [r.name for r in index.child_rules("Patient.name")]
    assert names == ["use", "family", "given"]
    assert "name" in [r.name for r in index.child_rules("Patient")]


def test_build_is_deterministic(patient_profile):
    first = profile_index.build(patient_profile)
    second = profile_index.build(patient_profile)
    assert first is not second
    assert list(first.path_to_rule) == list(second.path_to_rule)
    assert first.path_to_rule == second.path_to_rule


def test_slices_are_grouped_under_base_path(bp_profile):
    index = profile_index.build(bp_profile)

    definitions = index.slices_for("Observation.component")
    assert [d.name for d in definitions] == ["systolic", "diastolic"]
    assert [r.slice_name for r in index.slices_by_base_path["Observation.component"]] == ["systolic", "diastolic"]

    systolic = definitions[0]
    assert set(systolic.children) == {"Observation.component.code", "Observation.component.value[x]"}

    # slice members never replace the base rules
    assert index.rule_for("Observation.component.value[x]").min == 0
    overlay = index.rules_for_slice(systolic)
    assert overlay["Observation.component.value[x]"].min == 1
    assert "8480-6" in str(overlay["Observation.component.code"].pattern_by_kind["CodeableConcept"])


def test_rootless_differential_gets_a_root_rule():
    profile = Profile.from_structure_definition({
        "url": "http://example.org/p",
        "type": "Patient",
        "differential": {"element": [{"path": "Patient.name", "min": 1}]},
    })
    index = profile_index.build(profile)

    root = index.rule_for("Patient")
    assert root is not None
    assert (root.min, root.max_count) == (0, None)
    assert [r.path for r in index.child_rules("Patient")] == ["Patient.name"]
