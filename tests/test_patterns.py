from fhir_validator.core.errors import IssueCode
from fhir_validator.core.schemas import ElementRule
from fhir_validator.core.value import MISSING, freeze
from fhir_validator.validation import patterns

BP_PANEL = {"coding": [{"system": "http://loinc.org", "code": "85354-9"}]}


def test_codeable_concept_pattern_allows_extra_codings():
    value = {
        "coding": [
            {"system": "http://snomed.info/sct", "code": "75367002"},
            {"system": "http://loinc.org", "code": "85354-9", "display": "Blood pressure panel"},
        ],
        "text": "Blood pressure",
    }
    assert patterns.codeable_concept_matches(value, BP_PANEL)


def test_codeable_concept_pattern_needs_system_and_code():
    assert not patterns.codeable_concept_matches({"coding": [{"code": "85354-9"}]}, BP_PANEL)
    assert not patterns.codeable_concept_matches(
        {"coding": [{"system": "http://loinc.org", "code": "8480-6"}]}, BP_PANEL
    )
    assert not patterns.codeable_concept_matches("85354-9", BP_PANEL)


def test_partial_match():
    assert patterns.partial_match({"system": "a", "value": "1", "use": "official"}, {"system": "a"})
    assert not patterns.partial_match({"value": "1"}, {"system": "a"})
    assert patterns.partial_match({"line": ["1 Main St", "Flat 2"]}, {"line": ["Flat 2"]})
    assert patterns.partial_match(freeze({"a": {"b": [1, 2]}}), {"a": {"b": [2]}})


def _rule(**kwargs):
    return ElementRule(id="Observation.code", path="Observation.code", **kwargs)


def test_pattern_mismatch_issue():
    rule = _rule(pattern_by_kind={"CodeableConcept": BP_PANEL})
    assert patterns.check("Observation.code", BP_PANEL, rule) == []

    issues = patterns.check("Observation.code", {"coding": [{"system": "http://loinc.org", "code": "1-8"}]}, rule)
    assert [i.code for i in issues] == [IssueCode.PATTERN_MISMATCH]
    assert issues[0].path == "code"


def test_fixed_value_requires_exact_equality():
    rule = _rule(fixed_by_kind={"Code": "final"})
    assert patterns.check("Observation.status", "final", rule) == []

    issues = patterns.check("Observation.status", "amended", rule)
    assert [i.code for i in issues] == [IssueCode.FIXED_VALUE_MISMATCH]
    assert "'final'" in issues[0].message

    # fixed objects do not match partially
    fixed = _rule(fixed_by_kind={"CodeableConcept": BP_PANEL})
    assert patterns.check("Observation.code", {**BP_PANEL, "text": "BP"}, fixed)


def test_absent_value_is_not_checked():
    assert patterns.check("Observation.code", MISSING, _rule(pattern_by_kind={"CodeableConcept": BP_PANEL})) == []
