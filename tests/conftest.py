import json
from pathlib import Path

import pytest

from fhir_validator.config import BUNDLED_PROFILES, Settings
from fhir_validator.core.metrics import ValidatorMetrics
from fhir_validator.core.profile_store import InMemoryProfileStore
from fhir_validator.core.schemas import Profile
from fhir_validator.core.terminology import StaticTerminologyResolver
from fhir_validator.validation.validator import Validator

PATIENT_URL = "http://example.org/fhir/StructureDefinition/example-patient"
BP_URL = "http://example.org/fhir/StructureDefinition/example-blood-pressure"

GENDER_VS = "http://hl7.org/fhir/ValueSet/administrative-gender"
NAME_USE_VS = "http://hl7.org/fhir/ValueSet/name-use"
MARITAL_VS = "http://hl7.org/fhir/ValueSet/marital-status"
OBS_STATUS_VS = "http://hl7.org/fhir/ValueSet/observation-status"


def load_definition(name: str):
    p = Path(BUNDLED_PROFILES) / name
    return json.loads(p.read_text(encoding="utf-8"))


@pytest.fixture()
def settings():
    return Settings(PROFILES_PATH=str(BUNDLED_PROFILES), TERMINOLOGY_ENABLED=False, REDIS_ENABLED=False)


@pytest.fixture()
def patient_profile():
    return Profile.from_structure_definition(load_definition("patient.json"))


@pytest.fixture()
def bp_profile():
    return Profile.from_structure_definition(load_definition("blood-pressure.json"))


@pytest.fixture()
def store(patient_profile, bp_profile):
    return InMemoryProfileStore([patient_profile, bp_profile])


@pytest.fixture()
def resolver():
    return StaticTerminologyResolver({
        GENDER_VS: ["male", "female", "other", "unknown"],
        NAME_USE_VS: ["usual", "official", "temp", "nickname", "anonymous", "old", "maiden"],
        MARITAL_VS: [
            {"code": "M", "display": "Married"},
            {"code": "S", "display": "Never Married"},
        ],
        OBS_STATUS_VS: ["registered", "preliminary", "final", "amended"],
    })


@pytest.fixture()
def metrics():
    return ValidatorMetrics()


@pytest.fixture()
def validator(store, resolver, settings, metrics):
    return Validator(store, resolver=resolver, settings=settings, metrics=metrics)


@pytest.fixture()
def patient():
    return {
        "resourceType": "Patient",
        "id": "example",
        "meta": {"profile": [PATIENT_URL]},
        "identifier": [{"system": "urn:oid:1.2.36.146.595.217.0.1", "value": "12345"}],
        "active": True,
        "name": [{"use": "official", "family": "Chalmers", "given": ["Peter", "James"]}],
        "gender": "male",
        "birthDate": "1974-12-25",
        "deceasedBoolean": False,
        "_birthDate": {"extension": [{"url": "http://example.org/birthTime", "valueDateTime": "1974-12-25T14:35:45-05:00"}]},
    }


def _component(code: str, display: str, value: float):
    return {
        "code": {"coding": [{"system": "http://loinc.org", "code": code, "display": display}]},
        "valueQuantity": {"value": value, "unit": "mmHg", "system": "http://unitsofmeasure.org", "code": "mm[Hg]"},
    }


@pytest.fixture()
def blood_pressure():
    return {
        "resourceType": "Observation",
        "id": "blood-pressure",
        "meta": {"profile": [BP_URL]},
        "status": "final",
        "category": [{"coding": [{"system": "http://terminology.hl7.org/CodeSystem/observation-category", "code": "vital-signs"}]}],
        "code": {"coding": [{"system": "http://loinc.org", "code": "85354-9", "display": "Blood pressure panel"}]},
        "subject": {"reference": "Patient/example"},
        "effectiveDateTime": "2012-09-17",
        "component": [
            _component("8480-6", "Systolic blood pressure", 107),
            _component("8462-4", "Diastolic blood pressure", 60),
        ],
    }


@pytest.fixture()
def heart_rate_components():
    return [
        _component("8867-4", "Heart rate", 72),
        _component("9279-1", "Respiratory rate", 16),
    ]
