import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from pawsy.services.breed_risks import BREED_HEALTH_RISKS, lookup, match_breed


def test_table_covers_reference_breeds():
    assert len(BREED_HEALTH_RISKS) == 15
    for breed, risks in BREED_HEALTH_RISKS.items():
        assert risks, breed
        for risk in risks:
            assert risk.age_min <= risk.age_max
            assert risk.severity in {"low", "moderate", "high", "critical"}


def test_lookup_is_case_insensitive_and_alias_aware():
    canonical = lookup("Labrador Retriever")
    assert [risk.name for risk in lookup("labrador retriever")] == [risk.name for risk in canonical]
    assert [risk.name for risk in lookup("Lab")] == [risk.name for risk in canonical]
    assert match_breed("  german-shepherd  ") == "German Shepherd"
    assert match_breed("Husky") == "Siberian Husky"


def test_hip_dysplasia_range_for_labradors():
    hip = next(risk for risk in lookup("Labrador Retriever") if risk.name == "Hip Dysplasia")
    assert (hip.age_min, hip.age_max) == (1, 6)
    assert hip.severity == "high"


def test_unknown_breed_returns_empty_list():
    assert lookup("Mystery Mutt") == []
    assert lookup("") == []
    assert lookup(None) == []


def test_lookup_returns_a_copy():
    risks = lookup("Beagle")
    risks.clear()
    assert lookup("Beagle")
