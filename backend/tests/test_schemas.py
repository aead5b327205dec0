import pytest

from conftest import blank_travel_laws
from travel_kb.schemas.destination import (
    EnhancedDestination,
    QualityMetrics,
    TravelLaws,
)
from travel_kb.schemas.search import SearchRequest


def test_overall_score_is_mean_of_dimensions():
    q = QualityMetrics(
        freshness=1.0,
        source_reliability=0.8,
        user_validation=0.6,
        expert_review=0.4,
        cross_reference_accuracy=0.2,
    )
    assert q.overall_score == pytest.approx(0.6)

    q.expert_review = 0.9
    assert q.overall_score == pytest.approx(0.7)


def test_quality_dimensions_are_clamped():
    q = QualityMetrics(freshness=1.7, source_reliability=-0.3)
    assert q.freshness == 1.0
    assert q.source_reliability == 0.0


def test_default_destination_has_every_block():
    d = EnhancedDestination()
    assert d.country == "Unknown"
    assert d.cost_level == "moderate"
    assert d.safety_rating == 7.0
    assert d.travel_laws.immigration.max_stay_duration == 90
    assert [v.violation for v in d.severe_violations()] == ["Overstaying visa"]
    assert "Follow local laws and regulations" in d.travel_laws.penalties.emergency_procedures
    assert len(d.language_guide.essential_phrases) == 2


def test_from_payload_accepts_camel_case_and_drops_bad_fields():
    payload = {
        "name": "Pushkar",
        "country": "India",
        "safetyRating": "not a number",
        "costLevel": "luxury",
        "bestTimeToVisit": None,
        "travelLaws": {
            "penalties": {
                "commonViolations": [
                    {"violation": "Beef consumption", "penalty": "Arrest", "severity": "SEVERE"},
                    {"penalty": "missing violation name"},
                ]
            }
        },
        "attractions": [
            {"name": "Brahma Temple", "description": "One of few Brahma temples"},
            {"description": "no name, dropped"},
            "garbage",
        ],
    }

    d = EnhancedDestination.from_payload(payload)

    assert d.name == "Pushkar"
    assert d.safety_rating == 7.0
    assert d.cost_level == "expensive"
    assert d.best_time_to_visit == ["Year-round"]
    assert [a.name for a in d.attractions] == ["Brahma Temple"]
    assert [v.violation for v in d.severe_violations()] == ["Beef consumption"]
    # untouched blocks keep their defaults
    assert d.cultural_norms.etiquette == ["Be respectful and polite", "Learn basic greetings"]


def test_from_payload_non_dict_gives_defaults():
    for junk in ("nonsense", None, [1, 2]):
        d = EnhancedDestination.from_payload(junk)
        assert d.name == ""
        assert d.country == "Unknown"
        assert d.severe_violations()


def test_roundtrip_through_json_keeps_shape():
    d = EnhancedDestination(name="Kyoto", country="Japan", cost_level="expensive")
    restored = EnhancedDestination.from_payload(d.model_dump(mode="json"))
    assert restored.name == "Kyoto"
    assert restored.cost_level == "expensive"
    assert restored.metadata.data_quality.overall_score == d.metadata.data_quality.overall_score


def test_travel_laws_emptiness():
    assert not TravelLaws().is_empty()
    assert blank_travel_laws().is_empty()
    assert TravelLaws.minimal().penalties.common_violations == []
    assert not TravelLaws.minimal().is_empty()


def test_search_request_defaults():
    req = SearchRequest(query="temples in rajasthan")
    assert req.limit == 10
    assert req.context.interests == []
    assert req.filters.countries == []
