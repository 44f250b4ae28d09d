from harvester.core.models import CandidateRecord, parse_run_input
from harvester.etl.filters import FilterPipeline


def record(**fields):
    fields.setdefault("business_name", "Cafe Luna")
    return CandidateRecord(**fields)


def test_default_pipeline_only_flags_closed():
    pipeline = FilterPipeline()

    assert pipeline.evaluate(record()) == "extracted"
    assert pipeline.evaluate(record(closed=True)) == "closed"


def test_closed_check_can_be_disabled():
    assert FilterPipeline(skip_closed_places=False).evaluate(record(closed=True)) == "extracted"


def test_first_matching_rule_wins():
    pipeline = FilterPipeline(require_website=True, min_rating=4)

    assert pipeline.evaluate(record(closed=True, rating=2.0)) == "closed"
    assert pipeline.evaluate(record(rating=2.0)) == "no_website"
    assert pipeline.evaluate(record(website="https://luna.test/", rating=2.0)) == "low_rating"
    assert pipeline.evaluate(record(website="https://luna.test/", rating=4.0)) == "extracted"


def test_missing_rating_fails_min_rating():
    assert FilterPipeline(min_rating=3.5).evaluate(record(rating=None)) == "low_rating"


def test_from_run_input():
    run_input = parse_run_input(
        {
            "queries": [{"searchTerm": "cafes", "location": "Lisbon"}],
            "skipClosedPlaces": False,
            "requireWebsite": True,
            "minRating": 4.5,
        }
    )

    pipeline = FilterPipeline.from_run_input(run_input)

    assert pipeline.skip_closed_places is False
    assert pipeline.require_website is True
    assert pipeline.min_rating == 4.5
