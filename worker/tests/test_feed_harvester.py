import pytest

from fakes import CannedEnricher, DictExtractor, EndlessFeed, ListSink, ScriptedFeed, fast_settings, place
from harvester.core import feed_harvester
from harvester.core.dedup import DedupIndex
from harvester.core.feed_harvester import FeedHarvester, HarvestState
from harvester.core.models import FILTER_MODE_GATE, Query
from harvester.etl.filters import FilterPipeline

QUERY = Query(search_term="dentists", location="Austin, TX", index=1)


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(feed_harvester.time, "sleep", lambda seconds: calls.append(seconds))
    return calls


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def build(feed, *, extractor=None, pipeline=None, index=None, sink=None, **kwargs):
    kwargs.setdefault("settings", fast_settings())
    return FeedHarvester(
        feed,
        extractor or DictExtractor(),
        index if index is not None else DedupIndex(),
        pipeline or FilterPipeline(),
        sink if sink is not None else ListSink(),
        **kwargs,
    )


def test_duplicate_within_query_is_dropped():
    feed = ScriptedFeed([[place("Smile Dental", "1 Main St"), place("Bright Teeth", "2 Oak Ave"), place("  smile   DENTAL ", "1 main st ")]])
    sink = ListSink()

    result = build(feed, sink=sink).run(QUERY)

    assert [row["business_name"] for row in sink.dicts()] == ["Smile Dental", "Bright Teeth"]
    assert all(row["query_index"] == 1 for row in sink.dicts())
    assert result.places_extracted == 2
    assert result.duplicates == 1
    assert result.items_discovered == 3


def test_stall_threshold_drains_before_iteration_cap():
    feed = ScriptedFeed([[place("A"), place("B"), place("C")]])
    harvester = build(feed)

    result = harvester.run(QUERY)

    assert harvester.state is HarvestState.DRAINED
    assert result.stop_reason == feed_harvester.STOP_STALLED
    assert harvester.stall_count == 5
    assert harvester.iteration_count == 6
    assert feed.advances == 5
    assert harvester.iteration_count < harvester.settings.max_scroll_attempts


def test_stall_counter_resets_when_new_items_appear(sleeps):
    feed = ScriptedFeed([[place("A")], [], [], [place("B")]])
    harvester = build(feed, settings=fast_settings(no_new_results_threshold=3))

    result = harvester.run(QUERY)

    assert result.places_extracted == 2
    assert result.stop_reason == feed_harvester.STOP_STALLED
    assert harvester.iteration_count == 7
    assert feed.advances == 6
    # fallback delay after every advance that showed no growth
    assert len(sleeps) == 5


def test_hard_cap_terminates_exactly_at_cap():
    feed = EndlessFeed()
    harvester = build(feed)

    result = harvester.run(QUERY)

    assert result.stop_reason == feed_harvester.STOP_ITERATION_CAP
    assert harvester.iteration_count == 100
    assert result.iterations == 100
    assert feed.advances == 100
    assert result.places_extracted == 100


def test_hard_cap_is_configurable():
    feed = EndlessFeed()
    harvester = build(feed, settings=fast_settings(max_scroll_attempts=7))

    result = harvester.run(QUERY)

    assert result.iterations == 7
    assert result.places_extracted == 7


def test_end_marker_drains_before_enumerating_items():
    feed = ScriptedFeed([[place("A")], [place("B")], [place("C")]], end_after=1)
    sink = ListSink()

    result = build(feed, sink=sink).run(QUERY)

    assert result.stop_reason == feed_harvester.STOP_END_OF_LIST
    assert [row["business_name"] for row in sink.dicts()] == ["A"]
    assert result.items_discovered == 1
    assert result.iterations == 2
    assert feed.advances == 1


def test_feed_load_failure_skips_query():
    feed = ScriptedFeed([[place("A")]], fail_for={1})
    sink = ListSink()
    harvester = build(feed, sink=sink)

    result = harvester.run(QUERY)

    assert harvester.state is HarvestState.DRAINED
    assert result.stop_reason == feed_harvester.STOP_FEED_NOT_LOADED
    assert result.places_extracted == 0
    assert sink.records == []
    assert feed.released == 1


def test_query_budget_ends_harvest_with_partial_results():
    clock = FakeClock()

    def tick(_item):
        clock.now += 4

    feed = ScriptedFeed([[place("A"), place("B"), place("C"), place("D")]])
    sink = ListSink()
    harvester = build(
        feed,
        sink=sink,
        extractor=DictExtractor(on_extract=tick),
        settings=fast_settings(query_timeout_seconds=10),
        clock=clock,
    )

    result = harvester.run(QUERY)

    assert result.stop_reason == feed_harvester.STOP_TIMEOUT
    assert [row["business_name"] for row in sink.dicts()] == ["A", "B", "C"]
    assert feed.advances == 0


def test_budget_spent_between_iterations_does_not_count_an_iteration():
    clock = FakeClock()

    class SlowScrollFeed(ScriptedFeed):
        def advance(self):
            clock.now += 20
            return super().advance()

    feed = SlowScrollFeed([[place("A")], [place("B")]])
    harvester = build(feed, settings=fast_settings(query_timeout_seconds=10), clock=clock)

    result = harvester.run(QUERY)

    assert result.stop_reason == feed_harvester.STOP_TIMEOUT
    assert result.iterations == 1
    assert result.places_extracted == 1


def test_feed_crash_mid_harvest_keeps_partial_results():
    feed = ScriptedFeed([[place("A")], [place("B")]], crash_after=1, crash_for={1})
    sink = ListSink()
    harvester = build(feed, sink=sink)

    result = harvester.run(QUERY)

    assert harvester.state is HarvestState.DRAINED
    assert result.stop_reason == feed_harvester.STOP_FEED_ERROR
    assert [row["business_name"] for row in sink.dicts()] == ["A"]
    assert feed.released == 1


def test_unexpected_open_failure_drains_query():
    class BrokenFeed(ScriptedFeed):
        def open(self, query):
            raise RuntimeError("Browser has been closed")

    feed = BrokenFeed([[place("A")]])

    result = build(feed).run(QUERY)

    assert result.stop_reason == feed_harvester.STOP_FEED_ERROR
    assert result.places_extracted == 0
    assert feed.released == 1


def test_sink_failure_aborts_the_run():
    class FailingSink(ListSink):
        def append(self, record):
            raise OSError("disk full")

    feed = ScriptedFeed([[place("A")]])

    with pytest.raises(feed_harvester.SinkWriteError):
        build(feed, sink=FailingSink()).run(QUERY)

    assert feed.released == 1


def test_unextractable_items_are_skipped():
    feed = ScriptedFeed([[None, place(None, "9 Elm St"), place("A")]])
    sink = ListSink()

    result = build(feed, sink=sink).run(QUERY)

    assert result.skipped_items == 2
    assert result.places_extracted == 1


def test_closed_place_is_annotated_and_still_claims_its_key():
    feed = ScriptedFeed([[place("Cafe Luna", "1 Main St", closed=True), place("CAFE LUNA", "1  main st")]])
    sink = ListSink()
    index = DedupIndex()

    result = build(feed, sink=sink, index=index, pipeline=FilterPipeline(skip_closed_places=True)).run(QUERY)

    rows = sink.dicts()
    assert len(rows) == 1
    assert rows[0]["filter_status"] == "closed"
    assert "cafe luna|1 main st" in index
    assert result.duplicates == 1


def test_gate_mode_drops_filtered_records_before_dedup():
    feed = ScriptedFeed(
        [
            [
                place("Cafe Luna", "1 Main St", closed=True, website="https://luna.test/"),
                place("Cafe Luna", "1 Main St", website="https://luna.test/"),
                place("No Site"),
            ]
        ]
    )
    sink = ListSink()
    index = DedupIndex()
    enricher = CannedEnricher()
    pipeline = FilterPipeline(skip_closed_places=True, require_website=True)

    result = build(
        feed, sink=sink, index=index, enricher=enricher, pipeline=pipeline, filter_mode=FILTER_MODE_GATE
    ).run(QUERY)

    rows = sink.dicts()
    assert result.filtered_out == 2
    assert result.duplicates == 0
    assert len(rows) == 1
    assert rows[0]["filter_status"] == "extracted"
    assert len(index) == 1
    assert enricher.calls == ["https://luna.test/"]


def test_require_website_annotates_and_skips_enrichment():
    feed = ScriptedFeed([[place("No Site"), place("Has Site", website="https://site.test/")]])
    sink = ListSink()
    enricher = CannedEnricher({"https://site.test/": "hello@site.test"})

    build(feed, sink=sink, enricher=enricher, pipeline=FilterPipeline(require_website=True)).run(QUERY)

    rows = sink.dicts()
    assert [row["filter_status"] for row in rows] == ["no_website", "extracted"]
    assert rows[0]["email"] is None
    assert rows[1]["email"] == "hello@site.test"
    assert enricher.calls == ["https://site.test/"]


def test_duplicates_and_panel_emails_are_not_enriched():
    feed = ScriptedFeed(
        [
            [
                place("A", website="https://a.test/", email="owner@a.test"),
                place("B", website="https://b.test/"),
                place("b", website="https://b.test/"),
            ]
        ]
    )
    sink = ListSink()
    enricher = CannedEnricher()

    build(feed, sink=sink, enricher=enricher).run(QUERY)

    assert enricher.calls == ["https://b.test/"]
    assert sink.dicts()[0]["email"] == "owner@a.test"


def test_harvester_is_single_use():
    harvester = build(ScriptedFeed([[place("A")]]))
    harvester.run(QUERY)

    with pytest.raises(RuntimeError):
        harvester.run(QUERY)
