from harvester.core.extractor import PlaceExtractor


class DummyFeed:
    def __init__(self, panels=None, error=None):
        self.panels = panels or {}
        self.error = error
        self.described = []

    def describe(self, item):
        self.described.append(item)
        if self.error:
            raise self.error
        return self.panels.get(item)


def test_extract_builds_record_from_panel():
    feed = DummyFeed({"card-1": {"name": "Cafe Luna", "address_text": "1 Main St", "rating_text": "4.8(12)"}})

    record = PlaceExtractor(feed).extract("card-1")

    assert record.business_name == "Cafe Luna"
    assert record.address == "1 Main St"
    assert record.rating == 4.8
    assert record.reviews_count == 12
    assert feed.described == ["card-1"]


def test_extract_returns_none_when_card_has_no_name():
    assert PlaceExtractor(DummyFeed({"card-1": {"address_text": "1 Main St"}})).extract("card-1") is None
    assert PlaceExtractor(DummyFeed()).extract("missing") is None


def test_extract_swallows_item_errors(caplog):
    feed = DummyFeed(error=RuntimeError("detached from DOM"))

    with caplog.at_level("WARNING"):
        assert PlaceExtractor(feed).extract("card-1") is None

    assert "Failed to extract place details" in " ".join(caplog.messages)
