"""Tests for provider payload extraction heuristics."""

import random
from datetime import datetime

import pytest

from servers.event_search.extraction import (
    CATEGORY_IMAGES,
    DEFAULT_EVENT_IMAGE,
    category_image,
    clean_description,
    extract_category,
    extract_image,
    extract_price,
    first_valid,
    format_event_date,
    format_event_time,
    format_price_range,
    is_valid_image_url,
    parse_event_datetime,
    path,
    stable_event_id,
    string_hash,
    synthesize_attendees,
)

NOW = datetime(2025, 6, 1, 12, 0)


class TestPath:
    """Tests for nested accessors."""

    def test_walks_dicts_and_lists(self):
        raw = {"images": [{"url": "https://x.example/a.jpg"}]}
        assert path("images", 0, "url")(raw) == "https://x.example/a.jpg"

    def test_missing_keys_return_none(self):
        assert path("a", "b")({"a": None}) is None
        assert path("images", 3)({"images": []}) is None
        assert path("a", 0)({"a": "string"}) is None
        assert path("a")(None) is None

    def test_first_valid_returns_candidate_name(self):
        raw = {"thumbnail": "not a url", "photo": "https://cdn.example/photo.png"}
        match = first_valid(raw, [("thumbnail", path("thumbnail")), ("photo", path("photo"))], is_valid_image_url)
        assert match == ("photo", "https://cdn.example/photo.png")


class TestImageValidation:
    """Tests for is_valid_image_url."""

    @pytest.mark.parametrize("url", [
        "https://example.com/poster.jpg",
        "https://example.com/poster.WEBP",
        "https://images.unsplash.com/photo-123",
        "https://s1.ticketm.net/dam/a/abc",
        "https://cdn.example.com/thumb?id=1",
        "https://example.com/uploads/2024/banner",
    ])
    def test_accepts_plausible_images(self, url: str):
        assert is_valid_image_url(url)

    @pytest.mark.parametrize("url", [
        None,
        "",
        "ftp://example.com/a.jpg",
        "/relative/a.jpg",
        "https://example.com/tickets",
        "https://notunsplash.com.evil.example/about",
    ])
    def test_rejects_everything_else(self, url):
        assert not is_valid_image_url(url)


class TestExtractImage:
    """Tests for candidate-ordered image extraction."""

    def test_direct_field_wins(self):
        raw = {
            "image": "https://cdn.example.com/main.jpg",
            "thumbnail": "https://cdn.example.com/thumb.jpg",
        }
        assert extract_image(raw) == "https://cdn.example.com/main.jpg"

    def test_skips_invalid_candidates(self):
        raw = {
            "image": "n/a",
            "venue": {"images": [{"url": "https://cdn.example.com/venue.png"}]},
        }
        assert extract_image(raw) == "https://cdn.example.com/venue.png"

    def test_falls_back_to_category_image(self):
        assert extract_image({}, category="Live Music") == CATEGORY_IMAGES["music"]

    def test_falls_back_to_default(self):
        assert extract_image({"image": 42}) == DEFAULT_EVENT_IMAGE

    def test_category_image_unknown(self):
        assert category_image("Knitting") == DEFAULT_EVENT_IMAGE
        assert category_image(None) == DEFAULT_EVENT_IMAGE


class TestPrices:
    """Tests for price formatting and extraction."""

    @pytest.mark.parametrize("low,high,expected", [
        (25, 50, "$25 - $50"),
        (25, 25, "$25"),
        (0, 0, "Free"),
        (19.5, None, "From $19.50"),
        (None, 40, "Up to $40"),
        (None, None, None),
        ("$10", "$20", "$10 - $20"),
    ])
    def test_format_price_range(self, low, high, expected):
        assert format_price_range(low, high) == expected

    def test_is_free_flag(self):
        assert extract_price({"is_free": True, "price": "$30"}) == "Free"

    def test_price_dict(self):
        assert extract_price({"price": {"min": 15, "max": 45}}) == "$15 - $45"

    def test_price_string_with_amount(self):
        assert extract_price({"price": " $20 at the door "}) == "$20 at the door"

    def test_price_string_free(self):
        assert extract_price({"price": "Free entry"}) == "Free"

    def test_numeric_price(self):
        assert extract_price({"price": 12}) == "$12"
        assert extract_price({"price": 0}) == "Free"

    def test_min_max_fields(self):
        assert extract_price({"min_price": 5, "max_price": 15}) == "$5 - $15"

    def test_free_in_text(self):
        assert extract_price({"name": "Complimentary Wine Tasting"}) == "Free"

    def test_free_needs_word_boundary(self):
        assert extract_price({"name": "Freestyle Rap Battle"}) == "Price TBA"

    def test_amounts_in_description(self):
        raw = {"name": "Gala", "description": "Tickets $35 general, $80 VIP"}
        assert extract_price(raw) == "$35 - $80"

    def test_nothing_usable(self):
        assert extract_price({"name": "Mystery Show"}) == "Price TBA"
        assert extract_price(None) == "Price TBA"


class TestCategories:
    """Tests for category extraction."""

    def test_explicit_category(self):
        assert extract_category({"category": " Comedy ", "tags": ["music"]}) == "Comedy"

    def test_tag_keywords(self):
        assert extract_category({"tags": ["Outdoor", "Live Concerts"]}) == "Music"
        assert extract_category(["tech meetup"]) == "Technology"

    def test_first_tag_capitalized_when_no_keyword(self):
        assert extract_category({"tags": ["outdoor", "family"]}) == "Outdoor"

    def test_default(self):
        assert extract_category({}) == "Event"
        assert extract_category("nope") == "Event"


class TestIds:
    """Tests for stable numeric ids."""

    def test_string_hash_matches_known_value(self):
        # 31-based rolling hash: "abc" -> 96354
        assert string_hash("abc") == 96354

    def test_string_hash_is_non_negative(self):
        assert all(string_hash(s) >= 0 for s in ["", "a" * 50, "ZZZZZZZZZZZZ", "event-42"])

    def test_numeric_ids_pass_through(self):
        assert stable_event_id(12345) == 12345
        assert stable_event_id("987") == 987
        assert stable_event_id(-5) == 5

    def test_string_ids_are_hashed(self):
        assert stable_event_id("Z7r9jZ1Ae") == string_hash("Z7r9jZ1Ae")

    def test_missing_id_uses_fallback_parts(self):
        a = stable_event_id(None, "Jazz", "July 1, 2025", "Blue Note")
        b = stable_event_id("", "Jazz", "July 1, 2025", "Blue Note")
        assert a == b == string_hash("Jazz|July 1, 2025|Blue Note")


class TestDescriptions:
    """Tests for description cleaning."""

    def test_strips_html(self):
        assert clean_description("<p>Live <b>jazz</b></p>\n<p>all night</p>") == "Live jazz all night"

    def test_collapses_whitespace(self):
        assert clean_description("  one \n\n two\tthree ") == "one two three"

    def test_fallback(self):
        assert clean_description(None) == "No description available."
        assert clean_description("   ", fallback="-") == "-"


class TestDates:
    """Tests for date parsing and formatting."""

    def test_iso_string(self):
        assert parse_event_datetime("2025-07-04T19:30:00", NOW) == datetime(2025, 7, 4, 19, 30)

    def test_us_date(self):
        assert parse_event_datetime("07/04/2025", NOW) == datetime(2025, 7, 4)

    def test_unix_seconds_and_millis(self):
        stamp = int(datetime(2025, 7, 4, 19, 30).timestamp())
        assert parse_event_datetime(stamp, NOW) == datetime(2025, 7, 4, 19, 30)
        assert parse_event_datetime(str(stamp * 1000), NOW) == datetime(2025, 7, 4, 19, 30)

    def test_rejects_implausible_dates(self):
        assert parse_event_datetime("2019-01-01", NOW) is None
        assert parse_event_datetime("2030-01-01", NOW) is None

    def test_rejects_garbage(self):
        assert parse_event_datetime("next tuesday-ish", NOW) is None
        assert parse_event_datetime("", NOW) is None
        assert parse_event_datetime(None, NOW) is None

    def test_formatting(self):
        value = datetime(2025, 7, 1, 19, 0)
        assert format_event_date(value) == "July 1, 2025"
        assert format_event_time(value) == "7:00 PM"
        assert format_event_time(datetime(2025, 7, 1, 0, 5)) == "12:05 AM"
        assert format_event_date(None) == "Date TBA"
        assert format_event_time(None) == "Time TBA"


class TestAttendees:
    """Tests for synthesized attendee counts."""

    def test_range(self):
        rng = random.Random(42)
        counts = [synthesize_attendees(rng) for _ in range(500)]
        assert min(counts) >= 50
        assert max(counts) <= 1049
