from datetime import datetime, timedelta, timezone

import pytest

from datetime_utils import days_until, parse_datetime, to_iso
from geo_utils import bounding_box, haversine_km, parse_location
from security_utils import sanitize_filter_term, sanitize_for_log, validate_search_query


class TestValidateSearchQuery:
    def test_trims_and_collapses_whitespace(self):
        assert validate_search_query("  live   music ") == "live music"

    def test_strips_markup_characters(self):
        assert validate_search_query('<b>"jazz"</b>') == "bjazz/b"

    @pytest.mark.parametrize("query", ["", " ", "a", " a ", "<>", "x" * 201])
    def test_rejects_invalid_lengths(self, query):
        with pytest.raises(ValueError):
            validate_search_query(query)

    def test_accepts_boundaries(self):
        assert validate_search_query("ab") == "ab"
        assert len(validate_search_query("x" * 200)) == 200


def test_sanitize_filter_term():
    assert sanitize_filter_term("rock,(roll)") == "rock roll"
    assert sanitize_filter_term("100%") == "100"
    assert sanitize_filter_term("") == ""


def test_sanitize_for_log():
    assert sanitize_for_log("a\nb") == "a b"
    assert sanitize_for_log(None) == "None"


class TestGeo:
    def test_parse_location(self):
        assert parse_location("52.52, 13.405") == (52.52, 13.405)
        assert parse_location(None) is None
        assert parse_location("  ") is None

    @pytest.mark.parametrize("value", ["52.5", "a,b", "91,0", "0,181", "1,2,3"])
    def test_parse_location_rejects_bad_input(self, value):
        with pytest.raises(ValueError):
            parse_location(value)

    def test_haversine_known_distance(self):
        # Berlin to Paris is roughly 878 km
        assert 870 < haversine_km(52.52, 13.405, 48.8566, 2.3522) < 885
        assert haversine_km(10, 10, 10, 10) == 0

    def test_bounding_box_contains_radius(self):
        min_lat, max_lat, min_lng, max_lng = bounding_box(52.52, 13.405, 10)
        assert min_lat < 52.52 < max_lat
        assert min_lng < 13.405 < max_lng
        assert haversine_km(52.52, 13.405, max_lat, 13.405) == pytest.approx(10, rel=0.01)


class TestDatetime:
    def test_parse_z_suffix(self):
        parsed = parse_datetime("2026-03-01T10:00:00Z")
        assert parsed == datetime(2026, 3, 1, 10, tzinfo=timezone.utc)

    def test_parse_naive_assumes_utc(self):
        assert parse_datetime("2026-03-01T10:00:00").tzinfo == timezone.utc

    def test_parse_invalid(self):
        assert parse_datetime("not a date") is None
        assert parse_datetime(None) is None

    def test_to_iso(self):
        assert to_iso("2026-03-01T10:00:00Z") == "2026-03-01T10:00:00+00:00"

    def test_days_until_rounds_up(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert days_until(now + timedelta(hours=3), now) == 1
        assert days_until(now + timedelta(days=7), now) == 7
        assert days_until(now + timedelta(days=7, hours=1), now) == 8
        assert days_until(now - timedelta(days=2), now) == -2
        assert days_until(None, now) is None
