import pytest

from geobackfill.core import resolver as resolver_module
from geobackfill.core.resolver import AddressResolver
from geobackfill.etl.coordinates import synthesize_coordinate
from geobackfill.models import BoundingBox, GeocodingSource
from geobackfill.vendors.google_geocoding import Denied, GeocodingDeniedError, Match, NoMatch, TransportError

BOUNDS = BoundingBox(min_lat=29.5, max_lat=33.3, min_lng=34.2, max_lng=35.9)


class FakeClient:
    """Answers from a query -> outcome table; everything else is ZERO_RESULTS."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.queries = []

    def geocode(self, query):
        self.queries.append(query)
        return self.answers.get(query, NoMatch(status="ZERO_RESULTS"))


def _match(lat, lng, formatted, place_id="pid"):
    return Match(lat=lat, lng=lng, place_id=place_id, formatted_address=formatted)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(resolver_module.time, "sleep", lambda _: None)


def test_exact_match_is_not_approximate():
    client = FakeClient({"123 Main St, Tel Aviv": _match(32.0853001, 34.7818002, "Main St 123, Tel Aviv-Yafo")})

    result = AddressResolver(client, BOUNDS).resolve("  123 Main St, Tel Aviv ")

    assert result.is_approximate is False
    assert result.source is GeocodingSource.PROVIDER
    assert result.coordinate.lat == pytest.approx(32.0853001)
    assert result.coordinate.lng == pytest.approx(34.7818002)
    assert result.place_id == "pid"
    assert result.formatted_address == "Main St 123, Tel Aviv-Yafo"
    assert client.queries == ["123 Main St, Tel Aviv"]


@pytest.mark.parametrize("address", [None, "", "   "])
def test_empty_address_is_skipped_without_calls(address):
    client = FakeClient()

    assert AddressResolver(client, BOUNDS).resolve(address) is None
    assert client.queries == []


def test_digit_stripped_fallback_wins_in_order():
    address = "שא נס 17 באר יעקב"
    client = FakeClient(
        {
            "שא נס באר יעקב, Israel": _match(31.9426, 34.8354, None, place_id="beer-yaakov"),
            "באר יעקב, Israel": _match(31.94, 34.83, "Be'er Ya'akov, Israel"),
        }
    )

    result = AddressResolver(client, BOUNDS).resolve(address)

    assert result.is_approximate is True
    assert result.source is GeocodingSource.PROVIDER
    assert result.formatted_address == "שא נס באר יעקב, Israel"
    assert result.query == "שא נס באר יעקב, Israel"
    assert result.place_id == "beer-yaakov"
    # The bare variant equals the original address and is never re-sent.
    assert client.queries == [address, "שא נס 17 באר יעקב, Israel", "שא נס באר יעקב, Israel"]


def test_exhausted_fallbacks_synthesize_from_original_address():
    client = FakeClient()

    result = AddressResolver(client, BOUNDS).resolve("xyzzy123")

    assert result.is_approximate is True
    assert result.source is GeocodingSource.SYNTHETIC
    assert result.place_id is None
    assert result.formatted_address == "synthetic:xyzzy123"
    assert result.coordinate == synthesize_coordinate("xyzzy123", BOUNDS)
    assert BOUNDS.contains(result.coordinate)


def test_insane_exact_coordinates_fall_through_to_fallbacks():
    client = FakeClient(
        {
            "Haifa Port": _match(123.0, 34.99, "Nowhere"),
            "Haifa Port, Israel": _match(32.8191, 34.9983, "Haifa Port, Israel"),
        }
    )

    result = AddressResolver(client, BOUNDS).resolve("Haifa Port")

    assert result.is_approximate is True
    assert result.formatted_address == "Haifa Port, Israel"


def test_transport_errors_behave_like_no_match(caplog):
    client = FakeClient({"Nahariya": TransportError(message="timeout")})

    with caplog.at_level("WARNING"):
        result = AddressResolver(client, BOUNDS).resolve("Nahariya")

    assert result.source is GeocodingSource.SYNTHETIC
    assert any("Transport error" in message for message in caplog.messages)


def test_denied_raises_even_mid_fallback():
    client = FakeClient({"Omer, Israel": Denied(message="API project is not authorized")})

    with pytest.raises(GeocodingDeniedError):
        AddressResolver(client, BOUNDS).resolve("omer")


def test_out_of_bounds_exact_match_is_kept(caplog):
    client = FakeClient({"Times Square, New York": _match(40.758, -73.9855, "Times Square, NY, USA")})

    with caplog.at_level("WARNING"):
        result = AddressResolver(client, BOUNDS).resolve("Times Square, New York")

    assert result.coordinate.lat == pytest.approx(40.758)
    assert result.is_approximate is False
    assert any("outside expected bounds" in message for message in caplog.messages)
