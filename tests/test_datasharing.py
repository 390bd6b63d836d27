import json

import pytest

from peergate.datasharing import (
    ExpandingRing,
    catalog_from_json,
    catalog_to_json,
    format_duration,
    parse_duration,
)


@pytest.mark.parametrize(
    "text",
    ["0s", "1ns", "1.5\u00b5s", "500ms", "2s", "1m30s", "3h0m0s", "1h2m3.5s", "-2s"],
)
def test_duration_round_trip(text):
    assert format_duration(parse_duration(text)) == text


def test_parse_zero_without_unit():
    assert parse_duration("0") == 0


@pytest.mark.parametrize(
    "left,right",
    [
        ("1h", "60m"),
        ("60m", "3600s"),
        ("1.5s", "1500ms"),
        ("2h45m", "165m"),
        ("1.5h", "90m"),
        ("+5s", "5s"),
        ("1us", "1\u00b5s"),
        ("1\u03bcs", "1000ns"),
    ],
)
def test_equivalent_durations(left, right):
    assert parse_duration(left) == parse_duration(right)


def test_negative_duration_is_opposite():
    assert parse_duration("-90s") == -parse_duration("90s")


def test_format_micro_unit():
    assert format_duration(parse_duration("1us")) == "1\u00b5s"


def test_format_integer_seconds():
    assert format_duration(3) == format_duration(parse_duration("3s"))


@pytest.mark.parametrize("text", ["", "-", "abc", "5", "1x", ".s", "1..5s", "99999999999h"])
def test_invalid_durations(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_catalog_round_trip():
    catalog = {"aef123": {"127.0.0.1:3", "127.0.0.1:2"}}
    assert catalog_from_json(catalog_to_json(catalog)) == catalog


def test_catalog_json_shape():
    text = catalog_to_json({"aef123": {"127.0.0.1:3", "127.0.0.1:2"}})
    assert json.loads(text) == {"aef123": {"127.0.0.1:2": {}, "127.0.0.1:3": {}}}
    assert text.index("127.0.0.1:2") < text.index("127.0.0.1:3")


def test_catalog_from_bytes_and_null():
    assert catalog_from_json(b"null") == {}
    assert catalog_from_json(b'{"k": null}') == {"k": set()}


@pytest.mark.parametrize("data", ["[1]", '{"a": 1}', "not json"])
def test_catalog_rejects_bad_documents(data):
    with pytest.raises(ValueError):
        catalog_from_json(data)


def test_expanding_ring_rejects_negative():
    with pytest.raises(ValueError):
        ExpandingRing(initial=-1, factor=2, retry=5, timeout=3.0)
    with pytest.raises(ValueError):
        ExpandingRing(initial=1, factor=2, retry=5, timeout=-1.0)


def test_expanding_ring_is_frozen():
    ring = ExpandingRing(initial=1, factor=2, retry=5, timeout=3.0)
    with pytest.raises(AttributeError):
        ring.initial = 4
    assert ring == ExpandingRing(1, 2, 5, 3.0)