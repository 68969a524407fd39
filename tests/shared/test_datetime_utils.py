from datetime import datetime, timezone

import pytest

from shared.datetime_utils import (
    STRICT_Z_ISO_PATTERN,
    ensure_utc,
    matches_date_prefix,
    parse_to_utc,
    to_epoch_ms,
    to_iso_utc,
)


def test_iso_z_passthrough():
    dt = parse_to_utc("2012-03-01T14:30:00Z")
    assert to_iso_utc(dt) == "2012-03-01T14:30:00Z"
    assert STRICT_Z_ISO_PATTERN.match(to_iso_utc(dt))


def test_iso_with_offset():
    dt = parse_to_utc("2012-03-01T10:30:00-04:00")
    assert to_iso_utc(dt) == "2012-03-01T14:30:00Z"


def test_naive_is_utc_unless_zone_given():
    assert to_iso_utc(parse_to_utc("2012-03-01 14:30")) == "2012-03-01T14:30:00Z"
    dt = parse_to_utc("2012-07-02 10:30", naive_tz="America/New_York")
    assert to_iso_utc(dt) == "2012-07-02T14:30:00Z"


def test_date_only_is_midnight_utc():
    assert to_iso_utc(parse_to_utc("2012-03-01")) == "2012-03-01T00:00:00Z"


def test_us_slash_date():
    assert to_iso_utc(parse_to_utc("3/1/2012")) == "2012-03-01T00:00:00Z"
    assert to_iso_utc(parse_to_utc("12/31/2011 16:00")) == "2011-12-31T16:00:00Z"


def test_rfc2822():
    dt = parse_to_utc("Thu, 01 Mar 2012 14:30:00 GMT")
    assert to_iso_utc(dt) == "2012-03-01T14:30:00Z"


def test_slash_date_and_utc_offset():
    dt = parse_to_utc("2012/03/01 14:30:00 +0000")
    assert to_iso_utc(dt) == "2012-03-01T14:30:00Z"


def test_trailing_utc_word():
    assert to_iso_utc(parse_to_utc("2012-03-01 14:30:00 UTC")) == "2012-03-01T14:30:00Z"


def test_missing_seconds_added():
    dt = parse_to_utc("2012-03-01T14:30Z")
    assert to_iso_utc(dt) == "2012-03-01T14:30:00Z"


@pytest.mark.parametrize("raw,reason", [
    ("", "missing"),
    ("   ", "missing"),
    ("not a date", "unparseable"),
    ("1900-01-01T00:00:00Z", "out_of_range"),
    ("2100-01-01T00:00:00Z", "out_of_range"),
])
def test_rejections_never_default_to_now(raw, reason):
    with pytest.raises(ValueError) as ei:
        parse_to_utc(raw)
    assert str(ei.value) == reason


def test_ensure_utc_converts_and_checks_range():
    aware = datetime(2012, 3, 1, 9, 30, tzinfo=timezone.utc)
    assert ensure_utc(aware.replace(tzinfo=None)) == aware
    with pytest.raises(ValueError):
        ensure_utc(datetime(1969, 12, 31, 23, 59))


def test_epoch_ms():
    assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)) == 1000


def test_date_prefix_match_is_inclusive():
    dt = parse_to_utc("2012-03-31T23:59:59Z")
    assert matches_date_prefix(dt, "2012-03")
    assert matches_date_prefix(dt, "2012-03-31")
    assert not matches_date_prefix(dt, "2012-04")
    assert matches_date_prefix(dt, None)
