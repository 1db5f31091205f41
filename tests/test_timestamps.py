import datetime
import pytest
from diag_server.ingestion.timestamps import TimestampRecognizer, strip_timestamp, parse_canonical

REF = datetime.date(2025, 2, 27)


@pytest.mark.parametrize('line,expected', [
    ('2025-02-27T13:24:23+0100', '2025-02-27T13:24:23'),
    ('2025-02-27T13:24:23', '2025-02-27T13:24:23'),
    ('2025-02-27 13:24:23,456 rest', '2025-02-27T13:24:23'),
    ('2025-02-27T13:24:23.123Z', '2025-02-27T13:24:23'),
    ('02/27/2025 01:24:23 PM', '2025-02-27T13:24:23'),
    ('02/27/2025 12:05:00 AM', '2025-02-27T00:05:00'),
    ('02/27/25 13:24:23', '2025-02-27T13:24:23'),
])
def test_dated_spellings_canonicalize(line, expected):
    ts = TimestampRecognizer(REF).match(line)
    assert ts is not None and ts.canonical == expected


def test_bare_time_takes_reference_date_and_remainder():
    ts = TimestampRecognizer(REF).match('01:24:23 PM  CPU    %usr')
    assert ts.canonical == '2025-02-27T13:24:23'
    assert ts.dialect == 'time'
    assert ts.remainder == 'CPU    %usr'


def test_bare_time_midnight_rollover_advances_date():
    rec = TimestampRecognizer(REF)
    first = rec.match('11:59:59 PM all').canonical
    second = rec.match('12:00:01 AM all').canonical
    assert first == '2025-02-27T23:59:59'
    assert second == '2025-02-28T00:00:01'
    assert parse_canonical(second) > parse_canonical(first)


def test_small_backward_step_is_not_a_rollover():
    rec = TimestampRecognizer(REF)
    rec.match('10:00:05')
    assert rec.match('10:00:01').canonical == '2025-02-27T10:00:01'


def test_shape_match_with_bad_calendar_returns_none_canonical():
    ts = TimestampRecognizer(REF).match('2025-13-40T10:00:00')
    assert ts is not None and ts.canonical is None


@pytest.mark.parametrize('line', ['ReadStage 0 0', '  avg-cpu:  %user', 'top - 13:24:23 up', '3:12,  1 user', ''])
def test_non_timestamps_do_not_match(line):
    assert TimestampRecognizer(REF).match(line) is None


def test_search_finds_log_prefixed_timestamp_only_when_dated():
    rec = TimestampRecognizer(REF)
    ts = rec.search('INFO  [Service Thread] 2023-06-15 10:15:23,456 GCInspector.java:284 - x')
    assert ts.canonical == '2023-06-15T10:15:23'
    assert rec.search('GC in 10:15:23 ms') is None


def test_dialects_seen_in_order():
    rec = TimestampRecognizer(REF)
    rec.match('02/27/2025 01:24:23 PM')
    rec.match('2025-02-27T13:24:23')
    rec.match('02/27/2025 01:24:33 PM')
    assert rec.dialects_seen == ['locale', 'iso']


def test_strip_timestamp_is_pure():
    assert strip_timestamp('01:24:24 PM    all    2.00') == 'all    2.00'
    assert strip_timestamp('Average:     all') is None
