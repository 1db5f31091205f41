import pytest
from diag_server.ingestion.headers import (
    HEADER_TABLE, normalize_header, is_known_header, split_header, split_header_spans, _EQUIVALENCES
)

ALL_SPELLINGS = [(canonical, spelling) for canonical, variants in _EQUIVALENCES for spelling in (canonical,) + variants]


@pytest.mark.parametrize('canonical,spelling', ALL_SPELLINGS)
def test_every_spelling_maps_to_canonical_and_is_idempotent(canonical, spelling):
    once = normalize_header(spelling)
    assert once == canonical
    assert normalize_header(once) == once


@pytest.mark.parametrize('spelling,expected', [
    ('AllTimeBlocked', 'All time blocked'),
    ('all_time_blocked', 'All time blocked'),
    ('ATB', 'All time blocked'),
    ('Device:', 'Device'),
    ('avgqu-sz', 'aqu-sz'),
    ('(w/Backpressure)', 'Backpressure'),
    ('p99', '99%'),
    ('READ-LATENCY', 'Read Latency'),
])
def test_variant_spellings(spelling, expected):
    assert normalize_header(spelling) == expected


def test_unknown_label_passes_through():
    assert normalize_header('%usr') == '%usr'
    assert not is_known_header('%usr')


def test_table_is_read_only():
    with pytest.raises(TypeError):
        HEADER_TABLE['x'] = 'y'  # type: ignore[index]


def test_split_header_rejoins_multiword_labels():
    line = 'Pool Name                    Active   Pending      Completed   Blocked  All time blocked'
    assert split_header(line) == ['Pool Name', 'Active', 'Pending', 'Completed', 'Blocked', 'All time blocked']


def test_split_header_latency_phrase():
    line = 'Message type           Dropped                  Latency waiting in queue (micros)'
    assert split_header(line) == ['Message type', 'Dropped', 'Latency']


def test_split_header_spans_keep_raw_offsets():
    line = 'Percentile  SSTables     Write Latency'
    spans = split_header_spans(line)
    assert [s[0] for s in spans] == ['Percentile', 'SSTables', 'Write Latency']
    label, start, end = spans[2]
    assert line[start:end] == 'Write Latency'
