from __future__ import annotations
import re
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple

"""Column-label canonicalization.

nodetool, DSE StatusLogger and sysstat have all renamed columns over the years
(`All time blocked` / `AllTimeBlocked` / `ATB`, `Device:` / `Device`,
`avgqu-sz` / `aqu-sz`, ...). Lookups are keyed case-insensitively with
separators (space, '_', '-', ':', '.') removed. Labels outside the table come
back unchanged. mpstat's `%usr`/`%sys` are deliberately not folded into
iostat's `%user`/`%system`: both spellings are part of published metric keys.
"""

# canonical label -> spellings seen in the wild (the canonical itself is implied)
_EQUIVALENCES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    # thread pools
    ('Pool Name', ('Pools', 'PoolName', 'Pool', 'Thread Pool', 'ThreadPool')),
    ('Active', ('Active Tasks', 'ActiveTasks')),
    ('Pending', ('Pending Tasks', 'PendingTasks')),
    ('Backpressure', ('(w/Backpressure)', 'w/Backpressure', 'Back Pressure')),
    ('Delayed', ()),
    ('Shared', ()),
    ('Stolen', ()),
    ('Completed', ('Completed Tasks', 'CompletedTasks')),
    ('Blocked', ('Currently Blocked', 'CurrentlyBlocked', 'Currently Blocked Tasks', 'CurrentlyBlockedTasks')),
    ('All time blocked', ('AllTimeBlocked', 'All Time Blocked', 'ATB', 'Total Blocked', 'Total Blocked Tasks',
                          'TotalBlockedTasks')),
    # message types
    ('Message type', ('Message Type', 'MessageType', 'Messages', 'Verb')),
    ('Dropped', ('Dropped Messages', 'DroppedMessages')),
    ('Latency', ('Latency waiting in queue (micros)', 'Latency waiting in queue', 'Queue Latency')),
    # meters
    ('Meters', ('Meter',)),
    ('Count', ()),
    ('Rate', ()),
    ('Mean Rate', ('MeanRate',)),
    ('1m Rate', ('OneMinuteRate', '1 minute rate', '1MinuteRate', 'm1_rate')),
    ('5m Rate', ('FiveMinuteRate', '5 minute rate', '5MinuteRate', 'm5_rate')),
    ('15m Rate', ('FifteenMinuteRate', '15 minute rate', '15MinuteRate', 'm15_rate')),
    # histograms
    ('Percentile', ('Percentiles',)),
    ('SSTables', ('SSTable', 'SSTables per read', 'SSTable Count')),
    ('Read Latency', ('ReadLatency', 'Read Latency (micros)')),
    ('Write Latency', ('WriteLatency', 'Write Latency (micros)')),
    ('Range Latency', ('RangeLatency', 'Range Latency (micros)', 'Range Slice Latency')),
    ('CAS Read Latency', ('CASReadLatency', 'CAS Read Latency (micros)')),
    ('CAS Write Latency', ('CASWriteLatency', 'CAS Write Latency (micros)')),
    ('View Write Latency', ('ViewWriteLatency', 'View Write Latency (micros)')),
    ('Partition Size', ('PartitionSize', 'Partition Size (bytes)')),
    ('Cell Count', ('CellCount', 'Cell Count (cells)')),
    ('50%', ('p50', '50th', '50th percentile', 'median')),
    ('75%', ('p75', '75th', '75th percentile')),
    ('95%', ('p95', '95th', '95th percentile')),
    ('98%', ('p98', '98th', '98th percentile')),
    ('99%', ('p99', '99th', '99th percentile')),
    ('Min', ('Minimum',)),
    ('Max', ('Maximum',)),
    # sysstat
    ('Device', ('Device:', 'Disk')),
    ('aqu-sz', ('avgqu-sz',)),
    ('areq-sz', ('avgrq-sz',)),
    ('r_await', ()),
    ('w_await', ()),
    ('rkB/s', ()),
    ('wkB/s', ()),
    ('%util', ()),
)

SEPARATORS_RE = re.compile(r"[\s_\-:.]+")
WORD_RE = re.compile(r"\S+")


def header_key(label: str) -> str:
    return SEPARATORS_RE.sub('', label).lower()


def _build_table() -> Mapping[str, str]:
    table: Dict[str, str] = {}
    for canonical, variants in _EQUIVALENCES:
        for spelling in (canonical,) + variants:
            key = header_key(spelling)
            existing = table.get(key)
            if existing is not None and existing != canonical:
                raise ValueError(f'header spelling {spelling!r} claimed by {existing!r} and {canonical!r}')
            table[key] = canonical
    return MappingProxyType(table)


HEADER_TABLE: Mapping[str, str] = _build_table()
MAX_PHRASE_WORDS = max(len(s.split()) for c, v in _EQUIVALENCES for s in (c,) + v)


def normalize_header(label: str) -> str:
    """Canonical spelling of a column label, or the label itself when unknown."""
    return HEADER_TABLE.get(header_key(label), label)


def is_known_header(label: str) -> bool:
    return header_key(label) in HEADER_TABLE


def split_header_spans(line: str) -> List[Tuple[str, int, int]]:
    """Split a header line into (canonical label, start, end) spans.

    Whitespace splitting alone breaks multi-word labels ('Pool Name',
    'All time blocked'), so consecutive words are greedily re-joined whenever
    the longest run matches a known spelling. Offsets index into the raw line.
    """
    words = [(m.group(0), m.start(), m.end()) for m in WORD_RE.finditer(line)]
    out: List[Tuple[str, int, int]] = []
    i = 0
    while i < len(words):
        for n in range(min(MAX_PHRASE_WORDS, len(words) - i), 0, -1):
            phrase = ' '.join(w[0] for w in words[i:i + n])
            if n == 1 or is_known_header(phrase):
                out.append((normalize_header(phrase), words[i][1], words[i + n - 1][2]))
                i += n
                break
    return out


def split_header(line: str) -> List[str]:
    return [label for label, _, _ in split_header_spans(line)]
