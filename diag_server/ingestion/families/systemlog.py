from __future__ import annotations
import re
import datetime
from typing import Dict, List, Optional

from ..assembler import TimeSeriesAssembler, TimeSeriesBundle
from ..columns import OffsetColumnResolver, ResolvedRow, TokenColumnResolver
from ..headers import normalize_header
from ..timestamps import TimestampRecognizer
from .tpstats import VALID_THREAD_TASKS

"""Cassandra / DSE system.log and debug.log.

Four event kinds are pulled out; everything else in the log is ignored.

GC pauses (GCInspector):
    INFO  [Service Thread] 2023-06-15 10:15:23,456 GCInspector.java:284 - G1 Young Generation GC in 250ms. ...
StatusLogger thread-pool dumps, either one row per log line
    INFO  [ScheduledTasks:1] 2024-04-11 13:47:59,901 StatusLogger.java:51 - ReadStage     1    0   3350878   0   0
or a DSE aligned table printed under a single log line.
Tombstone warnings:
    WARN  [ReadStage-2] ... ReadCommand.java:569 - Read 10 live rows and 5000 tombstone cells for query SELECT ...
Timed-out async reads:
    WARN  [TPC/0] ... Timed out async read from ... for file /var/lib/cassandra/data/ks/tbl-1a2b/nb-1-big-Data.db

Log timestamps carry milliseconds; events inside one second share a slot and
accumulate (pause time and counts add up).
"""

FAMILY = 'systemlog'

LOG_LINE_RE = re.compile(r"^(INFO|WARN|ERROR|DEBUG|TRACE|FATAL)\s+\[([^\]]*)\]\s+")
GC_RE = re.compile(r"GCInspector\.java:\d+\s+-\s+(.*?)\s+in\s+(\d+)\s*ms")
GC_FALLBACK_RE = re.compile(r"(\d+)\s*ms\b")
STATUS_RE = re.compile(r"StatusLogger\.java:\d+\s+-\s?(.*)$")
TOMBSTONE_RE = re.compile(r"Read (\d+) live rows and (\d+) tombstone cells for query (.*?)(?:\s+\(see tombstone_warn_threshold\).*)?$")
TABLE_IN_QUERY_RE = re.compile(r"\bFROM\s+([\w\"]+\.[\w\"]+)", re.IGNORECASE)
SLOW_READ_RE = re.compile(r"Timed out async read from .*? for file (\S+)")
DATA_FILE_TABLE_RE = re.compile(r"/data\d*/([^/]+)/([^/-]+)-[^/]*/[^/]+$")

# StatusLogger sections after the pool table
STATUS_STOP_WORDS = ('CompactionManager', 'MessagingService', 'Cache Type', 'Table', 'ColumnFamily',
                     'Memtable', 'Keyspace', 'Tenant')
DEFAULT_POOL_HEADERS = ('Active', 'Pending', 'Completed', 'Blocked', 'All time blocked')
MAX_GC_EVENTS = 500
MAX_TOP_ENTRIES = 20


def gc_type(description: str) -> str:
    d = description.lower()
    if any(k in d for k in ('young', 'parnew', 'eden', 'copy', 'scavenge')):
        return 'young'
    if any(k in d for k in ('old', 'concurrentmarksweep', 'marksweep', 'cms', 'full', 'mixed')):
        return 'old'
    return 'unknown'


class SystemLogParser:
    def __init__(self, reference_date: Optional[datetime.date] = None):
        self.asm = TimeSeriesAssembler(FAMILY, reference_date)
        self.recognizer = TimestampRecognizer(reference_date)
        self._pool_resolver: Optional[OffsetColumnResolver] = None
        self._pool_fallback: Optional[TokenColumnResolver] = None
        self._in_status_table = False
        self._status_index: Optional[int] = None
        self._live: Dict[int, float] = {}
        self._tomb: Dict[int, float] = {}
        self._queries: Dict[str, Dict] = {}
        self._slow_files: Dict[str, int] = {}
        self._gc_counts: Dict[str, int] = {'young': 0, 'old': 0, 'unknown': 0}
        self._gc_events: List[Dict] = []

    # ------------------------------------------------------------------
    def _line_index(self, line: str) -> int:
        ts = self.recognizer.search(line)
        if ts is None or ts.canonical is None:
            self.asm.warn(f'bad_timestamp:{FAMILY}:{line[:60]}')
            return self.asm.synthesize_timestamp()
        return self.asm.add_timestamp(ts.canonical)

    def _set_pool_header(self, text: str):
        self._pool_resolver = OffsetColumnResolver(text, expected=VALID_THREAD_TASKS)
        self._pool_fallback = TokenColumnResolver.from_header(text)

    def _pool_row(self, text: str, idx: int):
        if text.strip().startswith(STATUS_STOP_WORDS):
            self._in_status_table = False
            return
        row: Optional[ResolvedRow] = None
        if self._pool_resolver is not None:
            row = self._pool_resolver.resolve(text)
            if row is not None and (len(list(row.values())) < 2 or not row.label or ' ' in row.label):
                row = self._pool_fallback.resolve(text) if self._pool_fallback else None
        else:
            row = TokenColumnResolver(DEFAULT_POOL_HEADERS).resolve(text)
        if row is None or not row.label or not list(row.values()):
            self.asm.warn(f'short_row:{FAMILY}:{text.strip()[:60]}')
            return
        self.asm.note('thread_pools', row.label)
        for task, value in row.values():
            task = normalize_header(task)
            if task in VALID_THREAD_TASKS:
                self.asm.set(f'Pool | {row.label} | {task}', idx, value)

    def _status(self, message: str, idx: int):
        text = message.rstrip()
        if 'Pool Name' in text and 'Active' in text:
            self._set_pool_header(text[text.index('Pool Name'):])
            self._in_status_table = True
            self._status_index = idx
            self.asm.accumulate('Status | Dumps', idx, 1)
            return
        if not text.strip():
            # DSE: the table follows on the next lines
            self._in_status_table = True
            self._status_index = idx
            return
        if self._in_status_table or self._pool_resolver is None:
            self._pool_row(text, self._status_index if self._status_index is not None else idx)

    def _gc(self, line: str, idx: int):
        m = GC_RE.search(line)
        if m:
            description, ms = m.group(1), float(m.group(2))
        else:
            found = GC_FALLBACK_RE.findall(line)
            if not found:
                self.asm.warn(f'unparsed_gc:{line[:60]}')
                return
            description, ms = line.split(' - ', 1)[-1], float(found[-1])
        kind = gc_type(description)
        self._gc_counts[kind] += 1
        self.asm.accumulate('GC | Duration (ms)', idx, ms)
        self.asm.accumulate('GC Duration (ms)', idx, ms)
        self.asm.accumulate('GC | Count', idx, 1)
        if kind != 'unknown':
            self.asm.accumulate(f'GC | {kind.capitalize()} | Duration (ms)', idx, ms)
        if len(self._gc_events) < MAX_GC_EVENTS:
            self._gc_events.append({'index': idx, 'type': kind, 'duration_ms': ms,
                                    'description': description.strip()[:120]})
        elif len(self._gc_events) == MAX_GC_EVENTS:
            self.asm.warn('gc_events_truncated')

    def _tombstone(self, m: re.Match, idx: int):
        live, tomb, query = float(m.group(1)), float(m.group(2)), m.group(3).strip()
        self.asm.accumulate('Tombstones | Live Rows', idx, live)
        self.asm.accumulate('Tombstones | Tombstone Cells', idx, tomb)
        self.asm.accumulate('Tombstones | Warnings', idx, 1)
        self._live[idx] = self._live.get(idx, 0.0) + live
        self._tomb[idx] = self._tomb.get(idx, 0.0) + tomb
        tm = TABLE_IN_QUERY_RE.search(query)
        entry = self._queries.setdefault(query, {'query': query[:200], 'table': tm.group(1) if tm else None,
                                                 'live_rows': 0.0, 'tombstones': 0.0, 'count': 0})
        entry['live_rows'] += live
        entry['tombstones'] += tomb
        entry['count'] += 1

    def _slow_read(self, m: re.Match, idx: int):
        path = m.group(1)
        tm = DATA_FILE_TABLE_RE.search(path)
        key = f'{tm.group(1)}.{tm.group(2)}' if tm else path
        self._slow_files[key] = self._slow_files.get(key, 0) + 1
        self.asm.accumulate('Slow Reads | Timed Out Reads', idx, 1)

    # ------------------------------------------------------------------
    def feed(self, line: str):
        if not line.strip():
            return
        if not LOG_LINE_RE.match(line):
            # continuation line: only meaningful inside a DSE status table
            if self._in_status_table and self._status_index is not None:
                text = line.rstrip()
                if 'Pool Name' in text and 'Active' in text:
                    self._set_pool_header(text[text.index('Pool Name'):])
                    self.asm.accumulate('Status | Dumps', self._status_index, 1)
                else:
                    self._pool_row(text, self._status_index)
            return
        self._in_status_table = self._in_status_table and 'StatusLogger' in line
        if 'GCInspector' in line:
            self._gc(line, self._line_index(line))
            return
        sm = STATUS_RE.search(line)
        if sm:
            self._status(sm.group(1), self._line_index(line))
            return
        tm = TOMBSTONE_RE.search(line)
        if tm:
            self._tombstone(tm, self._line_index(line))
            return
        rm = SLOW_READ_RE.search(line)
        if rm:
            self._slow_read(rm, self._line_index(line))

    def finish(self) -> TimeSeriesBundle:
        for idx, tomb in self._tomb.items():
            total = tomb + self._live.get(idx, 0.0)
            if total > 0:
                self.asm.set('Tombstones | Ratio', idx, tomb / total)
        md = self.asm.metadata
        md['gc_types'] = dict(self._gc_counts)
        stamps = self.asm.resolve_timestamps()
        md['gc_events'] = [dict(timestamp=stamps[e['index']], **{k: v for k, v in e.items() if k != 'index'})
                           for e in self._gc_events]
        md['tombstone_queries'] = sorted(self._queries.values(), key=lambda q: q['tombstones'], reverse=True)[:MAX_TOP_ENTRIES]
        md['slow_read_files'] = [{'table': k, 'count': v} for k, v in
                                 sorted(self._slow_files.items(), key=lambda kv: (-kv[1], kv[0]))[:MAX_TOP_ENTRIES]]
        md.setdefault('thread_pools', [])
        return self.asm.finalize()


def parse_systemlog(content: str, reference_date: Optional[datetime.date] = None) -> TimeSeriesBundle:
    parser = SystemLogParser(reference_date)
    for line in content.splitlines():
        parser.feed(line)
    return parser.finish()


def sniff(sample: str) -> float:
    score = 0.0
    if LOG_LINE_RE.search(sample) or re.search(r"^(INFO|WARN|ERROR|DEBUG)\s+\[", sample, re.MULTILINE):
        score += 0.4
    if 'GCInspector' in sample or 'StatusLogger' in sample or 'CassandraDaemon' in sample:
        score += 0.5
    return min(score, 1.0)
