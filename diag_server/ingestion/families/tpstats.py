from __future__ import annotations
import datetime
from typing import List, Optional

from ..assembler import TimeSeriesAssembler, TimeSeriesBundle
from ..columns import TokenColumnResolver, is_value_token, parse_number
from ..headers import normalize_header, split_header
from ..scanner import HeaderContext, SectionExtractor, SectionKind, SectionResult, SectionScanner
from ..timestamps import TimestampRecognizer

"""nodetool tpstats captures (one dump per collector interval).

    2025-02-27T13:24:23+0100
    ==========
    Pool Name                    Active   Pending      Completed   Blocked  All time blocked
    ReadStage                         0         0          12345         0                 0

    Message type           Dropped                  Latency waiting in queue (micros)
                                                 50%               95%               99%               Max
    READ                         0                  0.00              0.00              0.00              0.00

Pool metrics are emitted twice: legacy '<pool> | <task>' and
'Pool | <pool> | <task>'. Message types likewise keep the legacy
'Message Type | <type> | Dropped' next to 'Message | <type> | Dropped'.
"""

FAMILY = 'tpstats'

VALID_THREAD_TASKS = (
    'Active', 'Pending', 'Backpressure', 'Delayed', 'Shared', 'Stolen',
    'Completed', 'Blocked', 'All time blocked',
)
PERCENTILE_HEADERS = frozenset({'50%', '75%', '95%', '98%', '99%', 'Min', 'Max'})
METER_METRIC_TYPES = ('Count', 'Rate', 'Mean Rate', '1m Rate', '5m Rate', '15m Rate')


def pool_keys(pool: str, task: str) -> List[str]:
    return [f'{pool} | {task}', f'Pool | {pool} | {task}']


class ThreadPoolExtractor(SectionExtractor):
    kind = SectionKind.THREAD_POOL

    def matches(self, line: str) -> bool:
        return 'Active' in line and 'Pending' in line and ('Blocked' in line or 'Pool' in line)

    def extract(self, lines: List[str], ctx: HeaderContext) -> SectionResult:
        out = SectionResult()
        resolver = TokenColumnResolver.from_header(ctx.header)
        for raw in lines:
            row = resolver.resolve(raw)
            if row is None or not row.label:
                out.warn(f'short_row:{FAMILY}:{raw.strip()[:60]}')
                continue
            if row.short:
                out.warn(f'short_row:{FAMILY}:{row.label}')
            out.fact('thread_pools', row.label)
            for task, value in row.values():
                if task not in VALID_THREAD_TASKS:
                    continue
                for key in pool_keys(row.label, task):
                    out.emit(key, value)
        return out


class MessageTypeExtractor(SectionExtractor):
    kind = SectionKind.MESSAGE_TYPE

    def matches(self, line: str) -> bool:
        if 'Dropped' not in line:
            return False
        return 'Message type' in line or 'Message Type' in line or line.lstrip().startswith('Messages')

    def extract(self, lines: List[str], ctx: HeaderContext) -> SectionResult:
        out = SectionResult()
        headers = split_header(ctx.header)[1:]
        body = list(lines)
        # newer nodetool puts the latency percentiles on their own header line
        if body and all(normalize_header(t) in PERCENTILE_HEADERS for t in body[0].split()):
            percentiles = [normalize_header(t) for t in body.pop(0).split()]
            headers = [h for h in headers if h != 'Latency'] + percentiles
        resolver = TokenColumnResolver(headers)
        for raw in body:
            row = resolver.resolve(raw)
            if row is None or not row.label:
                out.warn(f'short_row:{FAMILY}:{raw.strip()[:60]}')
                continue
            out.fact('message_types', row.label)
            for col, value in row.values():
                if col == 'Dropped':
                    out.emit(f'Message Type | {row.label} | Dropped', value)
                    out.emit(f'Message | {row.label} | Dropped', value)
                elif col in PERCENTILE_HEADERS:
                    out.emit(f'Message | {row.label} | Latency | {col}', value)
        return out


class MeterExtractor(SectionExtractor):
    kind = SectionKind.METER_TABLE

    def matches(self, line: str) -> bool:
        return line.lstrip().startswith('Meters') and ('Rate' in line or 'rate' in line or 'Count' in line)

    def extract(self, lines: List[str], ctx: HeaderContext) -> SectionResult:
        out = SectionResult()
        metric_types = split_header(ctx.header)[1:]
        for raw in lines:
            tokens = raw.split()
            first_value = next((i for i, t in enumerate(tokens) if is_value_token(t)), None)
            if not first_value:
                out.warn(f'short_row:{FAMILY}:{raw.strip()[:60]}')
                continue
            name = ' '.join(tokens[:first_value])
            out.fact('meters', name)
            for metric_type, token in zip(metric_types, tokens[first_value:]):
                value = parse_number(token)
                if value is None or metric_type not in METER_METRIC_TYPES:
                    continue
                out.emit(f'Meter | {name} | {metric_type}', value)
        return out


def extractors() -> List[SectionExtractor]:
    return [ThreadPoolExtractor(), MessageTypeExtractor(), MeterExtractor()]


def parse_tpstats(content: str, reference_date: Optional[datetime.date] = None) -> TimeSeriesBundle:
    asm = TimeSeriesAssembler(FAMILY, reference_date)
    SectionScanner(extractors(), asm, TimestampRecognizer(reference_date)).scan(content)
    return asm.finalize()


def sniff(sample: str) -> float:
    score = 0.0
    if 'Pool Name' in sample and 'Active' in sample and 'Pending' in sample:
        score += 0.6
    if 'Message type' in sample and 'Dropped' in sample:
        score += 0.3
    if 'StatusLogger' in sample or 'GCInspector' in sample:
        score -= 0.5
    return max(0.0, min(score, 1.0))
