from __future__ import annotations
import datetime
from typing import List, Optional

from ..assembler import TimeSeriesAssembler, TimeSeriesBundle
from ..columns import OffsetColumnResolver
from ..headers import normalize_header
from ..scanner import HeaderContext, SectionExtractor, SectionKind, SectionResult, SectionScanner
from ..timestamps import TimestampRecognizer

FAMILY = 'proxyhistograms'

PERCENTILE_PREFIXES = {
    '50%': 'p50', '75%': 'p75', '95%': 'p95', '98%': 'p98', '99%': 'p99', 'Min': 'min', 'Max': 'max',
}
OPERATIONS = (
    'Read Latency', 'Write Latency', 'Range Latency',
    'CAS Read Latency', 'CAS Write Latency', 'View Write Latency',
)


class LatencyHistogramExtractor(SectionExtractor):
    """nodetool proxyhistograms block; values stay in microseconds."""
    kind = SectionKind.LATENCY_HISTOGRAM

    def matches(self, line: str) -> bool:
        return 'Percentile' in line and 'Latency' in line

    def extract(self, lines: List[str], ctx: HeaderContext) -> SectionResult:
        out = SectionResult()
        resolver = OffsetColumnResolver(ctx.header, expected=OPERATIONS)
        for op in resolver.headers:
            out.fact('operations', op)
        for raw in lines:
            if raw.strip().startswith('('):
                # units line: (micros)
                continue
            row = resolver.resolve(raw)
            prefix = PERCENTILE_PREFIXES.get(normalize_header(row.label)) if row else None
            if prefix is None:
                out.warn(f'short_row:{FAMILY}:{raw.strip()[:60]}')
                continue
            for op, value in row.values():
                out.emit(f'{prefix} {op}', value)
        return out


def parse_proxyhistograms(content: str, reference_date: Optional[datetime.date] = None) -> TimeSeriesBundle:
    asm = TimeSeriesAssembler(FAMILY, reference_date)
    SectionScanner([LatencyHistogramExtractor()], asm, TimestampRecognizer(reference_date)).scan(content)
    return asm.finalize()


def sniff(sample: str) -> float:
    if 'proxy histograms' in sample.lower() or ('Percentile' in sample and 'Range Latency' in sample):
        return 0.8
    return 0.0
