from __future__ import annotations
import datetime
from typing import List, Optional

from ..assembler import TimeSeriesAssembler, TimeSeriesBundle
from ..columns import OffsetColumnResolver
from ..headers import normalize_header
from ..scanner import HeaderContext, SectionExtractor, SectionKind, SectionResult, SectionScanner
from ..timestamps import TimestampRecognizer

FAMILY = 'tablehistograms'

SECTION_SUFFIX = 'histograms'
PERCENTILES = ('50%', '75%', '95%', '98%', '99%', 'Min', 'Max')
OPERATIONS = ('SSTables', 'Write Latency', 'Read Latency', 'Partition Size', 'Cell Count')


class TableHistogramExtractor(SectionExtractor):
    """'<keyspace>/<table> histograms' followed by a Percentile table.

    Rows land on the timestamp that precedes the block.
    """
    kind = SectionKind.TABLE_HISTOGRAM

    def matches(self, line: str) -> bool:
        text = line.strip()
        if not text.endswith(SECTION_SUFFIX) or text.lower() == 'proxy histograms':
            return False
        return bool(self.section_name(line))

    def section_name(self, line: str) -> Optional[str]:
        return line.strip()[:-len(SECTION_SUFFIX)].strip() or None

    def extract(self, lines: List[str], ctx: HeaderContext) -> SectionResult:
        out = SectionResult()
        table = ctx.name
        out.fact('tables', table)
        resolver: Optional[OffsetColumnResolver] = None
        for raw in lines:
            text = raw.strip()
            if resolver is None:
                if text.startswith('Percentile'):
                    resolver = OffsetColumnResolver(raw, expected=OPERATIONS)
                continue
            if text.startswith('('):
                continue
            row = resolver.resolve(raw)
            pct = normalize_header(row.label) if row else None
            if pct not in PERCENTILES:
                out.warn(f'short_row:{FAMILY}:{table}:{text[:40]}')
                continue
            for op, value in row.values():
                out.emit(f'{table} | {op} | {pct}', value)
        if resolver is None:
            out.warn(f'missing_percentile_header:{table}')
        return out


def parse_tablehistograms(content: str, reference_date: Optional[datetime.date] = None) -> TimeSeriesBundle:
    asm = TimeSeriesAssembler(FAMILY, reference_date)
    SectionScanner([TableHistogramExtractor()], asm, TimestampRecognizer(reference_date)).scan(content)
    return asm.finalize()


def sniff(sample: str) -> float:
    lines = [l.strip() for l in sample.splitlines()]
    if any(l.endswith(' histograms') and l.lower() != 'proxy histograms' for l in lines) and 'Partition Size' in sample:
        return 0.8
    return 0.0
