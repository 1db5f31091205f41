from __future__ import annotations
import datetime
from typing import List, Optional

from ..assembler import TimeSeriesAssembler, TimeSeriesBundle
from ..columns import TokenColumnResolver
from ..headers import normalize_header
from ..scanner import HeaderContext, SectionExtractor, SectionKind, SectionResult, SectionScanner
from ..timestamps import TimestampRecognizer

FAMILY = 'iostat'

CPU_METRICS = ('%user', '%nice', '%system', '%iowait', '%steal', '%idle')
DEVICE_METRICS = ('r/s', 'w/s', 'rkB/s', 'wkB/s', 'r_await', 'w_await', '%util')


class CpuBlockExtractor(SectionExtractor):
    """avg-cpu: header followed by one unlabeled value line."""
    kind = SectionKind.CPU_IO

    def matches(self, line: str) -> bool:
        return 'avg-cpu:' in line

    def extract(self, lines: List[str], ctx: HeaderContext) -> SectionResult:
        out = SectionResult()
        headers = [normalize_header(t) for t in ctx.header.split('avg-cpu:', 1)[1].split()]
        resolver = TokenColumnResolver(headers)
        for raw in lines[:1]:
            row = resolver.resolve(raw)
            if row is None:
                out.warn(f'short_row:{FAMILY}:{raw.strip()[:60]}')
                continue
            for metric, value in row.values():
                if metric in CPU_METRICS:
                    out.emit(metric, value)
        return out


class DeviceTableExtractor(SectionExtractor):
    kind = SectionKind.CPU_IO

    def matches(self, line: str) -> bool:
        first = line.split()[0] if line.split() else ''
        return normalize_header(first) == 'Device' and len(line.split()) > 2

    def extract(self, lines: List[str], ctx: HeaderContext) -> SectionResult:
        out = SectionResult()
        resolver = TokenColumnResolver([normalize_header(t) for t in ctx.header.split()[1:]])
        for raw in lines:
            row = resolver.resolve(raw)
            if row is None or not row.label:
                out.warn(f'short_row:{FAMILY}:{raw.strip()[:60]}')
                continue
            out.fact('devices', row.label)
            for metric, value in row.values():
                if metric in DEVICE_METRICS:
                    out.emit(f'{row.label} {metric}', value)
        return out


def extractors() -> List[SectionExtractor]:
    return [CpuBlockExtractor(), DeviceTableExtractor()]


def parse_iostat(content: str, reference_date: Optional[datetime.date] = None) -> TimeSeriesBundle:
    """iostat -x -t captures.

    The ISO dialect (S_TIME_FORMAT=ISO) and the locale dialect
    ('02/27/2025 01:24:23 PM') differ only in the interval timestamp line;
    the recognizer handles both and the dialect is reported in metadata.
    """
    recognizer = TimestampRecognizer(reference_date)
    asm = TimeSeriesAssembler(FAMILY, reference_date)
    SectionScanner(extractors(), asm, recognizer).scan(content)
    dialects = [d for d in recognizer.dialects_seen if d in ('iso', 'locale')]
    asm.metadata['timestamp_dialect'] = dialects[0] if len(dialects) == 1 else ('mixed' if dialects else 'none')
    asm.metadata['cpu_metrics'] = [m for m in CPU_METRICS if m in asm.names()]
    return asm.finalize()


def sniff(sample: str) -> float:
    score = 0.0
    if 'avg-cpu:' in sample:
        score += 0.6
    if 'Device' in sample and ('r/s' in sample or 'rkB/s' in sample):
        score += 0.3
    return min(score, 1.0)
