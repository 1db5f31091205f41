from __future__ import annotations
import datetime
from typing import List, Optional, Tuple

from ..assembler import TimeSeriesAssembler, TimeSeriesBundle
from ..columns import TokenColumnResolver
from ..scanner import HeaderContext, SectionExtractor, SectionKind, SectionResult, SectionScanner
from ..timestamps import TimestampRecognizer, strip_timestamp

FAMILY = 'mpstat'


class CpuTableExtractor(SectionExtractor):
    """'HH:MM:SS [AM|PM]  CPU  %usr ...' header, then one row per CPU.

    The scanner strips the header's clock and registers it; rows repeat the
    clock, which is dropped here so every row lands on the header's slot.
    """
    kind = SectionKind.CPU_IO
    timestamped_rows = True

    def matches(self, line: str) -> bool:
        tokens = line.split()
        return bool(tokens) and tokens[0] == 'CPU' and ('%usr' in tokens or '%user' in tokens)

    def extract(self, lines: List[str], ctx: HeaderContext) -> SectionResult:
        out = SectionResult()
        headers = ctx.header.split()[1:]
        out.facts.extend(('cpu_metrics', h) for h in headers)
        resolver = TokenColumnResolver(headers, label_tokens=1)
        for raw in lines:
            rest = strip_timestamp(raw)
            if rest is None:
                # 'Average:' summaries and anything else without a clock
                continue
            row = resolver.resolve(rest)
            if row is None or not row.label:
                out.warn(f'short_row:{FAMILY}:{raw.strip()[:60]}')
                continue
            if row.short:
                out.warn(f'short_row:{FAMILY}:cpu={row.label}')
            out.fact('cpus', row.label)
            for metric, value in row.values():
                out.emit(f'CPU {row.label} {metric}', value)
        return out


def cpu_sort_key(cpu: str) -> Tuple[int, int, str]:
    if cpu == 'all':
        return (0, 0, cpu)
    if cpu.isdigit():
        return (1, int(cpu), cpu)
    return (2, 0, cpu)


def parse_mpstat(content: str, reference_date: Optional[datetime.date] = None) -> TimeSeriesBundle:
    """mpstat -P ALL captures; the clock-only timestamps take reference_date."""
    asm = TimeSeriesAssembler(FAMILY, reference_date)
    SectionScanner([CpuTableExtractor()], asm, TimestampRecognizer(reference_date)).scan(content)
    metric_order = {m: i for i, m in enumerate(asm.metadata.get('cpu_metrics', []))}
    cpus = sorted(asm.metadata.get('cpus', []), key=cpu_sort_key)
    asm.metadata['cpus'] = cpus

    def series_key(name: str):
        _, cpu, metric = name.split(' ', 2)
        return cpu_sort_key(cpu), metric_order.get(metric, len(metric_order)), metric

    return asm.finalize(sort_key=series_key)


def sniff(sample: str) -> float:
    if 'CPU' in sample and '%usr' in sample and '%idle' in sample:
        return 0.8
    return 0.0
