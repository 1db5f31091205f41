from __future__ import annotations
import re
import datetime
from typing import Optional

from ..assembler import TimeSeriesAssembler, TimeSeriesBundle
from ..timestamps import TimestampRecognizer

"""sjk ttop output (per-thread CPU and allocation, one block per interval).

    2024-05-01T10:00:00.123+0000 Process summary
      process cpu=152.34%
      application cpu=140.12% (user=120.00% sys=20.12%)
      other: cpu=12.22%
      thread count: 120
      heap allocation rate 512mb/s
    [000123] user=45.00% sys= 2.00% alloc=  120mb/s - CoreThread-0

Core threads also get the short legacy key '<CoreThread-N> %user'.
"""

FAMILY = 'ttop'

PROCESS_CPU_RE = re.compile(r"process cpu=\s*([\d.]+)%")
APP_CPU_RE = re.compile(r"application cpu=\s*[\d.]+%\s*\(user=\s*([\d.]+)%\s*sys=\s*([\d.]+)%\)")
HEAP_ALLOC_RE = re.compile(r"heap allocation rate\s+(\S+)", re.IGNORECASE)
THREAD_RE = re.compile(r"^\[(\d+)\]\s+user=\s*(-?[\d.]+)%\s+sys=\s*(-?[\d.]+)%\s+alloc=\s*(\S+)\s+-\s+(.+)$")
ALLOC_RE = re.compile(r"([\d.]+)\s*(gb|mb|kb|b)/s", re.IGNORECASE)
CORE_THREAD_RE = re.compile(r"^CoreThread-\d+$")

UNIT_BYTES = {'b': 1, 'kb': 1024, 'mb': 1024 ** 2, 'gb': 1024 ** 3}
# sjk occasionally prints absurd rates right after a safepoint
MAX_ALLOC_BYTES = 10000 * 1024 ** 2


def parse_alloc_rate(text: str) -> Optional[float]:
    m = ALLOC_RE.search(text)
    if not m:
        return None
    value = float(m.group(1)) * UNIT_BYTES[m.group(2).lower()]
    if value > MAX_ALLOC_BYTES:
        return None
    return value


def parse_ttop(content: str, reference_date: Optional[datetime.date] = None) -> TimeSeriesBundle:
    asm = TimeSeriesAssembler(FAMILY, reference_date)
    recognizer = TimestampRecognizer(reference_date)
    idx: Optional[int] = None
    for raw in content.splitlines():
        line = raw.strip()
        if not line:
            continue
        ts = recognizer.match(line)
        if ts is not None:
            idx = asm.add_timestamp(ts.canonical) if ts.canonical else asm.synthesize_timestamp()
            continue
        if idx is None:
            if THREAD_RE.match(line):
                asm.warn(f'row_before_timestamp:{FAMILY}:{line[:40]}')
            continue
        m = PROCESS_CPU_RE.search(line)
        if m:
            asm.set('Process | CPU %', idx, float(m.group(1)))
            continue
        m = APP_CPU_RE.search(line)
        if m:
            asm.set('Process | User %', idx, float(m.group(1)))
            asm.set('Process | System %', idx, float(m.group(2)))
            continue
        m = HEAP_ALLOC_RE.search(line)
        if m:
            rate = parse_alloc_rate(m.group(1))
            if rate is None:
                asm.warn(f'bad_alloc_rate:{m.group(1)}')
            else:
                asm.set('Process | Heap Allocation Rate (bytes/s)', idx, rate)
            continue
        m = THREAD_RE.match(line)
        if not m:
            continue
        tid, user, sys_, alloc, name = m.group(1), float(m.group(2)), float(m.group(3)), m.group(4), m.group(5).strip()
        label = f'{name} [{tid}]'
        asm.note('threads', label)
        asm.set(f'Thread | {label} | CPU %', idx, user + sys_)
        rate = parse_alloc_rate(alloc)
        if rate is None:
            asm.warn(f'bad_alloc_rate:{alloc}')
        else:
            asm.set(f'Thread | {label} | Allocation Rate (bytes/s)', idx, rate)
        if CORE_THREAD_RE.match(name):
            asm.set(f'{name} %user', idx, user)
    return asm.finalize()


def sniff(sample: str) -> float:
    if 'Process summary' in sample and 'process cpu=' in sample:
        return 0.9
    if re.search(r"^\[\d+\] user=", sample, re.MULTILINE):
        return 0.6
    return 0.0
