from __future__ import annotations
import re
import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..assembler import TimeSeriesAssembler, TimeSeriesBundle
from ..columns import parse_number
from ..timestamps import TimestampRecognizer

"""top -b captures, one or more snapshots per file.

Snapshot boundaries, first rule that yields more than one piece wins:
'==========' lines, '----------' lines, lines starting with a dated
timestamp. Otherwise a file holding 'top -' and 'PID USER' is one snapshot.

    2025-02-27T13:24:23+0100
    top - 13:24:23 up 10 days,  3:12,  1 user,  load average: 1.05, 0.98, 0.90
    Tasks: 250 total,   1 running, 249 sleeping,   0 stopped,   0 zombie
    %Cpu(s): 19.7 us, 17.7 sy,  0.3 ni, 59.5 id,  2.6 wa,  0.0 hi,  0.3 si,  0.0 st
    MiB Mem :  64000.0 total,   1000.0 free,  30000.0 used,  33000.0 buff/cache
    MiB Swap:   2048.0 total,   2048.0 free,      0.0 used.  33000.0 avail Mem

        PID USER      PR  NI    VIRT    RES    SHR S  %CPU  %MEM     TIME+ COMMAND
       1234 cassand+  20   0   12.3g   4.1g  20480 S  45.0  26.1  10:20.33 java
"""

FAMILY = 'top'

SNAPSHOT_SEPARATORS = ('==========', '----------')
DATED_LINE_RE = re.compile(r"^\s*\d{4}-\d{2}-\d{2}[T ]\d{1,2}:\d{2}:\d{2}")
TOP_HEADER_RE = re.compile(r"^top\s+-\s+(\d{1,2}:\d{2}:\d{2})")
LOAD_RE = re.compile(r"load average:\s*([\d.,]+)[,\s]+([\d.,]+)[,\s]+([\d.,]+)")
PAIR_RE = re.compile(r"([\d.,]+)\s*([A-Za-z/]+(?:\s(?:Mem))?)")
MIN_SNAPSHOT_LINES = 7
MIN_PROCESS_FIELDS = 12


@dataclass(frozen=True)
class ProcessRow:
    pid: int
    user: str
    priority: str
    niceness: str
    virt: str
    res: str
    shr: str
    status: str
    cpu_percent: float
    mem_percent: float
    cpu_time: str
    command: str


@dataclass
class SystemSummary:
    load: List[float] = field(default_factory=list)
    tasks: Dict[str, float] = field(default_factory=dict)
    cpu: Dict[str, float] = field(default_factory=dict)
    memory: Dict[str, float] = field(default_factory=dict)
    swap: Dict[str, float] = field(default_factory=dict)
    load_text: str = ''


@dataclass
class TopSnapshot:
    timestamp: Optional[str]
    clock: Optional[str]
    summary: SystemSummary
    processes: List[ProcessRow]


def _num(text: str) -> Optional[float]:
    text = text.rstrip(',.')
    # top prints 19,7 under comma-decimal locales
    if text.count(',') == 1 and '.' not in text:
        text = text.replace(',', '.')
    return parse_number(text)


def _pairs(text: str) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for value, label in PAIR_RE.findall(text.split(':', 1)[1] if ':' in text else text):
        v = _num(value)
        if v is not None:
            out[label.strip().lower()] = v
    return out


def split_snapshots(content: str) -> List[str]:
    for sep in SNAPSHOT_SEPARATORS:
        if sep in content:
            pieces = [p for p in re.split(r"^\s*" + re.escape(sep) + r"=*-*\s*$", content, flags=re.MULTILINE) if p.strip()]
            if len(pieces) > 1:
                return pieces
    lines = content.splitlines()
    starts = [i for i, l in enumerate(lines) if DATED_LINE_RE.match(l)]
    if len(starts) > 1:
        bounds = starts + [len(lines)]
        return ['\n'.join(lines[bounds[k]:bounds[k + 1]]) for k in range(len(starts))]
    if 'top -' in content and 'PID' in content and 'USER' in content:
        return [content]
    return []


def parse_process_row(line: str) -> Optional[ProcessRow]:
    parts = line.split()
    if len(parts) < MIN_PROCESS_FIELDS or not parts[0].isdigit():
        return None
    cpu = _num(parts[8])
    mem = _num(parts[9])
    if cpu is None or mem is None:
        return None
    return ProcessRow(
        pid=int(parts[0]), user=parts[1], priority=parts[2], niceness=parts[3],
        virt=parts[4], res=parts[5], shr=parts[6], status=parts[7],
        cpu_percent=cpu, mem_percent=mem, cpu_time=parts[10], command=' '.join(parts[11:]),
    )


def parse_summary(lines: List[str]) -> SystemSummary:
    summary = SystemSummary()
    for line in lines:
        text = line.strip()
        if text.startswith('top -'):
            m = LOAD_RE.search(text)
            if m:
                summary.load_text = text.split('load average:', 1)[1].strip()
                summary.load = [v for v in (_num(g) for g in m.groups()) if v is not None]
        elif text.startswith('Tasks:') or text.startswith('Threads:'):
            summary.tasks = _pairs(text)
        elif text.startswith('%Cpu') or text.startswith('Cpu(s)'):
            summary.cpu = _pairs(text)
        elif 'Mem' in text and ':' in text and 'Swap' not in text:
            summary.memory = _pairs(text)
        elif 'Swap' in text and ':' in text:
            summary.swap = _pairs(text)
    return summary


def parse_snapshot(text: str, recognizer: TimestampRecognizer) -> Optional[TopSnapshot]:
    lines = [l for l in text.splitlines() if l.strip()]
    if len(lines) < MIN_SNAPSHOT_LINES:
        return None
    timestamp = None
    for line in lines[:3]:
        ts = recognizer.match(line) or recognizer.search(line)
        if ts is not None and ts.dialect != 'time':
            timestamp = ts.canonical
            break
    top_idx = next((i for i, l in enumerate(lines[:5]) if l.strip().startswith('top -')), None)
    if top_idx is None:
        return None
    clock_m = TOP_HEADER_RE.match(lines[top_idx].strip())
    summary = parse_summary(lines[top_idx:top_idx + 5])
    header_idx = next((i for i in range(top_idx + 1, min(top_idx + 11, len(lines)))
                       if all(k in lines[i] for k in ('PID', 'USER', '%CPU', '%MEM'))), None)
    if header_idx is None:
        return None
    processes = [p for p in (parse_process_row(l) for l in lines[header_idx + 1:]) if p is not None]
    return TopSnapshot(timestamp, clock_m.group(1) if clock_m else None, summary, processes)


def parse_top_snapshots(content: str, reference_date: Optional[datetime.date] = None,
                        warnings: Optional[List[str]] = None) -> List[TopSnapshot]:
    recognizer = TimestampRecognizer(reference_date)
    snapshots: List[TopSnapshot] = []
    for n, piece in enumerate(split_snapshots(content)):
        snap = parse_snapshot(piece, recognizer)
        if snap is None:
            if warnings is not None:
                warnings.append(f'bad_snapshot:{FAMILY}:{n}')
            continue
        snapshots.append(snap)
    return snapshots


_CPU_SERIES = (
    ('us', 'System | CPU | User %'),
    ('sy', 'System | CPU | System %'),
    ('id', 'System | CPU | Idle %'),
    ('wa', 'System | CPU | IO Wait %'),
)


def snapshots_to_bundle(snapshots: List[TopSnapshot], reference_date: Optional[datetime.date] = None,
                        warnings: Optional[List[str]] = None) -> TimeSeriesBundle:
    asm = TimeSeriesAssembler(FAMILY, reference_date)
    for code in warnings or []:
        asm.warn(code)
    clock = TimestampRecognizer(reference_date)
    for snap in snapshots:
        if snap.timestamp:
            idx = asm.add_timestamp(snap.timestamp)
        else:
            ts = clock.match(snap.clock) if snap.clock else None
            if ts is not None and ts.canonical:
                idx = asm.add_timestamp(ts.canonical)
            else:
                asm.warn('snapshot_without_timestamp')
                idx = asm.synthesize_timestamp()
        for proc in snap.processes:
            label = f'{proc.command} ({proc.pid})'
            asm.note('commands', label)
            asm.set(f'CPU | {label}', idx, proc.cpu_percent)
            asm.set(f'MEM | {label}', idx, proc.mem_percent)
        s = snap.summary
        for key, name in _CPU_SERIES:
            if key in s.cpu:
                asm.set(name, idx, s.cpu[key])
        for window, value in zip(('1m', '5m', '15m'), s.load):
            asm.set(f'System | Load | {window}', idx, value)
        for key, name in (('used', 'System | Memory | Used'), ('free', 'System | Memory | Free')):
            if key in s.memory:
                asm.set(name, idx, s.memory[key])
        if 'used' in s.swap:
            asm.set('System | Swap | Used', idx, s.swap['used'])
        for key, name in (('total', 'System | Tasks | Total'), ('running', 'System | Tasks | Running')):
            if key in s.tasks:
                asm.set(name, idx, s.tasks[key])
    asm.metadata['snapshots'] = len(snapshots)
    return asm.finalize()


def parse_top(content: str, reference_date: Optional[datetime.date] = None) -> TimeSeriesBundle:
    warnings: List[str] = []
    snapshots = parse_top_snapshots(content, reference_date, warnings)
    return snapshots_to_bundle(snapshots, reference_date, warnings)


def sniff(sample: str) -> float:
    if 'top -' in sample and 'PID' in sample and '%CPU' in sample:
        return 0.9
    return 0.0
