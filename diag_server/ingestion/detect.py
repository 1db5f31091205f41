from __future__ import annotations
import os
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional, Tuple

from .families import iostat, mpstat, proxyhistograms, systemlog, tablehistograms, top, tpstats, ttop
from ..debug_util import dbg


@dataclass(frozen=True)
class Family:
    name: str
    parse: Callable
    sniff: Callable[[str], float]
    description: str


FAMILIES: Mapping[str, Family] = MappingProxyType({
    'tpstats': Family('tpstats', tpstats.parse_tpstats, tpstats.sniff,
                      'nodetool tpstats: thread pools, dropped messages, meters'),
    'iostat': Family('iostat', iostat.parse_iostat, iostat.sniff,
                     'iostat -x: CPU breakdown and per-device I/O'),
    'mpstat': Family('mpstat', mpstat.parse_mpstat, mpstat.sniff,
                     'mpstat -P ALL: per-CPU utilization'),
    'proxyhistograms': Family('proxyhistograms', proxyhistograms.parse_proxyhistograms, proxyhistograms.sniff,
                              'nodetool proxyhistograms: coordinator latency percentiles'),
    'tablehistograms': Family('tablehistograms', tablehistograms.parse_tablehistograms, tablehistograms.sniff,
                              'nodetool tablehistograms: per-table latency, size and SSTable percentiles'),
    'top': Family('top', top.parse_top, top.sniff,
                  'top -b snapshots: per-process CPU/MEM and system summary'),
    'systemlog': Family('systemlog', systemlog.parse_systemlog, systemlog.sniff,
                        'system.log / debug.log: GC pauses, StatusLogger pools, tombstones, slow reads'),
    'ttop': Family('ttop', ttop.parse_ttop, ttop.sniff,
                   'sjk ttop: process and per-thread CPU and allocation rate'),
})

# checked in order; cfhistograms is the pre-4.0 name of tablehistograms
FILENAME_RULES: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"proxyhistograms", re.IGNORECASE), 'proxyhistograms'),
    (re.compile(r"(table|cf)histograms", re.IGNORECASE), 'tablehistograms'),
    (re.compile(r"tpstats", re.IGNORECASE), 'tpstats'),
    (re.compile(r"iostat", re.IGNORECASE), 'iostat'),
    (re.compile(r"mpstat", re.IGNORECASE), 'mpstat'),
    (re.compile(r"(^|[_\-.])(os_)?top([_\-.]|$)", re.IGNORECASE), 'top'),
    (re.compile(r"(system|debug)\.log", re.IGNORECASE), 'systemlog'),
    (re.compile(r"(sjk|ttop|corethread)", re.IGNORECASE), 'ttop'),
)

SNIFF_BYTES = 64 * 1024
MIN_SNIFF_CONFIDENCE = 0.3


def supported_families() -> List[str]:
    return list(FAMILIES)


def family_from_filename(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    base = os.path.basename(filename)
    for rx, family in FILENAME_RULES:
        if rx.search(base):
            return family
    return None


def sniff_family(content: str) -> Tuple[Optional[str], float]:
    """Best family by content confidence, or (None, best score) below threshold."""
    sample = content[:SNIFF_BYTES]
    best, best_score = None, 0.0
    for name, fam in FAMILIES.items():
        score = fam.sniff(sample)
        if score > best_score:
            best, best_score = name, score
    if best_score < MIN_SNIFF_CONFIDENCE:
        return None, best_score
    return best, best_score


def detect_family(filename: Optional[str], content: Optional[str] = None) -> Optional[str]:
    family = family_from_filename(filename)
    if family:
        return family
    if content:
        family, score = sniff_family(content)
        dbg(f'detect_family sniff filename={filename} family={family} score={score:.2f}')
        return family
    return None
