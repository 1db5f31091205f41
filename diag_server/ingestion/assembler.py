from __future__ import annotations
import json
import math
import datetime
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from .timestamps import CANONICAL_FMT, parse_canonical

MISSING = float('nan')
MAX_WARNINGS = 200
ONE_SECOND = datetime.timedelta(seconds=1)
ONE_MS = datetime.timedelta(milliseconds=1)


def is_missing(value: float) -> bool:
    return isinstance(value, float) and math.isnan(value)


def _fallback_run(prev: Optional[datetime.datetime], nxt: Optional[datetime.datetime], count: int,
                  reference_date: datetime.date) -> List[datetime.datetime]:
    if prev is None and nxt is None:
        start = datetime.datetime.combine(reference_date, datetime.time(0, 0, 0))
        return [start + k * ONE_SECOND for k in range(count)]
    if prev is None:
        return [nxt - (count - k) * ONE_SECOND for k in range(count)]
    step = ONE_SECOND
    if nxt is not None and prev < nxt <= prev + count * ONE_SECOND:
        step = (nxt - prev) / (count + 1)
    return [prev + (k + 1) * step for k in range(count)]


def _format(stamp: datetime.datetime) -> str:
    if stamp.microsecond:
        return stamp.isoformat(timespec='milliseconds')
    return stamp.strftime(CANONICAL_FMT)


def _claim(stamp: datetime.datetime, taken: set, backwards: bool = False) -> str:
    # sub-second fallbacks carry milliseconds; string order stays chronological
    text = _format(stamp)
    while text in taken:
        stamp += -ONE_MS if backwards else ONE_MS
        text = _format(stamp)
    taken.add(text)
    return text


@dataclass(frozen=True)
class MetricSample:
    name: str
    value: float
    timestamp: str
    labels: Dict[str, str]


@dataclass(frozen=True)
class TimeSeriesBundle:
    """Output of one parse: a shared timestamp axis plus equal-length series.

    series values are tuples and the mapping is read-only; metadata is
    whatever the family reported (lists of discovered names and the like).
    """
    timestamps: Tuple[str, ...]
    series: Mapping[str, Tuple[float, ...]]
    metadata: Mapping[str, Any] = field(default_factory=dict)
    family: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    def metric_names(self, prefix: Optional[str] = None) -> List[str]:
        if not prefix:
            return list(self.series)
        p = prefix.lower()
        return [m for m in self.series if m.lower().startswith(p)]

    @property
    def is_sentinel(self) -> bool:
        return 'diagnostic' in self.metadata

    def slice(self, start: Optional[str] = None, end: Optional[str] = None) -> 'TimeSeriesBundle':
        """Sub-range by canonical timestamp string (inclusive on both ends)."""
        keep = [i for i, ts in enumerate(self.timestamps)
                if (start is None or ts >= start) and (end is None or ts <= end)]
        return TimeSeriesBundle(
            timestamps=tuple(self.timestamps[i] for i in keep),
            series=MappingProxyType({k: tuple(v[i] for i in keep) for k, v in self.series.items()}),
            metadata=self.metadata, family=self.family, warnings=self.warnings,
        )

    def iter_samples(self, labels: Optional[Dict[str, str]] = None) -> Iterator[MetricSample]:
        base = dict(labels or {})
        if self.family:
            base.setdefault('family', self.family)
        for name, values in self.series.items():
            for ts, v in zip(self.timestamps, values):
                if not is_missing(v):
                    yield MetricSample(name, v, ts, dict(base))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'family': self.family,
            'timestamps': list(self.timestamps),
            'series': {k: list(v) for k, v in self.series.items()},
            'metadata': dict(self.metadata),
            'warnings': list(self.warnings),
        }

    def to_json(self) -> str:
        # NaN survives as the bare NaN literal; json.loads reads it back
        return json.dumps(self.to_dict(), allow_nan=True)

    def to_jsonable(self) -> Dict[str, Any]:
        """to_dict with missing-markers as None (strict JSON consumers)."""
        out = self.to_dict()
        out['series'] = {k: [None if is_missing(x) else x for x in v] for k, v in out['series'].items()}
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimeSeriesBundle':
        series = {k: tuple(MISSING if x is None else float(x) for x in v) for k, v in (data.get('series') or {}).items()}
        return cls(
            timestamps=tuple(data.get('timestamps') or ()),
            series=MappingProxyType(series),
            metadata=MappingProxyType(dict(data.get('metadata') or {})),
            family=data.get('family'),
            warnings=tuple(data.get('warnings') or ()),
        )


class TimeSeriesAssembler:
    """Single owner of the output shape during a parse.

    Extractors only ever hand (name, index, value) to set/accumulate; the
    length invariant is settled once in finalize().
    """

    def __init__(self, family: Optional[str] = None, reference_date: Optional[datetime.date] = None):
        self.family = family
        self.reference_date = reference_date or datetime.date.today()
        self.timestamps: List[Optional[str]] = []  # None marks a fallback slot
        self._index: Dict[str, int] = {}
        self._series: Dict[str, List[float]] = {}
        self.metadata: Dict[str, Any] = {}
        self.warnings: List[str] = []
        self.current: Optional[int] = None

    # timestamps ---------------------------------------------------------
    def add_timestamp(self, canonical: str) -> int:
        idx = self._index.get(canonical)
        if idx is None:
            idx = len(self.timestamps)
            self.timestamps.append(canonical)
            self._index[canonical] = idx
        self.current = idx
        return idx

    def synthesize_timestamp(self) -> int:
        """Append a fallback slot for a record whose timestamp was unusable.

        The slot holds None until resolve_timestamps(); real timestamps are
        never merged into it.
        """
        idx = len(self.timestamps)
        self.timestamps.append(None)
        self.current = idx
        return idx

    def resolve_timestamps(self) -> List[str]:
        """The timestamp axis with every fallback slot given a value.

        A run of fallback slots is placed after the real timestamp before it
        at one second steps, or evenly inside the gap when the next real
        timestamp is closer than that. A run opening the document ends one
        second per slot before the first real timestamp; a document without
        any real timestamp starts at reference_date midnight.
        """
        out = list(self.timestamps)
        taken = set(self._index)
        n = len(out)
        i = 0
        while i < n:
            if out[i] is not None:
                i += 1
                continue
            j = i
            while j < n and out[j] is None:
                j += 1
            prev = parse_canonical(out[i - 1]) if i > 0 else None
            nxt = parse_canonical(out[j]) if j < n else None
            for k, stamp in enumerate(_fallback_run(prev, nxt, j - i, self.reference_date)):
                out[i + k] = _claim(stamp, taken, backwards=prev is None and nxt is not None)
            i = j
        return out

    def current_index(self) -> int:
        """Index for values seen before any timestamp line gets a synthetic slot."""
        if self.current is None:
            self.warn('no_timestamp_before_data')
            return self.synthesize_timestamp()
        return self.current

    # series -------------------------------------------------------------
    def register(self, name: str) -> List[float]:
        values = self._series.get(name)
        if values is None:
            values = [MISSING] * len(self.timestamps)
            self._series[name] = values
        return values

    def set(self, name: str, index: int, value: float):
        values = self.register(name)
        if len(values) <= index:
            values.extend([MISSING] * (index + 1 - len(values)))
        values[index] = float(value)

    def accumulate(self, name: str, index: int, value: float):
        values = self.register(name)
        if len(values) <= index:
            values.extend([MISSING] * (index + 1 - len(values)))
        prev = values[index]
        values[index] = float(value) if is_missing(prev) else prev + float(value)

    def names(self) -> List[str]:
        return list(self._series)

    # metadata / warnings ------------------------------------------------
    def note(self, key: str, value: Any):
        """Append value to an ordered, duplicate-free metadata list."""
        bucket = self.metadata.setdefault(key, [])
        if value not in bucket:
            bucket.append(value)

    def warn(self, code: str):
        if len(self.warnings) < MAX_WARNINGS:
            self.warnings.append(code)
        elif self.warnings[-1] != 'warnings_truncated':
            self.warnings.append('warnings_truncated')

    # output -------------------------------------------------------------
    def finalize(self, sort_key: Optional[Callable[[str], Any]] = None) -> TimeSeriesBundle:
        n = len(self.timestamps)
        names = list(self._series)
        if sort_key is not None:
            names.sort(key=sort_key)
        series: Dict[str, Tuple[float, ...]] = {}
        for name in names:
            values = self._series[name]
            if len(values) < n:
                values = values + [MISSING] * (n - len(values))
            elif len(values) > n:
                values = values[:n]
            series[name] = tuple(values)
        return TimeSeriesBundle(
            timestamps=tuple(self.resolve_timestamps()),
            series=MappingProxyType(series),
            metadata=MappingProxyType(dict(self.metadata)),
            family=self.family,
            warnings=tuple(self.warnings),
        )
