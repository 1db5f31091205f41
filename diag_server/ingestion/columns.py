from __future__ import annotations
import re
import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from .headers import split_header_spans

"""Column resolution strategies.

TokenColumnResolver: whitespace tokens; the first numeric (or N/A) token
starts the values, everything before it is the row label.

OffsetColumnResolver: header label offsets in the raw header line define
column ranges [start, next_start). Each data token belongs to the range
holding its last character, which keeps right-aligned numbers that start a
little left of their header in the right column.

Both resolve(data_line) -> ResolvedRow; a short row just yields fewer cells.
"""

NUMERIC_TOKEN_RE = re.compile(r"^\(?[-+]?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?(?:[eE][-+]?\d+)?\)?$")
NA_MARKERS = frozenset({'N/A', '(N/A)', 'n/a', 'NaN', 'nan', 'NA'})
TOKEN_SPAN_RE = re.compile(r"\S+")


def is_value_token(token: str) -> bool:
    return token in NA_MARKERS or bool(NUMERIC_TOKEN_RE.match(token))


def parse_number(token: str) -> Optional[float]:
    """Float value of a numeric token; None for N/A markers and non-numbers."""
    if token in NA_MARKERS or not NUMERIC_TOKEN_RE.match(token):
        return None
    try:
        value = float(token.strip('()').replace(',', ''))
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


@dataclass(frozen=True)
class ResolvedRow:
    label: str
    cells: Tuple[Tuple[str, str], ...]  # (header, raw cell text) in column order
    short: bool = False

    def values(self) -> Iterator[Tuple[str, float]]:
        """(header, value) for every cell holding a usable number."""
        for header, text in self.cells:
            parts = text.split()
            if not parts:
                continue
            value = parse_number(parts[0])
            if value is not None:
                yield header, value

    def get(self, header: str) -> Optional[float]:
        for h, v in self.values():
            if h == header:
                return v
        return None


class TokenColumnResolver:
    def __init__(self, headers: Sequence[str], label_tokens: Optional[int] = None):
        """headers: value column labels (no label column).

        label_tokens forces a fixed-width label (mpstat's CPU id is itself
        numeric, so 'first numeric token' would swallow it).
        """
        self.headers = list(headers)
        self.label_tokens = label_tokens

    @classmethod
    def from_header(cls, header_line: str, label_columns: int = 1, label_tokens: Optional[int] = None) -> 'TokenColumnResolver':
        labels = [label for label, _, _ in split_header_spans(header_line)]
        return cls(labels[label_columns:], label_tokens=label_tokens)

    def resolve(self, data_line: str) -> Optional[ResolvedRow]:
        tokens = data_line.split()
        if not tokens:
            return None
        if self.label_tokens is not None:
            start = min(self.label_tokens, len(tokens))
        else:
            start = next((i for i, t in enumerate(tokens) if is_value_token(t)), None)
            if start is None:
                return None
        values = tokens[start:]
        cells = tuple(zip(self.headers, values))
        return ResolvedRow(' '.join(tokens[:start]), cells, short=len(values) < len(self.headers))


class OffsetColumnResolver:
    def __init__(self, header_line: str, expected: Optional[Sequence[str]] = None, label_column: bool = True):
        """Locate header labels by character offset.

        expected limits which labels become value columns; every located
        label still bounds its neighbours. With label_column the first
        located label is the row-label column (e.g. 'Percentile', 'Pool Name').
        """
        spans = split_header_spans(header_line)
        self.label_header: Optional[str] = None
        if label_column and spans:
            self.label_header = spans[0][0]
            spans = spans[1:]
        self._bounds: List[Tuple[str, int]] = [(label, start) for label, start, _ in spans]
        wanted = set(expected) if expected is not None else None
        self.columns: List[Tuple[str, int, Optional[int]]] = []
        for idx, (label, start) in enumerate(self._bounds):
            end = self._bounds[idx + 1][1] if idx + 1 < len(self._bounds) else None
            if wanted is None or label in wanted:
                self.columns.append((label, start, end))

    @property
    def headers(self) -> List[str]:
        return [c[0] for c in self.columns]

    def _region(self, pos: int) -> Optional[str]:
        """Header owning character position pos (None = label column)."""
        owner = None
        for label, start in self._bounds:
            if pos >= start:
                owner = label
            else:
                break
        return owner

    def resolve(self, data_line: str) -> Optional[ResolvedRow]:
        if not data_line.strip():
            return None
        label_parts: List[str] = []
        buckets: dict = {}
        for m in TOKEN_SPAN_RE.finditer(data_line):
            owner = self._region(m.end() - 1) if self._bounds else None
            if owner is None:
                label_parts.append(m.group(0))
            else:
                buckets.setdefault(owner, []).append(m.group(0))
        cells = tuple((label, ' '.join(buckets[label])) for label, _, _ in self.columns if label in buckets)
        return ResolvedRow(' '.join(label_parts), cells, short=len(cells) < len(self.columns))
