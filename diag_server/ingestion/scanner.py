from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .assembler import TimeSeriesAssembler
from .timestamps import TimestampRecognizer, strip_timestamp
from ..debug_util import dbg

"""Linear section scanner shared by the nodetool / sysstat families.

One section is open at a time. A timestamp line closes whatever is open and
moves the current index; a header line recognized by one of the family's
extractors opens a section whose body runs until the next timestamp, the
next header, a separator line, or (for most extractors) a blank line after
the first body line. The body is then handed to the extractor as a plain
list of lines and its pairs land at the current timestamp index.

A header may follow a timestamp on the same line (mpstat); the remainder
after the timestamp is checked for a header too.
"""

SEPARATOR_PREFIXES = ('==========', '----------')


class SectionKind(str, Enum):
    NONE = 'none'
    THREAD_POOL = 'thread-pool'
    MESSAGE_TYPE = 'message-type'
    METER_TABLE = 'meter-table'
    CPU_IO = 'cpu-io'
    LATENCY_HISTOGRAM = 'latency-histogram'
    TABLE_HISTOGRAM = 'table-histogram'


@dataclass(frozen=True)
class HeaderContext:
    kind: SectionKind
    header: str  # header text, leading timestamp removed
    line_no: int
    name: Optional[str] = None


@dataclass
class SectionResult:
    pairs: List[Tuple[str, float]] = field(default_factory=list)
    facts: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def emit(self, name: str, value: float):
        self.pairs.append((name, value))

    def fact(self, key: str, value: str):
        self.facts.append((key, value))

    def warn(self, code: str):
        self.warnings.append(code)


class SectionExtractor:
    """Base class: subclasses set kind, implement matches() and extract()."""
    kind: SectionKind = SectionKind.NONE
    stop_on_blank: bool = True
    timestamped_rows: bool = False

    def matches(self, line: str) -> bool:
        raise NotImplementedError

    def section_name(self, line: str) -> Optional[str]:
        return None

    def detect(self, line: str, line_no: int) -> Optional[HeaderContext]:
        if not line.strip() or not self.matches(line):
            return None
        return HeaderContext(self.kind, line, line_no, self.section_name(line))

    def ends_section(self, line: str) -> bool:
        return line.strip().startswith(SEPARATOR_PREFIXES)

    def extract(self, lines: List[str], ctx: HeaderContext) -> SectionResult:
        raise NotImplementedError


class SectionScanner:
    def __init__(self, extractors: Sequence[SectionExtractor], assembler: TimeSeriesAssembler,
                 recognizer: TimestampRecognizer):
        self.extractors = list(extractors)
        self.assembler = assembler
        self.recognizer = recognizer
        self.sections_seen = 0

    def _detect(self, text: str, line_no: int) -> Optional[Tuple[SectionExtractor, HeaderContext]]:
        for ex in self.extractors:
            ctx = ex.detect(text, line_no)
            if ctx is not None:
                return ex, ctx
        return None

    def _collect(self, extractor: SectionExtractor, lines: List[str], start: int) -> Tuple[List[str], int]:
        body: List[str] = []
        j = start
        while j < len(lines):
            line = lines[j]
            if not line.strip():
                if extractor.stop_on_blank and body:
                    break
                j += 1
                continue
            if extractor.ends_section(line):
                break
            rest = strip_timestamp(line)
            if rest is not None:
                if not extractor.timestamped_rows or self._detect(rest, j) is not None:
                    break
            elif self._detect(line, j) is not None:
                break
            body.append(line)
            j += 1
        return body, j

    def _apply(self, result: SectionResult, ctx: HeaderContext):
        asm = self.assembler
        for code in result.warnings:
            asm.warn(code)
        for key, value in result.facts:
            asm.note(key, value)
        if not result.pairs:
            asm.warn(f'empty_section:{ctx.kind.value}:{ctx.line_no + 1}')
            return
        idx = asm.current_index()
        for name, value in result.pairs:
            asm.set(name, idx, value)

    def scan(self, content: str) -> TimeSeriesAssembler:
        lines = content.splitlines()
        i = 0
        while i < len(lines):
            line = lines[i]
            text = line
            ts = self.recognizer.match(line)
            if ts is not None:
                if ts.canonical is None:
                    self.assembler.warn(f'bad_timestamp:{ts.raw}')
                    self.assembler.synthesize_timestamp()
                else:
                    self.assembler.add_timestamp(ts.canonical)
                text = ts.remainder
                if not text:
                    i += 1
                    continue
            hit = self._detect(text, i)
            if hit is None:
                i += 1
                continue
            extractor, ctx = hit
            body, i = self._collect(extractor, lines, i + 1)
            self.sections_seen += 1
            self._apply(extractor.extract(body, ctx), ctx)
        dbg(f'scan done family={self.assembler.family} lines={len(lines)} sections={self.sections_seen} '
            f'timestamps={len(self.assembler.timestamps)}')
        return self.assembler
