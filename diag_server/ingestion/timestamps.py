from __future__ import annotations
import re
import datetime
from dataclasses import dataclass
from typing import Optional

"""Timestamp recognition for diagnostic captures.

Three spellings show up across the collectors that wrap nodetool / sysstat:

    2025-02-27T13:24:23+0100        (iso, also 'YYYY-MM-DD HH:MM:SS,mmm' in system.log)
    02/27/2025 01:24:23 PM          (locale, iostat without S_TIME_FORMAT=ISO)
    13:24:23 / 01:24:23 PM          (time, mpstat rows; no date in the file)

All of them canonicalize to 'YYYY-MM-DDTHH:MM:SS'. Offsets and fractional
seconds are dropped. A spelling that matches the shape but not the calendar
(month 13, hour 25) still comes back as a match with canonical=None so the
caller can synthesize a fallback slot instead of losing the record.
"""

CANONICAL_FMT = "%Y-%m-%dT%H:%M:%S"

_ISO_BODY = r"(\d{4})-(\d{2})-(\d{2})[T ](\d{1,2}):(\d{2}):(\d{2})(?:[.,]\d+)?(?:Z|[+-]\d{2}:?\d{2})?"
_LOCALE_BODY = r"(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})\s+(\d{1,2}):(\d{2}):(\d{2})(?:\s*([AaPp][Mm]))?"
_TIME_BODY = r"(\d{1,2}):(\d{2}):(\d{2})(?:\s*([AaPp][Mm]))?"
_END = r"(?=\s|$)"

ISO_TS_RE = re.compile(r"^\s*" + _ISO_BODY + _END)
LOCALE_TS_RE = re.compile(r"^\s*" + _LOCALE_BODY + _END)
BARE_TIME_RE = re.compile(r"^\s*" + _TIME_BODY + _END)
ISO_TS_SEARCH_RE = re.compile(r"(?<![\d:/-])" + _ISO_BODY + _END)
LOCALE_TS_SEARCH_RE = re.compile(r"(?<![\d:/-])" + _LOCALE_BODY + _END)

# a bare clock that jumps back by more than this is read as a midnight rollover
ROLLOVER_GAP = datetime.timedelta(hours=12)


@dataclass(frozen=True)
class TimestampMatch:
    canonical: Optional[str]
    remainder: str
    dialect: str  # iso | locale | time
    raw: str


def _to_24h(hour: int, meridiem: Optional[str]) -> int:
    if not meridiem:
        return hour
    meridiem = meridiem.upper()
    if hour == 12:
        return 0 if meridiem == 'AM' else 12
    return hour + 12 if meridiem == 'PM' else hour


def _canonical(year: int, month: int, day: int, hour: int, minute: int, second: int) -> Optional[str]:
    try:
        return datetime.datetime(year, month, day, hour, minute, second).strftime(CANONICAL_FMT)
    except ValueError:
        return None


class TimestampRecognizer:
    """Matches and canonicalizes line-leading timestamps.

    One recognizer belongs to one parse call: it remembers the last bare
    clock value so a capture that runs past midnight keeps a non-decreasing
    timeline (the processing date advances by one day on rollover).
    """

    def __init__(self, reference_date: Optional[datetime.date] = None):
        self.reference_date = reference_date or datetime.date.today()
        self._current_date = self.reference_date
        self._last_bare: Optional[datetime.datetime] = None
        self.dialects_seen: list[str] = []

    def _record(self, dialect: str):
        if dialect not in self.dialects_seen:
            self.dialects_seen.append(dialect)

    def _from_iso(self, m: re.Match) -> Optional[str]:
        y, mo, d, h, mi, s = (int(g) for g in m.groups()[:6])
        return _canonical(y, mo, d, h, mi, s)

    def _from_locale(self, m: re.Match) -> Optional[str]:
        mo, d, y, h, mi, s = (int(g) for g in m.groups()[:6])
        if y < 100:
            y += 2000
        h = _to_24h(h, m.group(7))
        return _canonical(y, mo, d, h, mi, s)

    def _from_bare(self, m: re.Match) -> Optional[str]:
        h, mi, s = (int(g) for g in m.groups()[:3])
        h = _to_24h(h, m.group(4))
        try:
            t = datetime.time(h, mi, s)
        except ValueError:
            return None
        stamp = datetime.datetime.combine(self._current_date, t)
        if self._last_bare is not None and self._last_bare - stamp > ROLLOVER_GAP:
            self._current_date += datetime.timedelta(days=1)
            stamp = datetime.datetime.combine(self._current_date, t)
        self._last_bare = stamp
        return stamp.strftime(CANONICAL_FMT)

    def match(self, line: str) -> Optional[TimestampMatch]:
        """Return a match when `line` begins with a timestamp, else None."""
        m = ISO_TS_RE.match(line)
        if m:
            self._record('iso')
            return TimestampMatch(self._from_iso(m), line[m.end():].strip(), 'iso', m.group(0).strip())
        m = LOCALE_TS_RE.match(line)
        if m:
            self._record('locale')
            return TimestampMatch(self._from_locale(m), line[m.end():].strip(), 'locale', m.group(0).strip())
        m = BARE_TIME_RE.match(line)
        if m:
            self._record('time')
            return TimestampMatch(self._from_bare(m), line[m.end():].strip(), 'time', m.group(0).strip())
        return None

    def search(self, line: str) -> Optional[TimestampMatch]:
        """Find a dated timestamp anywhere in the line (log-prefixed formats).

        Bare clocks are not searched for: inside free text they collide with
        durations and uptimes.
        """
        m = ISO_TS_SEARCH_RE.search(line)
        if m:
            self._record('iso')
            return TimestampMatch(self._from_iso(m), line[m.end():].strip(), 'iso', m.group(0).strip())
        m = LOCALE_TS_SEARCH_RE.search(line)
        if m:
            self._record('locale')
            return TimestampMatch(self._from_locale(m), line[m.end():].strip(), 'locale', m.group(0).strip())
        return None


def parse_canonical(ts: str) -> datetime.datetime:
    # also takes the millisecond form given to sub-second fallback slots
    return datetime.datetime.fromisoformat(ts)


def strip_timestamp(line: str) -> Optional[str]:
    """Remainder after a leading timestamp, or None. Pure: no rollover tracking."""
    for rx in (ISO_TS_RE, LOCALE_TS_RE, BARE_TIME_RE):
        m = rx.match(line)
        if m:
            return line[m.end():].strip()
    return None
