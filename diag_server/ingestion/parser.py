from __future__ import annotations
import os
import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Optional

from .assembler import MetricSample, TimeSeriesAssembler, TimeSeriesBundle
from .detect import FAMILIES, detect_family
from ..debug_util import dbg, warn

"""Top-level entry point: one document in, one bundle out, never an exception.

Outcomes seen by callers:
  * normal bundle (family set, series non-empty)
  * 'No data found | Value' over the document's timestamps (or one synthetic
    timestamp) when nothing was extracted; metadata.diagnostic = 'no_data'
    or 'unknown_family'
  * 'Error | Value' = [0.0] at one synthetic timestamp when the family code
    itself failed; metadata.diagnostic = 'parse_error:<ExceptionClass>'
"""

NO_DATA_METRIC = 'No data found | Value'
ERROR_METRIC = 'Error | Value'
DEFAULT_MAX_FILE_BYTES = 256 * 1024 * 1024


def _sentinel(metric: str, diagnostic: str, family: Optional[str], reference_date: Optional[datetime.date],
              timestamps=(), warnings=()) -> TimeSeriesBundle:
    asm = TimeSeriesAssembler(family, reference_date)
    for ts in timestamps:
        asm.add_timestamp(ts)
    for code in warnings:
        asm.warn(code)
    if not asm.timestamps:
        asm.warn('no_timestamps')
        asm.synthesize_timestamp()
    for i in range(len(asm.timestamps)):
        asm.set(metric, i, 0.0)
    asm.metadata['diagnostic'] = diagnostic
    return asm.finalize()


def parse_document(content: Optional[str], filename: Optional[str] = None, family: Optional[str] = None,
                   reference_date: Optional[datetime.date] = None) -> TimeSeriesBundle:
    """Parse one diagnostic document into a TimeSeriesBundle.

    family overrides detection; otherwise the filename decides and content
    sniffing is the fallback. reference_date dates clock-only timestamps
    (default: today).
    """
    content = content or ''
    fam = family or detect_family(filename, content)
    if fam not in FAMILIES:
        dbg(f'parse_document unknown family filename={filename} requested={family}')
        return _sentinel(NO_DATA_METRIC, 'unknown_family', fam, reference_date)
    try:
        bundle = FAMILIES[fam].parse(content, reference_date)
    except Exception as e:
        warn('parse_document error family=%s filename=%s err=%s:%s', fam, filename, e.__class__.__name__, e)
        return _sentinel(ERROR_METRIC, f'parse_error:{e.__class__.__name__}', fam, reference_date,
                         warnings=[f'parse_error:{e.__class__.__name__}:{str(e)[:120]}'])
    if not bundle.series:
        dbg(f'parse_document no metrics family={fam} filename={filename} timestamps={len(bundle.timestamps)}')
        return _sentinel(NO_DATA_METRIC, 'no_data', fam, reference_date, bundle.timestamps, bundle.warnings)
    dbg(f'parse_document done family={fam} filename={filename} timestamps={len(bundle.timestamps)} '
        f'metrics={len(bundle.series)} warnings={len(bundle.warnings)}')
    return bundle


class DiagnosticParser:
    def __init__(self, path: str, family: Optional[str] = None, reference_date: Optional[datetime.date] = None):
        """File-backed wrapper around parse_document.

        Reads utf-8 with undecodable bytes dropped. Files larger than
        DIAG_MAX_FILE_BYTES are refused with ValueError before reading.
        """
        self.path = Path(path)
        self.family = family
        self.reference_date = reference_date

    def read(self) -> str:
        limit = int(os.environ.get('DIAG_MAX_FILE_BYTES', DEFAULT_MAX_FILE_BYTES))
        size = self.path.stat().st_size
        if size > limit:
            raise ValueError(f'file too large: {self.path} ({size} bytes > {limit})')
        with self.path.open('r', encoding='utf-8', errors='ignore') as fh:
            return fh.read()

    def parse(self) -> TimeSeriesBundle:
        bundle = parse_document(self.read(), filename=self.path.name, family=self.family,
                                reference_date=self.reference_date)
        md = dict(bundle.metadata)
        md['source'] = str(self.path)
        return TimeSeriesBundle(bundle.timestamps, bundle.series, MappingProxyType(md), bundle.family, bundle.warnings)

    def iter_metric_samples(self) -> Iterator[MetricSample]:
        yield from self.parse().iter_samples(labels={'source': self.path.name})
