import os, time, datetime, uuid, threading
from typing import List, Optional, Dict, Any, Union
from types import MappingProxyType

from .bundle_store import (
    source_hash, text_hash, get_bundle_by_hash, insert_bundle, get_bundle, get_payload, list_all_bundles,
    delete_bundle, delete_all_bundles, set_global_active, get_global_active, unload_global_active,
    promote_latest_bundle, db_path
)
from .ingestion.assembler import TimeSeriesBundle, is_missing
from .ingestion.cluster_ingest import parse_cluster
from .ingestion.detect import FAMILIES, supported_families
from .ingestion.parser import DiagnosticParser, parse_document
from .debug_util import dbg
from fastmcp import FastMCP

# ----------------- System Prompt Guidance -----------------
SYSTEM_PROMPT = (
    "Workflow (Bundle-ID centric):\n"
    "1. load_file(path=..., family=optional, force=optional) for one diagnostic dump "
    "(tpstats, iostat, mpstat, proxyhistograms, tablehistograms, top, system.log, sjk ttop).\n"
    "2. load_cluster(path=...) for an extracted collection laid out as nodes/<node id>/logs/<file>; "
    "metrics become '<node id> | <metric>'.\n"
    "3. parse_text(content=..., filename=optional) when you only have the text.\n"
    "4. Exactly one active bundle at a time (hash-based reuse; force=True re-parses).\n"
    "5. active_context() -> {bundle_id, family, time_range{start,end}, metrics}. Tools default to the active bundle.\n"
    "6. metric_groups() then list_metrics(prefix=...) to find metric names; get_series(metrics=[...], start, end) for values.\n"
    "7. Timestamps are ISO-8601 local strings (YYYY-MM-DDTHH:MM:SS); null values mean the metric was absent at that time.\n"
    "8. A single 'No data found | Value' or 'Error | Value' metric means the document yielded nothing; "
    "see metadata.diagnostic and warnings.\n"
    "9. unload_bundle() removes a bundle; the most recent remaining bundle becomes active.\n"
    "Domain Guidance: thread pool metrics are 'Pool | <pool> | <Active|Pending|Blocked|...>' (tpstats and system.log "
    "StatusLogger); dropped messages 'Message Type | <type> | Dropped'; coordinator latency '<pNN> <Read|Write|...>' "
    "in microseconds; per-table histograms '<keyspace>/<table> | <operation> | <percentile>'.\n"
)

mcp = FastMCP("nodediag-mcp")

DEFAULT_METRIC_LIMIT = 200
MAX_SERIES_PER_CALL = 100
_BUNDLE_CACHE: Dict[str, TimeSeriesBundle] = {}
_CACHE_LOCK = threading.Lock()


class BundleNotFoundError(ValueError):
    pass


# ----------------- Helpers -----------------

def _summary_record(bundle_id: str, digest: str, path: str, kind: str, bundle: TimeSeriesBundle, node_count: int = 0) -> dict:
    ordered = sorted(bundle.timestamps)
    return {
        'bundle_id': bundle_id, 'source_hash': digest, 'path': path, 'kind': kind, 'family': bundle.family,
        'node_count': node_count, 'timestamps': len(bundle.timestamps), 'metrics': len(bundle.series),
        'start_ts': ordered[0] if ordered else None, 'end_ts': ordered[-1] if ordered else None,
        'created_at': int(time.time()*1000), 'payload': bundle.to_json(),
    }


def _describe(rec: Dict[str, Any], reused: bool, warnings: List[str]) -> dict:
    return {
        'bundle_id': rec['bundle_id'], 'kind': rec['kind'], 'family': rec['family'], 'path': rec['path'],
        'node_count': rec['node_count'], 'timestamps': rec['timestamps'], 'metrics': rec['metrics'],
        'time_range': {'start': rec['start_ts'], 'end': rec['end_ts']},
        'reused': reused, 'warnings': warnings,
        'workflow_prompt': SYSTEM_PROMPT, 'workflow_version': 1,
    }


def _store(kind: str, digest: str, path: str, bundle: TimeSeriesBundle, force: bool, node_count: int = 0) -> dict:
    existing = get_bundle_by_hash(kind, digest)
    if existing and force:
        delete_bundle(existing['bundle_id'])
        _forget(existing['bundle_id'])
    bundle_id = f"b-{uuid.uuid4().hex[:10]}"
    rec = _summary_record(bundle_id, digest, path, kind, bundle, node_count)
    insert_bundle(rec)
    set_global_active(bundle_id)
    with _CACHE_LOCK:
        _BUNDLE_CACHE[bundle_id] = bundle
    dbg(f'store bundle={bundle_id} kind={kind} family={bundle.family} metrics={rec["metrics"]} timestamps={rec["timestamps"]}')
    return rec


def _reuse(kind: str, digest: str) -> Optional[Dict[str, Any]]:
    existing = get_bundle_by_hash(kind, digest)
    if existing:
        set_global_active(existing['bundle_id'])
        dbg(f'reuse bundle={existing["bundle_id"]} kind={kind}')
    return existing


def _forget(bundle_id: str):
    with _CACHE_LOCK:
        _BUNDLE_CACHE.pop(bundle_id, None)


def _resolve_bundle_id(bundle_id: Optional[str]) -> str:
    if bundle_id:
        if not get_bundle(bundle_id):
            raise BundleNotFoundError(f'bundle not found: {bundle_id}')
        return bundle_id
    ga = get_global_active()
    if not ga:
        raise BundleNotFoundError('no active bundle; call load_file or load_cluster first')
    return ga['bundle_id']


def _load_bundle(bundle_id: str) -> TimeSeriesBundle:
    with _CACHE_LOCK:
        cached = _BUNDLE_CACHE.get(bundle_id)
    if cached is not None:
        return cached
    payload = get_payload(bundle_id)
    if payload is None:
        raise BundleNotFoundError(f'bundle not found: {bundle_id}')
    bundle = TimeSeriesBundle.from_dict(payload)
    with _CACHE_LOCK:
        _BUNDLE_CACHE[bundle_id] = bundle
    return bundle


def metric_group(name: str) -> str:
    """Leading segment of a metric name ('Pool | ReadStage | Active' -> 'Pool')."""
    if ' | ' in name:
        return name.split(' | ', 1)[0]
    return name.split(' ', 1)[0]


# ----------------- Implementations (shared with the HTTP shim) -----------------

def _load_file_impl(path: Optional[str], family: Optional[str] = None, force: bool = False,
                    reference_date: Optional[str] = None) -> dict:
    dbg(f'_load_file_impl: path={path} family={family} force={force}')
    if not path:
        raise ValueError('path required')
    if not os.path.isfile(path):
        raise ValueError(f'path not found: {path}')
    if family and family not in FAMILIES:
        raise ValueError(f'unknown family: {family}; expected one of {supported_families()}')
    ref = datetime.date.fromisoformat(reference_date) if reference_date else None
    digest = source_hash(path) + (f':{family}' if family else '')
    if not force:
        existing = _reuse('file', digest)
        if existing:
            return _describe(existing, True, [])
    bundle = DiagnosticParser(path, family=family, reference_date=ref).parse()
    rec = _store('file', digest, os.path.abspath(path), bundle, force)
    return _describe(rec, False, list(bundle.warnings))


def _load_cluster_impl(path: Optional[str], force: bool = False) -> dict:
    dbg(f'_load_cluster_impl: path={path} force={force}')
    if not path:
        raise ValueError('path required')
    if not os.path.isdir(path):
        raise ValueError(f'directory not found: {path}')
    digest = source_hash(path)
    if not force:
        existing = _reuse('cluster', digest)
        if existing:
            return _describe(existing, True, [])
    cluster = parse_cluster(path)
    merged = cluster.merged()
    md = dict(merged.metadata)
    md['nodes'] = {node_id: entry.to_summary() for node_id, entry in sorted(cluster.nodes.items())}
    merged = TimeSeriesBundle(merged.timestamps, merged.series, MappingProxyType(md), 'cluster',
                              tuple(cluster.warnings) + merged.warnings)
    rec = _store('cluster', digest, os.path.abspath(path), merged, force, node_count=len(cluster.nodes))
    out = _describe(rec, False, list(merged.warnings))
    out['nodes'] = md['nodes']
    return out


def _parse_text_impl(content: str, filename: Optional[str] = None, family: Optional[str] = None) -> dict:
    dbg(f'_parse_text_impl: filename={filename} family={family} chars={len(content or "")}')
    if not content:
        raise ValueError('content required')
    if family and family not in FAMILIES:
        raise ValueError(f'unknown family: {family}; expected one of {supported_families()}')
    bundle = parse_document(content, filename=filename, family=family)
    digest = text_hash(content) + f':{filename or ""}:{family or ""}'
    rec = _store('text', digest, filename or '<text>', bundle, force=True)
    out = _describe(rec, False, list(bundle.warnings))
    out['diagnostic'] = bundle.metadata.get('diagnostic')
    return out


def _active_context_impl() -> dict:
    ga = get_global_active()
    if not ga:
        return {'bundle_id': None, 'path': None, 'family': None, 'time_range': None, 'metrics': 0}
    b = get_bundle(ga['bundle_id'])
    if not b:
        return {'bundle_id': ga['bundle_id'], 'path': None, 'family': None, 'time_range': None, 'metrics': 0}
    return {
        'bundle_id': b['bundle_id'], 'path': b['path'], 'kind': b['kind'], 'family': b['family'],
        'time_range': {'start': b['start_ts'], 'end': b['end_ts']},
        'timestamps': b['timestamps'], 'metrics': b['metrics'], 'node_count': b['node_count'],
    }


def _list_bundles_impl() -> List[dict]:
    ga = get_global_active(); active_id = ga['bundle_id'] if ga else None
    out = []
    for r in list_all_bundles():
        out.append({
            'bundle_id': r['bundle_id'], 'kind': r['kind'], 'family': r['family'], 'path': r['path'],
            'created_at': r['created_at'], 'active': r['bundle_id'] == active_id,
            'timestamps': r['timestamps'], 'metrics': r['metrics'],
        })
    return out


def _unload_impl(bundle_id: Optional[str] = None, purge_all: bool = False) -> dict:
    if purge_all:
        removed = delete_all_bundles()
        with _CACHE_LOCK:
            _BUNDLE_CACHE.clear()
        return {'purged_all': True, 'removed': removed}
    if not bundle_id:
        ga = get_global_active(); bundle_id = ga['bundle_id'] if ga else None
        if not bundle_id:
            return {'bundle_id': None, 'unloaded': False, 'active_cleared': False, 'promoted_bundle_id': None}
    row = get_bundle(bundle_id)
    if not row:
        raise BundleNotFoundError(f'bundle not found: {bundle_id}')
    ga = get_global_active(); active_cleared = bool(ga and ga['bundle_id'] == bundle_id)
    if active_cleared:
        unload_global_active()
    delete_bundle(bundle_id)
    _forget(bundle_id)
    promoted_id = promote_latest_bundle() if active_cleared else None
    return {'bundle_id': bundle_id, 'path': row['path'], 'unloaded': True, 'active_cleared': active_cleared,
            'promoted_bundle_id': promoted_id}


def _list_metrics_impl(bundle_id: Optional[str] = None, prefix: Optional[str] = None,
                       limit: int = DEFAULT_METRIC_LIMIT) -> dict:
    bid = _resolve_bundle_id(bundle_id)
    bundle = _load_bundle(bid)
    names = bundle.metric_names(prefix)
    limit = max(1, int(limit))
    return {'bundle_id': bid, 'total': len(names), 'metrics': names[:limit], 'truncated': len(names) > limit}


def _metric_groups_impl(bundle_id: Optional[str] = None) -> dict:
    bid = _resolve_bundle_id(bundle_id)
    bundle = _load_bundle(bid)
    groups: Dict[str, int] = {}
    for name in bundle.series:
        g = metric_group(name)
        groups[g] = groups.get(g, 0) + 1
    return {'bundle_id': bid, 'family': bundle.family,
            'groups': [{'group': g, 'metrics': n} for g, n in sorted(groups.items())]}


def _get_series_impl(metrics: Union[str, List[str]], bundle_id: Optional[str] = None,
                     start: Optional[str] = None, end: Optional[str] = None) -> dict:
    if isinstance(metrics, str):
        metrics = [metrics]
    if not metrics:
        raise ValueError('metrics required')
    if len(metrics) > MAX_SERIES_PER_CALL:
        raise ValueError(f'too many metrics requested ({len(metrics)} > {MAX_SERIES_PER_CALL})')
    bid = _resolve_bundle_id(bundle_id)
    bundle = _load_bundle(bid).slice(start, end)
    series: Dict[str, List[Optional[float]]] = {}
    missing: List[str] = []
    for name in metrics:
        values = bundle.series.get(name)
        if values is None:
            missing.append(name)
            continue
        series[name] = [None if is_missing(v) else v for v in values]
    return {'bundle_id': bid, 'timestamps': list(bundle.timestamps), 'series': series,
            'missing_metrics': missing, 'warnings': [f'unknown_metric:{m}' for m in missing]}


def _supported_formats_impl() -> dict:
    return {'families': [{'family': name, 'description': fam.description} for name, fam in FAMILIES.items()]}


def _healthz_impl() -> dict:
    return {'status': 'ok', 'service': 'nodediag-mcp', 'families': supported_families(), 'sqlite_path': db_path()}


# ----------------- MCP tools -----------------

@mcp.tool()
def load_file(path: str, family: Optional[str] = None, force: bool = False, reference_date: Optional[str] = None) -> dict:
    """Parse one diagnostic file and activate the resulting bundle.

    family is detected from the file name (then content) unless given. reference_date (YYYY-MM-DD)
    dates clock-only timestamps. Reuses an existing bundle if the file hash matches unless force=True.
    Returns {bundle_id, family, timestamps, metrics, time_range, reused, warnings, workflow_prompt}."""
    return _load_file_impl(path, family=family, force=force, reference_date=reference_date)


@mcp.tool()
def load_cluster(path: str, force: bool = False) -> dict:
    """Parse every node file under <path>/nodes/<id>/logs/ into one merged bundle and activate it.

    Metrics are keyed '<node id> | <metric>'. Returns the load summary plus per-node summaries
    (families found, system log data quality)."""
    return _load_cluster_impl(path, force=force)


@mcp.tool()
def parse_text(content: str, filename: Optional[str] = None, family: Optional[str] = None) -> dict:
    """Parse raw diagnostic text (filename helps detection) and activate the resulting bundle."""
    return _parse_text_impl(content, filename=filename, family=family)


@mcp.tool()
def active_context() -> dict:
    """Return current active bundle metadata or null placeholders.

    Provides bundle_id, family, time_range{start,end}, metrics. Use before queries."""
    return _active_context_impl()


@mcp.tool()
def list_bundles_tool() -> List[dict]:
    """List all bundles with active flag and basic counts."""
    return _list_bundles_impl()


@mcp.tool()
def unload_bundle(bundle_id: Optional[str] = None, purge_all: bool = False) -> dict:
    """Unload (delete) a bundle or purge all.

    If bundle_id omitted uses active. purge_all=True removes every bundle and clears active pointer.
    Returns status including promoted_bundle_id if another became active."""
    return _unload_impl(bundle_id=bundle_id, purge_all=purge_all)


@mcp.tool()
def list_metrics(bundle_id: Optional[str] = None, prefix: Optional[str] = None, limit: int = DEFAULT_METRIC_LIMIT) -> dict:
    """List metric names of a bundle (default: active), optionally filtered by case-insensitive prefix."""
    return _list_metrics_impl(bundle_id=bundle_id, prefix=prefix, limit=limit)


@mcp.tool()
def metric_groups(bundle_id: Optional[str] = None) -> dict:
    """Count metrics per leading name segment (Pool, Message Type, CPU, GC, ...)."""
    return _metric_groups_impl(bundle_id=bundle_id)


@mcp.tool()
def get_series(metrics: List[str], bundle_id: Optional[str] = None, start: Optional[str] = None,
               end: Optional[str] = None) -> dict:
    """Return values for the named metrics over the bundle timeline.

    start/end are inclusive canonical timestamps (YYYY-MM-DDTHH:MM:SS). Missing points are null;
    unknown metric names are reported in missing_metrics."""
    return _get_series_impl(metrics, bundle_id=bundle_id, start=start, end=end)


@mcp.tool()
def supported_formats() -> dict:
    """List the diagnostic formats this server can parse."""
    return _supported_formats_impl()


@mcp.tool()
def healthz() -> dict:
    """Liveness probe."""
    return _healthz_impl()


# --------------- HTTP Runner via mcp.run ---------------

if __name__ == '__main__':
    host = os.environ.get('HOST', '0.0.0.0')
    port = int(os.environ.get('PORT', '8000'))
    print(f'Starting FastMCP on {host}:{port}')
    mcp.run(transport="http", host=host, port=port, stateless_http=True)
