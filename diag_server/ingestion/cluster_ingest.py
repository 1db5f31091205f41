"""Cluster-level ingestion: discover per-node diagnostic files and parse them.

Expected layout (an extracted diagnostic collection):

    <root>/nodes/<node id>/logs/<file>

Node ids are usually the node's IP address. Each file is parsed on its
own into a TimeSeriesBundle; files can be fanned out over a thread pool.
"""

import os
import re
import time
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from .assembler import TimeSeriesAssembler, TimeSeriesBundle
from .detect import family_from_filename
from .parser import DiagnosticParser, ERROR_METRIC, NO_DATA_METRIC
from ..debug_util import dbg, warn

IPV4_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")
NODES_DIR = 'nodes'
LOGS_DIR = 'logs'
DEFAULT_MAX_WORKERS = 4
DEFAULT_PARSE_TIMEOUT_S = 120.0
POLL_INTERVAL_S = 0.05


@dataclass(frozen=True)
class NodeInfo:
    id: str
    ip: Optional[str]
    name: Optional[str]
    path: str


@dataclass(frozen=True)
class NodeFile:
    node: NodeInfo
    path: str
    family: str


@dataclass
class NodeEntry:
    info: NodeInfo
    bundles: Dict[str, TimeSeriesBundle] = field(default_factory=dict)
    data_quality: Optional[Dict] = None

    def to_summary(self) -> Dict:
        return {
            'info': {'id': self.info.id, 'ip': self.info.ip, 'name': self.info.name, 'path': self.info.path},
            'families': {fam: {'timestamps': len(b.timestamps), 'metrics': len(b.series),
                               'diagnostic': b.metadata.get('diagnostic')}
                         for fam, b in sorted(self.bundles.items())},
            'data_quality': self.data_quality,
        }


@dataclass
class ClusterBundle:
    nodes: Dict[str, NodeEntry]
    merged_timeline: List[str]
    warnings: List[str]

    def merged(self, family: Optional[str] = None) -> TimeSeriesBundle:
        by_node: Dict[str, List[TimeSeriesBundle]] = {}
        for node_id, entry in self.nodes.items():
            for key, b in entry.bundles.items():
                if family is None or key.split(':', 1)[0] == family:
                    by_node.setdefault(node_id, []).append(b)
        return merge_node_bundles(by_node)


def node_info(node_dir: str) -> NodeInfo:
    node_id = os.path.basename(os.path.normpath(node_dir))
    ip = node_id if IPV4_RE.match(node_id) else None
    return NodeInfo(id=node_id, ip=ip, name=None if ip else node_id, path=node_dir)


def discover_node_files(root: str) -> Tuple[List[NodeFile], List[str]]:
    """Find every recognizable file under <root>/nodes/<id>/logs/.

    root may also be the nodes directory itself. Returns (files, warnings);
    files sorted by node id then path so results are stable.
    """
    dbg(f'discover_node_files start root={root}')
    warnings: List[str] = []
    if not os.path.isdir(root):
        raise ValueError(f'not a directory: {root}')
    nodes_dir = os.path.join(root, NODES_DIR)
    if not os.path.isdir(nodes_dir):
        if os.path.basename(os.path.normpath(root)) == NODES_DIR:
            nodes_dir = root
        else:
            dbg(f'discover_node_files missing nodes_dir={nodes_dir}')
            return [], ['nodes_dir_missing']
    found: List[NodeFile] = []
    for node_id in sorted(os.listdir(nodes_dir)):
        node_dir = os.path.join(nodes_dir, node_id)
        if not os.path.isdir(node_dir):
            continue
        logs_dir = os.path.join(node_dir, LOGS_DIR)
        if not os.path.isdir(logs_dir):
            warnings.append(f'logs_dir_missing:{node_id}')
            continue
        info = node_info(node_dir)
        for dirpath, dirnames, filenames in os.walk(logs_dir):
            dirnames.sort()
            for name in sorted(filenames):
                full = os.path.join(dirpath, name)
                family = family_from_filename(name)
                if family is None:
                    warnings.append(f'unrecognized_file:{os.path.relpath(full, nodes_dir)}')
                    continue
                found.append(NodeFile(info, full, family))
    if not found:
        warnings.append('no_node_files')
    dbg(f'discover_node_files done files={len(found)} warnings={len(warnings)}')
    return found, warnings


def data_quality(bundle: TimeSeriesBundle) -> Dict:
    """Summary of what a system log actually contained; score is 0-100."""
    def total(name: str) -> float:
        return sum(v for v in bundle.series.get(name, ()) if v == v)

    pools = bundle.metadata.get('thread_pools') or []
    pool_metrics = bundle.metric_names('Pool | ')
    gc_count = int(total('GC | Count'))
    tombstones = int(total('Tombstones | Warnings'))
    slow_reads = int(total('Slow Reads | Timed Out Reads'))
    flags = {
        'has_gc': gc_count > 0,
        'has_thread_pools': bool(pool_metrics),
        'has_tombstones': tombstones > 0,
        'has_slow_reads': slow_reads > 0,
    }
    return dict(flags,
                gc_count=gc_count,
                thread_pool_count=len(pools),
                thread_pool_metric_count=len(pool_metrics),
                tombstone_count=tombstones,
                slow_reads_count=slow_reads,
                total_timestamps=len(bundle.timestamps),
                score=25 * sum(1 for v in flags.values() if v))


def merge_node_bundles(bundles_by_node: Mapping[str, List[TimeSeriesBundle]]) -> TimeSeriesBundle:
    """One bundle over the sorted union of every node's timestamps.

    Keys become '<node id> | <metric>'; sentinel bundles are skipped with a
    warning. Two bundles of one node with the same metric name are merged
    point-wise, the later bundle winning on collisions.
    """
    # ISO strings sort chronologically
    timeline = sorted({ts for bundles in bundles_by_node.values() for b in bundles
                       if not b.is_sentinel for ts in b.timestamps})
    merged = TimeSeriesAssembler('cluster')
    for ts in timeline:
        merged.add_timestamp(ts)
    position = {ts: i for i, ts in enumerate(timeline)}
    for node_id in sorted(bundles_by_node):
        merged.note('nodes', node_id)
        for b in bundles_by_node[node_id]:
            if b.is_sentinel:
                merged.warn(f'node_without_data:{node_id}:{b.family}')
                continue
            for name, values in b.series.items():
                key = f'{node_id} | {name}'
                merged.register(key)
                for ts, v in zip(b.timestamps, values):
                    if v == v:
                        merged.set(key, position[ts], v)
    return merged.finalize()


def _parse_one(nf: NodeFile) -> Tuple[NodeFile, TimeSeriesBundle, List[str]]:
    warnings: List[str] = []
    dbg(f'cluster_parse path={nf.path} family={nf.family} worker={threading.current_thread().name}')
    bundle = DiagnosticParser(nf.path, family=nf.family).parse()
    if ERROR_METRIC in bundle.series:
        warnings.append(f'parse_failed:{nf.path}:{bundle.metadata.get("diagnostic")}')
    elif NO_DATA_METRIC in bundle.series:
        warnings.append(f'no_data:{nf.path}')
    return nf, bundle, warnings


def parse_cluster(root: str, max_workers: Optional[int] = None, timeout_s: Optional[float] = None) -> ClusterBundle:
    """Parse every node file under root into a ClusterBundle.

    Runs sequentially for a single file or when DIAG_PARALLEL_ENABLED=0,
    otherwise over a thread pool of DIAG_MAX_WORKERS. A document still
    running DIAG_PARSE_TIMEOUT_S after a worker picked it up is abandoned
    with a warning.
    """
    files, warnings = discover_node_files(root)
    if max_workers is None:
        max_workers = int(os.environ.get('DIAG_MAX_WORKERS', DEFAULT_MAX_WORKERS))
    if timeout_s is None:
        timeout_s = float(os.environ.get('DIAG_PARSE_TIMEOUT_S', DEFAULT_PARSE_TIMEOUT_S))
    use_parallel = len(files) > 1 and int(os.environ.get('DIAG_PARALLEL_ENABLED', '1')) and max_workers > 1
    dbg(f'parse_cluster start root={root} files={len(files)} parallel={bool(use_parallel)} workers={max_workers}')
    nodes: Dict[str, NodeEntry] = {}
    for nf in files:
        nodes.setdefault(nf.node.id, NodeEntry(nf.node))
    results: List[Tuple[NodeFile, TimeSeriesBundle, List[str]]] = []
    start_time = time.time()

    if use_parallel:
        finished: Dict[NodeFile, Tuple[NodeFile, TimeSeriesBundle, List[str]]] = {}
        started: Dict[NodeFile, float] = {}

        def run(nf: NodeFile):
            started[nf] = time.time()
            return _parse_one(nf)

        executor = ThreadPoolExecutor(max_workers=min(max_workers, len(files)), thread_name_prefix="DiagWorker")
        try:
            pending = {executor.submit(run, nf): nf for nf in files}
            while pending:
                # wake at the nearest deadline of a running document
                deadlines = [started[nf] + timeout_s for nf in pending.values() if nf in started]
                wait_s = max(0.0, min(deadlines) - time.time()) if deadlines else POLL_INTERVAL_S
                done, _ = wait(pending, timeout=wait_s, return_when=FIRST_COMPLETED)
                for fut in done:
                    nf = pending.pop(fut)
                    try:
                        finished[nf] = fut.result()
                    except Exception as e:
                        error_msg = f'{e.__class__.__name__}:{e}'
                        warnings.append(f'processing_error:{nf.path}:{error_msg}')
                        warn('parse_cluster error path=%s err=%s', nf.path, error_msg)
                now = time.time()
                for fut, nf in list(pending.items()):
                    if nf in started and now - started[nf] >= timeout_s:
                        fut.cancel()
                        del pending[fut]
                        warnings.append(f'parse_timeout:{nf.path}')
                        warn('parse_cluster timeout path=%s timeout_s=%s', nf.path, timeout_s)
        finally:
            # don't block on abandoned (timed-out) documents
            executor.shutdown(wait=False, cancel_futures=True)
        # file order, not completion order, decides duplicate-family keys
        results = [finished[nf] for nf in files if nf in finished]
    else:
        for nf in files:
            try:
                results.append(_parse_one(nf))
            except Exception as e:
                error_msg = f'{e.__class__.__name__}:{e}'
                warnings.append(f'processing_error:{nf.path}:{error_msg}')
                warn('parse_cluster error path=%s err=%s', nf.path, error_msg)

    timeline = set()
    for nf, bundle, file_warnings in results:
        warnings.extend(file_warnings)
        entry = nodes[nf.node.id]
        if nf.family in entry.bundles:
            # several files of one family on a node (rotated logs): keep them apart
            key = f'{nf.family}:{os.path.basename(nf.path)}'
        else:
            key = nf.family
        entry.bundles[key] = bundle
        if not bundle.is_sentinel:
            timeline.update(bundle.timestamps)
        if nf.family == 'systemlog' and entry.data_quality is None:
            entry.data_quality = data_quality(bundle)

    dbg(f'parse_cluster done root={root} nodes={len(nodes)} parsed={len(results)}/{len(files)} '
        f'time={time.time() - start_time:.2f}s warnings={len(warnings)}')
    return ClusterBundle(nodes=nodes, merged_timeline=sorted(timeline), warnings=warnings)


__all__ = [
    'NodeInfo', 'NodeFile', 'NodeEntry', 'ClusterBundle',
    'discover_node_files', 'parse_cluster', 'merge_node_bundles', 'data_quality',
]
