import os, shutil
import pytest
from conftest import data_path, read_data
from diag_server import bundle_store, mcp_app
from diag_server.mcp_app import (
    BundleNotFoundError, active_context, get_series, healthz, list_bundles_tool, list_metrics, load_cluster,
    load_file, metric_group, metric_groups, parse_text, supported_formats, unload_bundle
)


def _tool(t):
    return getattr(t, 'fn', t)


@pytest.fixture(autouse=True)
def isolated_store(tmp_path, monkeypatch):
    """Every test gets its own sqlite file and an empty bundle cache."""
    monkeypatch.setenv('DIAG_SQLITE_PATH', str(tmp_path / 'bundles.db'))
    bundle_store.reset_connection()
    mcp_app._BUNDLE_CACHE.clear()
    yield
    bundle_store.reset_connection()
    mcp_app._BUNDLE_CACHE.clear()


def _copy(tmp_path, name, target=None):
    dst = tmp_path / (target or name)
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(data_path(name), dst)
    return str(dst)


def test_load_file_then_reuse_and_force(tmp_path):
    path = _copy(tmp_path, 'nodetool_tpstats.txt')
    first = _tool(load_file)(path=path)
    assert first['reused'] is False
    assert first['family'] == 'tpstats'
    assert first['timestamps'] == 2
    assert first['time_range'] == {'start': '2025-02-27T13:24:23', 'end': '2025-02-27T13:25:23'}
    assert 'Workflow' in first['workflow_prompt']
    again = _tool(load_file)(path=path)
    assert again['reused'] is True and again['bundle_id'] == first['bundle_id']
    forced = _tool(load_file)(path=path, force=True)
    assert forced['reused'] is False and forced['bundle_id'] != first['bundle_id']
    bundles = _tool(list_bundles_tool)()
    assert [b['bundle_id'] for b in bundles] == [forced['bundle_id']]


def test_explicit_family_and_reference_date(tmp_path):
    path = _copy(tmp_path, 'mpstat.txt', 'capture.out')
    r = _tool(load_file)(path=path, family='mpstat', reference_date='2025-02-27')
    assert r['family'] == 'mpstat'
    assert r['time_range']['start'] == '2025-02-27T13:24:23'
    with pytest.raises(ValueError):
        _tool(load_file)(path=path, family='vmstat')
    with pytest.raises(ValueError):
        _tool(load_file)(path=str(tmp_path / 'missing.txt'))


def test_active_switch_and_unload_promotes_latest(tmp_path):
    tp = _tool(load_file)(path=_copy(tmp_path, 'nodetool_tpstats.txt'))
    io = _tool(load_file)(path=_copy(tmp_path, 'iostat.txt'))
    mp = _tool(load_file)(path=_copy(tmp_path, 'mpstat.txt'))
    assert _tool(active_context)()['bundle_id'] == mp['bundle_id']
    reloaded = _tool(load_file)(path=str(tmp_path / 'nodetool_tpstats.txt'))
    assert reloaded['reused'] is True and reloaded['bundle_id'] == tp['bundle_id']
    ctx = _tool(active_context)()
    assert ctx['bundle_id'] == tp['bundle_id'] and ctx['family'] == 'tpstats'
    bundles = _tool(list_bundles_tool)()
    assert len(bundles) == 3
    assert [b['bundle_id'] for b in bundles if b['active']] == [tp['bundle_id']]

    u = _tool(unload_bundle)()
    assert u['unloaded'] and u['active_cleared']
    assert u['promoted_bundle_id'] == mp['bundle_id']

    u2 = _tool(unload_bundle)(bundle_id=io['bundle_id'])
    assert u2['active_cleared'] is False and u2['promoted_bundle_id'] is None

    purged = _tool(unload_bundle)(purge_all=True)
    assert purged == {'purged_all': True, 'removed': 1}
    assert _tool(active_context)()['bundle_id'] is None
    with pytest.raises(BundleNotFoundError):
        _tool(list_metrics)()
    with pytest.raises(BundleNotFoundError):
        _tool(unload_bundle)(bundle_id='b-missing')


def test_metrics_and_series(tmp_path):
    r = _tool(load_file)(path=_copy(tmp_path, 'nodetool_tpstats.txt'))
    listed = _tool(list_metrics)(prefix='pool | readstage')
    assert 'Pool | ReadStage | Active' in listed['metrics']
    assert listed['truncated'] is False
    limited = _tool(list_metrics)(limit=3)
    assert len(limited['metrics']) == 3 and limited['truncated'] is True

    out = _tool(get_series)(metrics=['Pool | ReadStage | Active', 'Message | READ | Latency | 99%', 'nope'])
    assert out['bundle_id'] == r['bundle_id']
    assert out['series']['Pool | ReadStage | Active'] == [5.0, 2.0]
    assert out['series']['Message | READ | Latency | 99%'] == [2.5, None]
    assert out['missing_metrics'] == ['nope']
    assert out['warnings'] == ['unknown_metric:nope']

    window = _tool(get_series)(metrics=['Pool | ReadStage | Active'], start='2025-02-27T13:25:00')
    assert window['timestamps'] == ['2025-02-27T13:25:23']
    assert window['series']['Pool | ReadStage | Active'] == [2.0]

    groups = {g['group']: g['metrics'] for g in _tool(metric_groups)()['groups']}
    assert groups['Pool'] == 13
    assert groups['Meter'] == 5
    assert 'Message Type' in groups


def test_series_reloaded_from_store_after_cache_loss(tmp_path):
    r = _tool(load_file)(path=_copy(tmp_path, 'sjk_ttop.txt'))
    mcp_app._BUNDLE_CACHE.clear()
    out = _tool(get_series)(metrics=['Process | Heap Allocation Rate (bytes/s)'], bundle_id=r['bundle_id'])
    assert out['series']['Process | Heap Allocation Rate (bytes/s)'] == [512.0 * 1024 ** 2, None]


def test_series_argument_checks(tmp_path):
    _tool(load_file)(path=_copy(tmp_path, 'iostat.txt'))
    with pytest.raises(ValueError):
        _tool(get_series)(metrics=[])
    with pytest.raises(ValueError):
        _tool(get_series)(metrics=[f'm{n}' for n in range(mcp_app.MAX_SERIES_PER_CALL + 1)])
    assert _tool(get_series)(metrics='%user')['series']['%user'] == [10.0, 20.0]


def test_parse_text():
    r = _tool(parse_text)(content=read_data('iostat.txt'), filename='iostat.txt')
    assert r['family'] == 'iostat' and r['diagnostic'] is None
    again = _tool(parse_text)(content=read_data('iostat.txt'), filename='iostat.txt')
    assert again['bundle_id'] != r['bundle_id']
    assert len(_tool(list_bundles_tool)()) == 1
    junk = _tool(parse_text)(content='nothing recognizable')
    assert junk['diagnostic'] == 'unknown_family'
    assert _tool(list_metrics)()['metrics'] == ['No data found | Value']
    with pytest.raises(ValueError):
        _tool(parse_text)(content='')


def test_load_cluster(tmp_path):
    root = tmp_path / 'collection'
    _copy(root, 'nodetool_tpstats.txt', 'nodes/10.0.0.1/logs/nodetool_tpstats.txt')
    _copy(root, 'system.log', 'nodes/10.0.0.1/logs/system.log')
    _copy(root, 'iostat.txt', 'nodes/10.0.0.2/logs/iostat.txt')
    r = _tool(load_cluster)(path=str(root))
    assert r['family'] == 'cluster'
    assert r['node_count'] == 2
    assert r['nodes']['10.0.0.1']['data_quality']['score'] == 100
    assert sorted(r['nodes']['10.0.0.1']['families']) == ['systemlog', 'tpstats']
    names = _tool(list_metrics)(prefix='10.0.0.2 | ')['metrics']
    assert '10.0.0.2 | %user' in names
    assert _tool(load_cluster)(path=str(root))['reused'] is True
    with pytest.raises(ValueError):
        _tool(load_cluster)(path=str(tmp_path / 'none'))


def test_metric_group():
    assert metric_group('Pool | ReadStage | Active') == 'Pool'
    assert metric_group('CPU all %usr') == 'CPU'
    assert metric_group('p99 Read Latency') == 'p99'


def test_formats_and_health():
    fams = [f['family'] for f in _tool(supported_formats)()['families']]
    assert 'systemlog' in fams and 'ttop' in fams
    h = _tool(healthz)()
    assert h['status'] == 'ok'
    assert h['sqlite_path'] == os.environ['DIAG_SQLITE_PATH']
