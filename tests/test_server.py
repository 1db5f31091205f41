import shutil
import pytest
from fastapi.testclient import TestClient
from conftest import data_path, read_data
from diag_server import bundle_store, mcp_app
from diag_server.server import app

client = TestClient(app)


@pytest.fixture(autouse=True)
def isolated_store(tmp_path, monkeypatch):
    monkeypatch.setenv('DIAG_SQLITE_PATH', str(tmp_path / 'bundles.db'))
    bundle_store.reset_connection()
    mcp_app._BUNDLE_CACHE.clear()
    yield
    bundle_store.reset_connection()


def test_root_and_health():
    assert client.get('/').json()['status'] == 'ok'
    body = client.get('/healthz').json()
    assert body['service'] == 'nodediag-mcp'
    assert 'tpstats' in body['families']


def test_load_file_list_and_series(tmp_path):
    path = tmp_path / 'proxyhistograms.txt'
    shutil.copy(data_path('proxyhistograms.txt'), path)
    r = client.post('/files/load', json={'path': str(path)})
    assert r.status_code == 200
    bid = r.json()['bundle_id']
    assert client.get('/active_context').json()['bundle_id'] == bid
    assert [b['bundle_id'] for b in client.get('/bundles').json()] == [bid]

    m = client.get(f'/bundles/{bid}/metrics', params={'prefix': 'p99'}).json()
    assert 'p99 Read Latency' in m['metrics']
    s = client.post(f'/bundles/{bid}/series', json={'metrics': ['p99 Read Latency']}).json()
    assert s['series']['p99 Read Latency'] == [1500.0, 1600.25]

    d = client.delete(f'/bundles/{bid}')
    assert d.status_code == 200 and d.json()['unloaded'] is True
    assert client.get('/bundles').json() == []


def test_parse_endpoint():
    r = client.post('/parse', json={'content': read_data('os_top.txt'), 'filename': 'os_top.txt'})
    assert r.status_code == 200
    assert r.json()['family'] == 'top'


def test_error_mapping(tmp_path):
    assert client.post('/files/load', json={'path': str(tmp_path / 'nope.txt')}).status_code == 400
    assert client.post('/clusters/load', json={'path': str(tmp_path / 'nope')}).status_code == 400
    assert client.post('/parse', json={'content': ''}).status_code == 400
    assert client.get('/bundles/b-missing/metrics').status_code == 404
    assert client.post('/bundles/b-missing/series', json={'metrics': ['x']}).status_code == 404
    assert client.delete('/bundles/b-missing').status_code == 404
