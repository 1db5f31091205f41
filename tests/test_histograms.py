import math
from conftest import read_data
from diag_server.ingestion.families.proxyhistograms import OPERATIONS, parse_proxyhistograms
from diag_server.ingestion.families.tablehistograms import parse_tablehistograms

proxy = parse_proxyhistograms(read_data('proxyhistograms.txt'))
tables = parse_tablehistograms(read_data('tablehistograms.txt'))


def test_proxy_percentiles_stay_in_microseconds():
    assert proxy.series['p99 Read Latency'] == (1500.0, 1600.25)
    assert proxy.series['p50 Write Latency'] == (379.02, 379.02)
    assert proxy.series['max Read Latency'][0] == 20924.3
    assert proxy.series['min View Write Latency'][0] == 0.0


def test_proxy_full_grid():
    prefixes = ('p50', 'p75', 'p95', 'p98', 'p99', 'min', 'max')
    assert len(proxy.series) == len(prefixes) * len(OPERATIONS)
    assert proxy.metadata['operations'] == list(OPERATIONS)
    assert not proxy.warnings


def test_table_keys_per_table():
    assert tables.series['ks1/users | Write Latency | 99%'] == (51.01, 55.0)
    assert tables.series['ks1/users | SSTables | Max'] == (3.0, 3.0)
    assert tables.series['ks1/users | Cell Count | 50%'] == (3.0, 3.0)
    assert tables.metadata['tables'] == ['ks1/users', 'ks1/events']


def test_table_rows_use_current_timestamp_index():
    events = tables.series['ks1/events | Write Latency | 99%']
    assert events[0] == 61.21 and math.isnan(events[1])


def test_table_block_without_percentile_header_warns():
    text = '2025-02-27T13:24:23\nks1/users histograms\n50%  1  2  3  4  5\n'
    b = parse_tablehistograms(text)
    assert not b.series
    assert 'missing_percentile_header:ks1/users' in b.warnings


def test_proxy_header_is_not_a_table_section():
    b = parse_tablehistograms(read_data('proxyhistograms.txt'))
    assert not b.series
