import datetime
from conftest import read_data
from diag_server.ingestion.families.mpstat import cpu_sort_key, parse_mpstat

REF = datetime.date(2025, 2, 27)
bundle = parse_mpstat(read_data('mpstat.txt'), reference_date=REF)


def test_header_clock_defines_timestamps():
    assert bundle.timestamps == ('2025-02-27T13:24:23', '2025-02-27T13:24:24')


def test_per_cpu_metrics():
    assert bundle.series['CPU all %usr'] == (2.0, 4.0)
    assert bundle.series['CPU 0 %sys'] == (1.0, 2.0)
    assert bundle.series['CPU 1 %idle'] == (98.0, 95.0)


def test_average_block_ignored():
    assert all(v in (2.0, 4.0) for v in bundle.series['CPU all %usr'])
    assert len(bundle.timestamps) == 2


def test_all_sorts_first_then_numeric():
    assert bundle.metadata['cpus'] == ['all', '0', '1']
    names = list(bundle.series)
    assert names[0] == 'CPU all %usr'
    assert names.index('CPU all %idle') < names.index('CPU 0 %usr') < names.index('CPU 1 %usr')
    assert sorted(['10', '2', 'all'], key=cpu_sort_key) == ['all', '2', '10']


def test_cpu_metrics_metadata_keeps_header_order():
    assert bundle.metadata['cpu_metrics'][:3] == ['%usr', '%nice', '%sys']
