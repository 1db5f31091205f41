import math
from conftest import read_data
from diag_server.ingestion.families.ttop import parse_alloc_rate, parse_ttop

bundle = parse_ttop(read_data('sjk_ttop.txt'))
MB = 1024 ** 2


def test_process_summary():
    assert bundle.timestamps == ('2024-05-01T10:00:00', '2024-05-01T10:00:10')
    assert bundle.series['Process | CPU %'] == (152.34, 98.0)
    assert bundle.series['Process | User %'] == (120.0, 80.0)
    assert bundle.series['Process | System %'] == (20.12, 10.0)


def test_absurd_heap_rate_dropped_with_warning():
    heap = bundle.series['Process | Heap Allocation Rate (bytes/s)']
    assert heap[0] == 512 * MB and math.isnan(heap[1])
    assert 'bad_alloc_rate:99999gb/s' in bundle.warnings


def test_thread_rows():
    assert bundle.series['Thread | CoreThread-0 [000123] | CPU %'] == (47.0, 38.0)
    assert bundle.series['Thread | CoreThread-0 [000123] | Allocation Rate (bytes/s)'] == (120 * MB, 64 * MB)
    assert bundle.series['Thread | CoreThread-1 [000124] | Allocation Rate (bytes/s)'][0] == 80 * 1024
    assert bundle.series['Thread | CompactionExecutor:1 [000200] | Allocation Rate (bytes/s)'][0] == 0.0


def test_core_thread_legacy_key():
    assert bundle.series['CoreThread-0 %user'] == (45.0, 35.0)
    assert 'CompactionExecutor:1 %user' not in bundle.series


def test_parse_alloc_rate():
    assert parse_alloc_rate('1kb/s') == 1024.0
    assert parse_alloc_rate('nonsense') is None


def test_absurd_thread_rate_dropped_with_warning():
    b = parse_ttop(
        '2024-05-01T10:00:00 Process summary\n'
        '  process cpu=10.00%\n'
        '[000123] user=5.00% sys=1.00% alloc= 20000gb/s - CoreThread-0\n'
    )
    assert 'Thread | CoreThread-0 [000123] | Allocation Rate (bytes/s)' not in b.series
    assert b.series['Thread | CoreThread-0 [000123] | CPU %'] == (6.0,)
    assert 'bad_alloc_rate:20000gb/s' in b.warnings
