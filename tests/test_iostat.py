import pytest
from conftest import read_data
from diag_server.ingestion.families.iostat import CPU_METRICS, parse_iostat, sniff

iso = parse_iostat(read_data('iostat.txt'))
locale = parse_iostat(read_data('iostat_locale.txt'))


@pytest.mark.parametrize('b,dialect', [(iso, 'iso'), (locale, 'locale')])
def test_both_dialects_produce_same_series(b, dialect):
    assert b.metadata['timestamp_dialect'] == dialect
    assert b.timestamps == ('2025-02-27T13:24:23', '2025-02-27T13:24:33')
    assert b.series['%user'] == (10.0, 20.0)
    assert b.series['%idle'] == (83.0, 71.0)
    assert b.series['sda %util'] == (0.3, 0.9)


def test_six_cpu_metrics():
    assert [m for m in iso.series if m.startswith('%')] == list(CPU_METRICS)
    assert iso.metadata['cpu_metrics'] == list(CPU_METRICS)


def test_device_metrics_limited_to_seven():
    sda = sorted(m for m in iso.series if m.startswith('sda '))
    assert sda == sorted(f'sda {m}' for m in ('r/s', 'w/s', 'rkB/s', 'wkB/s', 'r_await', 'w_await', '%util'))
    assert iso.metadata['devices'] == ['sda', 'nvme0n1']
    assert iso.series['nvme0n1 wkB/s'] == (100.0, 100.0)


def test_single_cpu_block_aligned_to_timestamp():
    text = (
        '2025-02-27T13:24:23\n'
        'avg-cpu:  %user   %nice %system %iowait  %steal   %idle\n'
        '          10.00    0.00    5.00    2.00    0.00   83.00\n'
    )
    b = parse_iostat(text)
    assert b.timestamps == ('2025-02-27T13:24:23',)
    assert b.series['%user'] == (10.0,)
    assert b.series['%idle'] == (83.0,)


def test_legacy_device_header_spelling():
    text = (
        '2025-02-27T13:24:23\n'
        'Device:         rrqm/s   wrqm/s     r/s     w/s    rkB/s    wkB/s avgrq-sz avgqu-sz   await r_await w_await  svctm  %util\n'
        'sda               0.00     0.10    1.50    2.50    20.00    40.00    16.00     0.01    0.90    0.50    1.20   0.40   0.30\n'
    )
    b = parse_iostat(text)
    assert b.series['sda r/s'] == (1.5,)
    assert b.series['sda %util'] == (0.3,)


def test_sniff():
    assert sniff(read_data('iostat.txt')) >= 0.6


def _cpu_block(stamp, user):
    return (f'{stamp}\n'
            'avg-cpu:  %user   %nice %system %iowait  %steal   %idle\n'
            f'          {user:.2f}    0.00    5.00    2.00    0.00   83.00\n\n')


def test_bad_timestamp_keeps_its_own_slot():
    b = parse_iostat(_cpu_block('2025-02-27T13:00:00', 1) + _cpu_block('2025-02-30T13:00:00', 2)
                     + _cpu_block('2025-02-27T13:00:01', 3))
    assert b.series['%user'] == (1.0, 2.0, 3.0)
    assert b.timestamps == ('2025-02-27T13:00:00', '2025-02-27T13:00:00.500', '2025-02-27T13:00:01')
    assert 'bad_timestamp:2025-02-30T13:00:00' in b.warnings


def test_leading_bad_timestamp_sorts_before_real_data():
    b = parse_iostat(_cpu_block('02/30/2025 01:00:00 PM', 1) + _cpu_block('02/27/2025 01:00:10 PM', 2))
    assert b.timestamps == ('2025-02-27T13:00:09', '2025-02-27T13:00:10')
    assert list(b.timestamps) == sorted(b.timestamps)
    assert b.series['%user'] == (1.0, 2.0)
