import pytest
from conftest import read_data
from diag_server.ingestion.detect import (
    FAMILIES, detect_family, family_from_filename, sniff_family, supported_families
)


@pytest.mark.parametrize('filename,expected', [
    ('nodetool_tpstats.txt', 'tpstats'),
    ('10.0.0.1/nodetool/tpstats', 'tpstats'),
    ('iostat', 'iostat'),
    ('mpstat.txt', 'mpstat'),
    ('proxyhistograms.txt', 'proxyhistograms'),
    ('tablehistograms.txt', 'tablehistograms'),
    ('cfhistograms', 'tablehistograms'),
    ('os_top.txt', 'top'),
    ('node1-top.out', 'top'),
    ('system.log', 'systemlog'),
    ('debug.log', 'systemlog'),
    ('sjk-ttop.out', 'ttop'),
    ('desktop.log', None),
    ('gc.log', None),
    ('', None),
])
def test_family_from_filename(filename, expected):
    assert family_from_filename(filename) == expected


@pytest.mark.parametrize('name,expected', [
    ('nodetool_tpstats.txt', 'tpstats'),
    ('iostat.txt', 'iostat'),
    ('iostat_locale.txt', 'iostat'),
    ('mpstat.txt', 'mpstat'),
    ('proxyhistograms.txt', 'proxyhistograms'),
    ('tablehistograms.txt', 'tablehistograms'),
    ('os_top.txt', 'top'),
    ('system.log', 'systemlog'),
    ('sjk_ttop.txt', 'ttop'),
])
def test_sniff_recognizes_every_fixture(name, expected):
    family, score = sniff_family(read_data(name))
    assert family == expected
    assert score >= 0.3


def test_sniff_below_threshold_returns_none():
    family, score = sniff_family('hello world\nnothing to see\n')
    assert family is None and score < 0.3


def test_filename_wins_over_content():
    assert detect_family('iostat.txt', read_data('mpstat.txt')) == 'iostat'
    assert detect_family('capture.out', read_data('mpstat.txt')) == 'mpstat'
    assert detect_family(None, None) is None


def test_registry_lists_all_families():
    assert supported_families() == list(FAMILIES)
    assert set(FAMILIES) == {
        'tpstats', 'iostat', 'mpstat', 'proxyhistograms', 'tablehistograms', 'top', 'systemlog', 'ttop'
    }
