import numpy as np
import pandas as pd
import pytest

from isdhourly.catalog import get_catalog
from isdhourly.errors import CatalogMismatchError, InvalidArgumentError
from isdhourly.segments import (
    OptionalColumnsBuilder,
    additional_section,
    count_category_occurrences,
    decode_category,
    discover_categories,
    tokenize_segments,
)

from conftest import AA1_CHUNK, GF1_CHUNK, MA1_CHUNK, OC1_CHUNK, build_record

AA2_CHUNK = 'AA2' + '24' + '0120' + '3' + '1'


@pytest.fixture
def catalog():
    return get_catalog()


def test_additional_section_stops_at_remarks():
    line = build_record(additional=AA1_CHUNK, remarks='MET09KLAX OC1 in remarks')
    assert additional_section(line) == 'ADD' + AA1_CHUNK
    assert additional_section(build_record()) == ''


def test_tokenizer_steps_over_chunks(catalog):
    remainder = 'ADD' + AA1_CHUNK + AA2_CHUNK + MA1_CHUNK
    offsets = tokenize_segments(remainder, catalog)
    assert offsets == {'AA1': 3, 'AA2': 14, 'MA1': 25}


def test_tokenizer_falls_back_to_search_after_unknown_code(catalog):
    remainder = 'ADD' + AA1_CHUNK + 'GE19MSL   +99999+99999' + MA1_CHUNK
    offsets = tokenize_segments(remainder, catalog)
    assert offsets['AA1'] == 3
    assert offsets['MA1'] == remainder.index('MA1')
    assert 'GE1' not in offsets


def test_decode_category_values(catalog):
    remainders = pd.Series(['ADD' + OC1_CHUNK + AA1_CHUNK, '', 'ADD' + MA1_CHUNK])
    frame = decode_category(remainders, catalog['AA1'])

    assert list(frame.columns) == ['aa1_1', 'aa1_2', 'aa1_3', 'aa1_4']
    assert frame.loc[0, 'aa1_1'] == 1.0
    assert frame.loc[0, 'aa1_2'] == pytest.approx(0.5)
    assert frame.loc[0, 'aa1_3'] == '3'
    assert frame.loc[0, 'aa1_4'] == '1'
    assert frame.loc[1:].isna().all().all()


def test_decode_category_mixed_numeric_and_text(catalog):
    frame = decode_category(pd.Series(['ADD' + GF1_CHUNK]), catalog['GF1'])
    assert frame.loc[0, 'gf1_1'] == '08'
    assert frame.loc[0, 'gf1_8'] == 99999.0
    assert frame['gf1_8'].dtype == np.float64


def test_decode_category_absent_everywhere(catalog):
    frame = decode_category(pd.Series(['', 'ADD' + OC1_CHUNK]), catalog['MA1'])
    assert list(frame.columns) == ['ma1_1', 'ma1_2', 'ma1_3', 'ma1_4']
    assert len(frame) == 2
    assert frame.isna().all().all()


def test_non_numeric_slice_raises(catalog):
    bad = 'MA1' + '1O132' + '1' + '09876' + '1'
    with pytest.raises(CatalogMismatchError) as info:
        decode_category(pd.Series(['ADD' + bad]), catalog['MA1'])
    assert info.value.code == 'MA1'
    assert info.value.column == 'ma1_1'


def test_occurrence_counts_keep_zeros():
    remainders = pd.Series(['ADD' + AA1_CHUNK, 'ADD' + AA1_CHUNK + MA1_CHUNK, ''])
    counts = count_category_occurrences(remainders, ['AA1', 'MA1', 'GF1'])
    assert counts.to_dict() == {'AA1': 2, 'MA1': 1, 'GF1': 0}


def test_discovery_follows_catalog_order(catalog):
    remainders = pd.Series(['ADD' + MA1_CHUNK, 'ADD' + OC1_CHUNK + AA1_CHUNK, ''])
    assert discover_categories(remainders, catalog) == ['AA1', 'MA1', 'OC1']


def test_allow_list_drops_absent_codes(catalog):
    remainders = pd.Series(['ADD' + MA1_CHUNK, 'ADD' + AA1_CHUNK])
    assert discover_categories(remainders, catalog, ['gf1', 'ma1']) == ['MA1']
    with pytest.raises(InvalidArgumentError):
        discover_categories(remainders, catalog, ['XX1'])


def test_builder_isolates_mismatches_per_source(catalog):
    bad = 'MA1' + '1O132' + '1' + '09876' + '1'
    builder = OptionalColumnsBuilder(catalog, ['AA1', 'MA1'])
    builder.add_source(pd.Series(['ADD' + AA1_CHUNK + MA1_CHUNK]), 'good')
    builder.add_source(pd.Series(['ADD' + AA1_CHUNK + bad, '']), 'bad')
    frame = builder.build()

    assert list(frame.columns) == ['aa1_1', 'aa1_2', 'aa1_3', 'aa1_4', 'ma1_1', 'ma1_2', 'ma1_3', 'ma1_4']
    assert len(frame) == 3
    assert frame.loc[0, 'ma1_1'] == pytest.approx(1013.2)
    assert frame.loc[1:, ['ma1_1', 'ma1_2', 'ma1_3', 'ma1_4']].isna().all().all()
    assert frame['aa1_2'].tolist()[:2] == [pytest.approx(0.5), pytest.approx(0.5)]
    assert [(label, err.code) for label, err in builder.mismatches] == [('bad', 'MA1')]


def test_builder_without_codes(catalog):
    builder = OptionalColumnsBuilder(catalog, [])
    builder.add_source(pd.Series(['', '']), 'empty')
    assert builder.columns == []
    assert builder.build().shape == (2, 0)
