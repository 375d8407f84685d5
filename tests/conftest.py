import gzip
import logging
from datetime import datetime

import pytest

from isdhourly.processor import ISDProcessor

STATION_ID = '722315-53917'
STATION_TZ = 'America/Los_Angeles'

AA1_CHUNK = 'AA1' + '01' + '0005' + '3' + '1'
MA1_CHUNK = 'MA1' + '10132' + '1' + '09876' + '1'
OC1_CHUNK = 'OC1' + '0093' + '1'
GF1_CHUNK = 'GF1' + '08' + '99' + '1' + '08' + '1' + '99' + '9' + '99999' + '9' + '99' + '9' + '99' + '9'


def build_record(
    when=datetime(2015, 7, 1, 12, 0),
    usaf='722315',
    wban='53917',
    lat=34117,
    lon=-118367,
    elev=200,
    wd=270,
    ws=46,
    ceil_hgt=22000,
    visibility=16093,
    temp=200,
    dew_point=100,
    atmos_pres=10132,
    additional='',
    remarks='',
):
    """Formats one ISD record from raw (unscaled) slot values."""
    slots = [
        '0000',
        usaf,
        wban,
        f"{when.year:04d}",
        f"{when.month:02d}",
        f"{when.day:02d}",
        f"{when.hour:02d}",
        f"{when.minute:02d}",
        '4',
        f"{lat:+06d}",
        f"{lon:+07d}",
        'FM-15',
        f"{elev:+05d}",
        'KLAX ',
        'V020',
        f"{wd:03d}",
        '1',
        'N',
        f"{ws:04d}",
        '1',
        f"{ceil_hgt:05d}",
        '1',
        '9',
        'N',
        f"{visibility:06d}",
        '1',
        '9',
        '9',
        f"{temp:+05d}",
        '1',
        f"{dew_point:+05d}",
        '1',
        f"{atmos_pres:05d}",
        '1',
    ]
    line = ''.join(slots)
    if additional:
        line += 'ADD' + additional
    if remarks:
        line += 'REM' + remarks
    return line


def write_archive(directory, name, lines, compress=True):
    """Writes records to ``directory/name`` (gzip-compressed when ``compress``)."""
    path = directory / name
    payload = ('\n'.join(lines) + '\n').encode('latin-1')
    if compress:
        payload = gzip.compress(payload)
    path.write_bytes(payload)
    return path


@pytest.fixture
def record():
    """A single well-formed record."""
    return build_record()


@pytest.fixture
def archive_dir(tmp_path):
    """Two station-year archives for 722315-53917, one compressed and one plain."""
    write_archive(
        tmp_path,
        f"{STATION_ID}-2014.gz",
        [
            build_record(when=datetime(2014, 1, 1, 5, 0)),
            build_record(when=datetime(2014, 3, 1, 12, 0), additional=AA1_CHUNK),
            build_record(when=datetime(2014, 3, 1, 12, 51)),
            build_record(when=datetime(2014, 6, 1, 0, 0), additional=MA1_CHUNK),
        ],
    )
    write_archive(
        tmp_path,
        f"{STATION_ID}-2015",
        [
            build_record(when=datetime(2015, 1, 1, 3, 0), additional=AA1_CHUNK + MA1_CHUNK),
            build_record(when=datetime(2015, 7, 1, 12, 0)),
        ],
        compress=False,
    )
    write_archive(tmp_path, f"{STATION_ID}-2013.gz", [build_record(when=datetime(2013, 6, 1, 12, 0))])
    return tmp_path


@pytest.fixture
def processor(archive_dir):
    """A processor reading the archives of ``archive_dir``."""
    return ISDProcessor(
        station_timezones={STATION_ID: STATION_TZ},
        local_file_dir=str(archive_dir),
        log_level=logging.WARNING,
    )
