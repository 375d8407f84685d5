import gzip
import logging
import os
import re
from typing import IO, Dict, List, Mapping, Optional, Union

import pandas as pd

from .errors import InvalidArgumentError

GZIP_MAGIC = b'\x1f\x8b'
ArchiveSource = Union[str, os.PathLike, bytes, bytearray, IO]


class ISDArchiveLocator:
    """Finds station-year ISD archive files in a local directory."""

    def __init__(self, local_file_dir: str, logger: logging.Logger):
        """
        Initializes the locator.

        Args:
            local_file_dir (str): Directory holding files named ``<station_id>-<year>.gz``,
                either directly or inside per-year subdirectories.
            logger (logging.Logger): An existing logger instance for output.
        """
        self.local_file_dir = local_file_dir
        self.logger = logger
        self.logger.info(f"Locator using local file directory: {os.path.abspath(self.local_file_dir)}")

    def _candidate_paths(self, station_id: str, year: int) -> List[str]:
        stem = f"{station_id}-{year}"
        return [
            os.path.join(self.local_file_dir, f"{stem}.gz"),
            os.path.join(self.local_file_dir, stem),
            os.path.join(self.local_file_dir, str(year), f"{stem}.gz"),
            os.path.join(self.local_file_dir, str(year), stem),
        ]

    def _find_archive(self, station_id: str, year: int) -> Optional[str]:
        for path in self._candidate_paths(station_id, year):
            if os.path.isfile(path):
                return path
        return None

    def get_year_data_path(self, station_id: str, year: int) -> Optional[str]:
        """
        Returns the local archive for a station and year.

        Files of one byte or less are leftovers of failed downloads and count as absent.

        Args:
            station_id (str): The USAF-WBAN identifier of the station.
            year (int): The year to get data for.

        Returns:
            Optional[str]: The path of the archive, or None if the year has no usable file.
        """
        path = self._find_archive(station_id, year)
        if path is None:
            self.logger.warning(f"No data found for station {station_id} for year {year}.")
            return None
        if os.path.getsize(path) <= 1:
            self.logger.warning(f"Ignoring empty archive for station {station_id}, year {year}: {path}")
            return None
        self.logger.info(f"Found local archive: {path}")
        return path

    def available_years(self, station_id: str) -> List[int]:
        """
        Lists the years for which a station has a usable archive, looking only
        where :meth:`get_year_data_path` looks (the directory itself and its
        ``<year>/`` subdirectories).
        """
        if not os.path.isdir(self.local_file_dir):
            return []
        pattern = re.compile(rf"^{re.escape(station_id)}-(\d{{4}})(\.gz)?$")
        directories = [self.local_file_dir] + [
            os.path.join(self.local_file_dir, name)
            for name in os.listdir(self.local_file_dir)
            if re.fullmatch(r'\d{4}', name) and os.path.isdir(os.path.join(self.local_file_dir, name))
        ]

        years = set()
        for directory in directories:
            for name in os.listdir(directory):
                match = pattern.match(name)
                if match:
                    years.add(int(match.group(1)))

        available = []
        for year in sorted(years):
            path = self._find_archive(station_id, year)
            if path is not None and os.path.getsize(path) > 1:
                available.append(year)
        return available


def is_usable_source(source: ArchiveSource) -> bool:
    """Paths and byte strings of one byte or less are treated as missing data."""
    if isinstance(source, (str, os.PathLike)):
        return os.path.isfile(source) and os.path.getsize(source) > 1
    if isinstance(source, (bytes, bytearray)):
        return len(source) > 1
    return True


def read_archive_lines(source: ArchiveSource) -> List[str]:
    """
    Reads the records of one station-year archive.

    Args:
        source: A path (plain or gzip-compressed), the raw bytes of an archive,
            or a binary/text stream.

    Returns:
        List[str]: The non-blank lines of the archive.
    """
    if isinstance(source, (str, os.PathLike)):
        with open(source, 'rb') as f:
            raw = f.read()
    elif isinstance(source, (bytes, bytearray)):
        raw = bytes(source)
    elif hasattr(source, 'read'):
        raw = source.read()
    else:
        raise InvalidArgumentError(f"Unsupported archive source type: {type(source).__name__}")

    if isinstance(raw, bytes):
        if raw[:2] == GZIP_MAGIC:
            raw = gzip.decompress(raw)
        raw = raw.decode('latin-1')
    return [line.rstrip('\r') for line in raw.split('\n') if line.strip()]


class StationTimezones:
    """Maps USAF-WBAN station identifiers to IANA time zone names."""

    def __init__(self, mapping: Optional[Mapping[str, str]] = None):
        self._zones: Dict[str, str] = {
            station_id: tz_name for station_id, tz_name in (mapping or {}).items() if tz_name
        }

    def __len__(self) -> int:
        return len(self._zones)

    def __contains__(self, station_id: str) -> bool:
        return station_id in self._zones

    def get_tz_for_station(self, station_id: str) -> Optional[str]:
        """Returns the zone name of a station, or None for an unknown station."""
        return self._zones.get(station_id)

    @classmethod
    def from_csv(cls, path: str) -> 'StationTimezones':
        """
        Loads a station table with a ``tz_name`` column and either an ``id``
        column or ``usaf`` and ``wban`` columns.
        """
        df = pd.read_csv(path, dtype=str)
        df.columns = [col.strip().lower() for col in df.columns]
        if 'tz_name' not in df.columns:
            raise InvalidArgumentError(f"Station table {path} has no 'tz_name' column")
        if 'id' not in df.columns:
            if not {'usaf', 'wban'} <= set(df.columns):
                raise InvalidArgumentError(f"Station table {path} needs an 'id' or 'usaf'/'wban' columns")
            df['id'] = df['usaf'].str.zfill(6) + '-' + df['wban'].str.zfill(5)
        df = df.dropna(subset=['id', 'tz_name'])
        return cls(dict(zip(df['id'], df['tz_name'])))
