import logging
import math
import numbers
import os
import re
import sys
import zlib
from collections import abc
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .catalog import FieldCatalog, get_catalog
from .coverage import REPORT_COLUMN, summarize_coverage
from .derived import add_relative_humidity
from .errors import InvalidArgumentError
from .mandatory import decode_mandatory_lines
from .segments import OptionalColumnsBuilder, additional_section, discover_categories
from .sources import (
    ArchiveSource,
    ISDArchiveLocator,
    StationTimezones,
    is_usable_source,
    read_archive_lines,
)
from .temporal import (
    ID_COLUMN,
    TIME_COLUMN,
    bucketize,
    fill_missing_hours,
    to_local_standard,
    trim_to_years,
)

MET_COLUMNS = [
    'id', 'time', 'temp', 'wd', 'ws', 'atmos_pres',
    'dew_point', 'rh', 'ceil_hgt', 'visibility',
]
INTEGER_COLUMNS = ['wd', 'ceil_hgt', 'visibility']
STATION_ID_PATTERN = re.compile(r'^[0-9A-Z]{6}-\d{5}$')
UNREADABLE_ERRORS = (OSError, EOFError, zlib.error, UnicodeDecodeError)

SourceProvider = Callable[[str, int], Optional[ArchiveSource]]


@dataclass
class DecodeSummary:
    """Per-batch tally of what was decoded and what had to be skipped."""

    files_decoded: int = 0
    files_unreadable: int = 0
    records_decoded: int = 0
    records_skipped: int = 0
    catalog_mismatches: List[Tuple[str, str]] = field(default_factory=list)

    def __str__(self) -> str:
        text = (
            f"{self.files_decoded} file(s) decoded, {self.files_unreadable} unreadable; "
            f"{self.records_decoded} record(s) decoded, {self.records_skipped} skipped"
        )
        if self.catalog_mismatches:
            pairs = ', '.join(f"{code} in {label}" for label, code in self.catalog_mismatches)
            text += f"; catalog mismatches: {pairs}"
        return text


def empty_met_table(optional_columns: Sequence[str] = ()) -> pd.DataFrame:
    """A zero-row table with the met schema."""
    columns = {
        'id': pd.Series(dtype=object),
        'time': pd.Series(dtype='datetime64[ns]'),
    }
    for name in MET_COLUMNS[2:]:
        columns[name] = pd.Series(dtype='Int64' if name in INTEGER_COLUMNS else np.float64)
    for name in optional_columns:
        columns[name] = pd.Series(dtype=object)
    return pd.DataFrame(columns)


def resolve_years(
    years: Union[int, Iterable[int], None] = None,
    start_year: Optional[int] = None,
    end_year: Optional[int] = None,
) -> Optional[List[int]]:
    """
    Normalizes the year arguments of the entry points.

    Args:
        years (int or iterable of int, optional): Explicit years.
        start_year (int, optional): First year of a range (used when ``years`` is None).
        end_year (int, optional): Last year of a range. Defaults to ``start_year``.

    Returns:
        Optional[List[int]]: Sorted distinct years, or None when no years were given.

    Raises:
        InvalidArgumentError: On non-numeric years or an inverted range.
    """
    def as_year(value) -> int:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise InvalidArgumentError(f"Years must be whole numbers, got {value!r}")
        if not math.isfinite(value) or value != int(value):
            raise InvalidArgumentError(f"Years must be whole numbers, got {value!r}")
        return int(value)

    if years is not None:
        if isinstance(years, (str, bytes)):
            raise InvalidArgumentError(f"Years must be whole numbers, got {years!r}")
        if not isinstance(years, abc.Iterable):
            years = [years]
        resolved = sorted({as_year(year) for year in years})
        if not resolved:
            raise InvalidArgumentError("At least one year must be given")
        return resolved

    if start_year is None and end_year is None:
        return None
    if start_year is None:
        raise InvalidArgumentError("end_year was given without start_year")
    start = as_year(start_year)
    end = as_year(end_year) if end_year is not None else start
    if end < start:
        raise InvalidArgumentError(f"Inverted year range: {start} to {end}")
    return list(range(start, end + 1))


class ISDProcessor:
    """
    Decodes NOAA Integrated Surface Database (ISD) station-year archives into
    hourly meteorological tables.

    The processor reads local archives (located by an :class:`ISDArchiveLocator`
    or handed over by a caller-supplied source provider), decodes the mandatory
    and additional-data sections, shifts timestamps to local standard time and
    optionally regularizes them onto an hourly grid.

    Attributes:
        station_timezones (StationTimezones): Station id to IANA zone lookup.
        decode_summary (DecodeSummary): Totals of the most recent batch decode.
    """

    def __init__(
        self,
        station_timezones: Optional[Union[StationTimezones, dict]] = None,
        station_list_path: Optional[str] = None,
        local_file_dir: Optional[str] = None,
        log_level: int = logging.INFO,
        source_provider: Optional[SourceProvider] = None,
    ):
        """
        Initializes the processor.

        Args:
            station_timezones (StationTimezones or dict, optional): Zone lookup, or a
                plain mapping of station id to zone name.
            station_list_path (str, optional): CSV with ``id`` (or ``usaf``/``wban``) and
                ``tz_name`` columns; used when ``station_timezones`` is not given.
            local_file_dir (str, optional): Directory holding ``<id>-<year>.gz`` archives.
            log_level (int): The logging level for the logger (e.g., logging.INFO).
            source_provider (callable, optional): ``(station_id, year) -> source or None``,
                used instead of the local directory.
        """
        self._setup_logger(log_level)
        self.catalog: FieldCatalog = get_catalog()
        self.locator = ISDArchiveLocator(local_file_dir, self.logger) if local_file_dir else None
        self.source_provider = source_provider

        self.station_list_path = station_list_path
        if isinstance(station_timezones, StationTimezones):
            self.station_timezones = station_timezones
        elif station_timezones is not None:
            self.station_timezones = StationTimezones(station_timezones)
        else:
            self.station_timezones = self._load_station_timezones()

        self.decode_summary = DecodeSummary()

    # --- High-Level Public Methods ---

    def get_met_data(
        self,
        station_id: str,
        years: Union[int, List[int], None] = None,
        start_year: Optional[int] = None,
        end_year: Optional[int] = None,
        full_data: bool = False,
        add_fields: Optional[List[str]] = None,
        make_hourly: bool = True,
    ) -> pd.DataFrame:
        """
        Gets the decoded meteorological records of a station.

        Timestamps are in the station's local standard time. With no years given,
        every year available for the station is used.

        Args:
            station_id (str): The USAF-WBAN identifier, e.g. '722315-53917'.
            years (int or list of int, optional): Years to return.
            start_year (int, optional): First year of a range, used when ``years`` is None.
            end_year (int, optional): Last year of a range.
            full_data (bool): If True, adds the columns of every additional-data
                category found in the archives. Takes precedence over ``add_fields``.
            add_fields (list of str, optional): Additional-data categories to add,
                e.g. ``['AA1', 'GF1']``. Categories never found are left out.
            make_hourly (bool): If True, collapses records to one row per hour and
                fills hours without records with null rows.

        Returns:
            pd.DataFrame: The met table, empty if the station has no known time zone.

        Raises:
            InvalidArgumentError: On a malformed station id, bad years or unknown
                category codes, or if the processor has nowhere to read archives from.
        """
        years, add_fields = self._validate_request(station_id, years, start_year, end_year, add_fields)

        tz_name = self.station_timezones.get_tz_for_station(station_id)
        if tz_name is None:
            self.logger.warning(f"Station {station_id} has no time zone record. Returning an empty table.")
            self.decode_summary = DecodeSummary()
            return empty_met_table()

        sources = self._locate_sources(station_id, years)
        return self.decode_sources(
            sources,
            station_id=station_id,
            tz_name=tz_name,
            full_data=full_data,
            add_fields=add_fields,
            make_hourly=make_hourly,
            years=years,
        )

    def decode_sources(
        self,
        sources: Iterable[Union[ArchiveSource, Tuple[str, ArchiveSource]]],
        station_id: Optional[str] = None,
        tz_name: Optional[str] = None,
        full_data: bool = False,
        add_fields: Optional[List[str]] = None,
        make_hourly: bool = False,
        years: Union[int, List[int], None] = None,
    ) -> pd.DataFrame:
        """
        Decodes already-located archives into a met table.

        Args:
            sources (iterable): Paths, raw bytes or streams, optionally as
                ``(label, source)`` pairs. Empty sources are treated as absent.
            station_id (str, optional): Identifier written to the ``id`` column.
                Defaults to the USAF-WBAN pair found in each record.
            tz_name (str, optional): IANA zone of the station. Without a resolvable
                zone the timestamps stay in UTC.
            full_data (bool): Adds every additional-data category found.
            add_fields (list of str, optional): Additional-data categories to add.
            make_hourly (bool): Collapses to hourly rows and fills missing hours.
            years (int or list of int, optional): Years to keep.

        Returns:
            pd.DataFrame: The met table.
        """
        years = resolve_years(years)
        add_fields = self._normalize_fields(add_fields)
        if full_data:
            add_fields = None

        summary = DecodeSummary()
        frames, remainders = self._decode_frames(sources, summary)

        if full_data or add_fields:
            all_remainders = pd.concat([rem for _, rem in remainders], ignore_index=True) \
                if remainders else pd.Series(dtype=object)
            codes = discover_categories(all_remainders, self.catalog, None if full_data else add_fields)
        else:
            codes = []

        builder = OptionalColumnsBuilder(self.catalog, codes, self.logger)
        for label, rem in remainders:
            builder.add_source(rem, label)
        summary.catalog_mismatches = [(label, err.code) for label, err in builder.mismatches]

        if not frames:
            self._finish_batch(summary)
            return empty_met_table(builder.columns)

        base = pd.concat(frames, ignore_index=True)
        met = self._build_met_table(base, station_id, tz_name)
        if codes:
            met = pd.concat([met, builder.build()], axis=1)

        if make_hourly:
            met = bucketize(met)
            met = fill_missing_hours(met, station_id=station_id, years=years)
        met = trim_to_years(met, years)

        self._finish_batch(summary)
        return met

    def additional_data_report(
        self,
        station_id: str,
        years: Union[int, List[int], None] = None,
        start_year: Optional[int] = None,
        end_year: Optional[int] = None,
    ) -> pd.DataFrame:
        """
        Returns the raw additional-data section of every record of a station.

        Args:
            station_id (str): The USAF-WBAN identifier of the station.
            years, start_year, end_year: As for :meth:`get_met_data`.

        Returns:
            pd.DataFrame: Columns ``id``, ``time`` (local standard) and ``add_data``.
        """
        years, _ = self._validate_request(station_id, years, start_year, end_year, None)
        tz_name = self.station_timezones.get_tz_for_station(station_id)
        if tz_name is None:
            self.logger.warning(f"Station {station_id} has no time zone record. Returning an empty report.")
            return pd.DataFrame({
                ID_COLUMN: pd.Series(dtype=object),
                TIME_COLUMN: pd.Series(dtype='datetime64[ns]'),
                REPORT_COLUMN: pd.Series(dtype=object),
            })
        sources = self._locate_sources(station_id, years)
        return self.report_sources(sources, station_id=station_id, tz_name=tz_name, years=years)

    def report_sources(
        self,
        sources: Iterable[Union[ArchiveSource, Tuple[str, ArchiveSource]]],
        station_id: Optional[str] = None,
        tz_name: Optional[str] = None,
        years: Union[int, List[int], None] = None,
    ) -> pd.DataFrame:
        """Builds the additional-data report of already-located archives."""
        years = resolve_years(years)
        summary = DecodeSummary()
        frames, remainders = self._decode_frames(sources, summary)
        self._finish_batch(summary)

        if not frames:
            return pd.DataFrame({
                ID_COLUMN: pd.Series(dtype=object),
                TIME_COLUMN: pd.Series(dtype='datetime64[ns]'),
                REPORT_COLUMN: pd.Series(dtype=object),
            })
        base = pd.concat(frames, ignore_index=True)
        report = pd.DataFrame({
            ID_COLUMN: self._station_ids(base, station_id),
            TIME_COLUMN: to_local_standard(base['time_utc'], tz_name),
            REPORT_COLUMN: pd.concat([rem for _, rem in remainders], ignore_index=True),
        })
        return trim_to_years(report, years)

    def station_coverage(
        self,
        station_id: str,
        years: Union[int, List[int], None] = None,
        start_year: Optional[int] = None,
        end_year: Optional[int] = None,
        by: Optional[str] = None,
        wide: bool = False,
    ) -> pd.DataFrame:
        """
        Counts the records carrying each additional-data category.

        Args:
            station_id (str): The USAF-WBAN identifier of the station.
            years, start_year, end_year: As for :meth:`get_met_data`.
            by (str, optional): None, 'year' or 'month'.
            wide (bool): If True, one column per category.

        Returns:
            pd.DataFrame: The coverage table; categories with no records count 0.
        """
        report = self.additional_data_report(station_id, years, start_year, end_year)
        return summarize_coverage(report, by=by, wide=wide)

    # --- Internal Helper Methods ---

    def _normalize_fields(self, add_fields) -> Optional[List[str]]:
        """Upper-cases requested category codes, raising on codes outside the catalog."""
        if add_fields is None:
            return None
        if isinstance(add_fields, str):
            add_fields = [add_fields]
        return [self.catalog.get_descriptor(code).code for code in add_fields]

    def _validate_request(
        self,
        station_id: str,
        years,
        start_year,
        end_year,
        add_fields: Optional[List[str]],
    ) -> Tuple[Optional[List[int]], Optional[List[str]]]:
        """Checks caller arguments before any file is touched."""
        if not isinstance(station_id, str) or not STATION_ID_PATTERN.match(station_id):
            raise InvalidArgumentError(
                f"Station ids look like '722315-53917' (USAF-WBAN), got {station_id!r}"
            )
        years = resolve_years(years, start_year, end_year)
        add_fields = self._normalize_fields(add_fields)
        if self.source_provider is None and self.locator is None:
            raise InvalidArgumentError("No local_file_dir or source_provider configured")
        if self.source_provider is not None and self.locator is None and years is None:
            raise InvalidArgumentError("Years must be given when archives come from a source provider")
        return years, add_fields

    def _locate_sources(
        self, station_id: str, years: Optional[List[int]]
    ) -> List[Tuple[str, ArchiveSource]]:
        """Collects the archive of every requested year that has one."""
        if years is None:
            years = self.locator.available_years(station_id)
            self.logger.info(f"Found {len(years)} year(s) of archives for station {station_id}")

        sources = []
        for year in years:
            if self.source_provider is not None:
                source = self.source_provider(station_id, year)
            else:
                source = self.locator.get_year_data_path(station_id, year)
            if source is not None and is_usable_source(source):
                sources.append((f"{station_id}-{year}", source))
        return sources

    def _decode_frames(
        self,
        sources: Iterable[Union[ArchiveSource, Tuple[str, ArchiveSource]]],
        summary: DecodeSummary,
    ) -> Tuple[List[pd.DataFrame], List[Tuple[str, pd.Series]]]:
        """Reads each source and decodes its mandatory sections, skipping what cannot be read."""
        frames, remainders = [], []
        for i, item in enumerate(sources):
            if isinstance(item, tuple):
                label, source = item
            else:
                label = str(item) if isinstance(item, (str, os.PathLike)) else f"source {i + 1}"
                source = item
            if not is_usable_source(source):
                self.logger.debug(f"Skipping empty or missing source: {label}")
                continue

            try:
                lines = read_archive_lines(source)
            except UNREADABLE_ERRORS as e:
                self.logger.error(f"Could not read {label}: {e}")
                summary.files_unreadable += 1
                continue

            frame, skipped = decode_mandatory_lines(lines)
            summary.files_decoded += 1
            summary.records_decoded += len(frame)
            summary.records_skipped += int(skipped.sum())
            if skipped.any():
                self.logger.debug(f"{label}: skipped {int(skipped.sum())} undecodable record(s)")

            kept_lines = pd.Series(lines, dtype=object)[~skipped.values]
            frames.append(frame)
            remainders.append((label, kept_lines.map(additional_section).reset_index(drop=True)))
        return frames, remainders

    def _station_ids(self, base: pd.DataFrame, station_id: Optional[str]) -> pd.Series:
        if station_id is not None:
            return pd.Series(station_id, index=base.index, dtype=object)
        return base['usaf'] + '-' + base['wban']

    def _build_met_table(
        self, base: pd.DataFrame, station_id: Optional[str], tz_name: Optional[str]
    ) -> pd.DataFrame:
        """Shapes decoded mandatory fields into the met schema."""
        met = pd.DataFrame({
            'id': self._station_ids(base, station_id),
            'time': to_local_standard(base['time_utc'], tz_name),
        })
        for name in ['temp', 'wd', 'ws', 'atmos_pres', 'dew_point', 'ceil_hgt', 'visibility']:
            met[name] = base[name]
        met = add_relative_humidity(met)
        return met[MET_COLUMNS]

    def _finish_batch(self, summary: DecodeSummary) -> None:
        self.decode_summary = summary
        if summary.records_skipped or summary.files_unreadable or summary.catalog_mismatches:
            self.logger.warning(f"Decode summary: {summary}")
        else:
            self.logger.info(f"Decode summary: {summary}")

    def _setup_logger(self, log_level: int) -> None:
        """Initializes a logger for the class instance."""
        self.logger = logging.getLogger(self.__class__.__name__)
        if not self.logger.handlers:
            self.logger.setLevel(log_level)
            handler = logging.StreamHandler(sys.stdout)
            formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def _load_station_timezones(self) -> StationTimezones:
        """Loads the station time zone table, or an empty lookup if there is none."""
        if not self.station_list_path:
            return StationTimezones()
        if not os.path.exists(self.station_list_path):
            self.logger.error(f"Station list file not found at {self.station_list_path}")
            return StationTimezones()

        try:
            zones = StationTimezones.from_csv(self.station_list_path)
            self.logger.info(f"Loaded time zones for {len(zones)} stations.")
            return zones
        except (OSError, ValueError, pd.errors.ParserError) as e:
            self.logger.error(f"Failed to load station list: {e}")
            return StationTimezones()
