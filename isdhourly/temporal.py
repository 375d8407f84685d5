"""
Time handling for decoded records: UTC to local standard time, hourly
bucketing and gap filling.
"""
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd
from pandas.api.types import is_numeric_dtype

from .errors import InvalidArgumentError

TIME_COLUMN = 'time'
ID_COLUMN = 'id'


@lru_cache(maxsize=8192)
def standard_offset_hours(tz_name: Optional[str], on_date: date) -> Optional[float]:
    """
    Returns the standard-time UTC offset of a zone in effect on a given date.

    Daylight saving is removed, so the result is the zone's standard offset
    under the rules valid on that date (historical rule changes included).

    Args:
        tz_name (str): IANA zone name, e.g. 'America/Los_Angeles'.
        on_date (date): The (UTC) date of the observation.

    Returns:
        Optional[float]: Offset in hours, or None if the zone cannot be resolved.
    """
    if not tz_name:
        return None
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    local = datetime(on_date.year, on_date.month, on_date.day, tzinfo=timezone.utc).astimezone(zone)
    offset = local.utcoffset() - (local.dst() or timedelta(0))
    return offset.total_seconds() / 3600


def to_local_standard(times_utc: pd.Series, tz_name: Optional[str]) -> pd.Series:
    """
    Shifts UTC instants to the local standard time of a zone.

    Offsets are resolved once per distinct date. Instants whose offset cannot
    be resolved are left in UTC.

    Returns:
        pd.Series: Naive timestamps holding local standard wall-clock time.
    """
    naive = pd.to_datetime(times_utc, utc=True).dt.tz_localize(None)
    if not tz_name or naive.empty:
        return naive

    dates = naive.dt.date
    offsets = {day: standard_offset_hours(tz_name, day) for day in dates.unique()}
    hours = dates.map(offsets).astype(float).fillna(0.0)
    return naive + pd.to_timedelta(hours * 3600, unit='s')


def bucketize(df: pd.DataFrame) -> pd.DataFrame:
    """
    Snaps records to the nearest hour and collapses each hour to one row.

    Within an hour: the first identifier, the minimum of each numeric column
    (null when every value is null) and the smallest non-null value of each
    text column. Half hours round up.
    """
    if df.empty:
        return df.copy()

    hour_bin = (df[TIME_COLUMN] + pd.Timedelta(minutes=30)).dt.floor('h')
    work = df.drop(columns=[TIME_COLUMN]).assign(_hour_bin=hour_bin.values)
    grouped = work.groupby('_hour_bin', sort=True)

    summary = {}
    for col in df.columns:
        if col == TIME_COLUMN:
            continue
        if col == ID_COLUMN:
            summary[col] = grouped[col].first()
        elif is_numeric_dtype(df[col]):
            summary[col] = grouped[col].min()
        else:
            ordered = work[['_hour_bin', col]].sort_values(col, na_position='last', kind='mergesort')
            summary[col] = ordered.groupby('_hour_bin', sort=True)[col].first()

    result = pd.DataFrame(summary).rename_axis(TIME_COLUMN).reset_index()
    return result[list(df.columns)]


def fill_missing_hours(
    df: pd.DataFrame,
    station_id: Optional[str] = None,
    years: Optional[Iterable[int]] = None,
) -> pd.DataFrame:
    """
    Adds null rows for every hour missing from bucketed data.

    The hour grid runs from January 1st 00:00 of the first year to December
    31st 23:00 of the last year. When ``years`` is not given the span covers the
    years seen in the data. Rows outside the span are kept.

    Raises:
        InvalidArgumentError: If the data has more than one row per timestamp.
    """
    if years:
        years = sorted(years)
    elif df.empty:
        return df.copy()
    else:
        years = sorted(df[TIME_COLUMN].dt.year.unique())
    if station_id is None and not df.empty:
        station_id = df[ID_COLUMN].dropna().iloc[0] if df[ID_COLUMN].notna().any() else None

    indexed = df.set_index(TIME_COLUMN)
    if not indexed.index.is_unique:
        raise InvalidArgumentError("Hourly gap filling needs bucketed data (one row per hour)")

    grid = pd.date_range(
        start=f"{years[0]}-01-01 00:00:00",
        end=f"{years[-1]}-12-31 23:00:00",
        freq='h',
        name=TIME_COLUMN,
    )
    filled = indexed.reindex(grid.union(indexed.index))
    filled[ID_COLUMN] = station_id
    filled = filled.rename_axis(TIME_COLUMN).reset_index()
    return filled[list(df.columns)]


def trim_to_years(df: pd.DataFrame, years: Optional[Iterable[int]]) -> pd.DataFrame:
    """Keeps only rows whose (local) timestamp falls in one of ``years``."""
    if years is None:
        return df
    keep = df[TIME_COLUMN].dt.year.isin(list(years))
    return df[keep].reset_index(drop=True)
