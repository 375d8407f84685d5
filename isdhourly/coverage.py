from typing import Iterable, Optional

import pandas as pd

from .catalog import get_catalog
from .errors import InvalidArgumentError
from .temporal import ID_COLUMN, TIME_COLUMN

REPORT_COLUMN = 'add_data'
GROUPINGS = {None: [], 'year': ['year'], 'month': ['year', 'month']}


def summarize_coverage(
    report: pd.DataFrame,
    by: Optional[str] = None,
    wide: bool = False,
    codes: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """
    Counts the records carrying each additional-data category.

    Unlike category discovery for decoding, categories with no occurrences are
    kept (with a count of 0) so that coverage tables have a stable shape.

    Args:
        report (pd.DataFrame): Frame with ``id``, ``time`` and ``add_data`` columns,
            as returned by ``ISDProcessor.additional_data_report``.
        by (str, optional): None for a single total, 'year' or 'month' (year and month).
        wide (bool): If True, returns one column per category instead of
            ``category``/``count`` pairs.
        codes (iterable of str, optional): Categories to count. Defaults to the whole catalog.

    Returns:
        pd.DataFrame: The coverage table.
    """
    if by not in GROUPINGS:
        raise InvalidArgumentError(f"'by' must be one of: {list(GROUPINGS)}")
    catalog = get_catalog()
    codes = [catalog.get_descriptor(code).code for code in codes] if codes is not None else catalog.codes
    keys = GROUPINGS[by]

    station_id = None
    if ID_COLUMN in report.columns and report[ID_COLUMN].notna().any():
        station_id = report[ID_COLUMN].dropna().iloc[0]

    sections = report[REPORT_COLUMN].astype(object).fillna('')
    flags = pd.DataFrame(
        {code: sections.str.contains(code, regex=False) if len(sections) else pd.Series(dtype=bool)
         for code in codes},
        index=report.index,
    ).astype('int64')

    if keys:
        times = report[TIME_COLUMN]
        group_values = {'year': times.dt.year, 'month': times.dt.month}
        counts = flags.groupby([group_values[key].rename(key) for key in keys]).sum()
        counts = counts.reset_index()
    else:
        counts = flags.sum().to_frame().T.reset_index(drop=True)

    if wide:
        counts.insert(0, ID_COLUMN, station_id)
        return counts

    long = counts.melt(id_vars=keys, var_name='category', value_name='count')
    if keys:
        long = long.sort_values(keys, kind='mergesort')
    long.insert(0, ID_COLUMN, station_id)
    return long.reset_index(drop=True)
