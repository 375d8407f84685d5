"""
Decoder for the fixed-width mandatory section of ISD records.

Every record starts with 34 byte-aligned slots (105 characters). Only the
slots listed in ``MANDATORY_FIELDS`` are decoded; the rest (quality codes,
report type, call letters, ...) are dropped.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .errors import MalformedRecordError

COLUMN_WIDTHS = (
    4, 6, 5, 4, 2, 2, 2, 2, 1, 6,
    7, 5, 5, 5, 4, 3, 1, 1, 4, 1,
    5, 1, 1, 1, 6, 1, 1, 1, 5, 1,
    5, 1, 5, 1,
)
MANDATORY_WIDTH = 105
SLOT_COUNT = 34


def _slot_offsets(widths: Tuple[int, ...]) -> Tuple[int, ...]:
    offsets, position = [], 0
    for width in widths:
        offsets.append(position)
        position += width
    return tuple(offsets)


def _validate_column_widths() -> None:
    if len(COLUMN_WIDTHS) != SLOT_COUNT or sum(COLUMN_WIDTHS) != MANDATORY_WIDTH:
        raise RuntimeError(
            f"Mandatory width table must hold {SLOT_COUNT} slots totalling {MANDATORY_WIDTH} "
            f"characters, got {len(COLUMN_WIDTHS)} slots totalling {sum(COLUMN_WIDTHS)}"
        )


_validate_column_widths()
SLOT_OFFSETS = _slot_offsets(COLUMN_WIDTHS)


@dataclass(frozen=True)
class MandatoryField:
    """One decoded slot of the mandatory section."""

    name: str
    slot: int
    kind: str  # 'id', 'int' or 'float'
    sentinel: Optional[int] = None
    scale: Optional[float] = None

    @property
    def start(self) -> int:
        return SLOT_OFFSETS[self.slot]

    @property
    def stop(self) -> int:
        return SLOT_OFFSETS[self.slot] + COLUMN_WIDTHS[self.slot]


MANDATORY_FIELDS = (
    MandatoryField('usaf', 1, 'id'),
    MandatoryField('wban', 2, 'id'),
    MandatoryField('year', 3, 'int'),
    MandatoryField('month', 4, 'int'),
    MandatoryField('day', 5, 'int'),
    MandatoryField('hour', 6, 'int'),
    MandatoryField('minute', 7, 'int'),
    MandatoryField('lat', 9, 'float', sentinel=99999, scale=1000),
    MandatoryField('lon', 10, 'float', sentinel=999999, scale=1000),
    MandatoryField('elev', 12, 'int', sentinel=9999),
    MandatoryField('wd', 15, 'int', sentinel=999),
    MandatoryField('ws', 18, 'float', sentinel=9999, scale=10),
    MandatoryField('ceil_hgt', 20, 'int', sentinel=99999),
    MandatoryField('visibility', 24, 'int', sentinel=999999),
    MandatoryField('temp', 28, 'float', sentinel=9999, scale=10),
    MandatoryField('dew_point', 30, 'float', sentinel=9999, scale=10),
    MandatoryField('atmos_pres', 32, 'float', sentinel=99999, scale=10),
)
DATE_PARTS = ['year', 'month', 'day', 'hour', 'minute']


def split_mandatory(line: str) -> List[str]:
    """
    Slices the mandatory section of a record into its 34 raw slot strings.

    Raises:
        MalformedRecordError: If the record is shorter than the mandatory section.
    """
    if len(line) < MANDATORY_WIDTH:
        raise MalformedRecordError(
            f"Record has {len(line)} characters, the mandatory section needs {MANDATORY_WIDTH}"
        )
    return [line[start:start + width] for start, width in zip(SLOT_OFFSETS, COLUMN_WIDTHS)]


def join_mandatory(slots: Iterable[str]) -> str:
    """Rebuilds a mandatory section from slot strings produced by :func:`split_mandatory`."""
    slots = list(slots)
    if len(slots) != SLOT_COUNT:
        raise MalformedRecordError(f"Expected {SLOT_COUNT} slots, got {len(slots)}")
    for i, (value, width) in enumerate(zip(slots, COLUMN_WIDTHS)):
        if len(value) != width:
            raise MalformedRecordError(f"Slot {i + 1} must be {width} characters wide, got '{value}'")
    return ''.join(slots)


def decode_mandatory_lines(
    lines: Union[pd.Series, Iterable[str]]
) -> Tuple[pd.DataFrame, pd.Series]:
    """
    Decodes the mandatory section of many records at once.

    Sentinels are compared against the raw integers before any scale division.
    Records that are too short, hold non-numeric text in a numeric slot or
    describe an impossible date are skipped.

    Args:
        lines (pd.Series or iterable of str): Raw archive lines.

    Returns:
        Tuple[pd.DataFrame, pd.Series]: The decoded records (one row per kept
            line, in input order, with a ``time_utc`` column) and a boolean mask
            aligned with the input marking the skipped lines.
    """
    lines = pd.Series(list(lines), dtype=object)
    skipped = lines.str.len().fillna(0) < MANDATORY_WIDTH

    columns: Dict[str, pd.Series] = {}
    for field_info in MANDATORY_FIELDS:
        raw = lines.str.slice(field_info.start, field_info.stop)
        if field_info.kind == 'id':
            columns[field_info.name] = raw
            continue
        text = raw.str.strip()
        values = pd.to_numeric(text.where(text != ''), errors='coerce')
        skipped |= values.isna()
        if field_info.kind == 'int':
            skipped |= values.notna() & (values % 1 != 0)
        if field_info.sentinel is not None:
            values = values.mask(values == field_info.sentinel)
        if field_info.scale is not None:
            values = values / field_info.scale
        columns[field_info.name] = values

    frame = pd.DataFrame(columns)[~skipped]
    time_utc = pd.to_datetime(
        frame[DATE_PARTS].astype('int64'), errors='coerce', utc=True
    ) if not frame.empty else pd.Series(dtype='datetime64[ns, UTC]')
    bad_dates = time_utc.isna()
    if bad_dates.any():
        skipped[bad_dates[bad_dates].index] = True
        frame = frame[~bad_dates]
        time_utc = time_utc[~bad_dates]

    frame = frame.assign(time_utc=time_utc)
    for field_info in MANDATORY_FIELDS:
        if field_info.kind == 'int':
            frame[field_info.name] = frame[field_info.name].astype('Int64')
        elif field_info.kind == 'float':
            frame[field_info.name] = frame[field_info.name].astype(np.float64)
    return frame.reset_index(drop=True), skipped


def decode_mandatory(line: str, line_number: Optional[int] = None) -> Dict:
    """
    Decodes the mandatory section of a single record into a dict.

    Raises:
        MalformedRecordError: If the record cannot be decoded.
    """
    frame, skipped = decode_mandatory_lines([line])
    if skipped.iloc[0]:
        where = f" at line {line_number}" if line_number is not None else ''
        raise MalformedRecordError(f"Undecodable mandatory section{where}", line_number)
    record = frame.iloc[0].to_dict()
    return {key: (None if pd.isna(value) else value) for key, value in record.items()}
