"""
Decoder for the variable-length additional-data section of ISD records.

After the mandatory prefix a record may carry an ``ADD`` marker followed by
``<code><payload>`` chunks (``AA1`` + 8 characters, ``GA1`` + 13, ...) and
finally free-text remarks introduced by ``REM``.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from .catalog import NUMERIC, CategoryDescriptor, FieldCatalog
from .errors import CatalogMismatchError
from .mandatory import MANDATORY_WIDTH

ADDITIONAL_MARKER = 'ADD'
REMARKS_MARKER = 'REM'
CODE_WIDTH = 3


def additional_section(line: str) -> str:
    """Returns the part of a record between the mandatory section and the remarks."""
    return line[MANDATORY_WIDTH:].split(REMARKS_MARKER, 1)[0]


def tokenize_segments(remainder: str, catalog: FieldCatalog) -> Dict[str, int]:
    """
    Locates the category chunks of one additional-data section in a single pass.

    Chunks are consumed left to right using the catalog widths; the first
    occurrence of a code wins. When a code the catalog cannot step over is met,
    the rest of the section is searched by substring for the catalog codes not
    found so far.

    Args:
        remainder (str): The additional-data section of a record.
        catalog (FieldCatalog): The field catalog.

    Returns:
        Dict[str, int]: Offset of each code found, pointing at its first character.
    """
    offsets: Dict[str, int] = {}
    position = len(ADDITIONAL_MARKER) if remainder.startswith(ADDITIONAL_MARKER) else 0
    while position + CODE_WIDTH <= len(remainder):
        code = remainder[position:position + CODE_WIDTH]
        layout = catalog.layout_for(code)
        if layout is None:
            break
        offsets.setdefault(code, position)
        position += CODE_WIDTH + layout.payload_width
    else:
        return offsets

    for code in catalog.codes:
        if code not in offsets:
            found = remainder.find(code, position)
            if found >= 0:
                offsets[code] = found
    return offsets


def count_category_occurrences(remainders: pd.Series, codes: Iterable[str]) -> pd.Series:
    """
    Counts, for each code, the number of sections containing it anywhere.

    Zero counts are kept so every requested code appears in the result.
    """
    remainders = pd.Series(remainders, dtype=object)
    counts = {
        code: int(remainders.str.contains(code, regex=False).sum()) if len(remainders) else 0
        for code in codes
    }
    return pd.Series(counts, dtype='int64')


def discover_categories(
    remainders: pd.Series,
    catalog: FieldCatalog,
    add_fields: Optional[Iterable[str]] = None,
) -> List[str]:
    """
    Determines which categories get columns for a batch of records.

    A category qualifies when at least one section in the whole batch mentions
    it. An explicit ``add_fields`` allow-list is intersected with that set, so
    requested codes that never occur are dropped without error.

    Returns:
        List[str]: Qualifying codes in catalog order.
    """
    counts = count_category_occurrences(remainders, catalog.codes)
    present = [code for code in catalog.codes if counts[code] >= 1]
    if add_fields is None:
        return present
    requested = {catalog.get_descriptor(code).code for code in add_fields}
    return [code for code in present if code in requested]


def empty_category_frame(descriptor: CategoryDescriptor, n_rows: int) -> pd.DataFrame:
    """An all-null frame with the category's columns."""
    columns = {}
    for name, dtype in zip(descriptor.column_names, descriptor.sub_field_types):
        if dtype == NUMERIC:
            columns[name] = pd.Series(np.nan, index=range(n_rows), dtype=np.float64)
        else:
            columns[name] = pd.Series(None, index=range(n_rows), dtype=object)
    return pd.DataFrame(columns, index=range(n_rows))


def decode_category(
    remainders: pd.Series,
    descriptor: CategoryDescriptor,
    offsets: Optional[pd.Series] = None,
) -> pd.DataFrame:
    """
    Decodes one category's sub-fields for every record.

    Args:
        remainders (pd.Series): Additional-data sections, one per record.
        descriptor (CategoryDescriptor): Layout of the category to decode.
        offsets (pd.Series, optional): Per-record results of :func:`tokenize_segments`.
            When omitted the first substring match of the code is used.

    Returns:
        pd.DataFrame: Columns ``<code>_1`` .. ``<code>_n``, null where a record lacks the category.

    Raises:
        CatalogMismatchError: If a numeric sub-field slice contains non-numeric text.
    """
    remainders = pd.Series(remainders, dtype=object).reset_index(drop=True)
    code = descriptor.code
    if offsets is None:
        starts = [text.find(code) for text in remainders]
    else:
        starts = [found.get(code, -1) for found in offsets]

    if all(start < 0 for start in starts):
        return empty_category_frame(descriptor, len(remainders))

    payloads = pd.Series(
        [text[start + CODE_WIDTH:] if start >= 0 else None for text, start in zip(remainders, starts)],
        dtype=object,
    )
    columns = {}
    begin = 0
    for name, length, scale, dtype in zip(
        descriptor.column_names,
        descriptor.sub_field_lengths,
        descriptor.sub_field_scales,
        descriptor.sub_field_types,
    ):
        piece = payloads.str.slice(begin, begin + length)
        begin += length
        if dtype != NUMERIC:
            columns[name] = piece.where(piece.notna() & (piece != ''))
            continue

        text = piece.str.strip()
        text = text.where(text.notna() & (text != ''))
        values = pd.to_numeric(text, errors='coerce')
        mismatched = text.notna() & values.isna()
        if mismatched.any():
            raise CatalogMismatchError(code, name, text[mismatched].iloc[0])
        values = values.astype(np.float64)
        if scale is not None:
            values = values / scale
        columns[name] = values
    return pd.DataFrame(columns)


class OptionalColumnsBuilder:
    """
    Assembles the optional columns of a batch once its category set is known.

    Sources are added one at a time; a category whose data disagrees with the
    catalog in one source is reported and left null for that source only.
    """

    def __init__(
        self,
        catalog: FieldCatalog,
        codes: Iterable[str],
        logger: Optional[logging.Logger] = None,
    ):
        self.catalog = catalog
        self.descriptors = [catalog.get_descriptor(code) for code in codes]
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.mismatches: List[Tuple[str, CatalogMismatchError]] = []
        self._frames: List[pd.DataFrame] = []

    @property
    def columns(self) -> List[str]:
        return [name for descriptor in self.descriptors for name in descriptor.column_names]

    def add_source(self, remainders: pd.Series, source_label: str) -> None:
        """Decodes the categories for one source's records, in record order."""
        remainders = pd.Series(remainders, dtype=object).reset_index(drop=True)
        n_rows = len(remainders)
        if not self.descriptors:
            self._frames.append(pd.DataFrame(index=range(n_rows)))
            return

        offsets = remainders.map(lambda text: tokenize_segments(text, self.catalog))
        parts = []
        for descriptor in self.descriptors:
            try:
                parts.append(decode_category(remainders, descriptor, offsets))
            except CatalogMismatchError as e:
                self.logger.debug(f"{source_label}: {e}")
                self.mismatches.append((source_label, e))
                parts.append(empty_category_frame(descriptor, n_rows))
        self._frames.append(pd.concat(parts, axis=1))

    def build(self) -> pd.DataFrame:
        """Returns the optional columns for all added sources, stacked in order."""
        if not self._frames:
            return pd.concat(
                [empty_category_frame(descriptor, 0) for descriptor in self.descriptors], axis=1
            ) if self.descriptors else pd.DataFrame()
        frame = pd.concat(self._frames, ignore_index=True)
        return frame[self.columns]
