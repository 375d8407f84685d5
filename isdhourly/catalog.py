"""
Static catalog of the ISD additional-data categories.

The layout of every category (sub-field widths, scale divisors and
numeric/text tags) is kept as package data in ``data/isd_fields.csv`` and
loaded once per process into an immutable :class:`FieldCatalog`.
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from collections.abc import Mapping
from typing import Dict, Iterator, List, Optional, Tuple

import pandas as pd

from .errors import CatalogError, InvalidArgumentError

CATALOG_PATH = os.path.join(os.path.dirname(__file__), 'data', 'isd_fields.csv')
NUMERIC = 'numeric'
TEXT = 'text'
_TYPE_TAGS = {'n': NUMERIC, 'c': TEXT}


@dataclass(frozen=True)
class CategoryDescriptor:
    """Layout of one additional-data category, e.g. ``AA1``."""

    code: str
    sub_field_lengths: Tuple[int, ...]
    sub_field_scales: Tuple[Optional[float], ...]
    sub_field_types: Tuple[str, ...]
    description: str = ''
    variants: int = 1

    @property
    def payload_width(self) -> int:
        return sum(self.sub_field_lengths)

    @property
    def column_names(self) -> List[str]:
        prefix = self.code.lower()
        return [f"{prefix}_{i}" for i in range(1, len(self.sub_field_lengths) + 1)]

    @property
    def variant_codes(self) -> List[str]:
        """Codes sharing this layout (``AA1`` -> ``AA1`` .. ``AA4``)."""
        stem, first = self.code[:2], int(self.code[2])
        return [f"{stem}{digit}" for digit in range(first, max(first, self.variants) + 1)]

    def validate(self) -> None:
        """Checks the per-sub-field lists agree with each other."""
        n_fields = len(self.sub_field_lengths)
        if not (n_fields == len(self.sub_field_scales) == len(self.sub_field_types)):
            raise CatalogError(
                f"{self.code}: {n_fields} lengths, {len(self.sub_field_scales)} scales "
                f"and {len(self.sub_field_types)} types"
            )
        if n_fields == 0 or any(length <= 0 for length in self.sub_field_lengths):
            raise CatalogError(f"{self.code}: sub-field lengths must be positive")
        for i, (scale, dtype) in enumerate(zip(self.sub_field_scales, self.sub_field_types), start=1):
            if dtype == TEXT and scale is not None:
                raise CatalogError(f"{self.code}: text sub-field {i} cannot carry a scale")
            if dtype == NUMERIC and scale == 0:
                raise CatalogError(f"{self.code}: numeric sub-field {i} has a zero scale")


class FieldCatalog(Mapping):
    """
    Read-only mapping of category code to :class:`CategoryDescriptor`.

    Iteration follows the declaration order of the catalog table, which is also
    the order optional columns are laid out in decoded tables.
    """

    def __init__(self, descriptors: List[CategoryDescriptor]):
        entries: Dict[str, CategoryDescriptor] = {}
        for descriptor in descriptors:
            descriptor.validate()
            if descriptor.code in entries:
                raise CatalogError(f"Duplicate catalog entry for {descriptor.code}")
            entries[descriptor.code] = descriptor
        self._entries = MappingProxyType(entries)

        # Explicit entries win over repeat variants of a neighbouring code
        # (CN1..CN4 and UG1/UG2 each carry their own layout).
        layouts: Dict[str, CategoryDescriptor] = {}
        for descriptor in descriptors:
            for code in descriptor.variant_codes:
                if code not in entries:
                    layouts.setdefault(code, descriptor)
        layouts.update(entries)
        self._layouts = MappingProxyType(layouts)

    def __getitem__(self, code: str) -> CategoryDescriptor:
        return self._entries[code]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def codes(self) -> List[str]:
        return list(self._entries)

    def get_descriptor(self, code: str) -> CategoryDescriptor:
        """
        Looks up a category by code, case-insensitively.

        Raises:
            InvalidArgumentError: If the code is not part of the catalog.
        """
        key = code.upper()
        if key not in self._entries:
            raise InvalidArgumentError(f"Unknown additional data category '{code}'")
        return self._entries[key]

    def layout_for(self, code: str) -> Optional[CategoryDescriptor]:
        """Returns the layout used to step over ``code``, including repeat variants."""
        return self._layouts.get(code)


def _parse_scales(text: str) -> Tuple[Optional[float], ...]:
    return tuple(None if token == '-' else float(token) for token in text.split())


def load_catalog(path: str = CATALOG_PATH) -> FieldCatalog:
    """
    Reads and validates a catalog table.

    Args:
        path (str): Path to a CSV with ``code, variants, lengths, scales, types, description`` columns.

    Returns:
        FieldCatalog: The validated, immutable catalog.
    """
    try:
        table = pd.read_csv(path, dtype=str, keep_default_na=False)
    except (OSError, pd.errors.ParserError) as e:
        raise CatalogError(f"Failed to read field catalog from {path}: {e}") from e

    descriptors = []
    for row in table.itertuples(index=False):
        unknown_tags = set(row.types) - set(_TYPE_TAGS)
        if unknown_tags:
            raise CatalogError(f"{row.code}: unknown type tags {sorted(unknown_tags)}")
        try:
            descriptors.append(
                CategoryDescriptor(
                    code=row.code.strip().upper(),
                    sub_field_lengths=tuple(int(token) for token in row.lengths.split()),
                    sub_field_scales=_parse_scales(row.scales),
                    sub_field_types=tuple(_TYPE_TAGS[tag] for tag in row.types),
                    description=row.description,
                    variants=int(row.variants or 1),
                )
            )
        except ValueError as e:
            raise CatalogError(f"{row.code}: unreadable catalog row ({e})") from e
    return FieldCatalog(descriptors)


@lru_cache(maxsize=None)
def get_catalog() -> FieldCatalog:
    """Returns the process-wide catalog, loading it on first use."""
    return load_catalog()
