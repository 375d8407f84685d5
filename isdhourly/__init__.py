from .catalog import CategoryDescriptor, FieldCatalog, get_catalog, load_catalog
from .coverage import summarize_coverage
from .derived import add_relative_humidity, relative_humidity
from .errors import (
    CatalogError,
    CatalogMismatchError,
    InvalidArgumentError,
    ISDError,
    MalformedRecordError,
)
from .mandatory import decode_mandatory, decode_mandatory_lines, join_mandatory, split_mandatory
from .processor import MET_COLUMNS, DecodeSummary, ISDProcessor, empty_met_table, resolve_years
from .segments import decode_category, discover_categories, tokenize_segments
from .sources import ISDArchiveLocator, StationTimezones, read_archive_lines
from .temporal import bucketize, fill_missing_hours, standard_offset_hours, to_local_standard

__version__ = '0.1.0'
