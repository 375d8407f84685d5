class ISDError(Exception):
    """Base class for ISD decoding failures."""


class InvalidArgumentError(ISDError, ValueError):
    """Raised when caller-supplied arguments are rejected before any I/O."""


class CatalogError(ISDError):
    """Raised when the additional-data field catalog is internally inconsistent."""


class MalformedRecordError(ISDError):
    """Raised when a record's mandatory section cannot be decoded."""

    def __init__(self, message: str, line_number: int = None):
        super().__init__(message)
        self.line_number = line_number


class CatalogMismatchError(ISDError):
    """Raised when a numeric sub-field slice holds text the catalog does not allow."""

    def __init__(self, code: str, column: str, value: str):
        super().__init__(
            f"Category {code}: column '{column}' is declared numeric but holds '{value}'"
        )
        self.code = code
        self.column = column
        self.value = value
