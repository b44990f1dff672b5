class GridHistoryError(Exception):
    """Base class for errors raised by gridhistory"""


class StorageUnavailable(GridHistoryError):
    """The storage backend could not be reached; the current cycle should be aborted"""


class MalformedInput(GridHistoryError, ValueError):
    """An ingestion batch is missing fields or carries invalid values"""
