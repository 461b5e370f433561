"""Exceptions raised by the reconstruction pipeline."""


class CursorHistoryError(Exception):
    """Base class for errors raised by this package."""


class StoreUnavailable(CursorHistoryError):
    """The state store is missing, locked or not a valid SQLite database.

    Callers treat this as "no data found" for that source.
    """

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"State store unavailable: {self.path} ({reason})")


class MalformedRecord(CursorHistoryError):
    """A single prompt, generation or bubble entry could not be parsed."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Malformed record {source}: {reason}")
