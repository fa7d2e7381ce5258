"""Error taxonomy for ohm_lib.

Every failure surfaced by the library is an `OhmError` subclass carrying a
`kind` (one of `ErrorKind`) and, where one exists, the low-level `cause`.
Callers can either catch the specific subclass or inspect `err.kind`.
"""
from __future__ import annotations
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_TYPE = "InvalidType"
    NO_SUCH_FIELD = "NoSuchField"
    MISSING_INDEXED_ANNOTATION = "MissingIndexedAnnotation"
    MISSING_COMPARABLE_FIELD = "MissingComparableField"
    INVALID_VALUE = "InvalidValue"
    MISSING_OR_EMPTY_TAG_VALUE = "MissingOrEmptyTagValue"
    MISSING_IDENTITY = "MissingIdentity"
    INVALID_RANGE_VALUE = "InvalidRangeValue"
    TRANSACTION_ABORTED = "TransactionAborted"
    STORE_UNAVAILABLE = "StoreUnavailable"
    ROLLBACK_FAILURE = "RollbackFailure"
    INVALID_FIELD_DEFINITION = "InvalidFieldDefinition"
    INVALID_ARRAY_BOUNDS = "InvalidArrayBounds"


class OhmError(Exception):
    """Base class for all ohm_lib failures."""

    kind: ErrorKind

    def __init__(self, message: str = "", cause: Optional[BaseException] = None) -> None:
        super().__init__(message or self.kind.value)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        msg = super().__str__()
        if self.cause is not None:
            return f"{self.kind.value}: {msg} (caused by {self.cause!r})"
        return f"{self.kind.value}: {msg}"


class InvalidType(OhmError):
    """Raised for classes that are not registered models."""

    kind = ErrorKind.INVALID_TYPE


class NoSuchField(OhmError):
    kind = ErrorKind.NO_SUCH_FIELD


class MissingIndexedAnnotation(OhmError):
    """Raised when a field used for indexing or querying is not indexed."""

    kind = ErrorKind.MISSING_INDEXED_ANNOTATION


class MissingComparableField(OhmError):
    kind = ErrorKind.MISSING_COMPARABLE_FIELD


class InvalidValue(OhmError):
    kind = ErrorKind.INVALID_VALUE


class MissingOrEmptyTagValue(OhmError):
    kind = ErrorKind.MISSING_OR_EMPTY_TAG_VALUE


class MissingIdentity(OhmError):
    """Raised when a referenced record has not been saved yet."""

    kind = ErrorKind.MISSING_IDENTITY


class InvalidRangeValue(OhmError):
    kind = ErrorKind.INVALID_RANGE_VALUE


class TransactionAborted(OhmError):
    """Raised when the store discarded a MULTI/EXEC block."""

    kind = ErrorKind.TRANSACTION_ABORTED


class StoreUnavailable(OhmError):
    """Raised on connection, timeout or other store-side failures."""

    kind = ErrorKind.STORE_UNAVAILABLE


class RollbackFailure(OhmError):
    """Raised when compensation after a failed write failed as well.

    Index state may be inconsistent with the record body; re-running the
    save (or delete) reconciles it.
    """

    kind = ErrorKind.ROLLBACK_FAILURE


class InvalidFieldDefinition(OhmError):
    kind = ErrorKind.INVALID_FIELD_DEFINITION


class InvalidArrayBounds(OhmError):
    kind = ErrorKind.INVALID_ARRAY_BOUNDS
