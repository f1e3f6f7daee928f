"""
Exceptions raised while resolving Go declarations and rendering proto3.

Every failure aborts the current parse or render call. Schemas already
committed before the failing step stay registered; call ``reset()`` for a
clean slate.
"""

from typing import Optional


class GotizeError(Exception):
    """
    Base exception for all gotize failures.

    Attributes:
        message: Human-readable error description
        context: Optional context about where the error occurred
        cause: Optional underlying exception that caused this error
    """

    def __init__(self, message: str, context: Optional[str] = None,
                 cause: Optional[Exception] = None) -> None:
        self.message = message
        self.context = context
        self.cause = cause
        full_message = message
        if context:
            full_message = f"{message} (context: {context})"
        super().__init__(full_message)


class NotFoundError(GotizeError):
    """A type name is absent from a package and all of its imports."""


class UnresolvedReferenceError(NotFoundError):
    """A named or selector type referenced by a declaration cannot be found."""


class InvalidTypeExpressionError(GotizeError):
    """A dotted type expression string is malformed."""


class InvalidMapKeyError(GotizeError):
    """A map is keyed by something other than ``string``."""


class UnsupportedTypeExprError(GotizeError):
    """A type expression shape outside the recognized set (chan, func, ...)."""


class UnsupportedSchemaKindError(GotizeError):
    """A schema shape the proto3 renderer cannot express."""


class DanglingReferenceError(UnsupportedSchemaKindError):
    """A message field references a message that is not part of the output."""


class ImportFailureError(GotizeError):
    """A Go package could not be located, read or parsed."""


class MalformedExternalFileError(GotizeError):
    """A pre-seeded proto file failed to parse."""
