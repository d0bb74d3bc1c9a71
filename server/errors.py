"""Error taxonomy for Hearth.

Storage and catalog failures are translated into one of these kinds at the
boundary of each operation. Every kind renders as a `{code, message}` body.
"""

from __future__ import annotations


class HearthError(Exception):
    """Base class for errors that map onto an HTTP status."""

    code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def toast(self) -> dict:
        return toast(self.code, self.message)


class ValidationError(HearthError):
    code = 400


class NotFound(HearthError):
    code = 404


class Conflict(HearthError):
    code = 409


class InternalError(HearthError):
    code = 500


class StorageUnavailable(HearthError):
    code = 503


def toast(code: int, message: str) -> dict:
    return {"code": code, "message": message}


_BY_CODE = {cls.code: cls for cls in (ValidationError, NotFound, Conflict, InternalError, StorageUnavailable)}


def error_for_code(code: int, message: str) -> HearthError:
    """Rebuild an error kind from a `{code, message}` body; unknown codes become InternalError."""
    if 400 <= code < 500 and code not in _BY_CODE:
        return ValidationError(message)
    return _BY_CODE.get(code, InternalError)(message)
