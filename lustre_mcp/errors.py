"""Errors raised while scanning Lustre proc statistics.

Every error aborts the scan that raised it; nothing here is recovered locally.
The collector host logs the failure and tries again on its next interval.
"""
from __future__ import annotations
from typing import Optional


class LustreScanError(Exception):
    """Base class for all scan failures.

    `path` is the proc file being processed (if known) and `line` the raw text
    line that triggered the failure.
    """

    def __init__(self, message: str, path: Optional[str] = None, line: Optional[str] = None):
        super().__init__(message)
        self.path = path
        self.line = line

    def with_context(self, path: Optional[str] = None, line: Optional[str] = None) -> "LustreScanError":
        if path is not None and self.path is None:
            self.path = path
        if line is not None and self.line is None:
            self.line = line
        return self

    def __str__(self) -> str:
        msg = super().__str__()
        if self.path:
            msg = f'{msg} (file={self.path})'
        if self.line is not None:
            msg = f'{msg} line={self.line.strip()!r}'
        return msg


class GlobSyntaxError(LustreScanError):
    """A configured proc file pattern is not a valid glob."""


class FileReadError(LustreScanError):
    """A matched proc file could not be read."""


class MalformedLineError(LustreScanError):
    """A line matched a rule but lacks the token the rule points at."""


class NumericConversionError(LustreScanError):
    """An extracted value is not an unsigned 64-bit integer."""


class MalformedPathError(LustreScanError):
    """A proc file path has no directory component naming the target."""


__all__ = [
    "LustreScanError",
    "GlobSyntaxError",
    "FileReadError",
    "MalformedLineError",
    "NumericConversionError",
    "MalformedPathError",
]
