"""
Error types raised by the AhoyDTU crawler.

Every failure that crosses a module boundary is one of three kinds:

- TransportError: the gateway could not be reached, timed out, or answered
  with a non-success HTTP status.
- ParseError: the gateway answered, but the body was not valid JSON or did
  not match the expected schema (including unknown inverter ids).
- StorageError: a sink could not create, open or write its target (CSV file
  or SQL statement).

Low-level exceptions (httpx, pydantic, OSError, SQLAlchemy) are wrapped with
``raise ... from exc`` so the original cause stays on the traceback.

CHANGELOG:
- 2026-10-12: Initial creation

TODO:
- None
"""

from __future__ import annotations


class AhoyError(Exception):
    """Base class for all crawler errors."""


class TransportError(AhoyError):
    """The AhoyDTU gateway was unreachable or returned an HTTP error."""


class ParseError(AhoyError):
    """The AhoyDTU gateway returned a body that could not be interpreted."""


class StorageError(AhoyError):
    """A sink failed to persist buffered rows.

    Rows that were not confirmed as written remain buffered in memory.
    """
