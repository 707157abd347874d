from __future__ import annotations


class CbamEngineError(Exception):
    """Base class for calculation engine errors."""


class InvalidInputError(CbamEngineError, ValueError):
    """Caller-supplied data outside its domain (negative quantity, unknown sector...)."""


class PriceFetchError(CbamEngineError):
    """Carbon price refresh failed; the previous price stays current."""


class AuditWriteError(CbamEngineError):
    """An audit sink could not persist a record."""

    def __init__(self, message: str, failures: list | None = None) -> None:
        super().__init__(message)
        self.failures = list(failures or [])
