"""
Error taxonomy for Standby.

Per-item errors (NotFoundError, RuntimeOperationError, TransferError) are
caught at the item boundary of a replication job. StoreError and
RuntimeUnavailableError raised while a job is being set up abort the job.
ConfigurationError is fatal at watchdog startup.
"""

from __future__ import annotations


class StandbyError(Exception):
    """Base class for all Standby errors."""


class NotFoundError(StandbyError):
    """A runtime object (volume, container, image) does not exist."""


class RuntimeUnavailableError(StandbyError):
    """A runtime control endpoint cannot be reached."""


class RuntimeOperationError(StandbyError):
    """The runtime rejected an operation (pull, create, start, ...)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


class TransferError(StandbyError):
    """A volume transfer did not complete successfully."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class ConfigurationError(StandbyError):
    """Required configuration is missing or invalid."""


class StoreError(StandbyError):
    """The selection store could not be read or written."""
