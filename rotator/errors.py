"""Error types raised by the rotator engine.

Domain errors derive from RotatorError. StorageUnavailable sits outside that
hierarchy: a broken database is never reported as a rejected request.
"""

from __future__ import annotations


class RotatorError(Exception):
    """Base class for domain errors."""


class NotFound(RotatorError):
    """A referenced project or task id does not exist."""


class InvalidState(RotatorError):
    """The entity exists but is not in a state that allows the operation."""


class OutOfRange(RotatorError):
    """A selection index lies outside the valid range."""


class StorageUnavailable(Exception):
    """The backing database could not be opened, read or written."""
