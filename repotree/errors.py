"""
Error taxonomy for Repotree.

Internal layers raise these; the service entry points translate them into
``OperationResult`` envelopes so callers never see an exception.
"""

from typing import Optional


class RepotreeError(Exception):
    """Base class for all Repotree errors."""


class NotFoundError(RepotreeError):
    """A referenced repository, doc, block or branch does not exist."""


class PolicyViolationError(RepotreeError):
    """A mutating operation targeted a read-only branch."""


class MalformedBatchError(RepotreeError):
    """A batch request could not be parsed."""


class ExternalProcessError(RepotreeError):
    """A git invocation exited with a non-zero status."""

    def __init__(self, message: str, command: Optional[str] = None, stderr: Optional[str] = None):
        super().__init__(message)
        self.command = command
        self.stderr = stderr


class RemoteProvisioningError(RepotreeError):
    """The hosting provider API refused or failed a repository request."""
