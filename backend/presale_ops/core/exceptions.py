"""
Error taxonomy for the presale client.

Reads and writes fail with distinct types so callers can decide what is
retryable. Nothing in this package retries on its own.
"""

from typing import Optional


class PresaleError(Exception):
    """Base class for every error raised by presale_ops."""


class InvalidInput(PresaleError):
    """Malformed identity or numeric argument. Never retried."""


class NotFound(PresaleError):
    """
    Remote account does not exist.

    Readers translate this into an empty/zero value instead of raising it to
    their callers; it is exposed for code that needs the distinction.
    """

    def __init__(self, address: str):
        super().__init__(f"Account not found: {address}")
        self.address = address


class RemoteReadError(PresaleError):
    """Transport or decode failure while reading remote state."""

    def __init__(self, query: str, cause: BaseException):
        super().__init__(f"{query} read failed: {cause}")
        self.query = query
        self.cause = cause


class NotReady(PresaleError):
    """A write was attempted with no signer bound."""


class OperationInProgress(PresaleError):
    """Another write intent is still outstanding for this session."""

    def __init__(self, action: str, pending: Optional[str]):
        super().__init__(f"Cannot start {action}: {pending or 'another action'} is still in progress")
        self.action = action
        self.pending = pending


class ActionFailed(PresaleError):
    """A write was rejected, failed on-chain or could not be confirmed."""

    def __init__(self, action: str, cause: str):
        super().__init__(f"{action} failed: {cause}")
        self.action = action
        self.cause = cause


class Timeout(ActionFailed):
    """Confirmation did not arrive within the configured window."""

    def __init__(self, action: str, signature: str, seconds: float):
        super().__init__(action, f"confirmation of {signature} timed out after {seconds:g}s")
        self.signature = signature
        self.seconds = seconds


class ReconcileError(PresaleError):
    """A reconciliation step failed; earlier steps stay applied."""

    def __init__(self, step: str, cause: BaseException, completed: Optional[list] = None):
        super().__init__(f"Reconciliation aborted at step '{step}': {cause}")
        self.step = step
        self.cause = cause
        self.completed = list(completed or [])
