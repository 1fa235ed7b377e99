"""Exception taxonomy for the cleanup pipeline."""


class CleanupError(Exception):
    """Base class for all lexicon cleanup errors."""


class GenerationError(CleanupError):
    """The text-generation service failed or returned an unusable response.

    Retryable by re-running the pass; the engine never records a ledger
    entry for a record whose generation raised this.
    """


class NotFoundError(CleanupError):
    """A proposal or record id does not exist in the store."""


class InvalidStateError(CleanupError):
    """A proposal is not pending and can no longer be decided."""


class StoreConnectionError(CleanupError, ConnectionError):
    """The proposal store could not be opened."""
