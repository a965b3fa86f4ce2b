"""
Error classes for synclease.

These error types classify failures at the orchestration boundary:
- LogStoreError: The log store could not be read or written. Log state
  consistency can no longer be assumed for the affected entity, so the
  error propagates out of that entity's processing.
- ConfigurationError: An entity cannot be run as configured (no job bound
  to its sync identifier, a queued entry that no longer matches its entity
  options, an unreadable config file). Fails fast for that one entity.
- SyncCancelledError: A cancellation signal was observed.

Contention (lease already held) and ineligibility are not errors; they are
reported as a missing result. A job that fails is reported as a value
(SyncResult with success=False), never as an exception past the orchestrator.
"""


class SyncleaseError(Exception):
    """Base exception for synclease."""
    pass


class LogStoreError(SyncleaseError):
    """
    Infrastructure failure in the log store.

    Examples:
    - Database locked past the busy timeout
    - Disk I/O error
    - Progress write failed mid-run

    Not retried by synclease. A later periodic pass or lease expiry
    frees the entity again.
    """
    pass


class LogEntryNotFoundError(LogStoreError):
    """Raised when a log entry id is not known to the store."""
    pass


class StaleLogEntryError(LogStoreError):
    """
    Raised when a write would reactivate an entry that has already ended.

    Happens when a holder outlives its lease: another acquirer marked the
    entry lease_expired (and may hold a new active entry for the key), so
    the old holder's pending/in_progress copy is no longer valid.
    """
    pass


class ConfigurationError(SyncleaseError):
    """
    Configuration error - an entity cannot be run as configured.

    Examples:
    - No job registered for the entity's sync identifier
    - Parameters that cannot be serialized to JSON
    - Entity provider returned None
    """
    pass


class EntityNotRegisteredError(ConfigurationError):
    """Raised when no job implementation is bound to a sync identifier."""
    pass


class EntityMismatchError(ConfigurationError):
    """Raised when a log entry's key does not match the entity options used to resume it."""
    pass


class SyncCancelledError(SyncleaseError):
    """Raised when an operation observes a cancellation signal."""
    pass
