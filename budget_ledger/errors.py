"""
Ledger Errors

DESIGN DECISION: Three recoverable error kinds surface to callers.
- NotFoundError: a referenced account, pot, schedule or record does not exist
- InvalidOperationError: a domain rule was violated
- PersistenceError: the change was applied in memory but could not be written

A PersistenceError chains the storage failure as __cause__. The in-memory
state is NOT rolled back, so the caller may retry the write or reload.

ConfigurationError is raised only at startup, before any state is loaded.
"""


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class NotFoundError(LedgerError):
    """Referenced entity does not exist."""
    pass


class InvalidOperationError(LedgerError):
    """A domain rule was violated."""
    pass


class PersistenceError(LedgerError):
    """The durable write of the ledger state failed."""
    pass


class ConfigurationError(LedgerError):
    """Settings failed validation at startup."""
    pass
