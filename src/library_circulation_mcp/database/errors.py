"""
Error taxonomy for the circulation engine.

Every repository failure is a ``RepositoryException``. The subclasses tell a
caller what to do about it:

- ``ValidationError``: malformed input, fix the request
- ``NotFoundError``: a referenced book, copy, loan, fine or borrower is absent
- ``ConflictError``: the entity is in the wrong state for the transition
- ``PolicyError``: a business rule blocks the operation
- ``TransientError``: retry the whole operation later
- ``StoreError``: the store itself failed
"""


class RepositoryException(Exception):
    """Base exception for repository operations."""

    kind = "repository_error"


class ValidationError(RepositoryException):
    """Raised when input is malformed (ISBN, publication year, counts)."""

    kind = "validation_error"


class NotFoundError(RepositoryException):
    """Raised when an entity is not found."""

    kind = "not_found"


class ConflictError(RepositoryException):
    """Raised when a state transition is attempted from the wrong state."""

    kind = "conflict"


class DuplicateError(ConflictError):
    """Raised when a uniqueness constraint rejects a write."""

    kind = "duplicate"


class PolicyError(RepositoryException):
    """Raised when a borrowing rule blocks the operation."""

    kind = "policy_violation"


class TransientError(RepositoryException):
    """Raised when an optimistic operation gave up after its retries."""

    kind = "transient"


class StoreError(RepositoryException):
    """Raised when the store fails underneath a repository operation."""

    kind = "store_error"
