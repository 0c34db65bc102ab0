"""
Error taxonomy for collabsync.

Every failure that crosses a component boundary is one of these classes.
The sync worker is the only place that decides between retry and terminal
failure, and it does so by reading the ``retryable`` flag.

Exception Hierarchy:
    SyncError (base)
    ├── ValidationError (malformed request, never retried)
    ├── AuthError (missing/invalid/expired token or scope)
    ├── NotFoundError (session binding, repository or branch absent)
    ├── ConflictError (ref rejected, repository name taken)
    ├── RateLimitError (429, exhausted rate limit; retried)
    ├── TransientNetworkError (5xx, timeouts, connection errors; retried)
    └── RemoteAPIError (any other unexpected remote response)

Example:
    >>> from collabsync.core.exceptions import ConflictError
    >>> try:
    ...     raise ConflictError("Ref update rejected", retryable=True, branch="main")
    ... except ConflictError as e:
    ...     print(e.retryable, e.context)
    True {'branch': 'main'}
"""


class SyncError(Exception):
    """
    Base exception for all collabsync errors.

    Attributes:
        message: Human-readable error message
        context: Optional dictionary of additional context
        retryable: Whether the sync worker may try the operation again
    """

    retryable: bool = False

    def __init__(self, message: str, **context: object) -> None:
        """
        Initialize an error with message and context.

        Args:
            message: Human-readable error message
            **context: Additional context as keyword arguments
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message


class ValidationError(SyncError):
    """
    Raised when an enqueue request or a pipeline input is malformed.

    Rejected at the boundary; a malformed request can never succeed later.
    """


class AuthError(SyncError):
    """
    Raised when the access token is missing, invalid, expired or lacks scope.

    Not retried: retrying cannot succeed without new credentials.
    """


class NotFoundError(SyncError):
    """Raised when a session binding, repository or branch does not exist."""


class ConflictError(SyncError):
    """
    Raised when the remote rejects a write because of concurrent state.

    Two sources: a non-fast-forward ref update (retryable, the next attempt
    resolves the head again) and a repository name that is already taken
    (the bootstrapper tries to recover the binding first).
    """

    def __init__(self, message: str, *, retryable: bool = False, **context: object) -> None:
        """
        Initialize a conflict error.

        Args:
            message: Human-readable error message
            retryable: Whether a fresh attempt can resolve the conflict
            **context: Additional context (branch, repo_name, ...)
        """
        super().__init__(message, **context)
        self.retryable = retryable


class RateLimitError(SyncError):
    """
    Raised when the remote API reports an exhausted rate limit.

    Attributes:
        retry_after: Seconds the remote asked us to wait, when known
    """

    retryable = True

    def __init__(
        self, message: str, *, retry_after: float | None = None, **context: object
    ) -> None:
        super().__init__(message, **context)
        self.retry_after = retry_after


class TransientNetworkError(SyncError):
    """
    Raised for server errors, timeouts and connection failures.

    The original httpx exception is preserved via ``__cause__``.
    """

    retryable = True


class RemoteAPIError(SyncError):
    """
    Raised for an unexpected remote response outside the other categories.

    Attributes:
        status_code: HTTP status code returned by the remote
    """

    def __init__(self, message: str, *, status_code: int, **context: object) -> None:
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


__all__ = [
    "SyncError",
    "ValidationError",
    "AuthError",
    "NotFoundError",
    "ConflictError",
    "RateLimitError",
    "TransientNetworkError",
    "RemoteAPIError",
]
