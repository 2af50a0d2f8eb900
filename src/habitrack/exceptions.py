"""Custom exceptions for habit tracking operations.

This module defines the exception hierarchy raised by the habit repository
and the document store adapters. Store errors never carry the bearer token
in their messages.
"""


class HabitTrackerError(Exception):
    """Base exception for all habit tracking errors."""


class HabitValidationError(HabitTrackerError):
    """Raised when habit form input is malformed (empty name, bad numbers)."""

    def __init__(self, message: str = "Habit input is not valid") -> None:
        """Initialize validation error.

        Args:
            message: Error message describing the invalid input
        """
        super().__init__(message)

    @classmethod
    def empty_habit_id(cls) -> "HabitValidationError":
        """Create an error for an empty habit ID parameter.

        Returns:
            HabitValidationError for empty habit ID
        """
        return cls("Habit ID cannot be empty")

    @classmethod
    def invalid_document_id(cls, doc_id: str) -> "HabitValidationError":
        """Create an error for an ID that cannot name a document in its collection.

        Args:
            doc_id: The rejected ID

        Returns:
            HabitValidationError for the malformed ID
        """
        return cls(
            f"Invalid habit ID: {doc_id!r}. IDs must not contain '/', "
            "be '.' or '..', or match '__*__'"
        )


class InvalidLogDateError(HabitTrackerError):
    """Raised when a log date falls outside ``[start_date, today]``."""

    def __init__(self, log_date: str, start_date: str, today: str) -> None:
        """Initialize invalid date error.

        Args:
            log_date: The rejected log date (ISO format)
            start_date: The habit's start date (ISO format)
            today: The current date (ISO format)
        """
        self.log_date = log_date
        self.start_date = start_date
        self.today = today
        super().__init__(
            f"Invalid date for logging: {log_date} (allowed range {start_date} to {today})"
        )


class HabitNotFoundError(HabitTrackerError):
    """Raised when a habit ID is absent from the store at read time."""

    def __init__(self, habit_id: str) -> None:
        """Initialize not found error.

        Args:
            habit_id: The ID that could not be found
        """
        self.habit_id = habit_id
        super().__init__(f"Habit not found: {habit_id}")


class HabitBusyError(HabitTrackerError):
    """Raised when an operation on the same habit is already in flight.

    This is a declined call rather than a failure: nothing was read or
    written, and the caller may try again once the first operation finishes.
    """

    def __init__(self, habit_id: str) -> None:
        """Initialize busy error.

        Args:
            habit_id: The ID of the habit currently being processed
        """
        self.habit_id = habit_id
        super().__init__(f"Already processing habit {habit_id}")


class HabitStoreError(HabitTrackerError):
    """Base exception for document store failures.

    The repository never retries these; they propagate to the caller.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize store error.

        Args:
            message: Error message (must not contain bearer token)
            status_code: HTTP status code if applicable
        """
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def create_unexpected_error(cls, method: str, path: str) -> "HabitStoreError":
        """Create an error for unexpected store errors with safe context.

        Args:
            method: HTTP method used
            path: Document path called

        Returns:
            HabitStoreError with contextual message
        """
        safe_context = f"method={method}, path={path}, status_unknown"
        return cls(f"Unexpected store error ({safe_context})")

    @classmethod
    def create_parse_error(cls, path: str, **context: str | int) -> "HabitStoreError":
        """Create an error for document parsing failures with safe context.

        Args:
            path: Collection or document path that failed
            **context: Additional safe context information

        Returns:
            HabitStoreError with contextual message
        """
        context_parts = [f"path={path}"]
        context_parts.extend(f"{key}={value}" for key, value in context.items())
        safe_context = ", ".join(context_parts)
        return cls(f"Failed to parse document ({safe_context})")


class StoreBadRequestError(HabitStoreError):
    """Raised when the store rejects request parameters (400 Bad Request)."""

    def __init__(self, message: str = "Bad request - invalid parameters") -> None:
        """Initialize bad request error."""
        super().__init__(message, status_code=400)


class StoreAuthenticationError(HabitStoreError):
    """Raised when authentication fails (401 Unauthorized)."""

    def __init__(self, message: str = "Authentication failed") -> None:
        """Initialize authentication error."""
        super().__init__(message, status_code=401)


class StorePermissionDeniedError(HabitStoreError):
    """Raised when security rules deny access (403 Forbidden)."""

    def __init__(self, message: str = "Permission denied") -> None:
        """Initialize permission denied error."""
        super().__init__(message, status_code=403)


class StoreDocumentNotFoundError(HabitStoreError):
    """Raised when a document targeted by a write does not exist (404 Not Found)."""

    def __init__(self, message: str = "Document not found") -> None:
        """Initialize document not found error."""
        super().__init__(message, status_code=404)


class StoreConflictError(HabitStoreError):
    """Raised when a write conflicts with concurrent changes (409 Conflict)."""

    def __init__(self, message: str = "Write conflict") -> None:
        """Initialize conflict error."""
        super().__init__(message, status_code=409)


class StoreRateLimitError(HabitStoreError):
    """Raised when the store quota is exhausted (429 Too Many Requests)."""

    def __init__(self, message: str = "Rate limit exceeded") -> None:
        """Initialize rate limit error."""
        super().__init__(message, status_code=429)


class StoreServerError(HabitStoreError):
    """Raised when the store returns 5xx errors."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        """Initialize server error.

        Args:
            message: Error message from server
            status_code: HTTP status code (5xx)
        """
        super().__init__(message, status_code=status_code)


class StoreServiceUnavailableError(HabitStoreError):
    """Raised when the store is temporarily unavailable (503 Service Unavailable)."""

    def __init__(self, message: str = "Store temporarily unavailable") -> None:
        """Initialize service unavailable error."""
        super().__init__(message, status_code=503)


class StoreNetworkError(HabitStoreError):
    """Raised when network operations fail."""

    def __init__(self, message: str = "Network error occurred") -> None:
        """Initialize network error."""
        super().__init__(message, status_code=None)


class StoreTimeoutError(HabitStoreError):
    """Raised when store requests time out."""

    def __init__(self, message: str = "Request timeout", status_code: int | None = None) -> None:
        """Initialize timeout error.

        Args:
            message: Error message about timeout
            status_code: HTTP status code (504 for gateway timeout, None for client timeout)
        """
        super().__init__(message, status_code=status_code)
