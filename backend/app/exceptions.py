"""
Orienteer Backend — Custom Exception Hierarchy
================================================

What:  Application-specific exceptions for the different error scenarios.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services and dependencies; caught by global handlers.

Exception Hierarchy:
    OrienteerError (base)
    ├── ValidationError          → 400 Bad Request (client can fix)
    ├── ForbiddenError           → 403 Forbidden (exists, not permitted)
    ├── NotFoundError            → 404 Not Found (or deliberately hidden)
    ├── FileStorageError         → 500 Internal Server Error
    ├── DatabaseError            → 500 Internal Server Error
    └── MapDecodeError           → never leaves the QuickRoute decoder

Forbidden vs Not Found:
    The visibility engine only answers yes/no. Callers choose the error:
    anonymous requestors and inactive records get NotFoundError so the
    response does not reveal that the record exists; authenticated
    requestors looking at an existing record get ForbiddenError.
"""

from typing import Any, Dict, Optional


class OrienteerError(Exception):
    """
    Base exception for all Orienteer application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(OrienteerError):
    """
    Raised when client input fails validation.

    When:    Wrong file type, oversized map scan, runner already present.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class ForbiddenError(OrienteerError):
    """
    Raised when the requestor may not see or change an existing resource.

    When:    Guest tries to edit, standard user edits someone else's runner
             entry, authenticated user opens a profile they cannot see.
    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        action: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if action:
            ctx["action"] = action
        super().__init__(message=message, context=ctx)
        self.action = action


class NotFoundError(OrienteerError):
    """
    Raised when a requested resource does not exist (or must look that way).

    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class FileStorageError(OrienteerError):
    """
    Raised when file system operations fail.

    When:    Disk full, permission denied, directory not writable, I/O error.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(OrienteerError):
    """
    Raised when database operations fail unexpectedly.

    HTTP:    500 Internal Server Error

    Security Note:
        The message returned to the client is always generic.
        Detailed error info is logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class MapDecodeError(OrienteerError):
    """
    Raised inside the QuickRoute decoder on any structural inconsistency.

    What:    Length overruns the buffer, missing identifier, bad counts.
    Who:     Raised by ByteCursor reads and section handlers; caught by
             decode_map_metadata(), which turns it into a not-geocoded result.
    """

    def __init__(
        self,
        message: str = "Map metadata could not be decoded",
        offset: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if offset is not None:
            ctx["offset"] = offset
        super().__init__(message=message, context=ctx)
        self.offset = offset
