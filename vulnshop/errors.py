"""Error taxonomy shared by every request handler.

Each error carries an explicit kind, the HTTP status it maps to, a
required message and an optional original cause. Handlers translate
filesystem, parser and sandbox failures into one of these at the
request boundary.

Classes:
    ErrorKind: Discriminant for the error variants.
    ShopError: Base class with kind, status_code, message and cause.
    ValidationError: Bad or missing input (400).
    MissingFile: No file attached to an upload (400).
    InvalidInputFormat: Document too large or not decodable (400).
    PolicyRejection: Deliberately deprecated feature path (410).
    ResourceExhaustion: Sandbox timeout or oversized expansion (503).
    AccessDenied: Traversal guard or CSRF mismatch (403).
    InternalFailure: Anything unexpected (500).
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Variants of the shop error taxonomy."""
    VALIDATION = "validation"
    POLICY_REJECTION = "policy_rejection"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    ACCESS_DENIED = "access_denied"
    INTERNAL = "internal"


class ShopError(Exception):
    """Base exception for errors surfaced to HTTP clients."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON error responses."""
        return {"message": self.message, "kind": self.kind.value}


class ValidationError(ShopError):
    """Raised for bad or missing input."""
    kind = ErrorKind.VALIDATION
    status_code = 400


class MissingFile(ValidationError):
    """Raised when an upload request carries no file."""
    pass


class InvalidInputFormat(ValidationError):
    """Raised when a document is too large or cannot be decoded as text."""
    pass


class PolicyRejection(ShopError):
    """Raised on deliberately deprecated feature paths.

    The message intentionally carries parser output and parser error
    text back to the client.
    """
    kind = ErrorKind.POLICY_REJECTION
    status_code = 410


class ResourceExhaustion(ShopError):
    """Raised when parsing runs out of time or space."""
    kind = ErrorKind.RESOURCE_EXHAUSTION
    status_code = 503


class AccessDenied(ShopError):
    """Raised when a traversal guard trips or a CSRF token mismatches."""
    kind = ErrorKind.ACCESS_DENIED
    status_code = 403


class InternalFailure(ShopError):
    """Raised for unexpected failures; carries a generic message."""
    kind = ErrorKind.INTERNAL
    status_code = 500
