"""Intentionally vulnerable shop for web-security training.

This package provides:
- create_app: Flask application factory wiring every endpoint
- ChallengeRegistry: One-shot challenge state with solve notifications
- UploadGates: The complaint file-upload chain (zip, XML, YAML)
- ArchiveExtractor: Streaming zip extraction with a path guard
- SandboxedParser: XML/YAML parsing in a disposable child process
- CsrfProtection: Token store and request hooks with deliberate bypasses

Example:
    >>> from vulnshop import create_app
    >>>
    >>> app = create_app({"SHOP_ROOT": "/tmp/shop"})
    >>> app.run(port=3000)
"""

__version__ = "0.1.0"

from vulnshop.app import create_app
from vulnshop.archive import ArchiveError, ArchiveExtractor, ExtractionReport
from vulnshop.challenges import Challenge, ChallengeRegistry, UnknownChallengeError
from vulnshop.config import configure_logging, get_config_summary
from vulnshop.csrf import CsrfProtection, CsrfTokenStore
from vulnshop.errors import (
    AccessDenied,
    ErrorKind,
    InternalFailure,
    InvalidInputFormat,
    MissingFile,
    PolicyRejection,
    ResourceExhaustion,
    ShopError,
    ValidationError,
)
from vulnshop.notifications import ChallengeNotifier
from vulnshop.parsers import SandboxedParser
from vulnshop.sandbox import SandboxError, SandboxOverflow, SandboxTimeout, run_sandboxed
from vulnshop.upload import UploadedFile, UploadGates, UploadOutcome

__all__ = [
    # Version
    "__version__",
    # Application
    "create_app",
    # Configuration
    "configure_logging",
    "get_config_summary",
    # Challenges
    "Challenge",
    "ChallengeRegistry",
    "ChallengeNotifier",
    "UnknownChallengeError",
    # Uploads
    "UploadedFile",
    "UploadGates",
    "UploadOutcome",
    "ArchiveExtractor",
    "ArchiveError",
    "ExtractionReport",
    "SandboxedParser",
    # Sandbox
    "run_sandboxed",
    "SandboxError",
    "SandboxTimeout",
    "SandboxOverflow",
    # CSRF
    "CsrfProtection",
    "CsrfTokenStore",
    # Errors
    "ErrorKind",
    "ShopError",
    "ValidationError",
    "MissingFile",
    "InvalidInputFormat",
    "PolicyRejection",
    "ResourceExhaustion",
    "AccessDenied",
    "InternalFailure",
]
