"""Configuration management for the vulnerable shop.

This module provides centralized configuration using environment variables
and sensible defaults. Configuration can be customized via a `.env` file.

Environment Variables:
    General:
        APP_NAME: Display name used in error pages (default: OWASP Vuln Shop)
        SECRET_KEY: Flask session secret
        HOST / PORT: Bind address for the development server
        SHOP_ROOT: Base directory for runtime files (default: current directory)
        LOG_LEVEL: Logging level (default: INFO)

    Uploads:
        UPLOAD_TEMP_DIR: Staging directory for uploaded archives
        SANDBOX_TIMEOUT_MS: Wall-clock ceiling for sandboxed parsing (default: 2000)
        MAX_DOCUMENT_SIZE: Largest XML/YAML document accepted (default: 10000)
        UPLOAD_SIZE_THRESHOLD: Size above which an upload counts as oversized (default: 100000)
        MAX_CONTENT_LENGTH: Hard cap on request bodies (default: 262144)
        ARCHIVE_NAMING: "sanitize" (legacy) or "random" entry naming (default: sanitize)

    CSRF:
        CSRF_TOKEN_TTL: Token lifetime in seconds (default: 3600)
        CSRF_SWEEP_INTERVAL: Seconds between expired-token sweeps (default: 3600)
        CSRF_TRUSTED_ORIGIN: Origin/Referer substring that skips validation

    Challenges:
        SOLUTIONS_WEBHOOK: URL notified whenever a challenge is solved
        WEBHOOK_TIMEOUT: Webhook request timeout in seconds (default: 5)
        RUNTIME_ENV: Hosting environment name (Docker, Heroku, Gitpod, ...)
        SAFETY_MODE: auto, enabled or disabled (default: auto)
        DISABLED_CHALLENGES: Comma-separated challenge keys to switch off

    Storage:
        DATABASE_PATH: sqlite database file (default: <SHOP_ROOT>/data/vulnshop.db)

Example .env file:
    SHOP_ROOT=/srv/vulnshop
    ARCHIVE_NAMING=random
    RUNTIME_ENV=Docker
    LOG_LEVEL=DEBUG
"""

import os
import logging
import tempfile
from typing import FrozenSet, List, Optional

from dotenv import load_dotenv


# Load environment variables from .env file if present
load_dotenv()


def _int_from_env(name: str, default: int) -> int:
    """Read an integer setting, falling back to the default on bad input."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logging.warning(f"Invalid {name} '{raw}', defaulting to {default}")
        return default


# =============================================================================
# GENERAL CONFIGURATION
# =============================================================================

APP_NAME: str = os.getenv("APP_NAME", "OWASP Vuln Shop")

SECRET_KEY: str = os.getenv("SECRET_KEY", "vulnshop-insecure-secret")

HOST: str = os.getenv("HOST", "0.0.0.0")

PORT: int = _int_from_env("PORT", 3000)

# All runtime paths (ftp/, uploads/, assets/) resolve against this directory
SHOP_ROOT: str = os.path.abspath(os.getenv("SHOP_ROOT", os.getcwd()))

# Packaged static data (challenge catalog, originals restored at startup)
PACKAGE_DATA_DIR: str = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")

CHALLENGES_FILE: str = os.path.join(PACKAGE_DATA_DIR, "challenges.yml")


# =============================================================================
# UPLOAD CONFIGURATION
# =============================================================================

UPLOAD_TEMP_DIR: str = os.getenv(
    "UPLOAD_TEMP_DIR", os.path.join(tempfile.gettempdir(), "vulnshop-uploads")
)

# Wall-clock ceiling for sandboxed XML/YAML parsing
SANDBOX_TIMEOUT_MS: int = _int_from_env("SANDBOX_TIMEOUT_MS", 2000)

# Largest document handed to the sandboxed parsers (bytes)
MAX_DOCUMENT_SIZE: int = _int_from_env("MAX_DOCUMENT_SIZE", 10000)

# Uploads above this many bytes solve the upload size challenge
UPLOAD_SIZE_THRESHOLD: int = _int_from_env("UPLOAD_SIZE_THRESHOLD", 100000)

# Flask rejects request bodies above this with 413
MAX_CONTENT_LENGTH: int = _int_from_env("MAX_CONTENT_LENGTH", 256 * 1024)

ALLOWED_UPLOAD_TYPES: FrozenSet[str] = frozenset({"pdf", "xml", "zip", "yml", "yaml"})

# Destination filename strategy for extracted archive entries
ARCHIVE_NAMING_STRATEGIES: FrozenSet[str] = frozenset({"sanitize", "random"})

_archive_naming_env = os.getenv("ARCHIVE_NAMING", "sanitize").lower()
if _archive_naming_env not in ARCHIVE_NAMING_STRATEGIES:
    logging.warning(
        f"Invalid ARCHIVE_NAMING '{_archive_naming_env}', defaulting to 'sanitize'. "
        f"Valid options: {', '.join(sorted(ARCHIVE_NAMING_STRATEGIES))}"
    )
    _archive_naming_env = "sanitize"
ARCHIVE_NAMING: str = _archive_naming_env


# =============================================================================
# CSRF CONFIGURATION
# =============================================================================

CSRF_TOKEN_TTL: int = _int_from_env("CSRF_TOKEN_TTL", 3600)

CSRF_SWEEP_INTERVAL: int = _int_from_env("CSRF_SWEEP_INTERVAL", 3600)

CSRF_TRUSTED_ORIGIN: str = os.getenv("CSRF_TRUSTED_ORIGIN", "://htmledit.squarefree.com")


# =============================================================================
# CHALLENGE CONFIGURATION
# =============================================================================

SOLUTIONS_WEBHOOK: Optional[str] = os.getenv("SOLUTIONS_WEBHOOK") or None

WEBHOOK_TIMEOUT: int = _int_from_env("WEBHOOK_TIMEOUT", 5)

RUNTIME_ENV: str = os.getenv("RUNTIME_ENV", "").strip()

VALID_SAFETY_MODES: FrozenSet[str] = frozenset({"auto", "enabled", "disabled"})

_safety_mode_env = os.getenv("SAFETY_MODE", "auto").lower()
if _safety_mode_env not in VALID_SAFETY_MODES:
    logging.warning(f"Invalid SAFETY_MODE '{_safety_mode_env}', defaulting to 'auto'")
    _safety_mode_env = "auto"
SAFETY_MODE: str = _safety_mode_env

DISABLED_CHALLENGES: List[str] = [
    key.strip() for key in os.getenv("DISABLED_CHALLENGES", "").split(",") if key.strip()
]


# =============================================================================
# STORAGE CONFIGURATION
# =============================================================================

DATABASE_PATH: str = os.getenv(
    "DATABASE_PATH", os.path.join(SHOP_ROOT, "data", "vulnshop.db")
)


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

# Logging level from environment or default to INFO
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Validate log level
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
if LOG_LEVEL not in _VALID_LOG_LEVELS:
    LOG_LEVEL = "INFO"


def configure_logging(
    level: Optional[str] = None,
    format_string: Optional[str] = None
) -> None:
    """Configure logging for the shop package.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to LOG_LEVEL from environment.
        format_string: Custom format string for log messages.
                      Defaults to a standard format with timestamp.

    Example:
        >>> from vulnshop.config import configure_logging
        >>> configure_logging(level="DEBUG")
    """
    if level is None:
        level = LOG_LEVEL

    if format_string is None:
        format_string = (
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    logging.basicConfig(
        level=getattr(logging, level),
        format=format_string,
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def safety_mode_active(
    safety_mode: Optional[str] = None,
    runtime_env: Optional[str] = None
) -> bool:
    """Return True when dangerous challenges should be switched off.

    In "auto" mode safety only kicks in on a recognised hosting
    environment, so local installs keep every challenge available.
    """
    mode = safety_mode if safety_mode is not None else SAFETY_MODE
    env = runtime_env if runtime_env is not None else RUNTIME_ENV
    if mode == "enabled":
        return True
    if mode == "disabled":
        return False
    return bool(env)


# =============================================================================
# CONFIGURATION SUMMARY
# =============================================================================

def get_config_summary() -> dict:
    """Return a dictionary summarizing current configuration.

    Returns:
        Dictionary containing all configuration values.

    Example:
        >>> from vulnshop.config import get_config_summary
        >>> config = get_config_summary()
        >>> print(config["archive_naming"])
        sanitize
    """
    return {
        # General settings
        "app_name": APP_NAME,
        "secret_key": "***" if SECRET_KEY else None,
        "host": HOST,
        "port": PORT,
        "shop_root": SHOP_ROOT,
        "log_level": LOG_LEVEL,

        # Upload settings
        "upload_temp_dir": UPLOAD_TEMP_DIR,
        "sandbox_timeout_ms": SANDBOX_TIMEOUT_MS,
        "max_document_size": MAX_DOCUMENT_SIZE,
        "upload_size_threshold": UPLOAD_SIZE_THRESHOLD,
        "max_content_length": MAX_CONTENT_LENGTH,
        "allowed_upload_types": sorted(ALLOWED_UPLOAD_TYPES),
        "archive_naming": ARCHIVE_NAMING,

        # CSRF settings
        "csrf_token_ttl": CSRF_TOKEN_TTL,
        "csrf_sweep_interval": CSRF_SWEEP_INTERVAL,
        "csrf_trusted_origin": CSRF_TRUSTED_ORIGIN,

        # Challenge settings
        "solutions_webhook": "***" if SOLUTIONS_WEBHOOK else None,
        "webhook_timeout": WEBHOOK_TIMEOUT,
        "runtime_env": RUNTIME_ENV or None,
        "safety_mode": SAFETY_MODE,
        "safety_mode_active": safety_mode_active(),
        "disabled_challenges": DISABLED_CHALLENGES,

        # Storage settings
        "database_path": DATABASE_PATH,
    }
