"""Filesystem layout and the sanitize-then-prefix-check path guard.

Every place that turns a client-supplied name into a path goes through
safe_filename() and resolve_within(). The guard compares plain string
prefixes of absolute paths, exactly like the archive extractor does.
"""

import glob
import logging
import os
import re
import shutil
from typing import Optional

from vulnshop.config import PACKAGE_DATA_DIR


logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

# Runtime directories relative to the shop root
FTP_DIR = "ftp"
QUARANTINE_DIR = os.path.join("ftp", "quarantine")
COMPLAINTS_DIR = os.path.join("uploads", "complaints")
PUBLIC_UPLOADS_DIR = os.path.join("assets", "public", "images", "uploads")
PRIVATE_ASSETS_DIR = os.path.join("assets", "private")

LEGAL_FILE = "legal.md"
PREMIUM_CONTENT_FILE = "premium_wallpaper.svg"
EASTER_EGG_FILE = "threejs-demo.html"

STATIC_ORIGINALS_DIR = os.path.join(PACKAGE_DATA_DIR, "static")


def safe_filename(name: str) -> str:
    """Strip every character outside [A-Za-z0-9._-]."""
    return _UNSAFE_CHARS.sub("", name)


def resolve_within(base_dir: str, name: str) -> Optional[str]:
    """Sanitize name and resolve it against base_dir.

    Returns:
        The absolute path, or None when it does not start with base_dir.
    """
    base = os.path.abspath(base_dir)
    candidate = os.path.abspath(os.path.join(base, safe_filename(name)))
    if candidate.startswith(base):
        return candidate
    return None


def ensure_directory(path: str) -> str:
    """Create path if absent; safe under concurrent first use."""
    os.makedirs(path, exist_ok=True)
    return path


def shop_path(root: str, relative: str) -> str:
    return os.path.abspath(os.path.join(root, relative))


def restore_overwritten_files(root: str, originals_dir: str = STATIC_ORIGINALS_DIR) -> int:
    """Copy packaged originals back over the runtime tree.

    Undoes file-write exploits from earlier runs. Names that fail the
    path guard are skipped with a warning.

    Returns:
        Number of files restored.
    """
    targets = {
        os.path.join(originals_dir, LEGAL_FILE): shop_path(root, FTP_DIR),
        os.path.join(originals_dir, "private", "*"): shop_path(root, PRIVATE_ASSETS_DIR),
        os.path.join(originals_dir, "quarantine", "*"): shop_path(root, QUARANTINE_DIR),
    }

    restored = 0
    for pattern, target_dir in targets.items():
        ensure_directory(target_dir)
        for source in sorted(glob.glob(pattern)):
            target = resolve_within(target_dir, os.path.basename(source))
            if target is None:
                logger.warning(f"Skipping file with unsafe path: {source}")
                continue
            shutil.copyfile(source, target)
            restored += 1

    # Directories served back or written to at runtime
    for relative in (COMPLAINTS_DIR, PUBLIC_UPLOADS_DIR):
        ensure_directory(shop_path(root, relative))

    logger.info(f"Restored {restored} original files under {root}")
    return restored
