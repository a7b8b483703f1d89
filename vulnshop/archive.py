"""Streaming extraction of uploaded complaint archives.

The uploaded buffer is staged to a temporary file and walked entry by
entry; each entry is copied straight from the decompressor into its
destination file, so memory use stays bounded by the copy buffer.

Two naming strategies are supported:

- "sanitize" (legacy): strip characters outside [A-Za-z0-9._-] from the
  attacker-supplied path, resolve it against the destination directory
  and keep the entry only if the result still starts with that
  directory. Existing files with the same name are overwritten.
- "random": ignore the entry path and write under a fresh random name.

Under both strategies an entry named legal.md solves the arbitrary file
write challenge.

Example:
    >>> extractor = ArchiveExtractor(registry, "/srv/shop/uploads/complaints")
    >>> extractor.extract(zip_bytes)
    ExtractionReport(written=[...], drained=[...], failed=[])
"""

import logging
import os
import posixpath
import shutil
import uuid
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import List, Optional

from vulnshop.challenges import ChallengeRegistry
from vulnshop.config import ARCHIVE_NAMING, ARCHIVE_NAMING_STRATEGIES, UPLOAD_TEMP_DIR
from vulnshop.files import LEGAL_FILE, ensure_directory, resolve_within


logger = logging.getLogger(__name__)

# Copy buffer for entry streams
_CHUNK_SIZE = 64 * 1024


# =============================================================================
# EXCEPTION CLASSES
# =============================================================================

class ArchiveError(Exception):
    """Raised when the archive as a whole cannot be processed."""
    pass


# =============================================================================
# EXTRACTION REPORT
# =============================================================================

@dataclass
class ExtractionReport:
    """Outcome of one archive extraction.

    Attributes:
        written: Absolute paths of files written.
        drained: Entry names discarded by the path guard.
        failed: Entry names whose copy failed.
    """
    written: List[str] = field(default_factory=list)
    drained: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


# =============================================================================
# ARCHIVE EXTRACTOR
# =============================================================================

class ArchiveExtractor:
    """Extracts complaint archives into a destination directory.

    Attributes:
        target_dir: Absolute destination directory.
        naming: "sanitize" or "random".
        temp_dir: Staging directory for uploaded archives.
    """

    def __init__(
        self,
        challenges: ChallengeRegistry,
        target_dir: str,
        naming: Optional[str] = None,
        temp_dir: Optional[str] = None
    ) -> None:
        naming = naming or ARCHIVE_NAMING
        if naming not in ARCHIVE_NAMING_STRATEGIES:
            raise ValueError(
                f"Unknown archive naming '{naming}'. "
                f"Valid options: {', '.join(sorted(ARCHIVE_NAMING_STRATEGIES))}"
            )
        self.challenges = challenges
        self.target_dir = os.path.abspath(target_dir)
        self.naming = naming
        self.temp_dir = temp_dir or UPLOAD_TEMP_DIR

    def destination_for(self, entry_name: str) -> Optional[str]:
        """Return where an entry should be written, or None to drain it."""
        if self.naming == "random":
            return os.path.join(self.target_dir, uuid.uuid4().hex)
        return resolve_within(self.target_dir, entry_name)

    def extract(self, buffer: bytes) -> ExtractionReport:
        """Stage the buffer to disk and extract it.

        The staged file is removed on every exit path.

        Raises:
            ArchiveError: If the buffer is not a readable zip archive.
        """
        ensure_directory(self.temp_dir)
        staged = os.path.join(self.temp_dir, f"{uuid.uuid4()}.zip")
        try:
            with open(staged, "wb") as f:
                f.write(buffer)
            return self.extract_file(staged)
        finally:
            self._cleanup(staged)

    def extract_file(self, path: str) -> ExtractionReport:
        """Extract every entry of the zip file at path.

        A failing entry is logged and skipped; its siblings continue.

        Raises:
            ArchiveError: If the file is not a readable zip archive.
        """
        ensure_directory(self.target_dir)
        report = ExtractionReport()

        try:
            archive = zipfile.ZipFile(path)
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveError(f"Error unzipping file: {e}") from e

        with archive:
            for info in archive.infolist():
                self._extract_entry(archive, info, report)

        logger.info(
            f"Extracted archive into {self.target_dir}: {len(report.written)} written, "
            f"{len(report.drained)} drained, {len(report.failed)} failed"
        )
        return report

    def _extract_entry(
        self,
        archive: zipfile.ZipFile,
        info: zipfile.ZipInfo,
        report: ExtractionReport
    ) -> None:
        entry_name = info.filename

        self.challenges.solve_if(
            "fileWriteChallenge",
            lambda: posixpath.basename(entry_name.replace("\\", "/")) == LEGAL_FILE,
        )

        if info.is_dir():
            report.drained.append(entry_name)
            return

        destination = self.destination_for(entry_name)
        if destination is None:
            logger.warning(f"Draining archive entry outside target directory: {entry_name}")
            report.drained.append(entry_name)
            return

        try:
            with archive.open(info) as source, open(destination, "wb") as target:
                shutil.copyfileobj(source, target, _CHUNK_SIZE)
        except (
            OSError, EOFError, zlib.error, zipfile.BadZipFile, RuntimeError, NotImplementedError
        ) as e:
            logger.error(f"Error writing archive entry {entry_name}: {e}")
            report.failed.append(entry_name)
            return

        report.written.append(destination)

    def _cleanup(self, path: str) -> None:
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.error(f"Error removing temp file {path}: {e}")
