"""Upload gate chain for the complaint file upload.

Stages run in order and each can be called on its own:

1. ensure_file_is_passed: 400 when nothing was attached.
2. check_file_type: solves the upload type challenge for extensions
   outside the allow-list; never blocks.
3. check_upload_size: solves the upload size challenge above the
   threshold; never blocks.
4. handle_zip_upload / handle_xml_upload / handle_yaml_upload: format
   specific handlers. Each returns an UploadOutcome when it consumed the
   upload, raises a ShopError when the request must fail, and returns
   None to pass the upload on.

Example:
    >>> gates = UploadGates(registry, extractor, SandboxedParser())
    >>> outcome = gates.process(UploadedFile("complaint.zip", data))
    >>> outcome.status_code
    204
"""

import logging
from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Optional

from vulnshop.archive import ArchiveError, ArchiveExtractor
from vulnshop.challenges import ChallengeRegistry
from vulnshop.config import ALLOWED_UPLOAD_TYPES, UPLOAD_SIZE_THRESHOLD
from vulnshop.errors import (
    InternalFailure,
    InvalidInputFormat,
    MissingFile,
    PolicyRejection,
    ResourceExhaustion,
    ShopError,
)
from vulnshop.parsers import (
    SandboxedParser,
    matches_etc_passwd_file,
    matches_system_ini_file,
    trunc,
)
from vulnshop.sandbox import SandboxError, SandboxOverflow, SandboxTimeout


logger = logging.getLogger(__name__)

DEPRECATION_MESSAGE = (
    "B2B customer complaints via file upload have been deprecated for security reasons"
)

UNAVAILABLE_MESSAGE = "Sorry, we are temporarily not available! Please try again later."

# Parsed content echoed back in the deprecation message
_DISCLOSURE_LENGTH = 400


# =============================================================================
# UPLOAD MODELS
# =============================================================================

@dataclass
class UploadedFile:
    """A file attached to an upload request.

    Attributes:
        filename: Original, untrusted filename.
        buffer: File content.
        size: Declared size in bytes (defaults to the buffer length).
        mimetype: Declared MIME type.
    """
    filename: str
    buffer: Optional[bytes]
    size: Optional[int] = None
    mimetype: str = "application/octet-stream"

    def __post_init__(self) -> None:
        if self.size is None:
            self.size = len(self.buffer) if self.buffer is not None else 0

    @property
    def extension(self) -> str:
        """Lower-cased text after the last dot, or "" when there is none."""
        if "." not in self.filename:
            return ""
        return self.filename[self.filename.rfind(".") + 1:].lower()

    def has_suffix(self, *suffixes: str) -> bool:
        name = self.filename.lower()
        return any(name.endswith(suffix) for suffix in suffixes)


@dataclass
class UploadOutcome:
    """Successful response of the upload chain."""
    status_code: int
    message: Optional[str] = None


Stage = Callable[[Optional[UploadedFile]], Optional[UploadOutcome]]


# =============================================================================
# UPLOAD GATES
# =============================================================================

class UploadGates:
    """The ordered, short-circuiting upload stages.

    Attributes:
        challenges: Registry the stages solve challenges in.
        extractor: Archive pipeline for .zip uploads.
        parser: Sandboxed parser for .xml/.yml/.yaml uploads.
        allowed_types: Extensions that do not solve the upload type challenge.
        size_threshold: Bytes above which the upload size challenge solves.
    """

    def __init__(
        self,
        challenges: ChallengeRegistry,
        extractor: ArchiveExtractor,
        parser: SandboxedParser,
        allowed_types: FrozenSet[str] = ALLOWED_UPLOAD_TYPES,
        size_threshold: int = UPLOAD_SIZE_THRESHOLD
    ) -> None:
        self.challenges = challenges
        self.extractor = extractor
        self.parser = parser
        self.allowed_types = allowed_types
        self.size_threshold = size_threshold

    @property
    def stages(self) -> List[Stage]:
        return [
            self.ensure_file_is_passed,
            self.check_file_type,
            self.check_upload_size,
            self.handle_zip_upload,
            self.handle_xml_upload,
            self.handle_yaml_upload,
        ]

    def process(self, upload: Optional[UploadedFile]) -> Optional[UploadOutcome]:
        """Run every stage until one produces an outcome.

        Returns:
            The first outcome, or None when the upload passed through.

        Raises:
            ShopError: When a stage rejects the request.
        """
        for stage in self.stages:
            outcome = stage(upload)
            if outcome is not None:
                return outcome
        return None

    # -------------------------------------------------------------------------
    # Gates
    # -------------------------------------------------------------------------

    def ensure_file_is_passed(self, upload: Optional[UploadedFile]) -> None:
        if upload is None:
            raise MissingFile("File is not passed")

    def check_file_type(self, upload: Optional[UploadedFile]) -> None:
        if upload is not None:
            self.challenges.solve_if(
                "uploadTypeChallenge", lambda: upload.extension not in self.allowed_types
            )

    def check_upload_size(self, upload: Optional[UploadedFile]) -> None:
        if upload is not None:
            self.challenges.solve_if(
                "uploadSizeChallenge", lambda: upload.size > self.size_threshold
            )

    # -------------------------------------------------------------------------
    # Format handlers
    # -------------------------------------------------------------------------

    def handle_zip_upload(self, upload: Optional[UploadedFile]) -> Optional[UploadOutcome]:
        """Extract .zip uploads; always answers 204."""
        if upload is None or not upload.has_suffix(".zip"):
            return None

        if upload.buffer is not None and self.challenges.is_enabled("fileWriteChallenge"):
            try:
                self.extractor.extract(upload.buffer)
            except ArchiveError as e:
                logger.error(f"Error in zip file upload handler for {upload.filename}: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error extracting {upload.filename}: {e}")

        return UploadOutcome(status_code=204)

    def handle_xml_upload(self, upload: Optional[UploadedFile]) -> None:
        """Parse .xml uploads in the sandbox and reject them with 410."""
        if upload is None or not upload.has_suffix(".xml"):
            return None
        try:
            self.challenges.solve_if("deprecatedInterfaceChallenge", lambda: True)

            enabled = self.challenges.is_enabled("deprecatedInterfaceChallenge")
            if upload.buffer is None or not enabled:
                raise PolicyRejection(f"{DEPRECATION_MESSAGE} ({upload.filename})")

            try:
                xml_string = self.parser.parse_xml(upload.buffer)
            except SandboxTimeout as e:
                self.challenges.solve("xxeDosChallenge")
                raise ResourceExhaustion(UNAVAILABLE_MESSAGE, cause=e) from e
            except (InvalidInputFormat, SandboxError) as e:
                logger.error(f"Error processing XML upload {upload.filename}: {e}")
                raise PolicyRejection(
                    f"{DEPRECATION_MESSAGE}: {e.message} ({upload.filename})", cause=e
                ) from e

            self.challenges.solve_if(
                "xxeFileDisclosureChallenge",
                lambda: matches_etc_passwd_file(xml_string) or matches_system_ini_file(xml_string),
            )
            raise PolicyRejection(
                f"{DEPRECATION_MESSAGE}: {trunc(xml_string, _DISCLOSURE_LENGTH)} "
                f"({upload.filename})"
            )
        except ShopError:
            raise
        except Exception as e:
            logger.exception(f"Error in XML upload handler: {e}")
            raise InternalFailure("Error processing XML upload", cause=e) from e

    def handle_yaml_upload(self, upload: Optional[UploadedFile]) -> None:
        """Parse .yml/.yaml uploads in the sandbox and reject them with 410."""
        if upload is None or not upload.has_suffix(".yml", ".yaml"):
            return None
        try:
            self.challenges.solve_if("deprecatedInterfaceChallenge", lambda: True)

            enabled = self.challenges.is_enabled("deprecatedInterfaceChallenge")
            if upload.buffer is None or not enabled:
                raise PolicyRejection(f"{DEPRECATION_MESSAGE} ({upload.filename})")

            try:
                yaml_string = self.parser.parse_yaml(upload.buffer)
            except (SandboxTimeout, SandboxOverflow) as e:
                self.challenges.solve("yamlBombChallenge")
                raise ResourceExhaustion(UNAVAILABLE_MESSAGE, cause=e) from e
            except (InvalidInputFormat, SandboxError) as e:
                logger.error(f"Error processing YAML upload {upload.filename}: {e}")
                raise PolicyRejection(
                    f"{DEPRECATION_MESSAGE}: {e.message} ({upload.filename})", cause=e
                ) from e

            raise PolicyRejection(
                f"{DEPRECATION_MESSAGE}: {trunc(yaml_string, _DISCLOSURE_LENGTH)} "
                f"({upload.filename})"
            )
        except ShopError:
            raise
        except Exception as e:
            logger.exception(f"Error in YAML upload handler: {e}")
            raise InternalFailure("Error processing YAML upload", cause=e) from e
