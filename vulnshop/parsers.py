"""Sandboxed XML and YAML parsing for the deprecated B2B complaint upload.

Both parsers are configured to be exploitable on purpose:

- XML: DTDs are loaded and external/general entities are substituted
  (XXE file disclosure, and DoS through an external entity that never
  ends such as /dev/urandom; libxml2 caps internal entity amplification).
- YAML: the full tag schema is enabled and aliases are expanded without
  bound (YAML bomb).

Parsing happens in a disposable child process with a wall-clock ceiling
(see vulnshop.sandbox); the parsed document is serialized to text inside
the child so expansion cost is paid there, not in the request thread.

Example:
    >>> parser = SandboxedParser()
    >>> parser.parse_xml(b"<complaint>late delivery</complaint>")
    '<complaint>late delivery</complaint>'
"""

import json
import logging
import re
from typing import Optional

import yaml
from lxml import etree

from vulnshop.config import MAX_DOCUMENT_SIZE, SANDBOX_TIMEOUT_MS
from vulnshop.errors import InvalidInputFormat
from vulnshop.sandbox import run_sandboxed


logger = logging.getLogger(__name__)


# =============================================================================
# DISCLOSURE ORACLES
# =============================================================================

_ETC_PASSWD_PATTERN = re.compile(
    r"(\w*:\w*:\d*:\d*:\w*:.*)|(Note that this file is consulted directly)",
    re.IGNORECASE,
)

_SYSTEM_INI_PATTERN = re.compile(r"; for 16-bit app support", re.IGNORECASE)


def matches_etc_passwd_file(text: str) -> bool:
    """Check whether text looks like the content of /etc/passwd."""
    return _ETC_PASSWD_PATTERN.search(text) is not None


def matches_system_ini_file(text: str) -> bool:
    """Check whether text looks like the content of C:\\Windows\\system.ini."""
    return _SYSTEM_INI_PATTERN.search(text) is not None


def trunc(text: str, length: int) -> str:
    """Drop line breaks and cap text at length characters.

    Truncated text ends with "..." and the ellipsis counts toward length.
    """
    text = re.sub(r"\r\n|\n|\r", "", text)
    if len(text) > length:
        return text[:length - 3] + "..."
    return text


# =============================================================================
# SANDBOXED PARSE FUNCTIONS
# =============================================================================
# These run inside the child process and must stay importable at module level.

def parse_xml_document(data: str) -> str:
    """Parse XML with entity substitution enabled and serialize it back."""
    # VULNERABLE: DTD loading plus entity resolution enables XXE
    parser = etree.XMLParser(
        load_dtd=True,
        resolve_entities=True,
        no_network=False,
        huge_tree=True,
        remove_blank_text=True,
        strip_cdata=True,
    )
    root = etree.fromstring(data.encode("utf-8"), parser=parser)
    return etree.tostring(root.getroottree(), encoding="unicode")


def load_yaml_document(data: str) -> str:
    """Load YAML with the full tag schema and serialize it as JSON."""
    # VULNERABLE: unbounded alias expansion happens during serialization
    document = yaml.load(data, Loader=yaml.UnsafeLoader)
    return json.dumps(document, default=str)


# =============================================================================
# PARSER SERVICE
# =============================================================================

def decode_document(buffer: Optional[bytes], label: str, max_size: int = MAX_DOCUMENT_SIZE) -> str:
    """Validate size and decode an uploaded document as text.

    Raises:
        InvalidInputFormat: If the buffer is missing, too large or not UTF-8.
    """
    message = f"Invalid {label} data format or size"
    if buffer is None or len(buffer) > max_size:
        raise InvalidInputFormat(message)
    try:
        return buffer.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidInputFormat(message, cause=e) from e


class SandboxedParser:
    """Runs the vulnerable parsers under a timeout.

    Attributes:
        timeout: Ceiling in seconds for a single parse.
        max_size: Largest document accepted, in bytes.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_size: int = MAX_DOCUMENT_SIZE
    ) -> None:
        self.timeout = timeout if timeout is not None else SANDBOX_TIMEOUT_MS / 1000.0
        self.max_size = max_size

    def parse_xml(self, buffer: Optional[bytes]) -> str:
        """Parse an uploaded XML document.

        Raises:
            InvalidInputFormat: Before the sandbox, for bad input.
            SandboxTimeout: When expansion exceeds the timeout.
            SandboxError: For any other parser failure.
        """
        data = decode_document(buffer, "XML", self.max_size)
        logger.debug(f"Parsing {len(data)} characters of XML in sandbox")
        return run_sandboxed(parse_xml_document, data, timeout=self.timeout)

    def parse_yaml(self, buffer: Optional[bytes]) -> str:
        """Parse an uploaded YAML document.

        Raises:
            InvalidInputFormat: Before the sandbox, for bad input.
            SandboxTimeout: When expansion exceeds the timeout.
            SandboxOverflow: When expansion exhausts memory or string length.
            SandboxError: For any other parser failure.
        """
        data = decode_document(buffer, "YAML", self.max_size)
        logger.debug(f"Parsing {len(data)} characters of YAML in sandbox")
        return run_sandboxed(load_yaml_document, data, timeout=self.timeout)
