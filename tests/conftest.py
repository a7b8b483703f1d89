"""Pytest configuration and shared fixtures.

This module provides shared fixtures for testing the vulnerable shop:
- Temporary shop roots and a fully wired Flask test client
- Challenge registries built from the packaged catalog
- Builders for zip, XML and YAML upload payloads
"""

import io
import os
import zipfile
from typing import Dict, Optional

import pytest

from vulnshop.app import create_app
from vulnshop.challenges import ChallengeRegistry
from vulnshop.notifications import ChallengeNotifier


# =============================================================================
# TEST MARKERS CONFIGURATION
# =============================================================================

def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "sandbox: mark test as spawning sandbox child processes"
    )


# =============================================================================
# APPLICATION FIXTURES
# =============================================================================

@pytest.fixture
def shop_root(tmp_path):
    """Provide an empty shop root directory."""
    root = tmp_path / "shop"
    root.mkdir()
    return str(root)


@pytest.fixture
def app_config(shop_root, tmp_path) -> Dict:
    """Configuration isolating the app inside a temporary directory."""
    return {
        "TESTING": True,
        "SHOP_ROOT": shop_root,
        "DATABASE_PATH": os.path.join(shop_root, "data", "test.db"),
        "UPLOAD_TEMP_DIR": str(tmp_path / "staging"),
        "CSRF_SWEEPER": False,
        "SOLUTIONS_WEBHOOK": None,
        "RUNTIME_ENV": "",
        "SAFETY_MODE": "auto",
        "DISABLED_CHALLENGES": [],
        "ARCHIVE_NAMING": "sanitize",
        "SANDBOX_TIMEOUT_MS": 10000,
    }


@pytest.fixture
def app(app_config):
    """Provide a shop application in testing mode."""
    return create_app(app_config)


@pytest.fixture
def client(app):
    """Provide a Flask test client (non-browser User-Agent)."""
    return app.test_client()


@pytest.fixture
def registry(app) -> ChallengeRegistry:
    """Provide the application's challenge registry."""
    return app.extensions["vulnshop"].challenges


# =============================================================================
# REGISTRY FIXTURES
# =============================================================================

@pytest.fixture
def notifier() -> ChallengeNotifier:
    """Provide a notifier without webhook."""
    return ChallengeNotifier(webhook_url=None)


@pytest.fixture
def catalog_registry(notifier) -> ChallengeRegistry:
    """Provide a registry built from the packaged catalog, nothing disabled."""
    return ChallengeRegistry.from_file(
        notifier=notifier,
        disabled_keys=[],
        runtime_env="",
        safety_mode="auto",
    )


# =============================================================================
# PAYLOAD BUILDERS
# =============================================================================

def build_zip(entries: Dict[str, bytes], directories: Optional[list] = None) -> bytes:
    """Build an in-memory zip archive.

    Entry names are written verbatim, so traversal sequences survive.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name in directories or []:
            archive.writestr(zipfile.ZipInfo(name), b"")
        for name, content in entries.items():
            archive.writestr(zipfile.ZipInfo(name), content)
    return buffer.getvalue()


@pytest.fixture
def make_zip():
    """Factory fixture for zip archives."""
    return build_zip


XXE_PASSWD_DOCUMENT = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<!DOCTYPE complaint [<!ENTITY xxe SYSTEM "file:///etc/passwd">]>\n'
    '<complaint>&xxe;</complaint>'
)


def build_yaml_bomb(levels: int = 9) -> str:
    """Build a nested-alias YAML document that expands to 9**levels items."""
    lines = ['a: &a ["lol","lol","lol","lol","lol","lol","lol","lol","lol"]']
    previous = "a"
    for index in range(1, levels):
        name = chr(ord("a") + index)
        refs = ",".join([f"*{previous}"] * 9)
        lines.append(f"{name}: &{name} [{refs}]")
        previous = name
    return "\n".join(lines) + "\n"


def upload(client, filename: str, content: bytes, **kwargs):
    """POST content as the 'file' field of /file-upload."""
    return client.post(
        "/file-upload",
        data={"file": (io.BytesIO(content), filename)},
        content_type="multipart/form-data",
        **kwargs,
    )


@pytest.fixture
def upload_file(client):
    """Upload helper bound to the test client."""
    def _upload(filename: str, content: bytes, **kwargs):
        return upload(client, filename, content, **kwargs)
    return _upload


@pytest.fixture
def xxe_passwd_document() -> bytes:
    """XML document whose entity pulls in /etc/passwd."""
    return XXE_PASSWD_DOCUMENT.encode("utf-8")


@pytest.fixture
def yaml_bomb() -> bytes:
    """Nine-level YAML alias bomb."""
    return build_yaml_bomb(9).encode("utf-8")
