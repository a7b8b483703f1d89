"""Tests for CSRF token handling and the profile endpoint.

This module tests:
- Token issuance, reuse, expiry and sweeping
- Identity derivation from bearer header and cookie
- Exemptions for API paths, non-browser clients and the trusted origin
- The CSRF challenge on POST /profile

Run all tests: pytest tests/test_csrf.py
"""

import time
from unittest.mock import patch

import pytest

from vulnshop.csrf import UNAUTHENTICATED, CsrfTokenStore


BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) Gecko/20100101 Firefox/120.0"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def browser_headers(credential: str = "alice-token", **extra):
    headers = {"User-Agent": BROWSER_UA, "Authorization": f"Bearer {credential}"}
    headers.update(extra)
    return headers


@pytest.fixture
def csrf(app):
    return app.extensions["csrf"]


# =============================================================================
# TEST CLASS: Token Store
# =============================================================================


class TestCsrfTokenStore:
    """Tests for CsrfTokenStore."""

    def test_token_is_reused(self):
        """Test the same identity receives the same live token."""
        store = CsrfTokenStore(ttl=60)
        assert store.generate_token("alice") == store.generate_token("alice")

    def test_tokens_differ_per_identity(self):
        """Test different identities get different tokens."""
        store = CsrfTokenStore(ttl=60)
        assert store.generate_token("alice") != store.generate_token("bob")

    def test_token_format(self):
        """Test tokens are 64 hex characters."""
        token = CsrfTokenStore().generate_token("alice")
        assert len(token) == 64
        int(token, 16)

    def test_expired_token_is_reminted(self):
        """Test an expired but unswept token is replaced."""
        clock = FakeClock()
        store = CsrfTokenStore(ttl=60, clock=clock)
        first = store.generate_token("alice")

        clock.now += 61
        assert store.generate_token("alice") != first

    def test_sweep_removes_expired(self):
        """Test sweep purges only expired records."""
        clock = FakeClock()
        store = CsrfTokenStore(ttl=60, clock=clock)
        store.generate_token("alice")
        clock.now += 30
        store.generate_token("bob")
        clock.now += 31

        assert store.sweep() == 1
        assert store.get("alice") is None
        assert store.get("bob") is not None
        assert len(store) == 1

    def test_background_sweeper(self):
        """Test the sweeper thread purges expired tokens and stops cleanly."""
        store = CsrfTokenStore(ttl=0, sweep_interval=0.05)
        store.generate_token("alice")
        time.sleep(0.01)

        store.start()
        try:
            deadline = time.monotonic() + 5
            while len(store) and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            store.stop()

        assert len(store) == 0


# =============================================================================
# TEST CLASS: Request Hooks
# =============================================================================


class TestCsrfProtection:
    """Tests for the Flask request hooks."""

    def test_browser_post_without_token_rejected(self, client):
        """Test a browser POST without token answers 403."""
        response = client.post("/profile", data={"username": "mallory"}, headers=browser_headers())

        assert response.status_code == 403
        assert response.get_json() == {"error": "CSRF token validation failed"}

    def test_browser_post_with_wrong_token_rejected(self, client):
        """Test a mismatching token answers 403."""
        response = client.post(
            "/profile",
            data={"username": "mallory", "_csrf": "0" * 64},
            headers=browser_headers(),
        )
        assert response.status_code == 403

    def test_browser_post_with_token_accepted(self, client, csrf):
        """Test the identity's token in the form body is accepted."""
        token = csrf.store.generate_token("alice-token")

        response = client.post(
            "/profile",
            data={"username": "alice", "_csrf": token},
            headers=browser_headers(),
        )
        assert response.status_code == 302

    def test_token_in_header_accepted(self, client, csrf):
        """Test the X-CSRF-Token header is accepted."""
        token = csrf.store.generate_token("alice-token")

        response = client.post(
            "/profile",
            data={"username": "alice"},
            headers=browser_headers(**{"X-CSRF-Token": token}),
        )
        assert response.status_code == 302

    def test_cookie_identity(self, client, csrf):
        """Test the token cookie identifies the caller."""
        token = csrf.store.generate_token("cookie-token")
        client.set_cookie("token", "cookie-token")

        response = client.post(
            "/profile",
            data={"username": "carol", "_csrf": token},
            headers={"User-Agent": BROWSER_UA},
        )
        assert response.status_code == 302

    def test_get_issues_token_into_page(self, client, csrf):
        """Test GET /profile embeds the caller's token."""
        response = client.get("/profile", headers=browser_headers())

        token = csrf.store.get("alice-token").token
        assert token.encode() in response.data

    def test_api_paths_exempt(self, client):
        """Test URLs containing /api skip validation."""
        response = client.post("/api/Recycles", headers=browser_headers())
        assert response.status_code == 200
        assert response.get_json() == {"err": "Sorry, this endpoint is not supported."}

    def test_non_browser_exempt(self, client):
        """Test clients without Mozilla in the User-Agent skip validation."""
        response = client.post(
            "/profile",
            data={"username": "script"},
            headers={"User-Agent": "curl/8.0", "Authorization": "Bearer script-token"},
        )
        assert response.status_code == 302

    def test_unauthenticated_identity_shared(self, client, csrf):
        """Test anonymous browsers share the unauthenticated token."""
        client.get("/", headers={"User-Agent": BROWSER_UA})
        assert csrf.store.get(UNAUTHENTICATED) is not None


# =============================================================================
# TEST CLASS: CSRF Challenge
# =============================================================================


class TestCsrfChallenge:
    """Tests for the trusted-origin bypass and its challenge."""

    def test_trusted_origin_solves(self, client, registry):
        """Test a name change from the trusted origin solves the challenge."""
        response = client.post(
            "/profile",
            data={"username": "hacked"},
            headers=browser_headers(Origin="http://htmledit.squarefree.com"),
        )

        assert response.status_code == 302
        assert registry.get("csrfChallenge").solved is True
        page = client.get("/profile", headers=browser_headers())
        assert b"hacked" in page.data

    def test_trusted_referer_solves(self, client, registry):
        """Test the Referer header also triggers the bypass."""
        response = client.post(
            "/profile",
            data={"username": "hacked"},
            headers=browser_headers(Referer="https://htmledit.squarefree.com/editor"),
        )

        assert response.status_code == 302
        assert registry.get("csrfChallenge").solved is True

    def test_unchanged_name_does_not_solve(self, client, registry):
        """Test submitting the current name leaves the challenge unsolved."""
        client.post(
            "/profile",
            data={"username": "same"},
            headers={"User-Agent": "curl/8.0", "Authorization": "Bearer alice-token"},
        )
        client.post(
            "/profile",
            data={"username": "same"},
            headers=browser_headers(Origin="http://htmledit.squarefree.com"),
        )
        assert registry.get("csrfChallenge").solved is False

    def test_other_origin_rejected(self, client, registry):
        """Test an unrelated origin is validated and rejected."""
        response = client.post(
            "/profile",
            data={"username": "hacked"},
            headers=browser_headers(Origin="http://evil.example.com"),
        )

        assert response.status_code == 403
        assert registry.get("csrfChallenge").solved is False

    def test_unauthenticated_profile_update_denied(self, client):
        """Test profile updates require a credential."""
        response = client.post(
            "/profile",
            data={"username": "anon"},
            headers={"User-Agent": "curl/8.0", "Accept": "application/json"},
        )

        assert response.status_code == 403
        assert response.get_json()["error"]["kind"] == "access_denied"

    def test_profile_store_is_bounded(self, app, client):
        """Test the oldest profiles are evicted once the store is full."""
        with patch("vulnshop.app.PROFILE_STORE_SIZE", 2):
            for name in ("first", "second", "third"):
                client.post(
                    "/profile",
                    data={"username": name},
                    headers={"User-Agent": "curl/8.0", "Authorization": f"Bearer {name}-token"},
                )

        profiles = app.extensions["vulnshop"].profiles
        assert list(profiles) == ["second-token", "third-token"]
