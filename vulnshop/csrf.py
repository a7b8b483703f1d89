"""CSRF token store and Flask request hooks.

One token per identity (bearer credential, token cookie, or the literal
"unauthenticated"), reused until it expires and a background sweep
purges it. Validation deliberately skips:

- requests whose URL contains "/api",
- clients whose User-Agent lacks "Mozilla",
- requests whose Origin or Referer carries the trusted third-party host.

Example:
    >>> store = CsrfTokenStore()
    >>> CsrfProtection(store).init_app(app)
"""

import hmac
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from flask import Flask, Request, g, jsonify, request

from vulnshop.config import CSRF_SWEEP_INTERVAL, CSRF_TOKEN_TTL, CSRF_TRUSTED_ORIGIN


logger = logging.getLogger(__name__)

UNAUTHENTICATED = "unauthenticated"

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass
class CsrfTokenRecord:
    token: str
    created: float


# =============================================================================
# TOKEN STORE
# =============================================================================

class CsrfTokenStore:
    """Thread-safe map from identity to its CSRF token.

    Attributes:
        ttl: Seconds a token stays valid.
        sweep_interval: Seconds between background sweeps.
    """

    def __init__(
        self,
        ttl: float = CSRF_TOKEN_TTL,
        sweep_interval: float = CSRF_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time
    ) -> None:
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._tokens: Dict[str, CsrfTokenRecord] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def _is_live(self, record: CsrfTokenRecord, now: float) -> bool:
        return now - record.created <= self.ttl

    def get(self, identity: str) -> Optional[CsrfTokenRecord]:
        with self._lock:
            return self._tokens.get(identity)

    def generate_token(self, identity: str) -> str:
        """Return the live token for identity, minting one if needed."""
        now = self._clock()
        with self._lock:
            record = self._tokens.get(identity)
            if record is None or not self._is_live(record, now):
                record = CsrfTokenRecord(token=secrets.token_hex(32), created=now)
                self._tokens[identity] = record
                logger.debug(f"Issued CSRF token for {identity[:16]}")
            return record.token

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove expired records.

        Returns:
            Number of records removed.
        """
        now = self._clock() if now is None else now
        with self._lock:
            expired = [key for key, record in self._tokens.items() if not self._is_live(record, now)]
            for key in expired:
                del self._tokens[key]
        if expired:
            logger.info(f"Purged {len(expired)} expired CSRF tokens")
        return len(expired)

    def start(self) -> None:
        """Start the background sweeper thread (idempotent)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="csrf-sweeper")
        self._sweeper.daemon = True
        self._sweeper.start()

    def stop(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"CSRF token sweep failed: {e}")


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def identity_from_request(req: Request) -> str:
    """Derive the token identity from the request credentials."""
    authorization = req.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        credential = authorization[len("Bearer "):].strip()
        if credential:
            return credential
    cookie = req.cookies.get("token")
    if cookie:
        return cookie
    return UNAUTHENTICATED


def is_exempt_client(req: Request) -> bool:
    """API paths and non-browser clients skip CSRF entirely."""
    return "/api" in req.full_path or "Mozilla" not in req.headers.get("User-Agent", "")


def submitted_token(req: Request) -> Optional[str]:
    """Read the token from body field, header, then query parameter."""
    token = req.form.get("_csrf")
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get("_csrf")
    return token or req.headers.get("X-CSRF-Token") or req.args.get("_csrf")


# =============================================================================
# FLASK EXTENSION
# =============================================================================

class CsrfProtection:
    """Registers token issuance and validation hooks on a Flask app."""

    def __init__(self, store: CsrfTokenStore, trusted_origin: str = CSRF_TRUSTED_ORIGIN) -> None:
        self.store = store
        self.trusted_origin = trusted_origin

    def init_app(self, app: Flask) -> None:
        app.before_request(self.issue_token)
        app.before_request(self.protect)
        app.context_processor(self._template_context)
        app.extensions["csrf"] = self

    def _template_context(self) -> Dict[str, Any]:
        return {"csrf_token": g.get("csrf_token")}

    def from_trusted_origin(self, req: Request) -> bool:
        origin = req.headers.get("Origin", "")
        referer = req.headers.get("Referer", "")
        return self.trusted_origin in origin or self.trusted_origin in referer

    def issue_token(self) -> None:
        """Expose the caller's token to views and templates."""
        if is_exempt_client(request):
            return None
        g.csrf_token = self.store.generate_token(identity_from_request(request))
        return None

    def protect(self):
        """Reject state-changing browser requests without a matching token."""
        if (
            request.method in SAFE_METHODS
            or is_exempt_client(request)
            or self.from_trusted_origin(request)
        ):
            return None

        token = submitted_token(request)
        expected = self.store.generate_token(identity_from_request(request))
        if not token or not hmac.compare_digest(str(token).encode(), expected.encode()):
            logger.warning(f"CSRF token validation failed for {request.method} {request.path}")
            return jsonify({"error": "CSRF token validation failed"}), 403
        return None
