"""Vulnerable shop Flask application.

This application intentionally contains vulnerabilities for teaching and
testing web-security tooling. DO NOT deploy in production!

Vulnerabilities included:
- XML External Entities (XXE) file disclosure and DoS via an endless external entity
- YAML bomb / unsafe YAML loading
- Arbitrary file write through uploaded zip archives
- Unrestricted upload size and type
- CSRF protection bypasses for API clients and a trusted third-party origin
- Information leakage through deprecated-interface error messages
"""

import json
import logging
import os
import sqlite3
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from flask import (
    Blueprint,
    Flask,
    abort,
    current_app,
    jsonify,
    redirect,
    render_template_string,
    request,
    send_file,
)
from werkzeug.exceptions import HTTPException

from vulnshop import config
from vulnshop.archive import ArchiveExtractor
from vulnshop.challenges import ChallengeRegistry
from vulnshop.csrf import (
    UNAUTHENTICATED,
    CsrfProtection,
    CsrfTokenStore,
    identity_from_request,
)
from vulnshop.database import create_memory, find_recycles, get_memories, init_db
from vulnshop.errors import AccessDenied, InternalFailure, ShopError
from vulnshop.files import (
    COMPLAINTS_DIR,
    EASTER_EGG_FILE,
    PREMIUM_CONTENT_FILE,
    PRIVATE_ASSETS_DIR,
    PUBLIC_UPLOADS_DIR,
    QUARANTINE_DIR,
    resolve_within,
    restore_overwritten_files,
    safe_filename,
    shop_path,
)
from vulnshop.notifications import ChallengeNotifier
from vulnshop.parsers import SandboxedParser
from vulnshop.upload import UploadedFile, UploadGates


logger = logging.getLogger(__name__)

shop = Blueprint("shop", __name__)

PREMIUM_CONTENT_ROUTE = (
    "/this/page/is/hidden/behind/an/incredibly/high/paywall/that/could/only/be/"
    "unlocked/by/sending/1btc/to/us"
)

EASTER_EGG_ROUTE = "/the/devs/are/so/funny/they/hid/an/easter/egg/within/the/easter/egg"

# Solve events kept for GET /api/notifications
NOTIFICATION_FEED_SIZE = 50
PROFILE_STORE_SIZE = 1000


# =============================================================================
# SERVICES
# =============================================================================

@dataclass
class ShopServices:
    """Everything the views need, built once per application."""
    challenges: ChallengeRegistry
    uploads: UploadGates
    csrf: CsrfProtection
    root: str
    database_path: str
    notifications: Deque[Dict[str, Any]]
    profiles: "OrderedDict[str, str]" = field(default_factory=OrderedDict)
    profiles_lock: threading.Lock = field(default_factory=threading.Lock)


def services() -> ShopServices:
    return current_app.extensions["vulnshop"]


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(test_config: Optional[Dict[str, Any]] = None) -> Flask:
    """Build the shop application.

    Args:
        test_config: Values overriding the environment configuration,
                     e.g. SHOP_ROOT pointing at a temporary directory.
    """
    app = Flask(__name__)
    app.config.from_mapping(
        SECRET_KEY=config.SECRET_KEY,
        APP_NAME=config.APP_NAME,
        SHOP_ROOT=config.SHOP_ROOT,
        UPLOAD_TEMP_DIR=config.UPLOAD_TEMP_DIR,
        SANDBOX_TIMEOUT_MS=config.SANDBOX_TIMEOUT_MS,
        MAX_DOCUMENT_SIZE=config.MAX_DOCUMENT_SIZE,
        UPLOAD_SIZE_THRESHOLD=config.UPLOAD_SIZE_THRESHOLD,
        MAX_CONTENT_LENGTH=config.MAX_CONTENT_LENGTH,
        ARCHIVE_NAMING=config.ARCHIVE_NAMING,
        CSRF_TOKEN_TTL=config.CSRF_TOKEN_TTL,
        CSRF_SWEEP_INTERVAL=config.CSRF_SWEEP_INTERVAL,
        CSRF_TRUSTED_ORIGIN=config.CSRF_TRUSTED_ORIGIN,
        CSRF_SWEEPER=True,
        SOLUTIONS_WEBHOOK=config.SOLUTIONS_WEBHOOK,
        WEBHOOK_TIMEOUT=config.WEBHOOK_TIMEOUT,
        RUNTIME_ENV=config.RUNTIME_ENV,
        SAFETY_MODE=config.SAFETY_MODE,
        DISABLED_CHALLENGES=config.DISABLED_CHALLENGES,
        CHALLENGES_FILE=config.CHALLENGES_FILE,
        DATABASE_PATH=config.DATABASE_PATH,
    )
    if test_config:
        app.config.update(test_config)

    root = os.path.abspath(app.config["SHOP_ROOT"])
    restore_overwritten_files(root)
    init_db(app.config["DATABASE_PATH"])

    notifier = ChallengeNotifier(
        webhook_url=app.config["SOLUTIONS_WEBHOOK"],
        timeout=app.config["WEBHOOK_TIMEOUT"],
    )
    feed: Deque[Dict[str, Any]] = deque(maxlen=NOTIFICATION_FEED_SIZE)
    notifier.subscribe(feed.append)

    challenges = ChallengeRegistry.from_file(
        app.config["CHALLENGES_FILE"],
        notifier=notifier,
        disabled_keys=app.config["DISABLED_CHALLENGES"],
        runtime_env=app.config["RUNTIME_ENV"],
        safety_mode=app.config["SAFETY_MODE"],
    )

    extractor = ArchiveExtractor(
        challenges,
        shop_path(root, COMPLAINTS_DIR),
        naming=app.config["ARCHIVE_NAMING"],
        temp_dir=app.config["UPLOAD_TEMP_DIR"],
    )
    parser = SandboxedParser(
        timeout=app.config["SANDBOX_TIMEOUT_MS"] / 1000.0,
        max_size=app.config["MAX_DOCUMENT_SIZE"],
    )
    uploads = UploadGates(
        challenges,
        extractor,
        parser,
        size_threshold=app.config["UPLOAD_SIZE_THRESHOLD"],
    )

    token_store = CsrfTokenStore(
        ttl=app.config["CSRF_TOKEN_TTL"],
        sweep_interval=app.config["CSRF_SWEEP_INTERVAL"],
    )
    csrf = CsrfProtection(token_store, trusted_origin=app.config["CSRF_TRUSTED_ORIGIN"])
    csrf.init_app(app)
    if app.config["CSRF_SWEEPER"]:
        token_store.start()

    app.extensions["vulnshop"] = ShopServices(
        challenges=challenges,
        uploads=uploads,
        csrf=csrf,
        root=root,
        database_path=app.config["DATABASE_PATH"],
        notifications=feed,
    )

    app.register_blueprint(shop)
    app.register_error_handler(ShopError, render_error)
    app.register_error_handler(Exception, render_unexpected_error)

    logger.info(
        f"Shop ready at {root} ({len(challenges.all())} challenges, "
        f"archive naming: {extractor.naming})"
    )
    return app


# =============================================================================
# ERROR HANDLING
# =============================================================================

ERROR_TEMPLATE = '''
<!DOCTYPE html>
<html>
<head><title>{{ title }}</title></head>
<body>
<h1>{{ title }}</h1>
<h2>{{ error.status_code }} {{ error.kind.value }}</h2>
<p style="color: red; font-family: monospace;">{{ error.message }}</p>
<p><a href="/">Back to Home</a></p>
</body>
</html>
'''


def render_error(error: ShopError):
    """Render a ShopError as JSON or as an HTML error page."""
    if request.headers.get("Accept") == "application/json":
        return jsonify({"error": error.to_dict()}), error.status_code
    title = current_app.config["APP_NAME"]
    return render_template_string(ERROR_TEMPLATE, title=title, error=error), error.status_code


def render_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception(f"Unhandled error on {request.method} {request.path}: {error}")
    return render_error(InternalFailure("Unexpected error", cause=error))


# =============================================================================
# HOME AND UTILITY ENDPOINTS
# =============================================================================

HOME_TEMPLATE = '''
<!DOCTYPE html>
<html>
<head><title>{{ title }}</title></head>
<body>
<h1>{{ title }}</h1>
<p><strong>WARNING:</strong> This application contains intentional security vulnerabilities.
DO NOT deploy in production or expose to untrusted networks!</p>

<h2>Complaint</h2>
<form action="/file-upload" method="POST" enctype="multipart/form-data">
    <input type="hidden" name="_csrf" value="{{ csrf_token or '' }}">
    <input type="file" name="file">
    <button type="submit">Upload invoice (.pdf or .zip)</button>
</form>

<h2>Endpoints</h2>
<ul>
    <li><a href="/api/challenges">/api/challenges</a> - Score board data</li>
    <li><a href="/api/notifications">/api/notifications</a> - Recently solved challenges</li>
    <li><a href="/rest/memories">/rest/memories</a> - Photo wall</li>
    <li><a href="/api/Recycles/1">/api/Recycles/1</a> - Recycling requests</li>
    <li><a href="/profile">/profile</a> - User profile</li>
    <li><a href="/health">/health</a> - Health check</li>
</ul>
</body>
</html>
'''


@shop.route('/')
def home():
    return render_template_string(HOME_TEMPLATE, title=current_app.config["APP_NAME"])


@shop.route('/health')
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok", "message": "Vulnerable shop is running"})


@shop.route('/api/challenges')
def list_challenges():
    return jsonify({"status": "success", "data": services().challenges.to_dict()})


@shop.route('/api/notifications')
def list_notifications():
    return jsonify({"status": "success", "data": list(services().notifications)})


# =============================================================================
# FILE UPLOAD
# =============================================================================

@shop.route('/file-upload', methods=['POST'])
def file_upload():
    """Complaint attachment upload.

    Vulnerable: zip entries are written to disk, XML and YAML are parsed
    with entity and alias expansion enabled, and parser output leaks into
    the error message.
    """
    upload = None
    file = request.files.get('file')
    if file is not None and file.filename:
        buffer = file.read()
        upload = UploadedFile(
            filename=file.filename,
            buffer=buffer,
            size=len(buffer),
            mimetype=file.mimetype,
        )

    outcome = services().uploads.process(upload)
    if outcome is None:
        return "", 204
    return outcome.message or "", outcome.status_code


# =============================================================================
# SERVED FILES
# =============================================================================

@shop.route('/ftp/quarantine/<path:file>')
def serve_quarantine_file(file: str):
    file_path = resolve_within(shop_path(services().root, QUARANTINE_DIR), file)
    if file_path is None:
        raise AccessDenied("File access denied due to path traversal attempt!")
    if not os.path.isfile(file_path):
        abort(404)
    return send_file(file_path)


def _serve_private_asset(name: str):
    file_path = resolve_within(shop_path(services().root, PRIVATE_ASSETS_DIR), name)
    if file_path is None:
        logger.error("Security check failed: Path would be outside target directory")
        return "Forbidden", 403
    if not os.path.isfile(file_path):
        abort(404)
    return send_file(file_path)


@shop.route(PREMIUM_CONTENT_ROUTE)
def serve_premium_content():
    services().challenges.solve_if("premiumPaywallChallenge", lambda: True)
    return _serve_private_asset(PREMIUM_CONTENT_FILE)


@shop.route(EASTER_EGG_ROUTE)
def serve_easter_egg():
    services().challenges.solve_if("easterEggLevelTwoChallenge", lambda: True)
    return _serve_private_asset(EASTER_EGG_FILE)


# =============================================================================
# PHOTO WALL
# =============================================================================

@shop.route('/rest/memories', methods=['GET'])
def list_memories():
    try:
        memories = get_memories(services().database_path)
    except sqlite3.Error as e:
        raise InternalFailure("Error fetching memories", cause=e) from e
    return jsonify({"status": "success", "data": memories})


@shop.route('/rest/memories', methods=['POST'])
def add_memory():
    image = request.files.get('image')
    filename = safe_filename(image.filename) if image is not None and image.filename else ""

    if filename:
        target = resolve_within(shop_path(services().root, PUBLIC_UPLOADS_DIR), filename)
        if target is None:
            raise AccessDenied("File access denied due to path traversal attempt!")
        image.save(target)

    user_id = request.form.get('UserId')
    try:
        memory = create_memory(
            caption=request.form.get('caption'),
            image_path="/".join(PUBLIC_UPLOADS_DIR.split(os.sep) + [filename]),
            user_id=int(user_id) if user_id and user_id.isdigit() else None,
            database_path=services().database_path,
        )
    except sqlite3.Error as e:
        raise InternalFailure("Error storing memory", cause=e) from e
    return jsonify({"status": "success", "data": memory})


# =============================================================================
# RECYCLING
# =============================================================================

@shop.route('/api/Recycles/<recycle_id>', methods=['GET'])
def get_recycle_item(recycle_id: str):
    try:
        parsed = json.loads(recycle_id)
    except ValueError:
        return "Error parsing recycle item ID", 400

    if parsed is None or isinstance(parsed, bool) or not isinstance(parsed, (int, float, str)):
        return "Invalid recycle item ID format", 400

    try:
        recycles = find_recycles(parsed, services().database_path)
    except sqlite3.Error as e:
        logger.error(f"Error fetching recycled items: {e}")
        return "Error fetching recycled items. Please try again"
    return jsonify({"status": "success", "data": recycles})


@shop.route('/api/Recycles', methods=['POST', 'PUT', 'DELETE'])
@shop.route('/api/Recycles/<recycle_id>', methods=['POST', 'PUT', 'DELETE'])
def block_recycle_items(recycle_id: Optional[str] = None):
    return jsonify({"err": "Sorry, this endpoint is not supported."})


# =============================================================================
# PROFILE
# =============================================================================

PROFILE_TEMPLATE = '''
<!DOCTYPE html>
<html>
<head><title>Profile</title></head>
<body>
<h1>User Profile</h1>
<p>Username: {{ username }}</p>
<form action="/profile" method="POST">
    <input type="hidden" name="_csrf" value="{{ csrf_token or '' }}">
    <input type="text" name="username" value="{{ username }}">
    <button type="submit">Set Username</button>
</form>
<p><a href="/">Back to Home</a></p>
</body>
</html>
'''


@shop.route('/profile', methods=['GET'])
def get_profile():
    identity = identity_from_request(request)
    with services().profiles_lock:
        username = services().profiles.get(identity, "")
    return render_template_string(PROFILE_TEMPLATE, username=username)


@shop.route('/profile', methods=['POST'])
def update_profile():
    """Username change.

    Vulnerable: accepted without a CSRF token when the request comes
    from the trusted third-party HTML editor origin.
    """
    identity = identity_from_request(request)
    if identity == UNAUTHENTICATED:
        raise AccessDenied(f"Blocked illegal activity by {request.remote_addr}")

    username = request.form.get('username', '')
    shop_services = services()
    with shop_services.profiles_lock:
        previous = shop_services.profiles.get(identity, "")
        shop_services.profiles[identity] = username
        shop_services.profiles.move_to_end(identity)
        # oldest identities are forgotten first
        while len(shop_services.profiles) > PROFILE_STORE_SIZE:
            shop_services.profiles.popitem(last=False)

    shop_services.challenges.solve_if(
        "csrfChallenge",
        lambda: shop_services.csrf.from_trusted_origin(request) and username != previous,
    )
    return redirect('/profile')
