"""
Micropub admin - Flask application.

HTTP surface for the IndieAuth login and the composer. Every endpoint
answers JSON; redirects are plain 303 responses with a Location header.

Architecture:
    Route handlers only parse the request and pick the session id from the
    ``sessionid`` cookie. The work is done by AuthClient and Composer, which
    return framework-neutral Response objects that are copied onto a Flask
    response here.

Endpoints:
    GET       /health                   liveness probe
    GET       /login                    where unauthenticated users are sent
    GET|POST  /login-init               start a login for ``me``
    GET|POST  /login-callback           finish a login (``state``, ``code``)
    GET       /composer                 composer view data
    GET       /composer/addlocation     geocode ``q``
    POST      /composer/addlocation     set the composer location
    POST      /composer/media           stage a gallery item
    POST      /composer/media/device    upload ``photo`` files and stage them
    GET       /composer/media/gallery   browse the media endpoint
    GET       /queryposts               browse the micropub endpoint
    POST      /submit                   send the composed post

Session handling:
    Composer pages redirect to /login when the cookie is missing. The
    gallery and query endpoints answer 403 instead, and also answer 403
    when the cookie names no stored session.

Error Handling:
    - 303: Redirect (login flow, composer steps)
    - 400: Bad request (invalid profile URL, failed discovery)
    - 403: Forbidden (CSRF or identity mismatch, no session)
    - 500: Internal server error (store or transport failures, unexpected exceptions)

    Error bodies are ``{"status": "error", "message": ...}``.
"""

import logging
from dataclasses import asdict
from http import HTTPStatus
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response as FlaskResponse, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import get_http_timeout, load_config
from indieauth.client import SESSION_COOKIE, AuthClient
from micropub.archive import list_media, list_posts
from micropub.client import MicropubClient, UploadedFile
from micropub.composer import Composer
from session.errors import StoreError, TransportError
from session.models import UserSession
from session.response import Response, redirect
from session.store import SessionLocks, SessionStore, create_session_store

# Logging is configured in admin.main() - this module uses the configured logger
logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"


def to_flask_response(result: Response) -> FlaskResponse:
    """Copy a handled Response onto a Flask response."""
    if 300 <= result.status_code < 400:
        return FlaskResponse(status=result.status_code, headers=result.headers)

    if result.status_code >= 400:
        payload: Dict[str, Any] = {"status": "error", "message": result.body or _phrase(result.status_code)}
    else:
        payload = {"status": "success"}
        if result.location:
            payload["location"] = result.location

    response = jsonify(payload)
    response.status_code = result.status_code
    for name, value in result.headers.items():
        response.headers[name] = value
    return response


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _error(message: str, status_code: int) -> Tuple[FlaskResponse, int]:
    return jsonify({"status": "error", "message": message}), status_code


def create_app(
    config: Optional[Dict[str, Any]] = None,
    session_store: Optional[SessionStore] = None,
    auth_client: Optional[AuthClient] = None,
    composer: Optional[Composer] = None,
    micropub_client: Optional[MicropubClient] = None,
) -> Flask:
    """Factory function to create and configure the Flask application.

    Collaborators that are not passed in are built from ``config``; tests
    inject fakes for any of them.

    Args:
        config: Configuration dictionary (if None, loaded from config.yml)
        session_store: Session store shared by every handler
        auth_client: IndieAuth login state machine
        composer: Composer staging operations
        micropub_client: Client used by the gallery and post list endpoints

    Returns:
        Configured Flask application instance

    Example:
        >>> app = create_app(config, session_store=InMemorySessionStore())
        >>> client = app.test_client()
    """
    app = Flask(__name__)

    if config is None:
        config = load_config()

    cors_config = config.get("cors", {})
    if cors_config.get("enabled", False):
        cors_origins = cors_config.get("origins", [])
        if cors_origins:
            CORS(app, origins=cors_origins, supports_credentials=True)
            logger.info(f"CORS enabled for origins: {cors_origins}")
        else:
            logger.warning("CORS enabled but no origins configured")

    timeout = get_http_timeout(config)
    indieauth_config = config.get("indieauth", {})
    locks = SessionLocks()

    if session_store is None:
        session_store = create_session_store(config)
    if micropub_client is None:
        micropub_client = MicropubClient(timeout=timeout)
    if auth_client is None:
        auth_client = AuthClient(
            session_store,
            token_endpoint=indieauth_config.get("token_endpoint", ""),
            timeout=timeout,
            locks=locks,
        )
    if composer is None:
        composer = Composer(session_store, micropub_client, locks=locks)

    app.config["CLIENT_ID"] = indieauth_config.get("client_id", "")
    app.config["REDIRECT_URI"] = indieauth_config.get("redirect_uri", "")
    app.config["SESSION_STORE"] = session_store
    app.config["AUTH_CLIENT"] = auth_client
    app.config["COMPOSER"] = composer
    app.config["MICROPUB_CLIENT"] = micropub_client

    @app.before_request
    def log_request():
        logger.debug(f"{request.method} {request.path}")

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        logger.error(f"Unexpected error handling {request.method} {request.path}: {e}", exc_info=True)
        return _error("Internal server error", 500)

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint for monitoring and load balancers."""
        return jsonify({"status": "healthy"}), 200

    @app.route(LOGIN_PATH, methods=["GET"])
    def login():
        return jsonify({
            "status": "login_required",
            "message": "POST your profile URL as 'me' to /login-init",
        }), 200

    @app.route("/login-init", methods=["GET", "POST"])
    def login_init():
        me = request.values.get("me", "")
        result = current_app.config["AUTH_CLIENT"].init(
            me,
            current_app.config["CLIENT_ID"],
            current_app.config["REDIRECT_URI"],
        )
        return to_flask_response(result)

    @app.route("/login-callback", methods=["GET", "POST"])
    def login_callback():
        result = current_app.config["AUTH_CLIENT"].callback(
            request.values.get("state", ""),
            request.values.get("code", ""),
            current_app.config["CLIENT_ID"],
            current_app.config["REDIRECT_URI"],
        )
        return to_flask_response(result)

    @app.route("/composer", methods=["GET"])
    def show_composer():
        session_id = request.cookies.get(SESSION_COOKIE)
        if not session_id:
            logger.info("Redirecting, could not find sessionid cookie")
            return to_flask_response(redirect(LOGIN_PATH))

        try:
            view = current_app.config["COMPOSER"].show_composer(session_id)
        except StoreError as e:
            logger.error(f"Failed to load composer for {session_id}: {e}")
            return _error(e.message, e.status_code)
        return jsonify(view), 200

    @app.route("/composer/addlocation", methods=["GET"])
    def show_add_location():
        session_id = request.cookies.get(SESSION_COOKIE)
        if not session_id:
            return to_flask_response(redirect(LOGIN_PATH))

        try:
            locations = current_app.config["COMPOSER"].search_locations(session_id, request.args.get("q", ""))
        except StoreError as e:
            logger.error(f"Failed to search locations for {session_id}: {e}")
            return _error(e.message, e.status_code)
        return jsonify({"locations": [loc.to_dict() for loc in locations]}), 200

    @app.route("/composer/addlocation", methods=["POST"])
    def add_location():
        session_id = request.cookies.get(SESSION_COOKIE)
        if not session_id:
            return to_flask_response(redirect(LOGIN_PATH))

        result = current_app.config["COMPOSER"].add_location(
            session_id,
            request.form.get("locality", ""),
            request.form.get("region", ""),
            request.form.get("country", ""),
            request.form.get("lat", ""),
            request.form.get("lng", ""),
        )
        return to_flask_response(result)

    @app.route("/composer/media", methods=["POST"])
    def add_media_to_composer():
        usess, denied = _require_session()
        if denied is not None:
            return denied

        result = current_app.config["COMPOSER"].add_media(
            usess.uid,
            request.form.get("url", ""),
            request.form.get("datetime", ""),
            request.form.get("lat", ""),
            request.form.get("lng", ""),
        )
        return to_flask_response(result)

    @app.route("/composer/media/device", methods=["POST"])
    def add_photos():
        session_id = request.cookies.get(SESSION_COOKIE)
        if not session_id:
            return to_flask_response(redirect(LOGIN_PATH))

        files = [
            UploadedFile(
                filename=f.filename or "",
                stream=f.stream,
                content_type=f.mimetype or "application/octet-stream",
            )
            for f in request.files.getlist("photo")
            if f.filename
        ]
        logger.info(f"Received {len(files)} photo(s) for session {session_id}")
        result = current_app.config["COMPOSER"].add_photos(session_id, files)
        return to_flask_response(result)

    @app.route("/composer/media/gallery", methods=["GET"])
    def query_media():
        usess, denied = _require_session()
        if denied is not None:
            return denied

        client = current_app.config["MICROPUB_CLIENT"]
        media_url = request.args.get("url", "")
        if media_url:
            try:
                item = client.query_media_url(media_url, usess.media_endpoint, usess.access_token)
            except TransportError as e:
                logger.info(f"Failed to query media item: {e}")
                return _error(e.message, e.status_code)
            return jsonify(asdict(item)), 200

        archive = list_media(
            client,
            usess.media_endpoint,
            usess.access_token,
            after=request.args.get("after", ""),
            year=request.args.get("year", ""),
            month=request.args.get("month", ""),
        )
        return jsonify(asdict(archive)), 200

    @app.route("/queryposts", methods=["GET"])
    def query_posts():
        usess, denied = _require_session()
        if denied is not None:
            return denied

        try:
            archive = list_posts(
                current_app.config["MICROPUB_CLIENT"],
                usess.micropub_endpoint,
                usess.access_token,
                after=request.args.get("after", ""),
            )
        except TransportError as e:
            logger.info(f"Failed to query post list: {e}")
            return _error(e.message, e.status_code)
        return jsonify(asdict(archive)), 200

    @app.route("/submit", methods=["POST"])
    def submit():
        session_id = request.cookies.get(SESSION_COOKIE)
        if not session_id:
            logger.info("Redirecting, could not find sessionid cookie")
            return to_flask_response(redirect(LOGIN_PATH))

        result = current_app.config["COMPOSER"].submit_post(
            session_id,
            request.form.get("content", ""),
            request.form.get("h", ""),
        )
        return to_flask_response(result)

    return app


def _require_session() -> Tuple[Optional[UserSession], Optional[Tuple[FlaskResponse, int]]]:
    """Load the cookie's session, or build the 403 to answer with."""
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        logger.info("Could not find sessionid cookie")
        return None, _error("Forbidden", 403)

    try:
        usess = current_app.config["SESSION_STORE"].fetch_by_id(session_id)
    except StoreError as e:
        logger.info(f"Could not find session {session_id}: {e}")
        return None, _error("Forbidden", 403)
    return usess, None
