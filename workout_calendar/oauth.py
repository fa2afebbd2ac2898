"""Interactive Strava authorisation via a local callback server."""

from __future__ import annotations

import logging
import secrets
import socket
import threading
import time
import urllib.parse
import webbrowser
from dataclasses import dataclass, field
from typing import Optional

from flask import Flask, abort, request
from flask.typing import ResponseReturnValue
from werkzeug.serving import BaseWSGIServer, make_server

from . import config
from .errors import AuthorizationCancelledError, ExchangeError
from .models import Credential
from .strava_client import StravaService

LOGGER = logging.getLogger(__name__)

REQUIRED_SCOPE = "activity:read_all"


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome carried by the provider's redirect."""

    code: Optional[str] = None
    error: Optional[str] = None
    scope: Optional[str] = None
    state: Optional[str] = None

    @property
    def granted_scopes(self) -> set[str]:
        if not self.scope:
            return set()
        return {part.strip() for part in self.scope.split(",") if part.strip()}


@dataclass
class OAuthSession:
    """Holds the mutable state of one authorisation flow."""

    expected_state: str = field(default_factory=lambda: secrets.token_urlsafe(16))
    result: Optional[AuthorizationResult] = None
    done: threading.Event = field(default_factory=threading.Event)
    server: Optional[BaseWSGIServer] = None

    def reset(self) -> None:
        self.expected_state = secrets.token_urlsafe(16)
        self.result = None
        self.done.clear()
        self.server = None


_session = OAuthSession()

app = Flask(__name__)


def parse_redirect(url: str) -> AuthorizationResult:
    """Extract ``code`` / ``error`` / ``scope`` / ``state`` from a redirect URL."""

    parsed = urllib.parse.urlparse(url)
    query = urllib.parse.parse_qs(parsed.query)
    if not query and parsed.fragment:
        query = urllib.parse.parse_qs(parsed.fragment)

    def first(name: str) -> Optional[str]:
        values = query.get(name)
        return values[0] if values else None

    return AuthorizationResult(
        code=first("code"),
        error=first("error"),
        scope=first("scope"),
        state=first("state"),
    )


def build_authorize_url(state: str, redirect_uri: str = config.REDIRECT_URI) -> str:
    params = {
        "client_id": config.CLIENT_ID,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": config.STRAVA_SCOPE,
        "approval_prompt": "force",
        "state": state,
    }
    return f"{config.STRAVA_AUTHORIZE_URL}?" + urllib.parse.urlencode(params)


@app.route("/callback")
def callback() -> ResponseReturnValue:
    result = parse_redirect(request.url)
    if not result.state or result.state != _session.expected_state:
        LOGGER.error("Invalid OAuth state received; possible CSRF. Aborting.")
        abort(400, description="Invalid state")
    _session.result = result
    _session.done.set()
    if result.error:
        LOGGER.warning("Strava authorisation denied: %s", result.error)
        return "Authorisation was not granted. You can close this window now."
    LOGGER.info("Authorisation code received via callback.")
    return "Authorisation received! You can close this window now."


def _run_flask() -> None:
    _session.server = make_server("localhost", config.OAUTH_PORT, app)
    _session.server.serve_forever()


def wait_for_port(port: int, host: str = "localhost", timeout: int = 10) -> bool:
    """Return True once ``host:port`` accepts TCP connections or timeout elapses."""

    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            time.sleep(0.1)
    return False


def _shutdown_server(flask_thread: threading.Thread) -> None:
    if _session.server:
        _session.server.shutdown()
    flask_thread.join(timeout=5)


def complete_authorization(
    service: StravaService,
    result: AuthorizationResult,
    redirect_uri: str | None = config.REDIRECT_URI,
) -> Credential:
    """Exchange the code carried by ``result`` and store the credential."""

    if result.error:
        raise ExchangeError(f"Authorization failed: {result.error}")
    if not result.code:
        raise ExchangeError("Authorization failed: no code in redirect")
    if result.scope and REQUIRED_SCOPE not in result.granted_scopes:
        LOGGER.warning(
            "Granted scope %r lacks %s; running dates will be unavailable",
            result.scope,
            REQUIRED_SCOPE,
        )
    return service.exchange_authorization_code(result.code, redirect_uri)


def start_oauth_flow(
    service: StravaService, *, wait_timeout: int = 120, open_browser: bool = True
) -> Credential:
    """Run the browser consent end-to-end and persist the resulting tokens.

    Raises:
        AuthorizationCancelledError: No redirect arrived within ``wait_timeout``.
        ExchangeError: The user denied access or the code exchange failed.
    """

    _session.reset()
    flask_thread = threading.Thread(target=_run_flask, daemon=True)
    flask_thread.start()

    LOGGER.info("Waiting for callback server to start on port %s...", config.OAUTH_PORT)
    if not wait_for_port(config.OAUTH_PORT):
        _shutdown_server(flask_thread)
        raise ExchangeError(
            f"Callback server did not start on port {config.OAUTH_PORT}"
        )

    try:
        auth_url = build_authorize_url(_session.expected_state)
        if open_browser:
            LOGGER.info("Opening browser for authorisation...")
            webbrowser.open(auth_url)
        else:
            LOGGER.info("Open this URL to authorise: %s", auth_url)

        if not _session.done.wait(timeout=wait_timeout):
            raise AuthorizationCancelledError("Authorization cancelled by user")
        result = _session.result or AuthorizationResult()
        return complete_authorization(service, result)
    finally:
        LOGGER.info("Shutting down local OAuth server.")
        _shutdown_server(flask_thread)
