from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Optional

from flask import Flask, Response, redirect, render_template, request, session, url_for
from werkzeug.security import check_password_hash

from .config import Settings
from .errors import AuthError
from .visitors import VisitorLog

log = logging.getLogger(__name__)

DISPLAY_LIMIT = 50
SESSION_KEY = "admin_user"


@dataclass(frozen=True)
class AdminSession:
    username: str
    authenticated_at: str


class AdminAuth:
    """Checks the single configured admin credential."""

    def __init__(self, username: str, password: str = "", password_hash: str = ""):
        self.username = username
        self.password = password
        self.password_hash = password_hash

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdminAuth":
        return cls(settings.admin_username, settings.admin_password, settings.admin_password_hash)

    @property
    def configured(self) -> bool:
        return bool(self.username and (self.password or self.password_hash))

    def _password_ok(self, password: str) -> bool:
        if self.password_hash:
            try:
                return check_password_hash(self.password_hash, password)
            except ValueError:
                log.error("ADMIN_PASSWORD_HASH is not a valid werkzeug hash")
                return False
        return hmac.compare_digest(self.password.encode("utf-8"), password.encode("utf-8"))

    def authenticate(self, username: Optional[str], password: Optional[str]) -> AdminSession:
        if not self.configured:
            raise AuthError("Admin access is not configured")
        username = (username or "").strip()
        password = password or ""
        user_ok = hmac.compare_digest(self.username.encode("utf-8"), username.encode("utf-8"))
        # Both parts are always compared.
        pass_ok = self._password_ok(password)
        if not (user_ok and pass_ok):
            raise AuthError("Invalid credentials")
        return AdminSession(username=username, authenticated_at=datetime.now(timezone.utc).isoformat(timespec="seconds"))


def current_admin() -> Optional[AdminSession]:
    data = session.get(SESSION_KEY)
    if not isinstance(data, dict) or not data.get("username"):
        return None
    return AdminSession(username=data["username"], authenticated_at=data.get("at", ""))


def require_admin(view):
    """Session variant: unauthenticated requests go to the login form."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        if current_admin() is None:
            return redirect(url_for("login", next=request.path))
        return view(*args, **kwargs)

    return wrapper


def basic_challenge() -> Response:
    return Response(
        "Authentication required",
        401,
        {"WWW-Authenticate": 'Basic realm="admin", charset="UTF-8"'},
    )


def register_admin(app: Flask, settings: Settings, visitor_log: VisitorLog) -> AdminAuth:
    """Register exactly one admin variant, chosen by ``settings.admin_auth``."""
    auth = AdminAuth.from_settings(settings)
    if not auth.configured:
        log.warning("Admin credentials are not configured; the visitor view will reject every request")

    def render_visitors(admin: AdminSession):
        entries = visitor_log.recent(DISPLAY_LIMIT)
        return render_template(
            "visitors.html",
            title="Visitors",
            admin=admin,
            entries=entries,
            total=len(visitor_log),
            capacity=visitor_log.capacity,
            session_variant=settings.admin_auth == "session",
        )

    if settings.admin_auth == "basic":

        @app.get("/admin/visitors")
        def admin_visitors():
            creds = request.authorization
            try:
                admin = auth.authenticate(
                    creds.username if creds else None,
                    creds.password if creds else None,
                )
            except AuthError as e:
                log.info("Rejected admin request from %s: %s", request.remote_addr, e)
                return basic_challenge()
            return render_visitors(admin)

        return auth

    @app.route("/login", methods=["GET", "POST"])
    def login():
        if request.method == "GET":
            if current_admin() is not None:
                return redirect(url_for("dashboard"))
            return render_template("login.html", title="Admin login", login_error=None)

        username = request.form.get("username")
        password = request.form.get("password")
        try:
            admin = auth.authenticate(username, password)
        except AuthError as e:
            log.info("Failed admin login from %s: %s", request.remote_addr, e)
            return render_template("login.html", title="Admin login", login_error="Invalid username or password."), 401

        session[SESSION_KEY] = {"username": admin.username, "at": admin.authenticated_at}
        nxt = request.args.get("next") or ""
        # Only same-site relative targets.
        if not nxt.startswith("/") or nxt.startswith("//"):
            nxt = url_for("dashboard")
        return redirect(nxt)

    @app.get("/logout")
    def logout():
        session.pop(SESSION_KEY, None)
        return redirect(url_for("login"))

    @app.get("/dashboard")
    @require_admin
    def dashboard():
        return render_visitors(current_admin())

    return auth
