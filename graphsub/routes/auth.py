# graphsub/routes/auth.py

import uuid

from flask import Blueprint, request, session, redirect, url_for, current_app
from flask_login import login_user, logout_user, current_user
from graphsub.controllers.auth_controller import (
    get_msal_app,
    exchange_code_for_token,
    get_user_profile,
    get_or_create_user,
)
from graphsub.services.microsoft_graph import RemoteCallFailed
from graphsub.utils.auth_utils import get_non_reserved_scopes, clear_user_tokens

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.route("/login")
def login():
    ms_app = get_msal_app()
    state = "int-" + uuid.uuid4().hex
    session["ms_state"] = state

    scopes = get_non_reserved_scopes()
    if not scopes:
        current_app.logger.warning("⚠️ No scopes defined for Microsoft OAuth.")
        return "No scopes configured", 500

    auth_url = ms_app.get_authorization_request_url(
        scopes=scopes,
        redirect_uri=current_app.config["REDIRECT_URI"],
        prompt="select_account",
        state=state
    )
    current_app.logger.debug("🌐 Redirecting to Microsoft Login: %s", auth_url)
    return redirect(auth_url)


@auth_bp.route("/callback")
def callback():
    incoming = request.args.get("state")
    expected = session.get("ms_state")
    if not incoming or incoming != expected:
        return "Invalid state", 400

    if "code" not in request.args:
        return f"Authentication failed: {request.args.get('error_description')}", 400

    result = exchange_code_for_token(request.args["code"])
    if "access_token" not in result:
        return f"Authentication failed: {result.get('error_description')}", 400

    try:
        profile = get_user_profile(result)
    except RemoteCallFailed as e:
        current_app.logger.error("❌ Profile fetch after login failed: %s", e)
        return "Authentication failed: could not read profile", 502
    user = get_or_create_user(profile, result)

    login_user(user)
    session.pop("ms_state", None)
    return redirect(url_for("main.index"))


@auth_bp.route("/logout")
def logout():
    # the delegated session ends here; renewals for this user stop working
    if current_user.is_authenticated:
        clear_user_tokens(current_user.id)
    logout_user()
    session.clear()
    return redirect(url_for("main.index"))
