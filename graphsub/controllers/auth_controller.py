# graphsub/controllers/auth_controller.py
import time
from msal import ConfidentialClientApplication
from flask import current_app

from graphsub.models.user_model import User
from graphsub.models import db
from graphsub.services.microsoft_graph import MicrosoftGraphService, ProfileSummary
from graphsub.utils.auth_utils import get_non_reserved_scopes, utc_from_timestamp

def get_msal_app():
    return ConfidentialClientApplication(
        client_id=current_app.config["CLIENT_ID"],
        client_credential=current_app.config["CLIENT_SECRET"],
        authority=current_app.config["AUTHORITY"]
    )

def exchange_code_for_token(code: str) -> dict:
    ms_app = get_msal_app()
    return ms_app.acquire_token_by_authorization_code(
        code,
        scopes=get_non_reserved_scopes(),
        redirect_uri=current_app.config["REDIRECT_URI"]
    )

def get_user_profile(token_result: dict) -> ProfileSummary:
    svc = MicrosoftGraphService(
        access_token=token_result["access_token"],
        refresh_token=token_result.get("refresh_token"),
        token_expires=time.time() + int(token_result.get("expires_in", 3600))
    )
    return svc.get_profile()

def get_or_create_user(profile: ProfileSummary, token_result: dict) -> User:
    ms_id = token_result.get("id_token_claims", {}).get("oid") or profile.id
    user = User.query.filter_by(ms_id=ms_id).first()

    expires_at = utc_from_timestamp(time.time() + int(token_result.get("expires_in", 3600)))

    if not user:
        user = User(
            ms_id=ms_id,
            name=profile.display_name,
            email=(profile.user_principal_name or "").strip(),
            job_title=profile.job_title,
            access_token=token_result["access_token"],
            refresh_token=token_result.get("refresh_token"),
            token_expires=expires_at
        )
        db.session.add(user)
        current_app.logger.info("👋 Created new user: %s", user.email)
    else:
        user.name = profile.display_name or user.name
        user.job_title = profile.job_title
        user.access_token = token_result["access_token"]
        user.refresh_token = token_result.get("refresh_token")
        user.token_expires = expires_at
        current_app.logger.debug("🔁 Updated tokens for user: %s", user.email)

    db.session.commit()
    return user
