# graphsub/utils/auth_utils.py
from datetime import datetime, timezone
from flask import current_app
from graphsub.models import db, User


RESERVED_SCOPES = {"openid", "profile", "offline_access"}


def get_non_reserved_scopes():
    # MSAL adds the OIDC scopes itself and rejects them when passed explicitly
    scopes = current_app.config["SCOPE"].split()

    current_app.logger.debug("🔍 All configured scopes: %r", scopes)
    filtered = [s for s in scopes if s not in RESERVED_SCOPES]
    current_app.logger.debug("✅ Filtered non-reserved scopes: %r", filtered)

    return filtered


def utc_from_timestamp(ts: float) -> datetime:
    """Naive UTC datetime, as stored in the users table."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def save_updated_token(user_id, token_data):
    user = db.session.get(User, int(user_id))
    if not user:
        raise ValueError(f"User with ID {user_id} not found")

    user.access_token = token_data["access_token"]
    user.refresh_token = token_data["refresh_token"]
    user.token_expires = utc_from_timestamp(token_data["expires_at"])
    db.session.commit()


def clear_user_tokens(user_id):
    """Drop the delegated tokens of a user who signed out."""
    user = db.session.get(User, int(user_id))
    if not user:
        return
    user.access_token = None
    user.refresh_token = None
    user.token_expires = None
    db.session.commit()
    current_app.logger.info("🔒 Cleared stored tokens for user %s", user_id)
