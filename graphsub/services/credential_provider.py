# graphsub/services/credential_provider.py

from dataclasses import dataclass
from datetime import timezone
from typing import Optional

from flask import current_app

from graphsub.models import db, User


@dataclass(frozen=True)
class GraphCredentials:
    """Delegated tokens for one user, as stored after the OAuth callback."""
    user_id: str
    access_token: Optional[str]
    refresh_token: Optional[str]
    token_expires: float = 0.0


def credentials_for_user(user: User) -> GraphCredentials:
    expires = user.token_expires
    if expires is not None:
        # stored naive, in UTC
        expires = expires.replace(tzinfo=timezone.utc).timestamp()
    return GraphCredentials(
        user_id=str(user.id),
        access_token=user.access_token,
        refresh_token=user.refresh_token,
        token_expires=expires or 0.0,
    )


class UserCredentialProvider:
    """Looks up the delegated credentials a signed-in user left behind."""

    def lookup(self, user_id) -> Optional[GraphCredentials]:
        try:
            key = int(user_id)
        except (TypeError, ValueError):
            current_app.logger.warning("❗ Not a local user id: %r", user_id)
            return None

        user = db.session.get(User, key)
        if not user:
            current_app.logger.info("No local user %s; no credentials", user_id)
            return None
        if not user.has_credentials:
            current_app.logger.info("User %s has no stored tokens (signed out?)", user_id)
            return None
        if user.token_expired and not user.refresh_token:
            current_app.logger.info("Token for user %s expired and cannot be refreshed", user_id)
            return None
        return credentials_for_user(user)
