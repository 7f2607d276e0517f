import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import requests
from dateutil.parser import isoparse
from flask import current_app
from msal import ConfidentialClientApplication

from graphsub.utils.auth_utils import get_non_reserved_scopes, save_updated_token


class RemoteCallFailed(Exception):
    """Raised when a Graph API call fails or the token refresh errors out."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ProfileSummary:
    id: Optional[str]
    display_name: Optional[str]
    job_title: Optional[str]
    user_principal_name: Optional[str]

    @classmethod
    def from_graph(cls, data: dict) -> "ProfileSummary":
        return cls(
            id=data.get("id"),
            display_name=data.get("displayName"),
            job_title=data.get("jobTitle"),
            user_principal_name=data.get("userPrincipalName"),
        )


def to_graph_datetime(value: datetime) -> str:
    """Serialize an aware datetime the way Graph expects (UTC, trailing Z)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    # Graph sends seven fractional digits, which isoparse truncates
    if not value:
        return None
    parsed = isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MicrosoftGraphService:
    BASE_URL = "https://graph.microsoft.com/v1.0"
    PROFILE_FIELDS = "displayName,jobTitle,userPrincipalName"

    def __init__(
            self,
            access_token=None,
            refresh_token=None,
            token_expires=None,
            user_id=None
    ):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.user_id = user_id
        if isinstance(token_expires, datetime):
            # naive datetimes from the users table are UTC
            if token_expires.tzinfo is None:
                token_expires = token_expires.replace(tzinfo=timezone.utc)
            self.token_expires = token_expires.timestamp()
        else:
            self.token_expires = float(token_expires or 0)
        self.timeout = current_app.config.get("GRAPH_TIMEOUT", 30)
        self._msal_app = None
        self._token_checked = False
        self.headers = {}

        current_app.logger.debug(
            "🔧 MS Graph init: user_id=%s, expires=%.0f (now=%.0f)",
            self.user_id, self.token_expires, time.time()
        )

    @classmethod
    def for_credentials(cls, credentials) -> "MicrosoftGraphService":
        return cls(
            access_token=credentials.access_token,
            refresh_token=credentials.refresh_token,
            token_expires=credentials.token_expires,
            user_id=credentials.user_id,
        )

    @property
    def msal_app(self) -> ConfidentialClientApplication:
        if self._msal_app is None:
            cfg = current_app.config
            self._msal_app = ConfidentialClientApplication(
                client_id=cfg["CLIENT_ID"],
                client_credential=cfg["CLIENT_SECRET"],
                authority=cfg["AUTHORITY"]
            )
        return self._msal_app

    def _ensure_token(self):
        if self._token_checked:
            return

        now = time.time()
        if not self.access_token or now >= self.token_expires:
            if not self.refresh_token:
                raise RemoteCallFailed("Access token expired and no refresh token available")

            scopes = get_non_reserved_scopes()
            current_app.logger.debug("🔁 Refreshing token, scopes=%r", scopes)

            try:
                result = self.msal_app.acquire_token_by_refresh_token(
                    self.refresh_token, scopes=scopes
                )
            except ValueError as e:
                current_app.logger.error("❌ Refresh-token error: %s", e)
                raise RemoteCallFailed("Token refresh failed") from e

            if not result or "access_token" not in result:
                current_app.logger.error("❌ Token refresh failed: %r", result)
                raise RemoteCallFailed(
                    (result or {}).get("error_description", "Token refresh failed")
                )

            self.access_token = result["access_token"]
            self.refresh_token = result.get("refresh_token", self.refresh_token)
            self.token_expires = now + int(result["expires_in"])
            current_app.logger.debug("✅ Token refreshed; expires at %.0f", self.token_expires)

            if self.user_id:
                try:
                    save_updated_token(self.user_id, {
                        "access_token": self.access_token,
                        "refresh_token": self.refresh_token,
                        "expires_at": self.token_expires,
                    })
                except ValueError as e:
                    # the owner row is gone; its tokens must not be used further
                    current_app.logger.error("❌ Could not save refreshed token: %s", e)
                    raise RemoteCallFailed(f"Token owner {self.user_id} no longer exists") from e
            else:
                current_app.logger.error(
                    "❌ Token refreshed but user_id missing; token not saved."
                )
        else:
            current_app.logger.debug(
                "🧠 Token still valid for %.0f seconds", self.token_expires - now
            )

        self.headers = {"Authorization": f"Bearer {self.access_token}"}
        self._token_checked = True

    def ensure_valid_token(self):
        # If token expires within 5 minutes, force a refresh
        if (self.token_expires - time.time()) < 300:
            self._token_checked = False
            if self.refresh_token:
                self.token_expires = 0
        self._ensure_token()

    def _send(self, method: str, path: str, expected=(200,), **kwargs) -> requests.Response:
        self._ensure_token()
        url = f"{self.BASE_URL}{path}"
        try:
            resp = requests.request(
                method, url, headers=self.headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            current_app.logger.error("❌ Graph %s %s failed: %s", method, path, e)
            raise RemoteCallFailed(f"{method} {path} failed: {e}") from e
        if resp.status_code not in expected:
            raise RemoteCallFailed(
                f"{method} {path} failed [{resp.status_code}]: {resp.text}",
                status_code=resp.status_code
            )
        return resp

    def get_profile(self) -> ProfileSummary:
        """
        Fetch the signed-in user's display name, job title and principal name.
        """
        resp = self._send("GET", "/me", params={"$select": self.PROFILE_FIELDS})
        return ProfileSummary.from_graph(resp.json())

    def create_subscription(
        self,
        change_type: str,
        resource: str,
        notification_url: str,
        client_state: str,
        expiration_datetime: datetime,
        lifecycle_notification_url: str = None
    ) -> dict:
        """
        Create a Graph change-notification subscription.
        """
        body = {
            "changeType":         change_type,
            "notificationUrl":    notification_url,
            "resource":           resource,
            "clientState":        client_state,
            "expirationDateTime": to_graph_datetime(expiration_datetime)
        }
        if lifecycle_notification_url:
            body["lifecycleNotificationUrl"] = lifecycle_notification_url
        resp = self._send("POST", "/subscriptions", expected=(200, 201), json=body)
        return resp.json()

    def renew_subscription(
        self,
        subscription_id: str,
        new_expiration_datetime: datetime
    ) -> dict:
        """
        Extend an existing subscription's expiration.
        """
        body = {"expirationDateTime": to_graph_datetime(new_expiration_datetime)}
        resp = self._send("PATCH", f"/subscriptions/{subscription_id}", json=body)
        return resp.json()

    def delete_subscription(self, subscription_id: str) -> None:
        self._send("DELETE", f"/subscriptions/{subscription_id}", expected=(200, 204))
