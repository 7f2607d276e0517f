# graphsub/controllers/subscription_controller.py
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone

from dateutil.relativedelta import relativedelta
from flask import current_app

from graphsub.services.credential_provider import UserCredentialProvider
from graphsub.services.microsoft_graph import (
    MicrosoftGraphService,
    RemoteCallFailed,
    parse_graph_datetime,
)
from graphsub.services.notification_decoder import MISSED, LifecycleNotification
from graphsub.services.subscription_store import SubscriptionRecord, SubscriptionStore, build_store


class SubscriptionCreationFailed(Exception):
    """The profile fetch or the remote create failed; nothing was stored."""

    def __init__(self, cause):
        super().__init__(f"Error creating subscription: {cause}")
        self.cause = cause


class CredentialsUnavailable(LookupError):
    """The subscription owner has no usable delegated credentials here."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionManager:
    """
    Creates, renews and deletes Graph subscriptions for signed-in users.

    The store is only written after the matching remote call succeeded.
    Renewal always runs with the credentials of the user who created the
    subscription, looked up by the stored owner id.
    """

    def __init__(
            self,
            store: SubscriptionStore,
            credential_provider,
            graph_factory=MicrosoftGraphService.for_credentials
    ):
        self.store = store
        self.credential_provider = credential_provider
        self.graph_factory = graph_factory

    # ─── helpers ───

    @staticmethod
    def notification_urls():
        cfg = current_app.config
        host = cfg["NOTIFICATIONS_HOST"]
        # Event Grid partner topics take the same target for both URLs
        if host.startswith("EventGrid:"):
            return host, host
        host = host.rstrip("/")
        return f"{host}{cfg['WEBHOOK_PATH']}", f"{host}{cfg['LIFECYCLE_PATH']}"

    @staticmethod
    def _capped(now: datetime, wanted: datetime) -> datetime:
        max_minutes = current_app.config.get("SUBSCRIPTION_MAX_LIFETIME_MINUTES")
        if max_minutes:
            return min(wanted, now + timedelta(minutes=max_minutes))
        return wanted

    def initial_expiration(self, now: datetime = None) -> datetime:
        now = now or utcnow()
        seconds = current_app.config["SUBSCRIPTION_INITIAL_LIFETIME_SECONDS"]
        return self._capped(now, now + timedelta(seconds=seconds))

    def renewal_expiration(self, now: datetime = None) -> datetime:
        now = now or utcnow()
        months = current_app.config["SUBSCRIPTION_RENEWAL_MONTHS"]
        return self._capped(now, now + relativedelta(months=months))

    def _owner_credentials(self, record: SubscriptionRecord):
        credentials = self.credential_provider.lookup(record.owner_id)
        if credentials is None:
            raise CredentialsUnavailable(
                f"No credentials for user {record.owner_id} "
                f"(subscription {record.subscription_id})"
            )
        return credentials

    def _discard_remote(self, svc, subscription_id):
        try:
            svc.delete_subscription(subscription_id)
            current_app.logger.info("🧹 Removed orphaned subscription %s", subscription_id)
        except RemoteCallFailed as e:
            current_app.logger.error(
                "❌ Could not remove orphaned subscription %s: %s", subscription_id, e
            )

    # ─── operations ───

    def create(self, credentials, owner_id):
        """
        Subscribe to changes for the owner and store the result.

        The profile fetch and the subscription create run in parallel.
        Returns ``(ProfileSummary, SubscriptionRecord)``; raises
        ``SubscriptionCreationFailed`` if either call fails.
        """
        app = current_app._get_current_object()
        cfg = app.config
        logger = app.logger
        owner_id = str(owner_id)

        svc = self.graph_factory(credentials)
        try:
            # refresh once up front so both workers share the same token
            svc.ensure_valid_token()
        except RemoteCallFailed as e:
            logger.error("❌ Token refresh failed for user %s: %s", owner_id, e)
            raise SubscriptionCreationFailed(e) from e

        notification_url, lifecycle_url = self.notification_urls()
        client_state = str(uuid.uuid4())
        expiration = self.initial_expiration()
        resource = cfg["SUBSCRIPTION_RESOURCE"]
        change_type = cfg["SUBSCRIPTION_CHANGE_TYPE"]

        def in_context(fn, *args, **kwargs):
            with app.app_context():
                return fn(*args, **kwargs)

        with ThreadPoolExecutor(max_workers=2) as pool:
            profile_future = pool.submit(in_context, svc.get_profile)
            subscription_future = pool.submit(
                in_context,
                svc.create_subscription,
                change_type=change_type,
                resource=resource,
                notification_url=notification_url,
                client_state=client_state,
                expiration_datetime=expiration,
                lifecycle_notification_url=lifecycle_url,
            )
            wait([profile_future, subscription_future])

        subscription_error = subscription_future.exception()
        profile_error = profile_future.exception()

        if subscription_error is not None:
            logger.error("❌ Error creating subscription for user %s: %s", owner_id, subscription_error)
            raise SubscriptionCreationFailed(subscription_error) from subscription_error

        created = subscription_future.result()
        subscription_id = created.get("id")

        if profile_error is not None:
            logger.error("❌ Profile fetch failed for user %s: %s", owner_id, profile_error)
            if subscription_id:
                self._discard_remote(svc, subscription_id)
            raise SubscriptionCreationFailed(profile_error) from profile_error

        if not subscription_id:
            error = RemoteCallFailed("Graph returned a subscription without an id")
            raise SubscriptionCreationFailed(error) from error

        try:
            expires_at = parse_graph_datetime(created.get("expirationDateTime")) or expiration
        except ValueError:
            expires_at = expiration

        record = SubscriptionRecord(
            subscription_id=subscription_id,
            owner_id=owner_id,
            resource=created.get("resource") or resource,
            change_type=created.get("changeType") or change_type,
            expiration_time=expires_at,
            client_state=client_state,
        )
        try:
            self.store.put(record)
        except Exception as e:
            self._discard_remote(svc, subscription_id)
            raise SubscriptionCreationFailed(e) from e

        profile = profile_future.result()
        logger.info(
            "*** Created subscription %s for user %s", subscription_id, profile.display_name
        )
        return profile, record

    def renew(self, notification: LifecycleNotification) -> None:
        """
        Push the expiry of the notified subscription out again.

        Unknown subscriptions and owners without credentials are logged and
        ignored; Graph failures are logged, never raised.
        """
        logger = current_app.logger
        logger.info(
            "***** Lifecycle event %s (%s) for subscription %s",
            notification.event_type, notification.lifecycle_event, notification.subscription_id
        )

        record = self.store.get(notification.subscription_id)
        if record is None:
            logger.info("No stored subscription %s; ignoring", notification.subscription_id)
            return

        if notification.lifecycle_event == MISSED:
            logger.info("📭 Missed notifications for %s; nothing to renew", record.subscription_id)
            return

        if (current_app.config.get("VALIDATE_CLIENT_STATE")
                and notification.client_state != record.client_state):
            logger.warning(
                "❗ clientState mismatch for subscription %s; ignoring", record.subscription_id
            )
            return

        try:
            credentials = self._owner_credentials(record)
        except CredentialsUnavailable as e:
            logger.warning("⚠️ Cannot renew: %s", e)
            return

        new_expiration = self.renewal_expiration()
        logger.info(
            "**** renewing Graph API subscription %s with new expiration time of %s",
            record.subscription_id, new_expiration.isoformat()
        )
        svc = self.graph_factory(credentials)
        try:
            response = svc.renew_subscription(record.subscription_id, new_expiration)
        except RemoteCallFailed as e:
            logger.error("❌ Renewal of %s failed: %s", record.subscription_id, e)
            return
        logger.info("**** Graph API subscription %s renewed", record.subscription_id)

        if current_app.config.get("SUBSCRIPTION_TRACK_RENEWED_EXPIRY"):
            self._record_expiry(record.subscription_id, response, new_expiration)

    def _record_expiry(self, subscription_id, response, requested):
        try:
            renewed = parse_graph_datetime((response or {}).get("expirationDateTime")) or requested
        except ValueError:
            renewed = requested
        if not self.store.extend_expiration(subscription_id, renewed):
            current_app.logger.debug(
                "Expiry of %s not moved to %s", subscription_id, renewed.isoformat()
            )

    def delete(self, subscription_id: str, credentials) -> None:
        """Delete remotely first; the store entry only goes once that worked."""
        svc = self.graph_factory(credentials)
        try:
            svc.delete_subscription(subscription_id)
        except RemoteCallFailed as e:
            current_app.logger.error("❌ Failed to delete subscription %s: %s", subscription_id, e)
            raise
        self.store.delete(subscription_id)
        current_app.logger.info("🗑️ Deleted subscription %s", subscription_id)


def init_subscription_manager(app, store=None, credential_provider=None, graph_factory=None):
    manager = SubscriptionManager(
        store=store if store is not None else build_store(app.config.get("SUBSCRIPTION_STORE", "sql")),
        credential_provider=credential_provider if credential_provider is not None else UserCredentialProvider(),
        graph_factory=graph_factory if graph_factory is not None else MicrosoftGraphService.for_credentials,
    )
    app.extensions["subscription_manager"] = manager
    return manager


def get_subscription_manager() -> SubscriptionManager:
    return current_app.extensions["subscription_manager"]
