"""
Pytest configuration and fixtures.

The app runs with ``TestConfig`` (in-memory SQLite, in-memory subscription
store, inline renewal) and a fake Graph facade injected into the
subscription manager, so no test talks to Microsoft.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app import create_app
from graphsub.config.test_config import TestConfig
from graphsub.models import db, User
from graphsub.services.credential_provider import GraphCredentials
from graphsub.services.microsoft_graph import ProfileSummary, to_graph_datetime
from graphsub.services.subscription_store import InMemorySubscriptionStore, SubscriptionRecord


class FakeGraphService:
    """
    Stand-in for ``MicrosoftGraphService``.

    Used as the manager's graph factory: calling it with credentials returns
    itself and remembers which credentials were used. Put an exception in
    ``fail[<method name>]`` to make that call raise.
    """

    def __init__(self):
        self.profile = ProfileSummary(
            id="ms-object-id",
            display_name="Alice",
            job_title="Engineer",
            user_principal_name="alice@contoso.com",
        )
        self.subscription_id = "sub-42"
        self.fail = {}
        self.credentials_seen = []
        self.created = []
        self.renewed = []
        self.deleted = []
        self.profile_calls = 0

    def __call__(self, credentials):
        self.credentials_seen.append(credentials)
        return self

    @property
    def remote_calls(self):
        return self.profile_calls + len(self.created) + len(self.renewed) + len(self.deleted)

    def _maybe_fail(self, name):
        if name in self.fail:
            raise self.fail[name]

    def ensure_valid_token(self):
        self._maybe_fail("ensure_valid_token")

    def get_profile(self):
        self.profile_calls += 1
        self._maybe_fail("get_profile")
        return self.profile

    def create_subscription(self, **kwargs):
        self.created.append(kwargs)
        self._maybe_fail("create_subscription")
        return {
            "id": self.subscription_id,
            "resource": kwargs["resource"],
            "changeType": kwargs["change_type"],
            "clientState": kwargs["client_state"],
            "expirationDateTime": to_graph_datetime(kwargs["expiration_datetime"]),
        }

    def renew_subscription(self, subscription_id, new_expiration_datetime):
        self.renewed.append((subscription_id, new_expiration_datetime))
        self._maybe_fail("renew_subscription")
        return {
            "id": subscription_id,
            "expirationDateTime": to_graph_datetime(new_expiration_datetime),
        }

    def delete_subscription(self, subscription_id):
        self.deleted.append(subscription_id)
        self._maybe_fail("delete_subscription")


class FakeCredentialProvider:

    def __init__(self, credentials=None):
        self.credentials = dict(credentials or {})
        self.lookups = []

    def lookup(self, user_id):
        self.lookups.append(user_id)
        return self.credentials.get(str(user_id))


def make_credentials(user_id="u1"):
    expires = (datetime.now(timezone.utc) + timedelta(hours=1)).timestamp()
    return GraphCredentials(
        user_id=user_id,
        access_token=f"access-{user_id}",
        refresh_token=f"refresh-{user_id}",
        token_expires=expires,
    )


def make_record(subscription_id="sub-42", owner_id="u1", **overrides):
    fields = dict(
        subscription_id=subscription_id,
        owner_id=owner_id,
        resource="me",
        change_type="updated",
        expiration_time=datetime.now(timezone.utc) + timedelta(hours=1),
        client_state="client-state-1",
    )
    fields.update(overrides)
    return SubscriptionRecord(**fields)


@pytest.fixture
def graph():
    return FakeGraphService()


@pytest.fixture
def credential_provider():
    return FakeCredentialProvider({
        "u1": make_credentials("u1"),
        "1": make_credentials("1"),
    })


@pytest.fixture
def store():
    return InMemorySubscriptionStore()


@pytest.fixture
def app(graph, credential_provider, store):
    app = create_app(
        TestConfig,
        store=store,
        credential_provider=credential_provider,
        graph_factory=graph,
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def manager(app):
    return app.extensions["subscription_manager"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user_id(app):
    user = User(
        ms_id="ms-object-id",
        name="Alice",
        email="alice@contoso.com",
        access_token="access-token",
        refresh_token="refresh-token",
        token_expires=datetime.utcnow() + timedelta(hours=1),
    )
    db.session.add(user)
    db.session.commit()
    return user.id


@pytest.fixture
def logged_in_client(app, user_id):
    client = app.test_client()
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)
        sess["_fresh"] = True
    return client
