"""Tests for the subscribe, unsubscribe, lifecycle and webhook endpoints."""
from unittest.mock import patch

from graphsub.models import db, User
from graphsub.routes.webhook import process_notification
from graphsub.services.microsoft_graph import RemoteCallFailed
from tests.conftest import make_record

LIFECYCLE_URL = "/graphApiSubscriptionLifecycleEvents"


def cloud_event(subscription_id="sub-42", **data):
    payload = {"subscriptionId": subscription_id, "lifecycleEvent": "reauthorizationRequired"}
    payload.update(data)
    return {
        "specversion": "1.0",
        "id": "event-1",
        "type": "Microsoft.Graph.SubscriptionReauthorizationRequired",
        "source": "/subscriptions/abc/partnertopics/graph",
        "data": payload,
    }


class TestSubscribe:

    def test_requires_login(self, client):
        resp = client.get("/subscribe")

        assert resp.status_code == 302
        assert "/auth/login" in resp.headers["Location"]

    def test_creates_and_renders_subscription(self, logged_in_client, user_id, store):
        resp = logged_in_client.get("/subscribe")

        assert resp.status_code == 200
        body = resp.get_data(as_text=True)
        assert "sub-42" in body
        assert "Alice" in body
        assert "Subscription created." in body
        assert store.get("sub-42").owner_id == str(user_id)

    def test_uses_signed_in_user_tokens(self, logged_in_client, user_id, graph):
        logged_in_client.get("/subscribe")

        credentials = graph.credentials_seen[0]
        assert credentials.user_id == str(user_id)
        assert credentials.access_token == "access-token"

    def test_failure_redirects_home_without_storing(self, logged_in_client, graph, store):
        graph.fail["create_subscription"] = RemoteCallFailed("403 Forbidden")

        resp = logged_in_client.get("/subscribe")

        assert resp.status_code == 302
        assert resp.headers["Location"].endswith("/")
        assert store.all() == []
        with logged_in_client.session_transaction() as sess:
            flashes = dict((message, category) for category, message in sess["_flashes"])
        assert flashes["Error creating subscription"] == "error"
        assert flashes["403 Forbidden"] == "debug"


class TestUnsubscribe:

    def test_deletes_and_logs_out(self, logged_in_client, user_id, graph, store):
        store.put(make_record(owner_id=str(user_id)))

        resp = logged_in_client.get("/unsubscribe?subscriptionId=sub-42")

        assert resp.status_code == 302
        assert resp.headers["Location"].endswith("/auth/logout")
        assert graph.deleted == ["sub-42"]
        assert store.get("sub-42") is None

    def test_remote_failure_keeps_entry(self, logged_in_client, user_id, graph, store):
        record = make_record(owner_id=str(user_id))
        store.put(record)
        graph.fail["delete_subscription"] = RemoteCallFailed("connection reset")

        resp = logged_in_client.get("/unsubscribe?subscriptionId=sub-42")

        assert resp.status_code == 302
        assert not resp.headers["Location"].endswith("/auth/logout")
        assert store.get("sub-42") == record

    def test_missing_parameter(self, logged_in_client, graph):
        resp = logged_in_client.get("/unsubscribe")

        assert resp.status_code == 400
        assert graph.deleted == []


class TestLogout:

    def test_clears_stored_tokens(self, logged_in_client, user_id):
        resp = logged_in_client.get("/auth/logout")

        assert resp.status_code == 302
        db.session.expire_all()
        user = db.session.get(User, user_id)
        assert user.access_token is None
        assert user.refresh_token is None


class TestLifecycleEndpoint:
    """The lifecycle endpoint acknowledges with an empty 200 no matter what."""

    def test_known_subscription_is_renewed(self, client, graph, store):
        store.put(make_record(owner_id="u1"))

        resp = client.post(LIFECYCLE_URL, json=cloud_event())

        assert resp.status_code == 200
        assert resp.get_data() == b""
        assert [sid for sid, _ in graph.renewed] == ["sub-42"]

    def test_unknown_subscription(self, client, graph):
        resp = client.post(LIFECYCLE_URL, json=cloud_event("sub-99"))

        assert resp.status_code == 200
        assert resp.get_data() == b""
        assert graph.remote_calls == 0

    def test_owner_without_credentials(self, client, graph, store):
        store.put(make_record(owner_id="ghost"))

        resp = client.post(LIFECYCLE_URL, json=cloud_event())

        assert resp.status_code == 200
        assert graph.remote_calls == 0

    def test_renewal_failure_still_acknowledged(self, client, graph, store):
        store.put(make_record())
        graph.fail["renew_subscription"] = RemoteCallFailed("500 Internal Server Error")

        resp = client.post(LIFECYCLE_URL, json=cloud_event())

        assert resp.status_code == 200
        assert resp.get_data() == b""

    def test_unexpected_renewal_error_still_acknowledged(self, client, graph, store):
        store.put(make_record())
        graph.fail["renew_subscription"] = RuntimeError("bug")

        resp = client.post(LIFECYCLE_URL, json=cloud_event())

        assert resp.status_code == 200

    def test_malformed_payload(self, client, graph):
        resp = client.post(LIFECYCLE_URL, json={"type": "x", "data": {"nope": 1}})

        assert resp.status_code == 200
        assert resp.get_data() == b""
        assert graph.remote_calls == 0

    def test_non_ascii_base64_payload(self, client, graph):
        envelope = {"type": "Microsoft.Graph.SubscriptionReauthorizationRequired", "data_base64": "é"}

        resp = client.post(LIFECYCLE_URL, json=envelope)

        assert resp.status_code == 200
        assert resp.get_data() == b""
        assert graph.remote_calls == 0

    def test_non_json_body(self, client):
        resp = client.post(LIFECYCLE_URL, data=b"\x00\x01garbage", content_type="application/octet-stream")

        assert resp.status_code == 200
        assert resp.get_data() == b""

    def test_graph_webhook_batch(self, client, graph, store):
        store.put(make_record())
        body = {"value": [{"subscriptionId": "sub-42", "lifecycleEvent": "subscriptionRemoved"}]}

        resp = client.post(LIFECYCLE_URL, json=body)

        assert resp.status_code == 200
        assert len(graph.renewed) == 1

    def test_async_dispatch_does_not_wait_for_renewal(self, app, client, manager, store):
        app.config["LIFECYCLE_RENEW_ASYNC"] = True
        store.put(make_record())

        with patch("graphsub.routes.lifecycle.run_in_background") as dispatch:
            resp = client.post(LIFECYCLE_URL, json=cloud_event())

        assert resp.status_code == 200
        fn, notification = dispatch.call_args.args
        assert fn == manager.renew
        assert notification.subscription_id == "sub-42"

    def test_validation_token_echoed(self, client):
        resp = client.post(f"{LIFECYCLE_URL}?validationToken=abc123")

        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "abc123"
        assert resp.content_type.startswith("text/plain")

    def test_cloudevents_handshake(self, client):
        resp = client.options(LIFECYCLE_URL, headers={"WebHook-Request-Origin": "eventgrid.azure.net"})

        assert resp.status_code == 200
        assert resp.headers["WebHook-Allowed-Origin"] == "eventgrid.azure.net"


class TestChangeWebhook:

    def test_validation_handshake(self, client):
        resp = client.post("/listen?validationToken=token-1")

        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "token-1"

    def test_get_without_token(self, client):
        assert client.get("/listen").status_code == 400

    def test_accepts_notifications(self, client, store):
        store.put(make_record(client_state="secret"))
        body = {"value": [
            {"subscriptionId": "sub-42", "clientState": "secret", "changeType": "updated", "resource": "me"},
            {"subscriptionId": "sub-42", "clientState": "forged"},
            {"subscriptionId": "sub-99", "clientState": "secret"},
        ]}
        resp = client.post("/listen", json=body)

        assert resp.status_code == 202

    def test_bad_body(self, client):
        assert client.post("/listen", json={"nope": True}).status_code == 400

    def test_client_state_checked_per_notification(self, app, store):
        store.put(make_record(client_state="secret"))

        assert process_notification({"subscriptionId": "sub-42", "clientState": "secret"})
        assert not process_notification({"subscriptionId": "sub-42", "clientState": "forged"})
        assert not process_notification({"subscriptionId": "sub-99", "clientState": "secret"})
        assert not process_notification("not a dict")
