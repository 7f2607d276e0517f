# graphsub/routes/lifecycle.py

from flask import Blueprint, request, current_app

from graphsub.controllers.subscription_controller import get_subscription_manager
from graphsub.services.notification_decoder import MalformedNotification, decode_batch
from graphsub.utils.async_utils import run_in_background

lifecycle_bp = Blueprint("lifecycle", __name__)


def lifecycle_handshake():
    """CloudEvents webhook abuse-protection handshake (Event Grid)."""
    origin = request.headers.get("WebHook-Request-Origin")
    headers = {"Allow": "POST, OPTIONS"}
    if origin:
        headers["WebHook-Allowed-Origin"] = origin
        headers["WebHook-Allowed-Rate"] = "*"
    return "", 200, headers


@lifecycle_bp.route("/graphApiSubscriptionLifecycleEvents", methods=["POST", "OPTIONS"])
def handle_lifecycle_event():
    """
    Receive lifecycle events and renew the matching subscriptions.

    Always acknowledges with an empty 200: failing here would make the
    transport retry or disable delivery, and a missed renewal comes back
    as another lifecycle event anyway.
    """
    if request.method == "OPTIONS":
        return lifecycle_handshake()

    # Graph validates lifecycleNotificationUrl with a validation token
    validation_token = request.args.get("validationToken")
    if validation_token:
        current_app.logger.info("✅ Lifecycle endpoint validation")
        return validation_token, 200, {"Content-Type": "text/plain"}

    body = request.get_json(force=True, silent=True)
    try:
        notifications = decode_batch(body)
    except MalformedNotification as e:
        current_app.logger.error("❌ Malformed lifecycle event: %s", e)
        return "", 200

    manager = get_subscription_manager()
    for notification in notifications:
        current_app.logger.info(
            "***** Received lifecycle event %s of type %s for subscription %s",
            notification.event_id, notification.event_type, notification.subscription_id
        )
        if current_app.config.get("LIFECYCLE_RENEW_ASYNC", True):
            run_in_background(manager.renew, notification)
            continue
        try:
            manager.renew(notification)
        except Exception:
            current_app.logger.exception(
                "❌ Renewal of %s raised", notification.subscription_id
            )

    return "", 200
