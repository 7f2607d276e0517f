# graphsub/routes/webhook.py

from flask import Blueprint, request, current_app
from graphsub.controllers.subscription_controller import get_subscription_manager

webhook_bp = Blueprint("webhook", __name__)


@webhook_bp.route("/listen", methods=["GET", "POST"])
def handle_graph_notification():
    """Handle Microsoft Graph change notifications for stored subscriptions"""

    # Step 1: Graph validates notificationUrl with a validation token
    validation_token = request.args.get("validationToken")
    if validation_token:
        current_app.logger.info("✅ Webhook validation successful")
        return validation_token, 200, {"Content-Type": "text/plain"}
    if request.method == "GET":
        current_app.logger.error("❌ Missing validation token")
        return "Missing validation token", 400

    # Step 2: Process actual notifications
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get("value"), list):
        current_app.logger.error("❌ Webhook body is not a notification batch")
        return "", 400

    notifications = data["value"]
    current_app.logger.info("📨 Received %d notifications", len(notifications))

    accepted = 0
    for notification in notifications:
        if process_notification(notification):
            accepted += 1

    current_app.logger.info("📬 Accepted %d of %d notifications", accepted, len(notifications))
    return "", 202  # Accepted


def process_notification(notification) -> bool:
    """Check one change notification against the stored subscription"""

    if not isinstance(notification, dict):
        current_app.logger.warning("Ignoring non-object notification")
        return False

    subscription_id = notification.get("subscriptionId")
    record = get_subscription_manager().store.get(subscription_id) if subscription_id else None
    if record is None:
        current_app.logger.warning("Ignoring notification for unknown subscription %s", subscription_id)
        return False

    if notification.get("clientState") != record.client_state:
        current_app.logger.warning("Ignoring notification with bad clientState for %s", subscription_id)
        return False

    current_app.logger.info(
        "▶️ Change notification: subscription=%s, resource=%s, change=%s, owner=%s",
        subscription_id, notification.get("resource"), notification.get("changeType"), record.owner_id
    )
    return True
