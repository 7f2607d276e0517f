# graphsub/routes/subscriptions.py

import json
from dataclasses import asdict

from flask import Blueprint, request, redirect, url_for, render_template, flash, current_app
from flask_login import login_required, current_user

from graphsub.controllers.subscription_controller import (
    SubscriptionCreationFailed,
    get_subscription_manager,
)
from graphsub.services.credential_provider import credentials_for_user
from graphsub.services.microsoft_graph import RemoteCallFailed

subscriptions_bp = Blueprint("subscriptions", __name__)

CREATE_SUBSCRIPTION_ERROR = "Error creating subscription"


@subscriptions_bp.route("/subscribe")
@login_required
def subscribe():
    """Subscribe to profile changes of the signed-in ("me") user."""
    manager = get_subscription_manager()
    try:
        profile, record = manager.create(credentials_for_user(current_user), current_user.id)
    except SubscriptionCreationFailed as e:
        current_app.logger.error("%s: %s", CREATE_SUBSCRIPTION_ERROR, e.cause)
        flash(CREATE_SUBSCRIPTION_ERROR, "error")
        flash(str(e.cause), "debug")
        return redirect(url_for("main.index"))

    subscription_json = json.dumps(asdict(record), default=str, indent=2)
    flash("Subscription created.", "success")
    return render_template(
        "subscription.html",
        user=profile,
        subscription_id=record.subscription_id,
        subscription=subscription_json
    )


@subscriptions_bp.route("/unsubscribe")
@login_required
def unsubscribe():
    """Delete a subscription, then log the user out."""
    subscription_id = request.args.get("subscriptionId")
    if not subscription_id:
        return "Missing subscriptionId", 400

    manager = get_subscription_manager()
    try:
        manager.delete(subscription_id, credentials_for_user(current_user))
    except RemoteCallFailed as e:
        flash("Error deleting subscription", "error")
        flash(str(e), "debug")
        return redirect(url_for("main.index"))

    return redirect(url_for("auth.logout"))
