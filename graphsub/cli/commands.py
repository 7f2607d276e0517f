import click
from flask.cli import with_appcontext
from graphsub.controllers.subscription_controller import get_subscription_manager, utcnow
from graphsub.services.microsoft_graph import RemoteCallFailed
from graphsub.services.notification_decoder import LifecycleNotification


@click.command("list-subscriptions")
@with_appcontext
def list_subscriptions():
    records = get_subscription_manager().store.all()
    if not records:
        click.echo("📭 No stored subscriptions.")
        return

    now = utcnow()
    for r in records:
        state = "expired" if r.expiration_time <= now else "active"
        click.echo(
            f"{r.subscription_id}  owner={r.owner_id}  {r.change_type} {r.resource}  "
            f"expires={r.expiration_time.isoformat()} ({state})"
        )


@click.command("renew-subscription")
@click.argument("subscription_id")
@with_appcontext
def renew_subscription(subscription_id):
    manager = get_subscription_manager()
    record = manager.store.get(subscription_id)
    if record is None:
        click.echo(f"❌ Subscription {subscription_id} not found.")
        return

    manager.renew(LifecycleNotification(
        subscription_id=subscription_id,
        event_type="manual",
        client_state=record.client_state,
    ))
    click.echo(f"✅ Renewal attempted for {subscription_id} (see log for the outcome)")


@click.command("delete-subscription")
@click.argument("subscription_id")
@with_appcontext
def delete_subscription(subscription_id):
    manager = get_subscription_manager()
    record = manager.store.get(subscription_id)
    if record is None:
        click.echo(f"❌ Subscription {subscription_id} not found.")
        return

    credentials = manager.credential_provider.lookup(record.owner_id)
    if credentials is None:
        click.echo(f"❌ No credentials for owner {record.owner_id}; cannot delete remotely.")
        return

    try:
        manager.delete(subscription_id, credentials)
    except RemoteCallFailed as e:
        click.echo(f"⚠️ Remote delete failed, entry kept: {e}")
        return
    click.echo(f"✅ Deleted {subscription_id}")


def register_commands(app):
    app.cli.add_command(list_subscriptions)
    app.cli.add_command(renew_subscription)
    app.cli.add_command(delete_subscription)
