"""
Decoding of Graph lifecycle notifications.

Lifecycle events reach us either as CloudEvents delivered by an Event Grid
partner topic (structured JSON with the Graph notification as ``data`` or
``data_base64``) or as Graph's own webhook batch ``{"value": [...]}``.
Either way the result is a fully populated ``LifecycleNotification`` or a
``MalformedNotification`` error.
"""

import base64
import json
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from graphsub.services.microsoft_graph import parse_graph_datetime


class MalformedNotification(ValueError):
    """The envelope or its payload is not a Graph change notification."""
    pass


REAUTHORIZATION_REQUIRED = "reauthorizationRequired"
SUBSCRIPTION_REMOVED = "subscriptionRemoved"
MISSED = "missed"


@dataclass(frozen=True)
class LifecycleNotification:
    subscription_id: str
    event_type: str
    lifecycle_event: Optional[str] = None
    event_id: Optional[str] = None
    client_state: Optional[str] = None
    tenant_id: Optional[str] = None
    resource: Optional[str] = None
    subscription_expiration: Optional[datetime] = None


def _payload_bytes(envelope: dict) -> bytes:
    if envelope.get("data_base64") is not None:
        try:
            return base64.b64decode(envelope["data_base64"], validate=True)
        except (ValueError, TypeError) as e:
            raise MalformedNotification("data_base64 is not valid base64") from e

    data = envelope.get("data")
    if data is None:
        raise MalformedNotification("Envelope carries no data")
    if isinstance(data, bytes):
        return data
    if isinstance(data, str):
        return data.encode("utf-8")
    return json.dumps(data).encode("utf-8")


def _parse_change_notification(raw: bytes, event_type: str, event_id=None) -> LifecycleNotification:
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedNotification("Payload is not JSON") from e
    return _from_payload(payload, event_type, event_id)


def _from_payload(payload, event_type, event_id=None) -> LifecycleNotification:
    if not isinstance(payload, dict):
        raise MalformedNotification("Payload is not a JSON object")

    subscription_id = payload.get("subscriptionId")
    if not isinstance(subscription_id, str) or not subscription_id:
        raise MalformedNotification("Payload has no subscriptionId")

    try:
        expiration = parse_graph_datetime(payload.get("subscriptionExpirationDateTime"))
    except (TypeError, ValueError) as e:
        raise MalformedNotification("Bad subscriptionExpirationDateTime") from e

    return LifecycleNotification(
        subscription_id=subscription_id,
        event_type=event_type,
        lifecycle_event=payload.get("lifecycleEvent"),
        event_id=event_id,
        client_state=payload.get("clientState"),
        tenant_id=payload.get("tenantId"),
        resource=payload.get("resource"),
        subscription_expiration=expiration,
    )


def decode_envelope(envelope) -> LifecycleNotification:
    """Decode one CloudEvents envelope; the type tag comes from the envelope."""
    if not isinstance(envelope, dict):
        raise MalformedNotification("Envelope is not a JSON object")
    event_type = envelope.get("type")
    if not event_type:
        raise MalformedNotification("Envelope has no type")
    raw = _payload_bytes(envelope)
    return _parse_change_notification(raw, event_type, envelope.get("id"))


def decode_batch(body) -> List[LifecycleNotification]:
    """
    Decode an inbound request body.

    Accepts a single CloudEvent, a CloudEvents batch (JSON array) or Graph's
    direct webhook form ``{"value": [...]}``. A malformed item fails the
    whole batch.
    """
    if isinstance(body, list):
        return [decode_envelope(e) for e in body]
    if isinstance(body, dict) and isinstance(body.get("value"), list):
        notifications = []
        for item in body["value"]:
            tag = item.get("lifecycleEvent") if isinstance(item, dict) else None
            notifications.append(_from_payload(item, tag or "changeNotification"))
        return notifications
    return [decode_envelope(body)]
