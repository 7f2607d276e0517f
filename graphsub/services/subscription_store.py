# graphsub/services/subscription_store.py

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from graphsub.models import db
from graphsub.models.subscription_model import Subscription


@dataclass(frozen=True)
class SubscriptionRecord:
    subscription_id: str
    owner_id: str
    resource: str
    change_type: str
    expiration_time: datetime
    client_state: str

    def with_expiration(self, expiration_time: datetime) -> "SubscriptionRecord":
        return replace(self, expiration_time=expiration_time)


class SubscriptionStore(ABC):
    """
    Keyed storage for subscription records.

    Implementations must make every operation atomic per subscription id:
    a get sees a whole record or None, never a half-written one.
    """

    @abstractmethod
    def put(self, record: SubscriptionRecord) -> None:
        ...

    @abstractmethod
    def get(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        ...

    @abstractmethod
    def delete(self, subscription_id: str) -> None:
        ...

    @abstractmethod
    def all(self) -> List[SubscriptionRecord]:
        ...

    @abstractmethod
    def extend_expiration(self, subscription_id: str, expiration_time: datetime) -> bool:
        """
        Move the stored expiry forward to ``expiration_time``.

        Only an existing entry with an earlier expiry is changed; a missing
        entry is never recreated. Returns whether anything was written.
        """


class InMemorySubscriptionStore(SubscriptionStore):

    def __init__(self):
        self._records: Dict[str, SubscriptionRecord] = {}
        self._lock = threading.Lock()

    def put(self, record):
        with self._lock:
            self._records[record.subscription_id] = record

    def get(self, subscription_id):
        with self._lock:
            return self._records.get(subscription_id)

    def delete(self, subscription_id):
        with self._lock:
            self._records.pop(subscription_id, None)

    def all(self):
        with self._lock:
            return list(self._records.values())

    def extend_expiration(self, subscription_id, expiration_time):
        with self._lock:
            current = self._records.get(subscription_id)
            if current is None or expiration_time <= current.expiration_time:
                return False
            self._records[subscription_id] = current.with_expiration(expiration_time)
            return True


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlSubscriptionStore(SubscriptionStore):
    """Backed by the ``subscriptions`` table; one transaction per call."""

    @staticmethod
    def _to_record(row: Subscription) -> SubscriptionRecord:
        return SubscriptionRecord(
            subscription_id=row.sub_id,
            owner_id=row.owner_id,
            resource=row.resource,
            change_type=row.change_type,
            expiration_time=_to_utc(row.expires_at),
            client_state=row.client_state,
        )

    def put(self, record):
        # the column holds naive UTC
        expires_at = _to_utc(record.expiration_time).replace(tzinfo=None)
        try:
            row = Subscription.query.filter_by(sub_id=record.subscription_id).first()
            if row is None:
                row = Subscription(sub_id=record.subscription_id)
                db.session.add(row)
            row.owner_id = record.owner_id
            row.resource = record.resource
            row.change_type = record.change_type
            row.client_state = record.client_state
            row.expires_at = expires_at
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.error("❌ Failed to store subscription %s", record.subscription_id)
            raise

    def get(self, subscription_id):
        row = Subscription.query.filter_by(sub_id=subscription_id).first()
        return self._to_record(row) if row else None

    def delete(self, subscription_id):
        try:
            Subscription.query.filter_by(sub_id=subscription_id).delete()
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.error("❌ Failed to delete subscription %s", subscription_id)
            raise

    def all(self):
        rows = Subscription.query.order_by(Subscription.expires_at).all()
        return [self._to_record(r) for r in rows]

    def extend_expiration(self, subscription_id, expiration_time):
        expires_at = _to_utc(expiration_time).replace(tzinfo=None)
        try:
            # single conditional UPDATE: a deleted row stays deleted
            updated = Subscription.query.filter(
                Subscription.sub_id == subscription_id,
                Subscription.expires_at < expires_at,
            ).update({Subscription.expires_at: expires_at}, synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.error("❌ Failed to extend subscription %s", subscription_id)
            raise
        return updated > 0


def build_store(kind: str) -> SubscriptionStore:
    if kind == "memory":
        return InMemorySubscriptionStore()
    if kind == "sql":
        return SqlSubscriptionStore()
    raise ValueError(f"Unknown SUBSCRIPTION_STORE: {kind!r}")
