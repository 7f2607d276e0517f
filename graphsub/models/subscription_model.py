# graphsub/models/subscription_model.py

from datetime import datetime
from graphsub.models import db

class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id            = db.Column(db.Integer, primary_key=True)
    sub_id        = db.Column(db.String(128), unique=True, nullable=False)
    owner_id      = db.Column(db.String(64), nullable=False, index=True)
    resource      = db.Column(db.String(512), nullable=False)
    change_type   = db.Column(db.String(64), nullable=False)
    client_state  = db.Column(db.String(128), nullable=False)
    expires_at    = db.Column(db.DateTime, nullable=False)
    created_at    = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Subscription {self.sub_id} owner={self.owner_id}>"
