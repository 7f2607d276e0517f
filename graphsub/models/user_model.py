from datetime import datetime
from flask_login import UserMixin
from graphsub.models import db

class User(db.Model, UserMixin):
    __tablename__ = "users"

    id               = db.Column(db.Integer, primary_key=True)
    ms_id            = db.Column(db.String(64), unique=True, nullable=False)
    name             = db.Column(db.String(120))
    email            = db.Column(db.String(120), unique=True, nullable=False)
    job_title        = db.Column(db.String(120))
    # cleared on logout; no tokens means no delegated authority
    access_token     = db.Column(db.Text, nullable=True)
    refresh_token    = db.Column(db.Text, nullable=True)
    token_expires    = db.Column(db.DateTime, nullable=True)
    created_at       = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.email}>"

    @property
    def token_expired(self) -> bool:
        if not self.token_expires:
            return True
        return datetime.utcnow() >= self.token_expires

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_token or self.refresh_token)
