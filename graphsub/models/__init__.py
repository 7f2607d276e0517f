from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# imported after db so the model modules can bind to it
from graphsub.models.user_model import User  # noqa: E402,F401
from graphsub.models.subscription_model import Subscription  # noqa: E402,F401
