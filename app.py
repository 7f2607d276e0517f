import logging
import os
from flask import Flask
from flask_session import Session
from dotenv import load_dotenv
from flask_login import LoginManager
from graphsub.models import db
from graphsub.models.user_model import User
from graphsub.config.dev_config import DevConfig
from graphsub.config.production import ProductionConfig
from graphsub.controllers.subscription_controller import init_subscription_manager
from graphsub.cli.commands import register_commands
from graphsub.routes.auth import auth_bp
from graphsub.routes.main import main_bp
from graphsub.routes.subscriptions import subscriptions_bp
from graphsub.routes.lifecycle import lifecycle_bp
from graphsub.routes.webhook import webhook_bp

# Load environment variables early
load_dotenv()

login_manager = LoginManager()
login_manager.login_view = "auth.login"


@login_manager.user_loader
def load_user(user_id):
    # Flask-Login uses this to reload the user from the session
    return db.session.get(User, int(user_id))


def register_blueprints(app):
    """Attach all route blueprints."""
    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)
    app.register_blueprint(subscriptions_bp)
    app.register_blueprint(lifecycle_bp)
    app.register_blueprint(webhook_bp)
    register_commands(app)


CONFIGS = {
    "development": DevConfig,
    "production": ProductionConfig,
}


def config_from_env():
    name = os.getenv("FLASK_CONFIG", "development").lower()
    if name not in CONFIGS:
        raise ValueError(f"Unknown FLASK_CONFIG: {name!r}")
    return CONFIGS[name]


def create_app(config=None, **manager_overrides):
    app = Flask(__name__)
    app.config.from_object(config or config_from_env())
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    if app.config.get("SESSION_TYPE"):
        Session(app)

    db.init_app(app)
    login_manager.init_app(app)

    with app.app_context():
        db.create_all()

    init_subscription_manager(app, **manager_overrides)
    register_blueprints(app)
    return app


if __name__ == "__main__":
    create_app().run(host="localhost", port=5000, debug=True, threaded=True, use_reloader=True)
