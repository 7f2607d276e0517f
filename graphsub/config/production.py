from .config import BaseConfig


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = "INFO"
    SESSION_COOKIE_SECURE = True
    # lifecycle events must survive restarts
    SUBSCRIPTION_STORE = "sql"
