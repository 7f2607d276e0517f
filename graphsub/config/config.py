import os
from dotenv import load_dotenv

load_dotenv()

class BaseConfig:
    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    FLASK_APP = os.getenv("FLASK_APP", "app")
    SECRET_KEY = os.getenv("SECRET_KEY", "your-dev-secret")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Database (subscriptions + users)
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///graphsub.db")
    DATABASE_URL = SQLALCHEMY_DATABASE_URI
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Server-side sessions (Flask-Session); set to None for signed cookies
    SESSION_TYPE = os.getenv("SESSION_TYPE", "filesystem")

    # Microsoft OAuth and MSAL settings
    CLIENT_ID = os.getenv("CLIENT_ID")
    CLIENT_SECRET = os.getenv("CLIENT_SECRET")
    MS_TENANT_ID = os.getenv("MS_TENANT_ID", "common")
    AUTHORITY = os.getenv("AUTHORITY", f"https://login.microsoftonline.com/{MS_TENANT_ID}")

    # Server configuration
    SERVER_BASE_URL = os.getenv("SERVER_BASE_URL", "http://localhost:5000")

    # Auth configuration
    REDIRECT_PATH = "/auth/callback"
    REDIRECT_URI = os.getenv("MS_REDIRECT_URI", f"{SERVER_BASE_URL}{REDIRECT_PATH}")
    SCOPE = os.getenv("SCOPE", "openid profile offline_access User.Read")

    # Graph subscription settings
    # NOTIFICATIONS_HOST is either a public base URL or an Event Grid
    # partner topic target ("EventGrid:?azuresubscriptionid=...").
    NOTIFICATIONS_HOST = os.getenv("NOTIFICATIONS_HOST", SERVER_BASE_URL)
    WEBHOOK_PATH = "/listen"
    LIFECYCLE_PATH = "/graphApiSubscriptionLifecycleEvents"
    SUBSCRIPTION_RESOURCE = os.getenv("SUBSCRIPTION_RESOURCE", "me")
    SUBSCRIPTION_CHANGE_TYPE = os.getenv("SUBSCRIPTION_CHANGE_TYPE", "updated")
    SUBSCRIPTION_INITIAL_LIFETIME_SECONDS = int(os.getenv("SUBSCRIPTION_INITIAL_LIFETIME_SECONDS", "3600"))
    SUBSCRIPTION_RENEWAL_MONTHS = int(os.getenv("SUBSCRIPTION_RENEWAL_MONTHS", "3"))
    # Graph caps user resources at 41760 minutes (29 days)
    SUBSCRIPTION_MAX_LIFETIME_MINUTES = int(os.getenv("SUBSCRIPTION_MAX_LIFETIME_MINUTES", "41760"))
    SUBSCRIPTION_TRACK_RENEWED_EXPIRY = os.getenv("SUBSCRIPTION_TRACK_RENEWED_EXPIRY", "false").lower() == "true"
    VALIDATE_CLIENT_STATE = os.getenv("VALIDATE_CLIENT_STATE", "false").lower() == "true"
    LIFECYCLE_RENEW_ASYNC = os.getenv("LIFECYCLE_RENEW_ASYNC", "true").lower() == "true"
    SUBSCRIPTION_STORE = os.getenv("SUBSCRIPTION_STORE", "sql")

    GRAPH_TIMEOUT = int(os.getenv("GRAPH_TIMEOUT", "30"))
