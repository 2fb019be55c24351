# donations/config/config.py
# Env-first configuration for the donations service.

from __future__ import annotations

import os
from typing import Optional
from urllib.parse import urlsplit


# ----------------------------
# Env helpers
# ----------------------------
_TRUTHY = {"1", "true", "yes", "on", "y"}
_FALSY = {"0", "false", "no", "off", "n"}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    return default


def _int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(str(v).strip())
    except ValueError:
        return default


def site_origin(raw: Optional[str]) -> str:
    """Reduce a configured site URL to scheme://host[:port]; empty when unusable."""
    s = (raw or "").strip()
    if not s:
        return ""
    parts = urlsplit(s)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def _database_uri(default: Optional[str]) -> Optional[str]:
    uri = _env("DATABASE_URL") or _env("SQLALCHEMY_DATABASE_URI") or default
    # Heroku-style URLs are still handed out as postgres://
    if uri and uri.startswith("postgres://"):
        uri = "postgresql://" + uri[len("postgres://"):]
    return uri


# ----------------------------
# Config classes
# ----------------------------
class BaseConfig:
    """
    Env-first config:
    - every deploy-specific setting comes from the environment
    - Stripe keys are NOT here; they live in the donation_settings row
    """

    ENV = (_env("APP_ENV") or _env("ENV") or _env("FLASK_ENV") or "base").strip().lower()

    DEBUG = _bool("FLASK_DEBUG", False)
    TESTING = False

    SECRET_KEY = _env("SECRET_KEY")
    LOG_LEVEL = _env("LOG_LEVEL", "INFO")

    # Public site that hosts the donate pages; used for redirects, emails, CORS
    SITE_URL = site_origin(_env("SITE_URL"))

    TRUST_PROXY = _bool("TRUST_PROXY", False)

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = _database_uri(None)
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Mail
    MAIL_SERVER = _env("MAIL_SERVER", "localhost")
    MAIL_PORT = _int("MAIL_PORT", 25)
    MAIL_USE_TLS = _bool("MAIL_USE_TLS", False)
    MAIL_USE_SSL = _bool("MAIL_USE_SSL", False)
    MAIL_USERNAME = _env("MAIL_USERNAME")
    MAIL_PASSWORD = _env("MAIL_PASSWORD")
    DONATIONS_EMAIL_FROM = _env("DONATIONS_EMAIL_FROM", "donations@iharc.ca")
    MAIL_DEFAULT_SENDER = DONATIONS_EMAIL_FROM
    MAIL_ASYNC = _bool("MAIL_ASYNC", True)

    # Admin bearer auth (static tokens and/or JWT)
    ADMIN_API_TOKENS = _env("ADMIN_API_TOKENS", "")
    ADMIN_JWT_SECRET = _env("ADMIN_JWT_SECRET", "")
    ADMIN_JWT_ALG = _env("ADMIN_JWT_ALG", "HS256")
    ADMIN_JWT_AUDIENCE = _env("ADMIN_JWT_AUDIENCE")

    # Checkout limits (minor units)
    DONATIONS_DEFAULT_CURRENCY = "CAD"
    DONATIONS_MAX_LINES = 25
    DONATIONS_MAX_QUANTITY = 25
    DONATIONS_CUSTOM_MIN_CENTS = 100
    DONATIONS_CUSTOM_MAX_CENTS = 500_000
    DONATIONS_MONTHLY_MIN_CENTS = 500
    DONATIONS_MONTHLY_MAX_CENTS = 500_000

    # Rate limits: (limit, window seconds, cooldown seconds)
    RATE_LIMIT_CHECKOUT = (_int("RATE_LIMIT_CHECKOUT", 10), 600, 2)
    RATE_LIMIT_SUBSCRIPTION = (_int("RATE_LIMIT_SUBSCRIPTION", 6), 600, 5)
    RATE_LIMIT_MANAGE_LINK_IP = (6, 600, 2)
    RATE_LIMIT_MANAGE_LINK_EMAIL = (3, 1800, 30)

    MANAGE_TOKEN_TTL_MINUTES = _int("MANAGE_TOKEN_TTL_MINUTES", 30)

    @classmethod
    def init_app(cls, app) -> None:
        """
        Boot hardening hook, called by create_app() after from_object().
        """
        uri = str(app.config.get("SQLALCHEMY_DATABASE_URI") or "")

        if uri.startswith("sqlite:"):
            opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
            connect_args = dict(opts.get("connect_args") or {})
            connect_args.setdefault("check_same_thread", False)
            opts["connect_args"] = connect_args
            app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True

    SECRET_KEY = _env("SECRET_KEY", "dev-change-me")
    SITE_URL = site_origin(_env("SITE_URL", "https://iharc.ca"))
    SQLALCHEMY_DATABASE_URI = _database_uri("sqlite:///donations-dev.db")
    MAIL_SUPPRESS_SEND = _bool("MAIL_SUPPRESS_SEND", True)


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True

    SECRET_KEY = "testing"
    SITE_URL = "https://iharc.test"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}

    MAIL_SUPPRESS_SEND = True
    MAIL_ASYNC = False
    DONATIONS_EMAIL_FROM = "donations@iharc.test"
    MAIL_DEFAULT_SENDER = DONATIONS_EMAIL_FROM

    ADMIN_API_TOKENS = "admin-test-token"
    ADMIN_JWT_SECRET = "jwt-test-secret"
    ADMIN_JWT_AUDIENCE = None

    # cooldowns off so back-to-back test requests are not throttled
    RATE_LIMIT_CHECKOUT = (10, 600, 0)
    RATE_LIMIT_SUBSCRIPTION = (6, 600, 0)
    RATE_LIMIT_MANAGE_LINK_IP = (6, 600, 0)
    RATE_LIMIT_MANAGE_LINK_EMAIL = (3, 1800, 0)


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False
    TRUST_PROXY = _bool("TRUST_PROXY", True)

    @classmethod
    def init_app(cls, app) -> None:
        super().init_app(app)

        # ---- fail fast on missing deploy settings ----
        if not app.config.get("SECRET_KEY") or app.config.get("SECRET_KEY") == "dev-change-me":
            raise RuntimeError("SECRET_KEY must be set to a strong random value in production.")

        if not app.config.get("SITE_URL"):
            raise RuntimeError("SITE_URL must be set to the public site origin (https://...).")

        if not app.config.get("SQLALCHEMY_DATABASE_URI"):
            raise RuntimeError("DATABASE_URL must be set in production.")

        if "@" not in str(app.config.get("DONATIONS_EMAIL_FROM") or ""):
            raise RuntimeError("DONATIONS_EMAIL_FROM must be a plain email address.")
