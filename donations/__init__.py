# donations/__init__.py
# IHARC donations service: Flask app factory
# - JSON-only endpoints for checkout, Stripe webhooks, donor self-service, admin ops
# - proxy-correct client IPs (rate limiting keys off them)
# - one JSON error shape: {"error": message, ...extra}

from __future__ import annotations

import logging
import os
import time
from typing import Any, List, Optional, Type, Union
from uuid import uuid4

import sentry_sdk
from dotenv import load_dotenv
from flask import Flask, g, request
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sqlalchemy import text
from werkzeug.exceptions import HTTPException, MethodNotAllowed
from werkzeug.middleware.proxy_fix import ProxyFix

# never override real env vars
load_dotenv(override=False)

from donations.config import CONFIG_BY_NAME, DevelopmentConfig, ProductionConfig  # noqa: E402
from donations.errors import DonationsError  # noqa: E402
from donations.extensions import cors, db, mail, migrate  # noqa: E402
from donations.helpers import json_error, json_response  # noqa: E402

ConfigLike = Union[str, Type[Any]]

__version__ = "1.0.0"


# -----------------------------------------------------------------------------
# Config resolution
# -----------------------------------------------------------------------------
def _resolve_config(target: Optional[ConfigLike]) -> Type[Any]:
    """
    Pick the config class.
    - explicit class, or a name from CONFIG_BY_NAME ("testing", "production", ...)
    - else FLASK_CONFIG / APP_ENV
    - else DevelopmentConfig
    """
    if target is None:
        target = (os.getenv("FLASK_CONFIG") or os.getenv("APP_ENV") or "").strip().lower() or None
    if target is None:
        return DevelopmentConfig
    if isinstance(target, str):
        key = {"prod": "production", "dev": "development", "test": "testing"}.get(target.lower(), target.lower())
        if key not in CONFIG_BY_NAME:
            raise RuntimeError(f"Unknown config '{target}' (expected one of {', '.join(CONFIG_BY_NAME)})")
        return CONFIG_BY_NAME[key]
    return target


# -----------------------------------------------------------------------------
# Logging with request_id
# -----------------------------------------------------------------------------
class _RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            record.request_id = getattr(g, "request_id", "-")
        except RuntimeError:
            # outside an app/request context
            record.request_id = "-"
        return True


def _configure_logging(app: Flask) -> None:
    fmt = "%(asctime)s [%(levelname)s] %(name)s [rid=%(request_id)s]: %(message)s"
    root = logging.getLogger()

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(_RequestIDFilter())
        root.addHandler(handler)
    else:
        for h in root.handlers:
            if not any(isinstance(f, _RequestIDFilter) for f in h.filters):
                h.addFilter(_RequestIDFilter())

    root.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    logging.getLogger("werkzeug").setLevel(str(app.config.get("WERKZEUG_LOG_LEVEL", "WARNING")).upper())
    app.logger.info("Loaded config: ENV=%s DEBUG=%s", app.config.get("ENV", "?"), app.debug)


# -----------------------------------------------------------------------------
# Integrations
# -----------------------------------------------------------------------------
def _apply_proxyfix(app: Flask) -> None:
    if not app.config.get("TRUST_PROXY"):
        return
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)
    app.logger.info("ProxyFix enabled (trusting X-Forwarded-* headers).")


def _init_sentry(app: Flask) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        return
    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FlaskIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
        send_default_pii=False,
        environment=app.config.get("ENV", "development"),
        release=os.getenv("GIT_COMMIT"),
    )
    app.logger.info("Sentry initialized")


def cors_origins(site_url: str) -> List[str]:
    """The site origin, its www/bare twin, and the local dev servers."""
    origins: List[str] = []
    if site_url:
        scheme, _, host = site_url.partition("://")
        twin = host[4:] if host.startswith("www.") else f"www.{host}"
        origins += [site_url, f"{scheme}://{twin}"]
    origins += ["http://localhost:3000", "http://127.0.0.1:3000"]
    return origins


def _init_cors(app: Flask) -> None:
    cors.init_app(
        app,
        resources={r"/donations_*": {"origins": cors_origins(app.config.get("SITE_URL") or "")}},
        expose_headers=["X-Request-ID"],
        allow_headers=["authorization", "content-type", "stripe-signature", "x-client-info", "apikey"],
        methods=["POST", "OPTIONS"],
        max_age=86400,
    )


def _maybe_create_sqlite_tables(app: Flask) -> None:
    uri = (app.config.get("SQLALCHEMY_DATABASE_URI") or "").strip()
    if not uri.startswith("sqlite") or not app.config.get("AUTO_CREATE_SQLITE", True):
        return
    with app.app_context():
        import donations.models  # noqa: F401

        db.create_all()


# -----------------------------------------------------------------------------
# Request lifecycle + errors
# -----------------------------------------------------------------------------
def _register_request_lifecycle(app: Flask) -> None:
    @app.before_request
    def _bootstrap_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex
        g._start_ts = time.perf_counter()

    @app.after_request
    def _attach_request_headers(resp):
        resp.headers["X-Request-ID"] = getattr(g, "request_id", "-")
        resp.headers.setdefault("Cache-Control", "no-store")
        start = getattr(g, "_start_ts", None)
        if start:
            resp.headers["X-Response-Time-ms"] = str(int((time.perf_counter() - start) * 1000))
        return resp


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(DonationsError)
    def _donations_err(err: DonationsError):
        if err.status >= 500:
            app.logger.error("%s: %s", type(err).__name__, err.message)
        else:
            app.logger.info("%s (%s): %s", type(err).__name__, err.status, err.message)
        return json_response(err.to_dict(), err.status)

    @app.errorhandler(MethodNotAllowed)
    def _method_not_allowed(err: MethodNotAllowed):
        resp = json_error("Method not allowed", 405)
        allowed = err.valid_methods or []
        if allowed:
            resp.headers["Allow"] = ", ".join(allowed)
        return resp

    @app.errorhandler(HTTPException)
    def _http_err(err: HTTPException):
        return json_error(err.description or err.name, err.code or 500)

    @app.errorhandler(Exception)
    def _uncaught(err: Exception):
        app.logger.exception("Unhandled error")
        return json_error("Internal Server Error", 500)


# -----------------------------------------------------------------------------
# Health endpoints
# -----------------------------------------------------------------------------
def _register_health_endpoints(app: Flask) -> None:
    from donations.services.stripe_config import load_stripe_config

    @app.get("/healthz")
    def _healthz():
        db_ok = True
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            app.logger.exception("healthz: database ping failed")
            db.session.rollback()
            db_ok = False

        stripe_mode = None
        if db_ok:
            try:
                stripe_mode = load_stripe_config().mode
            except DonationsError:
                stripe_mode = None

        return json_response(
            {
                "status": "ok" if db_ok else "degraded",
                "database": db_ok,
                "stripeConfigured": stripe_mode is not None,
                "stripeMode": stripe_mode,
                "request_id": getattr(g, "request_id", "-"),
            }
        )

    @app.get("/version")
    def _version():
        return json_response({"version": os.getenv("GIT_COMMIT", __version__), "env": app.config.get("ENV")})


# -----------------------------------------------------------------------------
# App Factory
# -----------------------------------------------------------------------------
def create_app(config_class: Optional[ConfigLike] = None) -> Flask:
    app = Flask(__name__, static_folder=None)

    cfg = _resolve_config(config_class)
    app.config.from_object(cfg)
    app.config.setdefault("JSON_SORT_KEYS", False)
    app.config.setdefault("AUTO_CREATE_SQLITE", True)
    app.url_map.strict_slashes = False

    # fail fast on missing deploy settings (ProductionConfig raises)
    cfg.init_app(app)

    _apply_proxyfix(app)
    _configure_logging(app)
    _init_sentry(app)
    _init_cors(app)

    db.init_app(app)
    migrate.init_app(app, db, compare_type=True, render_as_batch=True)
    mail.init_app(app)
    _maybe_create_sqlite_tables(app)

    _register_request_lifecycle(app)
    _register_error_handlers(app)

    from donations.blueprints import admin_bp, donations_bp

    app.register_blueprint(donations_bp)
    app.register_blueprint(admin_bp)
    _register_health_endpoints(app)

    from donations.cli import donations_cli

    app.cli.add_command(donations_cli)

    if cfg is ProductionConfig and app.config.get("DEBUG"):
        app.config["DEBUG"] = False

    return app


__all__ = ["create_app", "cors_origins", "__version__"]
