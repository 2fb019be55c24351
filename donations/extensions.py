import atexit
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from flask_cors import CORS
from flask_mail import Mail, Message
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from jinja2 import Environment, FileSystemLoader, select_autoescape

log = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Core singletons
# ─────────────────────────────────────────────────────────────
db = SQLAlchemy()
migrate = Migrate()
mail = Mail()
cors = CORS()


# ─────────────────────────────────────────────────────────────
# Background tasks + clean shutdown
# ─────────────────────────────────────────────────────────────
_BG_MAX_WORKERS = int(os.getenv("BG_MAX_WORKERS", "4"))
_EXECUTOR = ThreadPoolExecutor(max_workers=_BG_MAX_WORKERS)


def run_bg(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    return _EXECUTOR.submit(func, *args, **kwargs)


@atexit.register
def _shutdown_executor() -> None:
    _EXECUTOR.shutdown(wait=False, cancel_futures=True)


# ─────────────────────────────────────────────────────────────
# Email helper
# ─────────────────────────────────────────────────────────────
_MAIL_ENV: Optional[Environment] = None


def get_mail_env() -> Environment:
    """
    Jinja environment for email templates in donations/templates/emails.
    """
    global _MAIL_ENV
    if _MAIL_ENV is None:
        templates_dir = Path(__file__).resolve().parent / "templates" / "emails"
        _MAIL_ENV = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )
    return _MAIL_ENV


def _deliver(app: Any, msg: Message) -> bool:
    with app.app_context():
        try:
            mail.send(msg)
            return True
        except Exception as e:
            app.logger.error("Email send failed (subject=%r): %s", msg.subject, e, exc_info=True)
            return False


def send_email(
    app: Any,
    subject: str,
    recipients: List[str],
    *,
    html_template: Optional[str] = None,
    text_template: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Render and send one email. Best-effort: delivery failures are logged and
    reported as False, never raised.

    With MAIL_ASYNC on, delivery happens on the background pool and the call
    returns True once the message is queued.
    """
    ctx = context or {}
    env = get_mail_env()
    try:
        html = env.get_template(html_template).render(**ctx) if html_template else None
        body = env.get_template(text_template).render(**ctx) if text_template else None
        msg = Message(
            subject=subject,
            recipients=recipients,
            sender=app.config.get("DONATIONS_EMAIL_FROM") or app.config.get("MAIL_DEFAULT_SENDER"),
            html=html,
            body=body,
        )
    except Exception as e:
        app.logger.error("Email render failed (subject=%r): %s", subject, e, exc_info=True)
        return False

    if app.config.get("MAIL_ASYNC", True):
        run_bg(_deliver, app, msg)
        return True
    return _deliver(app, msg)


__all__ = [
    "db",
    "migrate",
    "mail",
    "cors",
    "run_bg",
    "get_mail_env",
    "send_email",
]
