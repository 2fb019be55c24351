#!/usr/bin/env python3
"""
IHARC donations local launcher.

- Local dev:      ./run.py
- Other config:   ./run.py --env testing --port 5050
- Gunicorn:       gunicorn "wsgi:app"
"""

from __future__ import annotations

import argparse
import os

from dotenv import load_dotenv


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the IHARC donations Flask app.")
    p.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", "5000")))
    p.add_argument("--env", choices=["development", "testing", "production"], default=None, help="Runtime environment")
    p.add_argument("--no-reload", action="store_true", help="Disable Werkzeug reloader.")
    return p.parse_args()


def main() -> None:
    load_dotenv(override=False)
    args = parse_args()

    from donations import create_app

    app = create_app(args.env)
    debug = bool(app.config.get("DEBUG"))
    app.run(host=args.host, port=args.port, debug=debug, use_reloader=debug and not args.no_reload)


if __name__ == "__main__":
    main()
