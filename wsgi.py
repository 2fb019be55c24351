import os

# production unless told otherwise
os.environ.setdefault("APP_ENV", "production")

from donations import create_app  # noqa: E402

app = create_app()
