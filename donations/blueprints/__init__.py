from __future__ import annotations

from donations.blueprints.admin import admin_bp
from donations.blueprints.donations import donations_bp

__all__ = ["admin_bp", "donations_bp"]
