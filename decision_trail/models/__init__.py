"""
Decision Trail
Shared Flask-SQLAlchemy handle and timestamp helpers.

All model modules import ``db`` from here; ``create_app`` binds it to the app.
"""

from datetime import UTC, datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def aware_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def iso_utc(value):
    """ISO string for a date or datetime; datetimes always carry an offset."""
    if value is None:
        return None
    return aware_utc(value).isoformat()
