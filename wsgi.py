"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi check-version-integrity
    gunicorn wsgi:app
"""

from decision_trail import create_app

app = create_app()
