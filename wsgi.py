"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
"""

from hse_app import create_app

app = create_app()
