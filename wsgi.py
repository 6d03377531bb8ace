"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi seed-portal
"""

import atexit

from portal import close_app_resources, create_app

app = create_app()

atexit.register(close_app_resources, app)
