"""
WSGI entry point and Flask-Migrate target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi seed-modules
"""

from lunamanager import create_app

app = create_app()
