"""
LunaManager
Shared SQLAlchemy handle.

Every model module imports ``db`` from here; the app factory binds it
with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
