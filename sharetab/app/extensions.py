"""
extensions.py — Shared Flask extension objects.

Both are created unbound and attached in create_app() via init_app(), so
models, services and tests import them without importing the app:

    from sharetab.app.extensions import db, ma
"""

from flask_sqlalchemy import SQLAlchemy
from flask_marshmallow import Marshmallow

db = SQLAlchemy()

# Request schemas subclass marshmallow.Schema rather than ma.Schema so the
# unit tests can load them without an application context.
ma = Marshmallow()
