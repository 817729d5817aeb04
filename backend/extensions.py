"""Shared Flask extensions, imported from here to avoid circular imports.

Every instance is created unbound; app.py binds them inside create_app().
"""

from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

socketio = SocketIO()
db = SQLAlchemy()
migrate = Migrate()
