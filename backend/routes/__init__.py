"""Routes package: Blueprint registration for all API endpoints.

Each blueprint module defines a `bp` variable. This module provides
register_blueprints() which imports and registers them.
"""


def register_blueprints(app):
    """Import and register all API blueprints on the Flask app."""
    from routes.maintenance import bp as maintenance_bp
    from routes.system import bp as system_bp

    for blueprint in [
        maintenance_bp,
        system_bp,
    ]:
        app.register_blueprint(blueprint)
