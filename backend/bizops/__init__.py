# backend/bizops/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Applied before extensions bind so the engine uses the overridden URI
        app.config.update(test_config)

    # Service modules log under the package namespace
    logging.getLogger("bizops").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.tax import tax_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(tax_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
