# backend/app/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.items import items_bp
    from .routes.sales import sales_bp
    from .routes.purchases import purchases_bp
    from .routes.receivables import receivables_bp
    from .routes.containers import containers_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(items_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(receivables_bp)
    app.register_blueprint(containers_bp)

    # Post-commit event delivery (activity log by default)
    from .services.event_sink import install_event_sink
    install_event_sink(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
