# backend/pharmamarket/__init__.py
import logging

from flask import Flask

from .config import Config, MarketplaceSettings
from .extensions import db, migrate


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Marketplace components read their settings and event bus from here
    from .services.event_service import EventBus
    app.extensions["marketplace"] = MarketplaceSettings.from_mapping(app.config)
    app.extensions["event_bus"] = EventBus()
    app.extensions["carriers"] = {}

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.wallets import wallets_bp
    from .routes.payouts import payouts_bp
    from .routes.categories import categories_bp
    from .routes.products import products_bp
    from .routes.reports import reports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(payouts_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(reports_bp)

    from .services.errors import MarketplaceError
    from .decorators import error_response

    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(exc):
        return error_response(exc)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
