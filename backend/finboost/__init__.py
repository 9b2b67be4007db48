# backend/finboost/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # One PayPal client per app; holds the OAuth token between requests
    from .services.paypal_client import PayPalPayoutsClient, PayPalSettings
    app.extensions["paypal_client"] = PayPalPayoutsClient(PayPalSettings.from_config(app.config))

    # Register blueprints
    from .routes.system import system_bp
    from .routes.disbursements import disbursements_bp
    from .routes.payout_batches import payout_batches_bp
    from .routes.winners import winners_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(disbursements_bp)
    app.register_blueprint(payout_batches_bp)
    app.register_blueprint(winners_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
