# backend/liquorpos/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db


def create_app(test_config: dict | None = None, session_store=None) -> Flask:
    """
    Build the application.

    test_config overrides Config before extensions are initialized.
    session_store is the SessionStore request handlers resolve bearer
    tokens against; an InMemorySessionStore is created when omitted.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # app.logger is the "liquorpos" logger; service module loggers are its children
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)

    # Import models so the metadata is complete before migrations run
    from . import models  # noqa: F401
    from .migrations import run_migrations
    from .services.concurrency import install_sqlite_write_serialization
    from .services.ledger_service import LedgerPolicy
    from .services.session_service import InMemorySessionStore

    # Fail fast on a misconfigured ledger policy
    LedgerPolicy.from_config(app.config)

    app.extensions["session_store"] = session_store if session_store is not None else InMemorySessionStore()

    with app.app_context():
        install_sqlite_write_serialization(
            db.engine, busy_timeout=app.config["SQLITE_BUSY_TIMEOUT"]
        )
        if app.config["AUTO_MIGRATE"]:
            run_migrations(db.engine)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.inventory import inventory_bp
    from .routes.transactions import transactions_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(transactions_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
