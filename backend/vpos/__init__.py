# backend/vpos/__init__.py
import os

from flask import Flask, current_app
from sqlalchemy.orm import sessionmaker

from .config import Config
from .extensions import db, migrate
from .logging_config import configure_logging

AUDIT_SINK_EXTENSION = "vpos_audit_sink"


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        # Must land before db.init_app reads SQLALCHEMY_* keys
        app.config.update(config_overrides)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.checkout import checkout_bp
    from .routes.age_verification import age_verification_bp
    from .routes.customers import customers_bp
    from .routes.products import products_bp
    from .routes.audit import audit_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(age_verification_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(audit_bp)

    app.extensions[AUDIT_SINK_EXTENSION] = _build_audit_sink(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def _build_audit_sink(app: Flask):
    """
    Audit sink for this app: HTTP collector if configured, otherwise the
    local audit table through its own sessions. Either way backed by the
    on-disk spool.
    """
    from .services.audit_service import (
        AuditSink,
        AuditSpool,
        DatabaseAuditTransport,
        HttpAuditTransport,
    )

    spool_path = app.config.get("AUDIT_SPOOL_PATH") or os.path.join(app.instance_path, "audit_spool.sqlite3")
    spool = AuditSpool(spool_path)

    collector_url = app.config.get("AUDIT_COLLECTOR_URL")
    if collector_url:
        transport = HttpAuditTransport(collector_url, timeout=app.config["AUDIT_HTTP_TIMEOUT_SECONDS"])
    else:
        with app.app_context():
            engine = db.engine
        transport = DatabaseAuditTransport(sessionmaker(bind=engine))

    sink = AuditSink(transport, spool, retry_interval=app.config["AUDIT_RETRY_INTERVAL_SECONDS"])
    if app.config.get("AUDIT_WORKER_ENABLED") and not app.config.get("TESTING"):
        sink.start()
    return sink


def get_audit_sink():
    """The audit sink of the current app."""
    return current_app.extensions[AUDIT_SINK_EXTENSION]
