# backend/partsdesk/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate, notifications


def create_app(config_class=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    notifications.configure(queue_size=app.config["NOTIFICATION_QUEUE_SIZE"])
    notifications.clear_sinks()
    webhook_url = app.config.get("NOTIFICATION_WEBHOOK_URL")
    if webhook_url:
        from .services.notification_service import WebhookNotificationSink
        notifications.add_sink(
            WebhookNotificationSink(
                webhook_url,
                timeout=app.config["NOTIFICATION_WEBHOOK_TIMEOUT_SECONDS"],
            )
        )

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.reservations import reservations_bp
    from .routes.settings import settings_bp
    from .routes.inventory import inventory_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(reservations_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(notifications_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = ", ".join([
                "Content-Type",
                app.config["IDENTITY_USER_HEADER"],
                app.config["IDENTITY_ROLE_HEADER"],
                app.config["IDENTITY_STATUS_HEADER"],
                app.config["IDENTITY_TIER_HEADER"],
            ])
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def start_sweeper(app: Flask):
    """
    Start the background expiration sweeper if RESERVATION_SWEEPER_ENABLED.

    Called by the server entry point (wsgi.py), not by create_app, so CLI runs
    such as `flask db upgrade` never spawn a ticker.
    """
    if not app.config.get("RESERVATION_SWEEPER_ENABLED"):
        return None
    scheduler = app.extensions.get("reservation_sweeper")
    if scheduler is None:
        from .scheduler import ExpirationScheduler
        scheduler = ExpirationScheduler(app, app.config["RESERVATION_SWEEP_INTERVAL_SECONDS"])
        app.extensions["reservation_sweeper"] = scheduler
    scheduler.start()
    return scheduler
