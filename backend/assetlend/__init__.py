# backend/assetlend/__init__.py
from flask import Flask, jsonify

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions (Flask-SQLAlchemy creates engines here, so
    # overrides must already be applied)
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.items import items_bp, stores_bp
    from .routes.transactions import transactions_bp
    from .routes.audit import audit_bp
    from .routes.damages import damages_bp
    from .routes.maintenance import maintenance_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(items_bp)
    app.register_blueprint(stores_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(damages_bp)
    app.register_blueprint(maintenance_bp)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "NotFound", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "MethodNotAllowed", "message": "Method not allowed"}), 405

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
