import logging
from flask import Flask
from dotenv import load_dotenv
from pydantic import ValidationError

import dependencies
from api.error_utils import create_error_response, workflow_error_response
from exceptions import MissionWorkflowError
from extensions import db, limiter
from logging_config import setup_logging

# --- SETUP & CONFIG ---
# Load environment variables for the Flask app process.
load_dotenv()


def create_app(config_overrides=None):
    setup_logging()

    app = Flask(__name__)
    app.config.update(
        SQLALCHEMY_DATABASE_URI=dependencies.DATABASE_URL,
        REDIS_URL=dependencies.REDIS_URL,
        # Rate limiter counters live in the same Redis as the Celery broker.
        RATELIMIT_STORAGE_URI=dependencies.REDIS_URL,
        JWT_SECRET_KEYS=dependencies.JWT_SECRET_KEYS,
    )
    if config_overrides:
        app.config.update(config_overrides)

    # --- Initialize Extensions ---
    db.init_app(app)
    limiter.init_app(app)

    with app.app_context():
        import models  # noqa: F401  registers the tables on db.metadata
        db.create_all()

    # --- Import and Register Blueprints ---
    from api.missions import missions_bp
    from api.credits import credits_bp
    from api.status import status_bp

    app.register_blueprint(missions_bp, url_prefix='/missions', strict_slashes=False)
    app.register_blueprint(credits_bp, url_prefix='/carbon-credits')
    app.register_blueprint(status_bp, url_prefix='/')

    register_error_handlers(app)
    logging.info(f"Mission service started (database: {app.config['SQLALCHEMY_DATABASE_URI'].split('://')[0]})")
    return app


def register_error_handlers(app):
    # --- Global Error Handlers ---
    @app.errorhandler(MissionWorkflowError)
    def handle_workflow_error(e):
        db.session.rollback()
        return workflow_error_response(e)

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return create_error_response(
            "VALIDATION_ERROR",
            details=e.errors(include_url=False, include_context=False),
            status_code=400,
        )

    @app.errorhandler(400)
    def bad_request(e):
        return create_error_response("INVALID_REQUEST", status_code=400)

    @app.errorhandler(404)
    def resource_not_found(e):
        """Handles 404 Not Found errors for a clean API response."""
        return create_error_response("NOT_FOUND", "The requested resource was not found.", status_code=404)

    @app.errorhandler(429)
    def rate_limited(e):
        return create_error_response("RATE_LIMITED", f"Rate limit exceeded: {e.description}", status_code=429)

    @app.errorhandler(500)
    def internal_server_error(e):
        """Handles unexpected 500 Internal Server Errors for a clean API response."""
        logging.critical(f"An unhandled exception occurred: {getattr(e, 'original_exception', e)}", exc_info=True)
        db.session.rollback()
        return create_error_response("SERVER_ERROR", "An unexpected error occurred on the server.", status_code=500)


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=8080)
