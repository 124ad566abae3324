"""Flask application factory."""

import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from kpi.cache import TimedCache, CachedJiraRepository
from kpi.config import Settings
from kpi.errors import InvalidInputError, SourceUnavailableError
from kpi.jira_client import JiraClient
from kpi.repository import JiraRepository
from kpi.service import KpiService

BOARDS_CONFIG_PATH = os.path.join(
    os.path.dirname(__file__), "..", "config", "boards-config.json"
)


def build_service(settings):
    """Wire client, repository, cache and service together."""
    client = JiraClient(settings.jira_url, settings.jira_email, settings.jira_token)
    cache = TimedCache(sweep_interval=settings.cache_sweep_seconds)
    repository = CachedJiraRepository(JiraRepository(client, settings), cache)
    return KpiService(repository, settings, cache)


def register_error_handlers(app):
    """Map engine errors to JSON error responses."""

    @app.errorhandler(InvalidInputError)
    def invalid_input(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(SourceUnavailableError)
    def source_unavailable(e):
        app.logger.error(f"Jira unavailable: {e}")
        return jsonify({"error": str(e)}), 502

    @app.errorhandler(Exception)
    def unexpected(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        app.logger.exception("Unhandled error")
        return jsonify({"error": str(e)}), 500


def create_app(settings=None, service=None):
    """Create and configure the Flask application.

    Args:
        settings: Settings to use instead of the environment
        service: Ready-made KpiService, mainly for tests
    """
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )

    app = Flask(__name__)

    # Enable CORS for frontend
    CORS(app, resources={
        r"/api/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type"]
        }
    })

    if service is None:
        settings = settings or Settings.from_env().with_boards_file(BOARDS_CONFIG_PATH)
        if not settings.is_configured:
            app.logger.warning("JIRA_URL, JIRA_EMAIL or JIRA_API_TOKEN missing, Jira calls will fail")
        service = build_service(settings)
        app.logger.info(f"Reporting on {len(settings.board_ids)} configured boards")
        if service.cache is not None and not app.config.get("TESTING"):
            service.cache.start_sweeper()
    app.extensions["kpi"] = service

    # Register blueprints
    from app.api import boards, cache, metrics
    app.register_blueprint(boards.bp)
    app.register_blueprint(metrics.bp)
    app.register_blueprint(cache.bp)

    register_error_handlers(app)

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    return app
