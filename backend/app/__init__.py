"""Flask application factory."""

import json
import os
import threading
from collections import OrderedDict
from flask import Flask, current_app, request
from flask_cors import CORS

from services.cycle_cache import Database
from services.discovery_service import DiscoveryService
from services.jira_history import JiraHistoryProvider
from services.weekly_data_source import DEFAULT_RECENT_WEEK_THRESHOLD_DAYS

CONFIG_DIR = os.path.join(os.path.dirname(__file__), "..", "config")

_services_lock = threading.Lock()


def _env_float(app, name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        app.logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default


def load_team_config(app):
    """Load team members and week thresholds from the team config file."""
    config_path = app.config.get("TEAM_CONFIG_PATH")
    members = []
    threshold = DEFAULT_RECENT_WEEK_THRESHOLD_DAYS

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                config = json.load(f)
                members = [str(m) for m in config.get("teamMembers", [])]
                threshold = int(config.get("recentWeekThresholdDays", threshold))
                app.logger.info(f"Loaded {len(members)} team members")
        except (json.JSONDecodeError, IOError, ValueError, TypeError) as e:
            app.logger.warning(f"Failed to load team config: {e}")
    else:
        app.logger.info("No team-config.json found, workload uses current assignees")

    app.config.setdefault("TEAM_MEMBERS", members)
    app.config.setdefault("RECENT_WEEK_THRESHOLD_DAYS", threshold)


def _jira_credentials():
    """Credentials from request headers, falling back to app config."""
    server = (request.headers.get("X-Jira-Server") or current_app.config["JIRA_SERVER"] or "")
    email = request.headers.get("X-Jira-Email") or current_app.config["JIRA_EMAIL"]
    token = request.headers.get("X-Jira-Token") or current_app.config["JIRA_TOKEN"]

    if not all([server, email, token]):
        return None, None, None

    return server.rstrip("/"), email, token


def get_discovery_service():
    """Service for the current request, or None without Jira credentials.

    Services are kept per credential set so the issue-list memo survives
    across requests. At most ``MAX_CACHED_SERVICES`` are kept; the least
    recently used one is dropped first.
    """
    provider = current_app.config.get("HISTORY_PROVIDER")
    if provider is not None:
        service_key = "configured"
    else:
        server, email, token = _jira_credentials()
        if not server:
            return None
        service_key = (server, email, token)

    services = current_app.extensions["discovery_services"]
    with _services_lock:
        service = services.get(service_key)
        if service is not None:
            services.move_to_end(service_key)
        else:
            if provider is None:
                provider = JiraHistoryProvider(
                    server, email, token,
                    project_key=current_app.config["JIRA_PROJECT_KEY"]
                )
            service = DiscoveryService(
                provider,
                current_app.extensions["discovery_db"],
                team_members=current_app.config["TEAM_MEMBERS"],
                rate_limit_seconds=current_app.config["DISCOVERY_RATE_LIMIT_SECONDS"],
                recent_threshold_days=current_app.config["RECENT_WEEK_THRESHOLD_DAYS"],
            )
            services[service_key] = service
            while len(services) > current_app.config["MAX_CACHED_SERVICES"]:
                services.popitem(last=False)
    return service


def create_app(config=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    app.config.update(
        JIRA_SERVER=os.environ.get("JIRA_SERVER"),
        JIRA_EMAIL=os.environ.get("JIRA_EMAIL"),
        JIRA_TOKEN=os.environ.get("JIRA_TOKEN"),
        JIRA_PROJECT_KEY=os.environ.get("JIRA_PROJECT_KEY", "HT"),
        DISCOVERY_DB_PATH=os.environ.get(
            "DISCOVERY_DB_PATH", os.path.join(CONFIG_DIR, "discovery.db")
        ),
        DISCOVERY_RATE_LIMIT_SECONDS=_env_float(app, "DISCOVERY_RATE_LIMIT_SECONDS", 1.0),
        TEAM_CONFIG_PATH=os.path.join(CONFIG_DIR, "team-config.json"),
        HISTORY_PROVIDER=None,
        MAX_CACHED_SERVICES=16,
    )
    if config:
        app.config.update(config)

    load_team_config(app)

    # Enable CORS for frontend
    CORS(app, resources={
        r"/api/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "methods": ["GET", "POST", "DELETE", "OPTIONS"],
            "allow_headers": [
                "Content-Type",
                "X-Jira-Token", "X-Jira-Email", "X-Jira-Server"
            ]
        }
    })

    app.extensions["discovery_db"] = Database(app.config["DISCOVERY_DB_PATH"])
    app.extensions["discovery_services"] = OrderedDict()

    # Register blueprints
    from app.api import cache, cycle_time, workload
    app.register_blueprint(cycle_time.bp)
    app.register_blueprint(cache.bp)
    app.register_blueprint(workload.bp)

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    return app
