"""Discovery cycle time API endpoints."""

from flask import Blueprint, request, jsonify

from app import get_discovery_service
from services.errors import CacheWriteFailed, ExternalFetchFailed

bp = Blueprint("cycle_time", __name__, url_prefix="/api/cycle-time")

MISSING_CREDENTIALS = "Missing Jira credentials in headers"


def get_time_type():
    """Metric to aggregate, from the ``time_type`` query param."""
    return request.args.get("time_type", "calendar")


@bp.route("/quarters", methods=["GET"])
def get_quarter_distribution():
    """Box-plot statistics of completed discovery cycles per completion quarter.

    Query params:
        - time_type: "calendar" (default) or "active"

    Returns:
        List of cohorts ordered oldest quarter first, including empty
        quarters between the first and last completion
    """
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": MISSING_CREDENTIALS}), 401

    try:
        cohorts = service.get_quarter_distribution(get_time_type())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"data": [cohort.to_dict() for cohort in cohorts.values()]})


@bp.route("/complexity", methods=["GET"])
def get_complexity_cohorts():
    """Box-plot statistics per discovery complexity (Simple/Standard/Complex/Not Set)."""
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": MISSING_CREDENTIALS}), 401

    try:
        cohorts = service.get_complexity_cohorts(get_time_type())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except ExternalFetchFailed as e:
        return jsonify({"error": str(e)}), 502

    return jsonify({"data": [cohort.to_dict() for cohort in cohorts.values()]})


@bp.route("/process/<issue_key>", methods=["POST"])
def process_item(issue_key):
    """Recompute and cache the discovery cycle of one issue."""
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": MISSING_CREDENTIALS}), 401

    try:
        record = service.process_item(issue_key)
    except KeyError:
        return jsonify({"error": f"Issue {issue_key} not found"}), 404
    except ExternalFetchFailed as e:
        return jsonify({"error": str(e)}), 502
    except CacheWriteFailed as e:
        return jsonify({"error": str(e)}), 500

    return jsonify({"data": record.to_dict()})


@bp.route("/status", methods=["GET"])
def get_processing_status():
    """Cache coverage of the project's issues."""
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": MISSING_CREDENTIALS}), 401

    try:
        status = service.get_processing_status()
    except ExternalFetchFailed as e:
        return jsonify({"error": str(e)}), 502

    return jsonify({"data": status})


@bp.route("/exclusions", methods=["GET"])
def list_exclusions():
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": MISSING_CREDENTIALS}), 401

    return jsonify({"data": [entry.to_dict() for entry in service.list_exclusions()]})


@bp.route("/exclusions/<issue_key>", methods=["POST"])
def toggle_exclusion(issue_key):
    """Exclude an issue from cycle time statistics, or include it again.

    Expects JSON body:
        - excludedBy: who made the change
        - reason: optional free text
    """
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": MISSING_CREDENTIALS}), 401

    data = request.get_json(silent=True) or {}
    excluded_by = data.get("excludedBy")
    if not excluded_by:
        return jsonify({"error": "Missing required field: excludedBy"}), 400

    excluded = service.toggle_exclusion(issue_key, excluded_by, data.get("reason"))
    return jsonify({"data": {"issueKey": issue_key, "excluded": excluded}})
