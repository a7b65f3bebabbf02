"""Team workload API endpoints."""

from datetime import date, datetime, timedelta, timezone

from flask import Blueprint, request, jsonify

from app import get_discovery_service
from services.dates import monday_of
from services.errors import ExternalFetchFailed
from services.models import CapacityBaselinePoint

bp = Blueprint("workload", __name__, url_prefix="/api/workload")

DEFAULT_WEEKS_BACK = 8


def get_members():
    """Team members from the ``members`` query param (comma separated)."""
    members = request.args.get("members", "")
    return [m.strip() for m in members.split(",") if m.strip()]


def get_mondays():
    """Mondays to report, from ``weeks`` (ISO dates) or ``weeks_back``.

    Any date is moved back to the Monday of its week.
    """
    weeks = request.args.get("weeks")
    if weeks:
        return sorted({monday_of(date.fromisoformat(w.strip())) for w in weeks.split(",") if w.strip()})

    weeks_back = int(request.args.get("weeks_back", DEFAULT_WEEKS_BACK))
    if weeks_back < 1:
        raise ValueError("weeks_back must be at least 1")
    current = monday_of(datetime.now(timezone.utc))
    return [current - timedelta(weeks=n) for n in range(weeks_back - 1, -1, -1)]


@bp.route("/breakdown/<member>", methods=["GET"])
def get_member_breakdown(member):
    """Health and status breakdown of a member's issues as of a date.

    Query params:
        - date: ISO date (default today); the whole day is included
    """
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": "Missing Jira credentials in headers"}), 401

    try:
        as_of = date.fromisoformat(request.args["date"]) if request.args.get("date") \
            else datetime.now(timezone.utc)
    except ValueError:
        return jsonify({"error": "Invalid date, expected YYYY-MM-DD"}), 400

    try:
        health = service.get_breakdown(member, as_of)
        status = service.get_status_breakdown(member, as_of)
    except ExternalFetchFailed as e:
        return jsonify({"error": str(e)}), 502

    return jsonify({
        "data": {
            "member": member,
            "date": as_of.isoformat(),
            "healthBreakdown": health.to_dict(),
            "statusBreakdown": status.to_dict(),
            "total": health.total,
        }
    })


@bp.route("/weekly", methods=["GET"])
def get_weekly_trend():
    """Weekly workload trend.

    Query params:
        - weeks: comma separated ISO dates, or
        - weeks_back: number of weeks ending with the current one (default 8)
        - members: comma separated member names (default: configured team)

    Each week carries a ``dataSource`` of live, snapshot or reconstruction.
    """
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": "Missing Jira credentials in headers"}), 401

    try:
        mondays = get_mondays()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        weeks = service.get_weekly_trend(mondays, get_members())
    except ExternalFetchFailed as e:
        return jsonify({"error": str(e)}), 502

    return jsonify({"data": [week.to_dict() for week in weeks]})


@bp.route("/baseline", methods=["GET"])
def get_baseline():
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": "Missing Jira credentials in headers"}), 401

    return jsonify({"data": [point.to_dict() for point in service.baseline.list_points()]})


@bp.route("/baseline", methods=["POST"])
def import_baseline():
    """Store capacity baseline points.

    Expects JSON body:
        - points: [{date, memberCounts, total, notes}]
        - replace: replace the whole baseline (default true) or merge by date
    """
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": "Missing Jira credentials in headers"}), 401

    data = request.get_json(silent=True)
    if not data or not isinstance(data.get("points"), list):
        return jsonify({"error": "Missing required field: points"}), 400

    try:
        points = [
            CapacityBaselinePoint(
                date=date.fromisoformat(p["date"]),
                member_counts={k: int(v) for k, v in (p.get("memberCounts") or {}).items()},
                total=int(p.get("total", sum(int(v) for v in (p.get("memberCounts") or {}).values()))),
                notes=p.get("notes"),
            )
            for p in data["points"]
        ]
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({"error": f"Invalid baseline point: {e}"}), 400

    stored = service.import_baseline(points, replace=data.get("replace", True))
    return jsonify({"data": {"stored": stored}})
