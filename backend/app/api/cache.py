"""Cycle time cache maintenance endpoints."""

import re

from flask import Blueprint, request, jsonify

from app import get_discovery_service
from services.batch_runner import DEFAULT_CHUNK_SIZE
from services.errors import ExternalFetchFailed

bp = Blueprint("cache", __name__, url_prefix="/api/cache")

QUARTER_PATTERN = re.compile(r"^Q[1-4]_\d{4}$")


def get_int_param(data, name, default):
    """Read an integer from the JSON body or query string."""
    value = data.get(name, request.args.get(name))
    if value is None or value == "":
        return default
    return int(value)


@bp.route("/rebuild", methods=["POST"])
def rebuild_chunk():
    """Compute and cache one chunk of issues.

    Accepts JSON body or query params:
        - startIndex: index of the first issue (default 0)
        - chunkSize: number of issues to process (default 10)

    Returns counts for the chunk plus ``nextIndex`` to continue from.
    """
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": "Missing Jira credentials in headers"}), 401

    data = request.get_json(silent=True) or {}
    try:
        start_index = get_int_param(data, "startIndex", 0)
        chunk_size = get_int_param(data, "chunkSize", DEFAULT_CHUNK_SIZE)
        result = service.rebuild_chunk(start_index, chunk_size)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except ExternalFetchFailed as e:
        return jsonify({"error": str(e)}), 502

    return jsonify({"data": result.to_dict()})


@bp.route("/cycle-time", methods=["DELETE"])
def clear_cache():
    """Clear cached cycle records, optionally only one quarter (``?quarter=Q1_2024``)."""
    service = get_discovery_service()
    if service is None:
        return jsonify({"error": "Missing Jira credentials in headers"}), 401

    quarter = request.args.get("quarter")
    if quarter and not QUARTER_PATTERN.match(quarter):
        return jsonify({"error": f"Invalid quarter {quarter!r}, expected e.g. Q1_2024"}), 400

    cleared = service.clear_cache(quarter or None)
    return jsonify({"data": {"cleared": cleared, "quarter": quarter or None}})
