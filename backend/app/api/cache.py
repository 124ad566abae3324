"""Cache maintenance endpoints."""

from flask import Blueprint, current_app, jsonify, request

bp = Blueprint("cache", __name__, url_prefix="/api/cache")


@bp.route("/clear", methods=["POST"])
def clear_cache():
    """Drop every cached Jira read (manual resync)."""
    removed = current_app.extensions["kpi"].resync()
    current_app.logger.info(f"Manual resync: {removed} cache entries dropped")
    return jsonify({"data": {"removed": removed}})


@bp.route("/invalidate", methods=["POST"])
def invalidate_cache():
    """Drop cached reads whose key starts with a prefix.

    Request body:
        {"prefix": "worklog:"}
    """
    data = request.get_json(silent=True) or {}
    removed = current_app.extensions["kpi"].invalidate(data.get("prefix", ""))
    return jsonify({"data": {"prefix": data.get("prefix"), "removed": removed}})
