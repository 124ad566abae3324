"""Board and sprint API endpoints."""

from flask import Blueprint, current_app, jsonify, request

bp = Blueprint("boards", __name__, url_prefix="/api/boards")


def get_service():
    return current_app.extensions["kpi"]


@bp.route("", methods=["GET"])
def list_boards():
    """List the configured boards.

    Boards Jira cannot return are listed with a "Board <id>" placeholder name.
    """
    boards = get_service().configured_boards()
    return jsonify({"data": [board.to_dict() for board in boards]})


@bp.route("/<int:board_id>/sprints", methods=["GET"])
def get_sprints(board_id):
    """Get the sprints of a board.

    Query params:
        - state: future, active or closed (default: all)
    """
    state = request.args.get("state") or None
    sprints = get_service().board_sprints(board_id, state)
    return jsonify({"data": [sprint.to_dict() for sprint in sprints]})


@bp.route("/active-sprint", methods=["GET"])
def get_active_sprint_range():
    """Date range of the first configured board's current sprint, or null."""
    return jsonify({"data": get_service().active_sprint_range()})
