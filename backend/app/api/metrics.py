"""KPI metrics API endpoints."""

from flask import Blueprint, current_app, jsonify, request

from kpi.errors import InvalidInputError
from kpi.repository import WorklogQuery

bp = Blueprint("metrics", __name__, url_prefix="/api/metrics")


def get_service():
    return current_app.extensions["kpi"]


def get_date_range():
    """Get optional date range from query params.

    Query params:
        - from: ISO date string (e.g., "2024-01-01")
        - to: ISO date string (e.g., "2024-03-31")

    Returns:
        Tuple of (from, to), either can be None
    """
    return request.args.get("from") or None, request.args.get("to") or None


def get_flag(name, default):
    """Read a boolean query param ("true"/"false", "1"/"0")."""
    value = request.args.get(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes")


def get_sprint_count(default=10):
    """Get the sprint_count query param.

    Returns:
        int, the default when absent
    """
    sprint_count = request.args.get("sprint_count")
    if not sprint_count:
        return default
    try:
        return int(sprint_count)
    except ValueError:
        raise InvalidInputError(f"sprint_count must be an integer, got {sprint_count!r}")


@bp.route("/worklogs", methods=["GET"])
def get_worklog_metrics():
    """Time-tracking KPIs over matching worklogs.

    Query params:
        - from, to: Optional ISO dates (default: issues updated in the last 30 days)
        - project: Optional project key
        - issue: Optional issue key
        - account: Optional author account id
        - team: Optional team name
        - open_sprints: Only issues in open sprints (default: false)
    """
    start, end = get_date_range()
    query = WorklogQuery(
        start=start,
        end=end,
        project_key=request.args.get("project") or None,
        item_key=request.args.get("issue") or None,
        account_id=request.args.get("account") or None,
        team_name=request.args.get("team") or None,
        open_sprints=get_flag("open_sprints", False),
    )
    service = get_service()
    entries = service.search_worklogs(query)
    metrics = service.compute_worklog_metrics(entries)

    data = metrics.to_dict()
    if get_flag("include_worklogs", False):
        data["worklogs"] = [entry.to_dict() for entry in entries]
    return jsonify({"data": data})


@bp.route("/projects/<project_key>/sprint", methods=["GET"])
def get_project_sprint(project_key):
    """Open-sprint issues of a project with status metrics and backlog."""
    view = get_service().sprint_issues_for_project(project_key)
    return jsonify({"data": view.to_dict()})


@bp.route("/boards/<int:board_id>/sprint", methods=["GET"])
def get_board_sprint(board_id):
    """Current sprint of a board, or issues updated in a window.

    Query params:
        - from, to: Optional ISO dates; both or neither
    """
    start, end = get_date_range()
    view = get_service().sprint_issues_for_board(board_id, start, end)
    return jsonify({"data": view.to_dict()})


@bp.route("/boards/<int:board_id>/velocity", methods=["GET"])
def get_velocity(board_id):
    """Get velocity over the last closed sprints.

    Query params:
        - sprint_count: Number of sprints to include (default: 10)

    Returns:
        - Per-sprint committed and completed story points
        - Average velocity
        - Velocity trend
    """
    history = get_service().velocity_history(board_id, get_sprint_count())
    return jsonify({"data": history.to_dict()})


@bp.route("/boards/<int:board_id>/epics", methods=["GET"])
def get_epic_progress(board_id):
    """Progress of the board's epics and legends.

    Query params:
        - type: epic, legend or all (default: all)
    """
    result = get_service().epic_progress_for_board(board_id, request.args.get("type", "all"))
    return jsonify({"data": result.to_dict()})


@bp.route("/boards/<int:board_id>/epics/search", methods=["GET"])
def search_epics(board_id):
    """Find epics by summary prefix or key.

    Query params:
        - q: Search text
        - type: epic, legend or all (default: all)
    """
    epics = get_service().search_epics(
        board_id, request.args.get("q", ""), request.args.get("type", "all")
    )
    return jsonify({"data": epics})


@bp.route("/hierarchy/<root_key>", methods=["GET"])
def get_hierarchy_totals(root_key):
    """Rolled-up estimate, time spent and story points under an epic or legend."""
    totals = get_service().aggregate_hierarchy(root_key)
    return jsonify({"data": totals.to_dict()})


@bp.route("/epics/<root_key>", methods=["GET"])
def get_epic_details(root_key):
    """Full tree of an epic or legend with its totals."""
    details = get_service().epic_details(root_key)
    return jsonify({"data": details.to_dict()})


@bp.route("/resolved-by-day", methods=["GET"])
def get_resolved_by_day():
    """Resolved items per day and per board.

    Query params:
        - from, to: ISO dates (default: the current sprint of the first board)
        - issue_type: all or story (default: all)
    """
    start, end = get_date_range()
    service = get_service()
    if not (start and end):
        sprint_range = service.active_sprint_range()
        if sprint_range is None:
            raise InvalidInputError("from and to are required when no sprint is active")
        start, end = sprint_range["from"], sprint_range["to"]

    result = service.compute_resolved_by_day(start, end, request.args.get("issue_type", "all"))
    return jsonify({"data": result.to_dict()})


@bp.route("/support", methods=["GET"])
def get_support_kpi():
    """Support board KPIs.

    Query params:
        - from, to: ISO dates, used when active_sprint is false
        - active_sprint: Use the open sprint (default: true)
    """
    start, end = get_date_range()
    metrics = get_service().support_kpi(start, end, get_flag("active_sprint", True))
    return jsonify({"data": metrics.to_dict()})
