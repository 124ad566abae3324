"""Error types raised by the KPI engine.

Routes translate these into HTTP statuses: input errors become 400,
source failures become 502.
"""


class KpiError(Exception):
    """Base class for engine errors."""


class InvalidInputError(KpiError, ValueError):
    """A caller passed an argument the engine cannot work with."""


class InvalidDateRangeError(InvalidInputError):
    """Start of a range is after its end, or a date could not be parsed."""


class UnknownBoardError(InvalidInputError):
    """Board id is not part of the configured boards."""

    def __init__(self, board_id):
        self.board_id = board_id
        super().__init__(f"Unknown board: {board_id}")


class SourceUnavailableError(KpiError):
    """The issue tracker could not answer at all."""


class JiraRequestError(SourceUnavailableError):
    """A single Jira REST call failed."""

    def __init__(self, endpoint: str, message: str, status_code=None):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"Jira request to {endpoint} failed: {message}")
