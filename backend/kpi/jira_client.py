"""Thin Jira REST client returning raw JSON."""

import logging
from typing import Optional

import requests

from kpi.batching import run_batched
from kpi.errors import JiraRequestError

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_FIELDS = "key,summary,status,issuetype"
PAGE_BATCH_SIZE = 3
SEARCH_ENDPOINT = "/rest/api/3/search/jql"


class JiraClient:
    """Authenticated access to the Jira platform and agile REST APIs."""

    def __init__(self, server: str, email: str, token: str, timeout: int = 30):
        self.server = server.rstrip("/")
        self.email = email
        self.token = token
        self.timeout = timeout

    def _request(self, endpoint: str, params: Optional[dict] = None):
        """Make authenticated request to Jira API."""
        logger.debug(f"Jira API: GET {endpoint}")
        try:
            response = requests.get(
                f"{self.server}{endpoint}",
                auth=(self.email, self.token),
                headers={"Accept": "application/json"},
                params=params,
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"Jira API error {status} on {endpoint}")
            raise JiraRequestError(endpoint, str(e), status_code=status) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Jira API: no response for {endpoint}: {e}")
            raise JiraRequestError(endpoint, str(e)) from e
        return response.json()

    def _search_page(self, jql: str, fields: str, page_size: int, start_at: int) -> dict:
        return self._request(
            SEARCH_ENDPOINT,
            params={"jql": jql, "fields": fields, "maxResults": page_size, "startAt": start_at}
        )

    def search_issues(self, jql: str, fields: str = DEFAULT_SEARCH_FIELDS,
                      page_size: int = 100) -> dict:
        """Run a JQL search and fetch every page.

        The first page tells how many issues match; the remaining pages are
        fetched in parallel, three at a time.

        Returns:
            {"issues": [...], "total": int}
        """
        first = self._search_page(jql, fields, page_size, 0)
        total = first.get("total") or 0
        issues = list(first.get("issues", []))

        if len(issues) >= total or len(issues) < page_size:
            logger.info(f"Fetched {len(issues)}/{total} issues (single page) with JQL: {jql[:80]}")
            return {"issues": issues, "total": total}

        offsets = list(range(page_size, total, page_size))
        outcome = run_batched(
            lambda start_at: self._search_page(jql, fields, page_size, start_at),
            offsets,
            PAGE_BATCH_SIZE,
            label="search page"
        )
        if outcome.failures:
            raise JiraRequestError(SEARCH_ENDPOINT, f"{outcome.failures} page(s) failed for JQL: {jql[:80]}")
        for page in outcome.results:
            issues.extend(page.get("issues", []))

        logger.info(f"Fetched {len(issues)}/{total} issues (parallel) with JQL: {jql[:80]}")
        return {"issues": issues, "total": total}

    def search_issues_limited(self, jql: str, fields: str = DEFAULT_SEARCH_FIELDS,
                              max_results: int = 100) -> dict:
        """Single-page search, for autocomplete style lookups."""
        data = self._search_page(jql, fields, max_results, 0)
        issues = data.get("issues", [])
        return {"issues": issues, "total": data.get("total") or len(issues)}

    def get_issue_worklogs(self, issue_key: str) -> list:
        """Get all worklogs of an issue."""
        worklogs = []
        start_at = 0
        max_results = 100

        while True:
            data = self._request(
                f"/rest/api/3/issue/{issue_key}/worklog",
                params={"startAt": start_at, "maxResults": max_results}
            )
            page = data.get("worklogs", [])
            worklogs.extend(page)

            if len(page) < max_results or len(worklogs) >= data.get("total", 0):
                break

            start_at += max_results

        return worklogs

    def get_board(self, board_id: int) -> dict:
        """Board details. Raises JiraRequestError when the board cannot be read."""
        return self._request(f"/rest/agile/1.0/board/{board_id}")

    def get_board_configuration(self, board_id: int) -> dict:
        return self._request(f"/rest/agile/1.0/board/{board_id}/configuration")

    def get_filter_jql(self, filter_id) -> Optional[str]:
        data = self._request(f"/rest/api/3/filter/{filter_id}")
        return data.get("jql")

    def get_board_sprints(self, board_id: int, state: Optional[str] = None) -> list:
        """Get sprints of a board, optionally filtered by state."""
        sprints = []
        start_at = 0
        max_results = 50

        while True:
            params = {"startAt": start_at, "maxResults": max_results}
            if state:
                params["state"] = state
            data = self._request(f"/rest/agile/1.0/board/{board_id}/sprint", params=params)

            page = data.get("values", [])
            sprints.extend(page)

            if data.get("isLast", True) or len(page) < max_results:
                break

            start_at += max_results

        return sprints

    def _paginate_issues(self, endpoint: str, fields: str) -> list:
        issues = []
        start_at = 0
        max_results = 100

        while True:
            data = self._request(
                endpoint,
                params={"fields": fields, "startAt": start_at, "maxResults": max_results}
            )
            page = data.get("issues", [])
            issues.extend(page)

            if len(page) < max_results:
                break

            start_at += max_results

        return issues

    def get_sprint_issues(self, sprint_id: int, fields: str) -> list:
        """Get all issues in a sprint, whatever board they belong to."""
        return self._paginate_issues(f"/rest/agile/1.0/sprint/{sprint_id}/issue", fields)

    def get_board_sprint_issues(self, board_id: int, sprint_id: int, fields: str) -> list:
        """Get the issues of a sprint that match the board's filter."""
        return self._paginate_issues(
            f"/rest/agile/1.0/board/{board_id}/sprint/{sprint_id}/issue", fields
        )

