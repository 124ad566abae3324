"""Tests for Settings."""

import json

from kpi.config import Settings


class TestFromEnv:

    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.board_ids == ()
        assert settings.support_project_key == "SB"
        assert settings.hours_per_day == 8
        assert settings.fields.ponderation == "customfield_10727"
        assert not settings.resolution.uses_resolution
        assert not settings.is_configured

    def test_reads_jira_variables(self):
        settings = Settings.from_env({
            "JIRA_URL": "https://test.atlassian.net/",
            "JIRA_EMAIL": "test@example.com",
            "JIRA_API_TOKEN": "token",
            "JIRA_BOARD_ID": "12, 34, abc",
            "JIRA_HOURS_PER_DAY": "7.5",
            "JIRA_RESOLUTION_NAME": "Done, Fixed",
            "JIRA_TEAM_FIELD": "customfield_42",
        })
        assert settings.jira_url == "https://test.atlassian.net"
        assert settings.is_configured
        assert settings.board_ids == (12, 34)
        assert settings.hours_per_day == 7.5
        assert settings.resolution.names == ("Done", "Fixed")
        assert settings.fields.team == "customfield_42"


class TestBoardsFile:

    def test_replaces_board_ids(self, tmp_path):
        path = tmp_path / "boards-config.json"
        path.write_text(json.dumps({"boardIds": [5, "6"]}))
        assert Settings(board_ids=(1,)).with_boards_file(str(path)).board_ids == (5, 6)

    def test_missing_or_broken_file_keeps_settings(self, tmp_path):
        settings = Settings(board_ids=(1,))
        assert settings.with_boards_file(str(tmp_path / "missing.json")) is settings
        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        assert settings.with_boards_file(str(broken)) is settings
