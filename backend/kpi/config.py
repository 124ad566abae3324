"""Engine configuration.

Everything that varies between Jira sites (custom field ids, resolution
names, the boards to report on) lives in these structs. They are built once
from the environment and handed to the components that need them.
"""

import json
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


def _split_list(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _int_list(value: Optional[str]) -> Tuple[int, ...]:
    ids = []
    for part in _split_list(value):
        try:
            ids.append(int(part))
        except ValueError:
            logger.warning(f"Ignoring invalid board id: {part!r}")
    return tuple(ids)


@dataclass(frozen=True)
class FieldConfig:
    """Ids of the Jira custom fields the engine reads."""

    story_points: str = "customfield_10535"
    story_point_estimate: str = "customfield_10016"
    ponderation: str = "customfield_10727"
    team: str = "customfield_10001"
    begin_date: str = "customfield_10537"
    end_date: str = "customfield_10538"

    @property
    def story_point_fields(self) -> Tuple[str, str]:
        return (self.story_points, self.story_point_estimate)

    def story_points_of(self, fields: Mapping) -> Optional[float]:
        """Story points from the main field, falling back to the estimate field."""
        for field_id in self.story_point_fields:
            value = fields.get(field_id)
            if value:
                try:
                    return float(value)
                except (TypeError, ValueError):
                    continue
        return None


@dataclass(frozen=True)
class ResolutionConfig:
    """How "resolved" is expressed on this Jira site.

    When resolution names or an id are set, resolved items are found by
    resolution and resolution date; otherwise by status label and update date.
    """

    names: Tuple[str, ...] = ()
    resolution_id: Optional[str] = None
    resolved_status: str = "Terminé"
    story_type: str = "US"

    @property
    def uses_resolution(self) -> bool:
        return bool(self.names or self.resolution_id)


@dataclass(frozen=True)
class Settings:
    jira_url: str = ""
    jira_email: str = ""
    jira_token: str = ""
    board_ids: Tuple[int, ...] = ()
    support_project_key: str = "SB"
    hours_per_day: float = 8
    cache_sweep_seconds: int = 60
    fields: FieldConfig = field(default_factory=FieldConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)

    @property
    def is_configured(self) -> bool:
        return bool(self.jira_url and self.jira_email and self.jira_token)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read JIRA_* variables (call load_dotenv() first to honour .env)."""
        env = os.environ if environ is None else environ
        defaults = FieldConfig()
        fields = FieldConfig(
            story_points=env.get("JIRA_STORY_POINTS_FIELD") or defaults.story_points,
            story_point_estimate=env.get("JIRA_STORY_POINT_ESTIMATE_FIELD") or defaults.story_point_estimate,
            ponderation=env.get("JIRA_PONDERATION_FIELD") or defaults.ponderation,
            team=env.get("JIRA_TEAM_FIELD") or defaults.team,
            begin_date=env.get("JIRA_BEGIN_DATE_FIELD") or defaults.begin_date,
            end_date=env.get("JIRA_END_DATE_FIELD") or defaults.end_date,
        )
        resolution = ResolutionConfig(
            names=_split_list(env.get("JIRA_RESOLUTION_NAME")),
            resolution_id=(env.get("JIRA_RESOLUTION_ID") or "").strip() or None,
            resolved_status=env.get("JIRA_RESOLVED_STATUS") or "Terminé",
            story_type=env.get("JIRA_STORY_ISSUE_TYPE") or "US",
        )
        return cls(
            jira_url=(env.get("JIRA_URL") or "").rstrip("/"),
            jira_email=env.get("JIRA_EMAIL") or "",
            jira_token=env.get("JIRA_API_TOKEN") or "",
            board_ids=_int_list(env.get("JIRA_BOARD_ID")),
            support_project_key=env.get("JIRA_SUPPORT_PROJECT_KEY") or "SB",
            hours_per_day=float(env.get("JIRA_HOURS_PER_DAY") or 8),
            cache_sweep_seconds=int(env.get("CACHE_SWEEP_SECONDS") or 60),
            fields=fields,
            resolution=resolution,
        )

    def with_boards_file(self, path: str) -> "Settings":
        """Replace the board list with the one in a boards-config.json file.

        The file holds {"boardIds": [...]}. A missing or unreadable file
        leaves the settings unchanged.
        """
        if not os.path.exists(path):
            return self
        try:
            with open(path, "r") as f:
                config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load boards config: {e}")
            return self

        board_ids = _int_list(",".join(str(b) for b in config.get("boardIds", [])))
        if not board_ids:
            return self
        logger.info(f"Loaded {len(board_ids)} board ids from {path}")
        return replace(self, board_ids=board_ids)
