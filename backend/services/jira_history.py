"""Work item history providers.

``JiraHistoryProvider`` reads issues and their changelogs from Jira Cloud;
``InMemoryHistoryProvider`` serves the same interface from local data.
"""

import logging
from typing import Optional

import requests

from services.dates import parse_jira_date
from services.errors import ExternalFetchFailed
from services.models import (
    FIELD_HEALTH,
    FIELD_STATUS,
    UNASSIGNED,
    StatusTransition,
    WorkItem,
    normalize_complexity,
)

logger = logging.getLogger(__name__)

HEALTH_FIELD = "customfield_10238"
ARCHIVED_FIELD = "customfield_10454"
ARCHIVED_ON_FIELD = "customfield_10456"
COMPLEXITY_FIELD = "customfield_11081"


def _option_value(value) -> Optional[str]:
    """Read a select-list custom field ({"value": "..."}) or plain string."""
    if isinstance(value, dict):
        return value.get("value") or value.get("name")
    if isinstance(value, str):
        return value
    return None


class JiraHistoryProvider:
    """Fetches work items and their status/health transitions from Jira."""

    def __init__(self, server: str, email: str, token: str, project_key: str = "HT",
                 health_field: str = HEALTH_FIELD,
                 archived_field: str = ARCHIVED_FIELD,
                 archived_on_field: str = ARCHIVED_ON_FIELD,
                 complexity_field: str = COMPLEXITY_FIELD):
        self.server = server.rstrip("/")
        self.email = email
        self.token = token
        self.project_key = project_key
        self.health_field = health_field
        self.archived_field = archived_field
        self.archived_on_field = archived_on_field
        self.complexity_field = complexity_field

    def _request(self, endpoint: str, params: Optional[dict] = None, issue_key: str = None):
        """Make authenticated request to Jira API."""
        try:
            response = requests.get(
                f"{self.server}{endpoint}",
                auth=(self.email, self.token),
                headers={"Accept": "application/json"},
                params=params,
                timeout=30
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise ExternalFetchFailed(f"Jira request to {endpoint} failed: {e}", issue_key) from e

    def list_items(self) -> list:
        """Get every issue in the project, including completed ones."""
        fields = [
            "summary", "status", "assignee", "created",
            self.health_field, self.archived_field,
            self.archived_on_field, self.complexity_field
        ]

        all_issues = []
        seen_keys = set()
        next_page_token = None

        while True:
            params = {
                "jql": f"project={self.project_key} ORDER BY key ASC",
                "maxResults": 200,
                "fields": ",".join(fields),
            }
            if next_page_token:
                params["nextPageToken"] = next_page_token

            data = self._request("/rest/api/3/search/jql", params=params)
            issues = data.get("issues", [])

            for issue in issues:
                if issue.get("key") in seen_keys:
                    continue
                seen_keys.add(issue.get("key"))
                all_issues.append(self.issue_to_work_item(issue))

            next_page_token = data.get("nextPageToken")
            if not issues or data.get("isLast") or not next_page_token:
                break

        logger.info(f"Fetched {len(all_issues)} issues from {self.project_key}")
        return all_issues

    def get_transition_log(self, issue_key: str) -> list:
        """Get the full status/health history of an issue, oldest first."""
        histories = []
        start_at = 0
        max_results = 100

        while True:
            data = self._request(
                f"/rest/api/3/issue/{issue_key}/changelog",
                params={"startAt": start_at, "maxResults": max_results},
                issue_key=issue_key
            )

            values = data.get("values", data.get("histories", []))
            histories.extend(values)

            if data.get("isLast", True) or len(values) < max_results:
                break

            start_at += max_results

        return self.changelog_to_transitions(histories)

    def issue_to_work_item(self, issue: dict) -> WorkItem:
        fields = issue.get("fields", {})
        assignee = fields.get("assignee") or {}
        archived_on = parse_jira_date(fields.get(self.archived_on_field))

        return WorkItem(
            key=issue.get("key"),
            status=(fields.get("status") or {}).get("name", ""),
            health=_option_value(fields.get(self.health_field)),
            assignee=assignee.get("displayName") or UNASSIGNED,
            complexity=normalize_complexity(_option_value(fields.get(self.complexity_field))),
            is_archived=bool(fields.get(self.archived_field)) or archived_on is not None,
            archived_on=archived_on,
            created=parse_jira_date(fields.get("created")),
            summary=fields.get("summary", ""),
        )

    def changelog_to_transitions(self, histories: list) -> list:
        transitions = []
        for history in histories:
            timestamp = parse_jira_date(history.get("created"))
            if timestamp is None:
                continue

            for item in history.get("items", []):
                if item.get("field") == "status":
                    field_name = FIELD_STATUS
                elif item.get("field") == "Health" or item.get("fieldId") == self.health_field:
                    field_name = FIELD_HEALTH
                else:
                    continue

                transitions.append(StatusTransition(
                    timestamp=timestamp,
                    field=field_name,
                    from_value=item.get("fromString"),
                    to_value=item.get("toString"),
                ))

        transitions.sort(key=lambda t: t.timestamp)
        return transitions


class InMemoryHistoryProvider:
    """History provider over already-loaded items and transition logs."""

    def __init__(self, items: list, logs: Optional[dict] = None):
        self.items = list(items)
        self.logs = dict(logs or {})

    def list_items(self) -> list:
        return list(self.items)

    def get_transition_log(self, issue_key: str) -> list:
        return sorted(self.logs.get(issue_key, []), key=lambda t: t.timestamp)
