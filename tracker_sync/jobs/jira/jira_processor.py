"""
Jira Data Processor

Handles transformation of Jira payloads into mirror table rows.
"""

from datetime import datetime
from typing import Dict, Any, List, Optional

from tracker_sync.core.config import get_settings
from tracker_sync.core.logging_config import get_logger
from tracker_sync.core.utils import DateTimeHelper

logger = get_logger(__name__)


class JiraDataProcessor:
    """Processes and transforms Jira data for database storage."""

    def __init__(self, config_id: int, story_points_field: Optional[str] = None):
        self.config_id = config_id
        self.story_points_field = story_points_field or get_settings().JIRA_STORY_POINTS_FIELD

    def process_issue_data(self, issue_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process raw Jira issue data into database format.

        Args:
            issue_data: Raw issue data from the search API or a webhook

        Returns:
            Processed issue data ready for upsert
        """
        fields = issue_data.get('fields') or {}

        return {
            'external_id': str(issue_data.get('id')),
            'key': issue_data.get('key'),
            'summary': fields.get('summary'),
            'description': self._extract_description(fields.get('description')),
            'issue_type': self._extract_name(fields.get('issuetype')),
            'status': self._extract_name(fields.get('status')),
            'priority': self._extract_name(fields.get('priority')),
            'assignee_name': self._extract_display_name(fields.get('assignee')),
            'reporter_name': self._extract_display_name(fields.get('reporter')),
            'project_key': (fields.get('project') or {}).get('key'),
            'config_id': self.config_id,
            'story_points': self._extract_story_points(fields.get(self.story_points_field)),
            'original_estimate': fields.get('timeoriginalestimate'),
            'remaining_estimate': fields.get('timeestimate'),
            'time_spent': fields.get('timespent'),
            'created_date': self._parse_datetime(fields.get('created')),
            'updated_date': self._parse_datetime(fields.get('updated')),
            'resolved_date': self._parse_datetime(fields.get('resolutiondate')),
            'labels': list(fields.get('labels') or []),
            'components': self._extract_names(fields.get('components')),
            'fix_versions': self._extract_names(fields.get('fixVersions')),
            'raw_payload': issue_data,
        }

    def process_project_data(self, project_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process raw Jira project data into database format.

        Args:
            project_data: Raw project data from Jira API

        Returns:
            Processed project data ready for upsert
        """
        return {
            'external_id': str(project_data.get('id')),
            'key': project_data.get('key'),
            'name': project_data.get('name') or project_data.get('key'),
            'description': self._extract_description(project_data.get('description')),
            'lead_name': self._extract_display_name(project_data.get('lead')),
            'project_type': project_data.get('projectTypeKey'),
            'config_id': self.config_id,
            'raw_payload': project_data,
        }

    def process_sprint_data(self, sprint_data: Dict[str, Any], project_key: Optional[str],
                            board_id: Any = None) -> Dict[str, Any]:
        """Process raw Jira agile sprint data into database format."""
        board = board_id if board_id is not None else sprint_data.get('originBoardId')
        return {
            'external_id': str(sprint_data.get('id')),
            'name': sprint_data.get('name') or f"Sprint {sprint_data.get('id')}",
            'state': (sprint_data.get('state') or '').lower() or None,
            'start_date': self._parse_datetime(sprint_data.get('startDate')),
            'end_date': self._parse_datetime(sprint_data.get('endDate')),
            'complete_date': self._parse_datetime(sprint_data.get('completeDate')),
            'goal': sprint_data.get('goal'),
            'board_id': str(board) if board is not None else None,
            'project_key': project_key,
            'config_id': self.config_id,
            'raw_payload': sprint_data,
        }

    def _parse_datetime(self, date_str: str) -> Optional[datetime]:
        return DateTimeHelper.parse_jira_datetime_to_naive_utc(date_str)

    def _extract_name(self, data: Dict) -> Optional[str]:
        """Extract the 'name' of a Jira named object (status, priority, issue type)."""
        if not data:
            return None
        return data.get('name')

    def _extract_names(self, items: List[Dict]) -> List[str]:
        return [item.get('name') for item in items or [] if item.get('name')]

    def _extract_display_name(self, user_data: Dict) -> Optional[str]:
        if not user_data:
            return None
        return user_data.get('displayName')

    def _extract_story_points(self, value) -> Optional[float]:
        if value is None or value == '':
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric story points value: {value!r}")
            return None

    def _extract_description(self, description_obj) -> Optional[str]:
        """Extract plain text from Jira's description object (handles ADF format)."""
        if not description_obj:
            return None

        if isinstance(description_obj, str):
            return description_obj

        # Atlassian Document Format: walk the node tree collecting text per block
        if isinstance(description_obj, dict) and "content" in description_obj:
            text_parts = []
            for block in description_obj.get("content", []):
                text = self._collect_adf_text(block).strip()
                if not text:
                    continue
                if block.get("type") == "codeBlock":
                    text = f"```\n{text}\n```"
                text_parts.append(text)
            return "\n".join(text_parts) if text_parts else None

        return str(description_obj)

    def _collect_adf_text(self, node: Dict) -> str:
        if node.get("type") == "text":
            return node.get("text", "")
        if node.get("type") == "hardBreak":
            return "\n"

        children = [self._collect_adf_text(child) for child in node.get("content", [])]
        if node.get("type") == "listItem":
            return "• " + "".join(children).strip() + "\n"
        return "".join(children)
