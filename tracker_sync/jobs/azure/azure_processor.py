"""
Azure DevOps Data Processor

Maps Azure DevOps projects, work items and iterations onto mirror rows.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from tracker_sync.core.logging_config import get_logger
from tracker_sync.core.utils import DateTimeHelper

logger = get_logger(__name__)

SECONDS_PER_HOUR = 3600

# Iteration timeFrame -> sprint state
TIME_FRAME_STATES = {
    'past': 'closed',
    'current': 'active',
    'future': 'future',
}


class AzureDataProcessor:
    """Processes and transforms Azure DevOps data for database storage."""

    def __init__(self, config_id: int):
        self.config_id = config_id

    def process_project_data(self, project_data: Dict[str, Any]) -> Dict[str, Any]:
        """Azure projects are keyed by name; the GUID is the external id."""
        return {
            'external_id': str(project_data.get('id')),
            'key': project_data.get('name'),
            'name': project_data.get('name'),
            'description': project_data.get('description'),
            'lead_name': None,
            'project_type': 'azure_devops',
            'config_id': self.config_id,
            'raw_payload': project_data,
        }

    def process_work_item_data(self, work_item: Dict[str, Any], project_key: str) -> Dict[str, Any]:
        """
        Process a raw work item into database format.

        Scheduling fields are reported in hours and stored in seconds.
        """
        fields = work_item.get('fields') or {}
        work_item_id = work_item.get('id')

        return {
            'external_id': str(work_item_id),
            'key': str(work_item_id),
            'summary': fields.get('System.Title'),
            'description': None,
            'issue_type': fields.get('System.WorkItemType'),
            'status': fields.get('System.State'),
            'priority': self._to_text(fields.get('Microsoft.VSTS.Common.Priority')),
            'assignee_name': self._identity_name(fields.get('System.AssignedTo')),
            'reporter_name': self._identity_name(fields.get('System.CreatedBy')),
            'project_key': fields.get('System.TeamProject') or project_key,
            'config_id': self.config_id,
            'story_points': self._to_float(fields.get('Microsoft.VSTS.Scheduling.StoryPoints')),
            'original_estimate': self._hours_to_seconds(fields.get('Microsoft.VSTS.Scheduling.OriginalEstimate')),
            'remaining_estimate': self._hours_to_seconds(fields.get('Microsoft.VSTS.Scheduling.RemainingWork')),
            'time_spent': self._hours_to_seconds(fields.get('Microsoft.VSTS.Scheduling.CompletedWork')),
            'created_date': self._parse_datetime(fields.get('System.CreatedDate')),
            'updated_date': self._parse_datetime(fields.get('System.ChangedDate')),
            'resolved_date': self._parse_datetime(
                fields.get('Microsoft.VSTS.Common.ResolvedDate') or fields.get('Microsoft.VSTS.Common.ClosedDate')
            ),
            'labels': self._split_tags(fields.get('System.Tags')),
            'components': [fields['System.AreaPath']] if fields.get('System.AreaPath') else [],
            'fix_versions': [],
            'raw_payload': work_item,
        }

    def process_iteration_data(self, iteration: Dict[str, Any], project_key: str) -> Dict[str, Any]:
        attributes = iteration.get('attributes') or {}
        return {
            'external_id': str(iteration.get('id')),
            'name': iteration.get('name') or iteration.get('path'),
            'state': TIME_FRAME_STATES.get((attributes.get('timeFrame') or '').lower()),
            'start_date': self._parse_datetime(attributes.get('startDate')),
            'end_date': self._parse_datetime(attributes.get('finishDate')),
            'complete_date': None,
            'goal': None,
            'board_id': None,
            'project_key': project_key,
            'config_id': self.config_id,
            'raw_payload': iteration,
        }

    def _parse_datetime(self, value: str) -> Optional[datetime]:
        return DateTimeHelper.parse_jira_datetime_to_naive_utc(value)

    def _identity_name(self, identity: Any) -> Optional[str]:
        if not identity:
            return None
        if isinstance(identity, dict):
            return identity.get('displayName')
        # Older API versions return "Name <email>"
        return str(identity).split('<')[0].strip() or None

    def _split_tags(self, tags: Optional[str]) -> List[str]:
        if not tags:
            return []
        return [tag.strip() for tag in tags.split(';') if tag.strip()]

    def _to_float(self, value) -> Optional[float]:
        if value is None or value == '':
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric value: {value!r}")
            return None

    def _hours_to_seconds(self, value) -> Optional[int]:
        hours = self._to_float(value)
        if hours is None:
            return None
        return int(round(hours * SECONDS_PER_HOUR))

    def _to_text(self, value) -> Optional[str]:
        return str(value) if value is not None else None
