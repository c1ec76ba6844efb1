"""
Azure DevOps API Client

Handles interactions with the Azure DevOps (Boards) REST API. The personal
access token is sent as HTTP Basic auth with an empty username.
"""

from urllib.parse import quote

import requests
from typing import Any, Dict, List, Optional

from tracker_sync.core.config import get_settings
from tracker_sync.core.errors import AuthError, NetworkError
from tracker_sync.core.logging_config import get_logger
from tracker_sync.jobs.jira.jira_client import raise_for_tracker_status

logger = get_logger(__name__)

WORK_ITEM_FIELDS = [
    "System.Id", "System.Title", "System.WorkItemType", "System.State",
    "System.AssignedTo", "System.CreatedBy", "System.AreaPath", "System.IterationPath",
    "System.TeamProject", "System.Tags", "System.CreatedDate", "System.ChangedDate",
    "Microsoft.VSTS.Scheduling.StoryPoints", "Microsoft.VSTS.Scheduling.OriginalEstimate",
    "Microsoft.VSTS.Scheduling.RemainingWork", "Microsoft.VSTS.Scheduling.CompletedWork",
    "Microsoft.VSTS.Common.Priority", "Microsoft.VSTS.Common.ResolvedDate",
    "Microsoft.VSTS.Common.ClosedDate",
]


def _escape_wiql(value: str) -> str:
    return value.replace("'", "''")


def build_wiql(project: str, area_paths: Optional[List[str]] = None) -> str:
    """WIQL selecting the project's work items, newest change first."""
    escaped_project = _escape_wiql(project)
    query = (
        f"SELECT [System.Id] FROM WorkItems "
        f"WHERE [System.TeamProject] = '{escaped_project}'"
    )
    if area_paths:
        conditions = " OR ".join(
            f"[System.AreaPath] UNDER '{escaped_project}\\{_escape_wiql(path)}'"
            for path in area_paths
        )
        query += f" AND ({conditions})"
    return query + " ORDER BY [System.ChangedDate] DESC"


class AzureDevOpsClient:
    """Client for the Azure DevOps REST API."""

    def __init__(self, token: str, base_url: str, timeout: Optional[int] = None):
        settings = get_settings()
        self.token = token
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout or settings.TRACKER_REQUEST_TIMEOUT
        self.api_version = settings.AZURE_API_VERSION

    def _request(self, method: str, path: str, params: Dict = None, json: Any = None, resource: str = None) -> Any:
        url = f"{self.base_url}{path}"
        resource = resource or path
        query = {'api-version': self.api_version}
        query.update(params or {})

        try:
            response = requests.request(
                method,
                url,
                auth=('', self.token),
                params=query,
                json=json,
                headers={'Accept': 'application/json'},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request to {resource} failed: {e}") from e

        # An invalid PAT is answered with the sign-in page
        if response.status_code == 203:
            raise AuthError(f"Azure DevOps rejected the personal access token while fetching {resource}")
        raise_for_tracker_status(response, resource)

        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON received for {resource}") from e

    def get_connection_data(self) -> Dict:
        """Returns the authenticated identity (connection check)."""
        return self._request('GET', '/_apis/connectionData', resource='connection data')

    def get_projects(self, page_size: int = 100) -> List[Dict]:
        """Fetch every project of the organization (continuation by $skip)."""
        projects = []
        skip = 0
        while True:
            data = self._request(
                'GET', '/_apis/projects',
                params={'$top': page_size, '$skip': skip},
                resource='projects'
            )
            batch = data.get('value', []) if isinstance(data, dict) else []
            projects.extend(batch)
            if len(batch) < page_size:
                break
            skip += page_size

        logger.info(f"Successfully fetched {len(projects)} Azure DevOps projects")
        return projects

    def query_work_item_ids(self, project: str, area_paths: Optional[List[str]] = None) -> List[int]:
        """Run the WIQL query and return matching work item ids in order."""
        data = self._request(
            'POST', f"/{quote(project)}/_apis/wit/wiql",
            json={'query': build_wiql(project, area_paths)},
            resource=f"work item query of {project}"
        )
        return [item['id'] for item in data.get('workItems', []) if 'id' in item]

    def get_work_items(self, ids: List[int]) -> List[Dict]:
        """Fetch one batch of work items with the mirrored fields."""
        if not ids:
            return []
        data = self._request(
            'GET', '/_apis/wit/workitems',
            params={'ids': ','.join(str(i) for i in ids), 'fields': ','.join(WORK_ITEM_FIELDS)},
            resource=f"{len(ids)} work items"
        )
        return data.get('value', []) if isinstance(data, dict) else []

    def get_iterations(self, project: str) -> List[Dict]:
        """Fetch the iterations of the project's default team."""
        data = self._request(
            'GET', f"/{quote(project)}/_apis/work/teamsettings/iterations",
            resource=f"iterations of {project}"
        )
        return data.get('value', []) if isinstance(data, dict) else []
