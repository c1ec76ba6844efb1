"""
Jira API Client

Handles all interactions with the Jira Cloud REST API for sync operations.
"""

import requests
from typing import Any, Dict, List, Optional

from tracker_sync.core.config import get_settings
from tracker_sync.core.errors import AuthError, TrackerPermissionError, NetworkError
from tracker_sync.core.logging_config import get_logger

logger = get_logger(__name__)


def raise_for_tracker_status(response: requests.Response, resource: str):
    """
    Maps tracker HTTP failures onto the pipeline's error taxonomy.

    401 -> AuthError, 403 -> TrackerPermissionError, other non-2xx -> NetworkError.
    """
    if response.status_code == 401:
        raise AuthError(f"Tracker rejected the credentials while fetching {resource}")
    if response.status_code == 403:
        raise TrackerPermissionError(f"Access denied while fetching {resource}")
    if not response.ok:
        raise NetworkError(
            f"Tracker returned HTTP {response.status_code} for {resource}: {response.text[:200]}",
            status=response.status_code
        )


class JiraAPIClient:
    """Client for Jira API."""

    def __init__(self, username: str, token: str, base_url: str, timeout: Optional[int] = None):
        self.username = username
        self.token = token
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout or get_settings().TRACKER_REQUEST_TIMEOUT

    def _get(self, path: str, params: Any = None, resource: str = None) -> Any:
        """GET a Jira endpoint and return the decoded JSON body."""
        url = f"{self.base_url}{path}"
        resource = resource or path

        try:
            response = requests.get(
                url,
                auth=(self.username, self.token),
                params=params,
                headers={'Accept': 'application/json'},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request to {resource} failed: {e}") from e

        raise_for_tracker_status(response, resource)

        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON received for {resource}") from e

    def get_myself(self) -> Dict:
        """Returns the authenticated user (connection check)."""
        return self._get("/rest/api/3/myself", resource="current user")

    def get_project(self, project_key: str) -> Dict:
        """Fetch a single project by key."""
        return self._get(f"/rest/api/3/project/{project_key}", resource=f"project {project_key}")

    def get_projects(self, max_results: int = 50, project_keys: List[str] = None) -> List[Dict]:
        """
        Fetch every project visible to the credential.

        Args:
            max_results: Maximum results per page (default: 50)
            project_keys: Optional keys to restrict the search to

        Returns:
            List of project objects
        """
        all_projects = []
        start_at = 0

        while True:
            # Build params as list of tuples to handle multiple 'keys' parameters
            params = [
                ('startAt', start_at),
                ('maxResults', max_results),
                ('expand', 'description,lead')
            ]
            for project_key in project_keys or []:
                params.append(('keys', str(project_key)))

            response_data = self._get("/rest/api/3/project/search", params=params, resource="projects")

            # API 3 returns: {"values": [...], "total": 12, "maxResults": 50, ...}
            if isinstance(response_data, dict) and 'values' in response_data:
                batch_data = response_data['values']
                total = response_data.get('total', 0)
                is_last = response_data.get('isLast', True)
            else:
                batch_data = response_data if isinstance(response_data, list) else []
                total = len(batch_data)
                is_last = True

            all_projects.extend(batch_data)
            logger.debug(f"Fetched {len(batch_data)} projects (total: {len(all_projects)})")

            if not batch_data or is_last or len(batch_data) < max_results or start_at + len(batch_data) >= total:
                break

            start_at += max_results

        logger.info(f"Successfully fetched {len(all_projects)} projects")
        return all_projects

    def search_issues(self, jql: str, start_at: int = 0, max_results: int = 100) -> Dict:
        """
        Fetch one page of issues for a JQL query.

        Returns:
            The raw search response: {"issues": [...], "total": N, "startAt": ..., "maxResults": ...}
        """
        params = {
            'jql': jql,
            'startAt': start_at,
            'maxResults': max_results,
            'fields': '*all'
        }
        data = self._get("/rest/api/3/search", params=params, resource="issue search")
        if not isinstance(data, dict):
            raise NetworkError("Unexpected issue search response shape")
        return data

    def get_boards(self, project_key: str, board_type: str = 'scrum') -> List[Dict]:
        """Fetch the project's boards of the given type (one page)."""
        data = self._get(
            "/rest/agile/1.0/board",
            params={'projectKeyOrId': project_key, 'type': board_type},
            resource=f"boards of {project_key}"
        )
        return data.get('values', []) if isinstance(data, dict) else []

    def get_sprints(self, board_id: Any, max_results: int = 50) -> List[Dict]:
        """Fetch one page of sprints for a board."""
        data = self._get(
            f"/rest/agile/1.0/board/{board_id}/sprint",
            params={'maxResults': max_results},
            resource=f"sprints of board {board_id}"
        )
        return data.get('values', []) if isinstance(data, dict) else []
