"""
Jira Sync Job

Pulls projects, issues and sprints from Jira Cloud into the mirror tables of
one tracker configuration:
1. Projects visible to the credential, filtered by the selected keys
2. Issues per project, drained page by page (each page committed before the next)
3. Sprints of the project's scrum boards (one page per board)
"""

from typing import Any, Dict, List

from tracker_sync.core.config import get_settings
from tracker_sync.core.logging_config import get_logger
from tracker_sync.jobs.jira.jira_client import JiraAPIClient
from tracker_sync.jobs.jira.jira_processor import JiraDataProcessor
from tracker_sync.jobs.mirror_repository import MirrorRepository
from tracker_sync.models.unified_models import TrackerConfiguration

logger = get_logger(__name__)


def build_issue_jql(project_key: str) -> str:
    return f'project = "{project_key}" ORDER BY updated DESC'


class JiraSyncJob:
    """Sync operations for a Jira configuration."""

    def __init__(self, config: TrackerConfiguration, repository: MirrorRepository, client: JiraAPIClient):
        self.config = config
        self.repository = repository
        self.client = client
        self.processor = JiraDataProcessor(config.id)
        self.page_size = get_settings().JIRA_PAGE_SIZE

    def sync_projects(self) -> Dict[str, Any]:
        """
        Fetch all visible projects and upsert the selected ones.

        Returns:
            {"total_projects": int, "project_keys": [...]}
        """
        selected = list(self.config.selected_project_keys or [])
        projects = self.client.get_projects(project_keys=selected or None)

        if selected:
            projects = [project for project in projects if project.get('key') in selected]

        rows = [self.processor.process_project_data(project) for project in projects]
        self.repository.upsert_projects(rows)
        self.repository.commit()

        project_keys = [row['key'] for row in rows]
        logger.info(f"Config {self.config.id}: synced {len(rows)} Jira projects {project_keys}")
        return {'total_projects': len(rows), 'project_keys': project_keys}

    def sync_issues(self, project_key: str) -> Dict[str, Any]:
        """
        Drain the issue search for one project.

        Repeats {fetch page at offset; upsert; commit; advance} until a page is
        empty, shorter than the page size, or the cumulative count reaches the
        reported total. A failure mid-drain propagates; committed pages remain.

        Returns:
            {"project_key": str, "total_issues": int, "pages": int}
        """
        jql = build_issue_jql(project_key)
        start_at = 0
        total_issues = 0
        pages = 0

        while True:
            page = self.client.search_issues(jql, start_at=start_at, max_results=self.page_size)
            issues: List[Dict] = page.get('issues') or []
            total = page.get('total')

            if issues:
                rows = [self.processor.process_issue_data(issue) for issue in issues]
                self.repository.upsert_issues(rows)
                self.repository.commit()
                total_issues += len(rows)
                pages += 1
                logger.debug(f"Config {self.config.id}: {project_key} page {pages} upserted {len(rows)} issues ({total_issues}/{total})")

            if not issues or len(issues) < self.page_size or (total is not None and total_issues >= total):
                break

            start_at += self.page_size

        logger.info(f"Config {self.config.id}: synced {total_issues} issues for {project_key} in {pages} pages")
        return {'project_key': project_key, 'total_issues': total_issues, 'pages': pages}

    def sync_iterations(self, project_key: str) -> Dict[str, Any]:
        """
        Upsert the sprints of every scrum board of the project.

        Returns:
            {"project_key": str, "total_sprints": int}
        """
        sprint_page_size = get_settings().JIRA_SPRINT_PAGE_SIZE
        rows_by_id: Dict[str, Dict] = {}

        for board in self.client.get_boards(project_key):
            for sprint in self.client.get_sprints(board.get('id'), max_results=sprint_page_size):
                row = self.processor.process_sprint_data(sprint, project_key, board_id=board.get('id'))
                # A sprint shared by several boards is stored once
                rows_by_id.setdefault(row['external_id'], row)

        rows = list(rows_by_id.values())
        self.repository.upsert_sprints(rows)
        self.repository.commit()

        logger.info(f"Config {self.config.id}: synced {len(rows)} sprints for {project_key}")
        return {'project_key': project_key, 'total_sprints': len(rows)}
