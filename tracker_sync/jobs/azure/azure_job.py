"""
Azure DevOps Sync Job

Pulls projects, work items and iterations from Azure Boards into the mirror
tables. Work items are located with a WIQL query and fetched in id batches;
each batch is committed before the next is requested.
"""

from typing import Any, Dict, List

from tracker_sync.core.config import get_settings
from tracker_sync.core.logging_config import get_logger
from tracker_sync.core.utils import chunk_list, DataValidator
from tracker_sync.jobs.azure.azure_client import AzureDevOpsClient
from tracker_sync.jobs.azure.azure_processor import AzureDataProcessor
from tracker_sync.jobs.mirror_repository import MirrorRepository
from tracker_sync.models.unified_models import TrackerConfiguration

logger = get_logger(__name__)


class AzureSyncJob:
    """Sync operations for an Azure DevOps configuration."""

    def __init__(self, config: TrackerConfiguration, repository: MirrorRepository, client: AzureDevOpsClient):
        self.config = config
        self.repository = repository
        self.client = client
        self.processor = AzureDataProcessor(config.id)
        self.batch_size = get_settings().AZURE_BATCH_SIZE

    @property
    def area_paths(self) -> List[str]:
        settings = self.config.settings or {}
        return DataValidator.parse_project_keys(settings.get('area_paths'))

    def sync_projects(self) -> Dict[str, Any]:
        selected = list(self.config.selected_project_keys or [])
        projects = self.client.get_projects()
        if selected:
            projects = [project for project in projects if project.get('name') in selected]

        rows = [self.processor.process_project_data(project) for project in projects]
        self.repository.upsert_projects(rows)
        self.repository.commit()

        project_keys = [row['key'] for row in rows]
        logger.info(f"Config {self.config.id}: synced {len(rows)} Azure DevOps projects {project_keys}")
        return {'total_projects': len(rows), 'project_keys': project_keys}

    def sync_issues(self, project_key: str) -> Dict[str, Any]:
        """
        Upsert the project's work items in batches of AZURE_BATCH_SIZE ids.

        Returns:
            {"project_key": str, "total_issues": int, "pages": int}
        """
        work_item_ids = self.client.query_work_item_ids(project_key, self.area_paths)
        total_issues = 0
        pages = 0

        for batch in chunk_list(work_item_ids, self.batch_size):
            work_items = self.client.get_work_items(batch)
            rows = [self.processor.process_work_item_data(item, project_key) for item in work_items]
            self.repository.upsert_issues(rows)
            self.repository.commit()
            total_issues += len(rows)
            pages += 1

        logger.info(
            f"Config {self.config.id}: synced {total_issues} of {len(work_item_ids)} work items "
            f"for {project_key} in {pages} batches"
        )
        return {'project_key': project_key, 'total_issues': total_issues, 'pages': pages}

    def sync_iterations(self, project_key: str) -> Dict[str, Any]:
        iterations = self.client.get_iterations(project_key)
        rows = [self.processor.process_iteration_data(iteration, project_key) for iteration in iterations]
        self.repository.upsert_sprints(rows)
        self.repository.commit()

        logger.info(f"Config {self.config.id}: synced {len(rows)} iterations for {project_key}")
        return {'project_key': project_key, 'total_sprints': len(rows)}
