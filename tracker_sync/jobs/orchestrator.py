"""
Sync Orchestrator

Entry points of the sync worker: connection check, single-configuration sync
(projects -> issues -> iterations, strictly sequential) and the periodic
sync of every enabled configuration.
"""

from typing import Any, Dict, List, Optional, Union

from tracker_sync.core.errors import (
    AuthError, TrackerPermissionError, NetworkError, ValidationError, TrackerSyncError
)
from tracker_sync.core.logging_config import get_logger
from tracker_sync.core.utils import DataValidator, DateTimeHelper
from tracker_sync.jobs.azure.azure_client import AzureDevOpsClient
from tracker_sync.jobs.azure.azure_job import AzureSyncJob
from tracker_sync.jobs.jira.jira_client import JiraAPIClient
from tracker_sync.jobs.jira.jira_job import JiraSyncJob
from tracker_sync.jobs.mirror_repository import MirrorRepository
from tracker_sync.models.unified_models import TrackerConfiguration
from tracker_sync.services.configuration_service import ConfigurationService, validate_base_url

logger = get_logger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials. Check the username and API token."
ACCESS_DENIED_MESSAGE = "Access denied. Check the API token permissions."


def build_client(provider: str, base_url: str, username: Optional[str], token: str):
    """Tracker client for the provider."""
    if provider == 'azure_devops':
        return AzureDevOpsClient(token=token, base_url=base_url)
    if provider == 'jira':
        return JiraAPIClient(username=username, token=token, base_url=base_url)
    raise ValidationError(f"Unsupported tracker provider '{provider}'")


def build_sync_job(config: TrackerConfiguration, repository: MirrorRepository, client=None):
    """Sync job for the configuration's provider."""
    if client is None:
        token = ConfigurationService.decrypt_token(config)
        client = build_client(config.provider, config.base_url, config.username, token)

    if config.provider == 'azure_devops':
        return AzureSyncJob(config, repository, client)
    return JiraSyncJob(config, repository, client)


def test_connection(provider: str, base_url: str, username: Optional[str], token: str,
                    project_keys: Optional[Union[str, List[str]]] = None, client=None) -> Dict[str, Any]:
    """
    Check the tracker's current-user endpoint.

    Never raises for tracker failures; they come back as {"success": False, "message": ...}.
    Missing URL or token raises ValidationError.

    Returns:
        {"success": bool, "message": str, "user": dict|None,
         "accessible_projects": [...], "inaccessible_projects": [...]}
    """
    if not base_url or not token or (provider == 'jira' and not username):
        raise ValidationError("URL, username and API token are required")
    base_url = validate_base_url(base_url)
    keys = DataValidator.parse_project_keys(project_keys)

    result = {
        'success': False,
        'message': '',
        'user': None,
        'accessible_projects': [],
        'inaccessible_projects': [],
    }

    try:
        client = client or build_client(provider, base_url, username, token)
        if provider == 'azure_devops':
            identity = client.get_connection_data().get('authenticatedUser') or {}
            user = {
                'displayName': identity.get('providerDisplayName') or identity.get('customDisplayName'),
                'id': identity.get('id'),
            }
        else:
            me = client.get_myself()
            user = {
                'displayName': me.get('displayName'),
                'emailAddress': me.get('emailAddress'),
                'accountId': me.get('accountId'),
            }
    except AuthError:
        result['message'] = INVALID_CREDENTIALS_MESSAGE
        return result
    except TrackerPermissionError:
        result['message'] = ACCESS_DENIED_MESSAGE
        return result
    except NetworkError as e:
        result['message'] = f"Connection error: {e.message}"
        return result

    result['success'] = True
    result['user'] = user
    message = f"Connection successful. User: {user.get('displayName')}"
    if user.get('emailAddress'):
        message += f" ({user['emailAddress']})"

    if keys and provider == 'jira':
        for key in keys:
            try:
                client.get_project(key)
                result['accessible_projects'].append(key)
            except TrackerSyncError as e:
                logger.debug(f"Project {key} not accessible: {e.message}")
                result['inaccessible_projects'].append(key)

        if result['accessible_projects']:
            message += f"\nAccessible projects: {', '.join(result['accessible_projects'])}"
        if result['inaccessible_projects']:
            message += f"\nInaccessible projects: {', '.join(result['inaccessible_projects'])}"

    result['message'] = message
    logger.info(f"Connection test to {base_url} succeeded for {user.get('displayName')}")
    return result


# Not a pytest test when imported into test modules
test_connection.__test__ = False


def sync_integration(session, config_id: int, job=None) -> Dict[str, Any]:
    """
    Full sync of one configuration: projects, then issues of every selected
    project (or every mirrored project when the selection is empty), then
    iterations. Stamps last_sync_at only when every step succeeded.
    """
    service = ConfigurationService(session)
    config = service.get_configuration(config_id)
    repository = MirrorRepository(session)
    job = job or build_sync_job(config, repository)

    start = DateTimeHelper.now_utc()
    logger.info(f"Starting {config.provider} sync for configuration {config.id} ({config.name})")

    projects = job.sync_projects()

    project_keys = list(config.selected_project_keys or [])
    if not project_keys:
        project_keys = repository.get_project_keys(config.id)

    issues = [job.sync_issues(project_key) for project_key in project_keys]
    iterations = [job.sync_iterations(project_key) for project_key in project_keys]

    service.mark_synced(config)
    repository.commit()

    elapsed = (DateTimeHelper.now_utc() - start).total_seconds()
    logger.info(
        f"Configuration {config.id} synced in {DateTimeHelper.format_duration(elapsed)}: "
        f"{projects['total_projects']} projects, {sum(r['total_issues'] for r in issues)} issues, "
        f"{sum(r['total_sprints'] for r in iterations)} sprints"
    )
    return {
        'config_id': config.id,
        'success': True,
        'projects': projects,
        'issues': issues,
        'iterations': iterations,
        'last_sync_at': config.last_sync_at,
    }


def sync_all(database) -> Dict[str, Any]:
    """
    Sync every enabled configuration, each in its own session.

    A failing configuration is recorded and does not stop the others.
    """
    with database.get_session_context() as session:
        config_ids = [config.id for config in MirrorRepository(session).get_enabled_configurations()]

    results = []
    for config_id in config_ids:
        try:
            with database.get_session_context() as session:
                outcome = sync_integration(session, config_id)
            results.append({
                'config_id': config_id,
                'success': True,
                'total_issues': sum(r['total_issues'] for r in outcome['issues']),
            })
        except TrackerSyncError as e:
            logger.error(f"Sync failed for configuration {config_id}: {e.error_type}: {e.message}")
            results.append({
                'config_id': config_id,
                'success': False,
                'error': e.message,
                'error_type': e.error_type,
            })
        except Exception as e:
            logger.error(f"Sync failed for configuration {config_id} with unexpected {type(e).__name__}: {e}")
            results.append({
                'config_id': config_id,
                'success': False,
                'error': str(e),
                'error_type': 'internal_error',
            })

    succeeded = sum(1 for result in results if result['success'])
    logger.info(f"Sync of all configurations finished: {succeeded}/{len(results)} succeeded")
    return {
        'total': len(results),
        'succeeded': succeeded,
        'failed': len(results) - succeeded,
        'results': results,
    }
