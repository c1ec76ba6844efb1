"""
Tests for the Azure DevOps client, processor and sync job.
"""

from datetime import datetime
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import select

from tracker_sync.core.errors import AuthError, TrackerPermissionError
from tracker_sync.jobs.azure.azure_client import AzureDevOpsClient, build_wiql
from tracker_sync.jobs.azure.azure_job import AzureSyncJob
from tracker_sync.jobs.azure.azure_processor import AzureDataProcessor
from tracker_sync.jobs.mirror_repository import MirrorRepository
from tracker_sync.models.unified_models import MirroredIssue, MirroredSprint


def _work_item(work_item_id, state='Active', **fields):
    data = {
        'System.Title': f"Work item {work_item_id}",
        'System.WorkItemType': 'User Story',
        'System.State': state,
        'System.TeamProject': 'Fabrikam',
        'System.AssignedTo': {'displayName': 'Jane Doe', 'uniqueName': 'jane@fabrikam.com'},
        'System.CreatedBy': {'displayName': 'John Roe'},
        'System.AreaPath': 'Fabrikam\\Web',
        'System.Tags': 'ui; regression',
        'System.CreatedDate': '2024-03-01T10:00:00.123Z',
        'System.ChangedDate': '2024-03-02T10:00:00Z',
        'Microsoft.VSTS.Scheduling.StoryPoints': 3,
        'Microsoft.VSTS.Scheduling.OriginalEstimate': 8,
        'Microsoft.VSTS.Scheduling.RemainingWork': 2.5,
        'Microsoft.VSTS.Common.Priority': 2,
    }
    data.update(fields)
    return {'id': work_item_id, 'fields': data}


class TestWiql:

    def test_project_only(self):
        assert build_wiql('Fabrikam') == (
            "SELECT [System.Id] FROM WorkItems WHERE [System.TeamProject] = 'Fabrikam' "
            "ORDER BY [System.ChangedDate] DESC"
        )

    def test_area_paths_and_quote_escaping(self):
        wiql = build_wiql("O'Brien", ['Web', 'Mobile'])

        assert "[System.TeamProject] = 'O''Brien'" in wiql
        assert "([System.AreaPath] UNDER 'O''Brien\\Web' OR [System.AreaPath] UNDER 'O''Brien\\Mobile')" in wiql


class TestAzureClient:

    @patch('tracker_sync.jobs.azure.azure_client.requests.request')
    def test_sign_in_page_response_is_auth_error(self, mock_request):
        mock_request.return_value = Mock(status_code=203, ok=True)
        client = AzureDevOpsClient(token='bad', base_url='https://dev.azure.com/fabrikam')

        with pytest.raises(AuthError):
            client.get_connection_data()

    @patch('tracker_sync.jobs.azure.azure_client.requests.request')
    def test_403_is_permission_error(self, mock_request):
        mock_request.return_value = Mock(status_code=403, ok=False)
        client = AzureDevOpsClient(token='pat', base_url='https://dev.azure.com/fabrikam')

        with pytest.raises(TrackerPermissionError):
            client.get_projects()

    @patch('tracker_sync.jobs.azure.azure_client.requests.request')
    def test_pat_sent_as_basic_auth_with_api_version(self, mock_request):
        response = Mock(status_code=200, ok=True)
        response.json.return_value = {'workItems': [{'id': 5}, {'id': 3}]}
        mock_request.return_value = response
        client = AzureDevOpsClient(token='pat', base_url='https://dev.azure.com/fabrikam/')

        ids = client.query_work_item_ids('Fabrikam Web')

        assert ids == [5, 3]
        args, kwargs = mock_request.call_args
        assert args == ('POST', 'https://dev.azure.com/fabrikam/Fabrikam%20Web/_apis/wit/wiql')
        assert kwargs['auth'] == ('', 'pat')
        assert kwargs['params']['api-version'] == '7.0'


class TestAzureProcessor:

    def test_work_item_mapping(self):
        row = AzureDataProcessor(config_id=4).process_work_item_data(
            _work_item(17, state='Closed', **{'Microsoft.VSTS.Common.ClosedDate': '2024-03-05T08:00:00Z'}),
            'Fabrikam'
        )

        assert row['external_id'] == '17'
        assert row['key'] == '17'
        assert row['project_key'] == 'Fabrikam'
        assert row['assignee_name'] == 'Jane Doe'
        assert row['priority'] == '2'
        assert row['story_points'] == 3.0
        assert row['original_estimate'] == 8 * 3600
        assert row['remaining_estimate'] == 9000
        assert row['time_spent'] is None
        assert row['labels'] == ['ui', 'regression']
        assert row['components'] == ['Fabrikam\\Web']
        assert row['created_date'] == datetime(2024, 3, 1, 10, 0, 0, 123000)
        assert row['resolved_date'] == datetime(2024, 3, 5, 8, 0)

    def test_iteration_state_from_time_frame(self):
        iteration = {
            'id': 'a1b2',
            'name': 'Sprint 3',
            'path': 'Fabrikam\\Sprint 3',
            'attributes': {'timeFrame': 'current', 'startDate': '2024-03-01T00:00:00Z', 'finishDate': '2024-03-14T00:00:00Z'},
        }

        row = AzureDataProcessor(config_id=4).process_iteration_data(iteration, 'Fabrikam')

        assert row['state'] == 'active'
        assert row['end_date'] == datetime(2024, 3, 14)


class TestAzureSyncJob:

    def test_work_items_are_fetched_in_batches(self, session, make_config, settings, monkeypatch):
        monkeypatch.setattr(settings, 'AZURE_BATCH_SIZE', 2)
        config = make_config(name='Fabrikam', provider='azure_devops', username=None,
                             project_keys=['Fabrikam'], settings={'area_paths': 'Web'})
        client = Mock()
        client.query_work_item_ids.return_value = [1, 2, 3]
        client.get_work_items.side_effect = lambda ids: [_work_item(i) for i in ids]

        result = AzureSyncJob(config, MirrorRepository(session), client).sync_issues('Fabrikam')

        assert result == {'project_key': 'Fabrikam', 'total_issues': 3, 'pages': 2}
        client.query_work_item_ids.assert_called_once_with('Fabrikam', ['Web'])
        assert [call.args[0] for call in client.get_work_items.call_args_list] == [[1, 2], [3]]
        keys = session.execute(select(MirroredIssue.key).order_by(MirroredIssue.key)).scalars().all()
        assert keys == ['1', '2', '3']

    def test_projects_and_iterations(self, session, make_config):
        config = make_config(name='Fabrikam', provider='azure_devops', username=None, project_keys=['Fabrikam'])
        client = Mock()
        client.get_projects.return_value = [
            {'id': 'guid-1', 'name': 'Fabrikam'},
            {'id': 'guid-2', 'name': 'Contoso'},
        ]
        client.get_iterations.return_value = [
            {'id': 'it-1', 'name': 'Sprint 1', 'attributes': {'timeFrame': 'past'}},
            {'id': 'it-2', 'name': 'Sprint 2', 'attributes': {'timeFrame': 'future'}},
        ]
        job = AzureSyncJob(config, MirrorRepository(session), client)

        assert job.sync_projects() == {'total_projects': 1, 'project_keys': ['Fabrikam']}
        assert job.sync_iterations('Fabrikam') == {'project_key': 'Fabrikam', 'total_sprints': 2}
        states = session.execute(select(MirroredSprint.state).order_by(MirroredSprint.external_id)).scalars().all()
        assert states == ['closed', 'future']
