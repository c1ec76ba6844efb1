"""
HTTP surface tests. The lifespan is not entered, so no scheduler starts and
the in-memory database from the fixtures is used.
"""

import hashlib
import hmac
import inspect
import json
import threading
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from tracker_sync.api import insight_routes
from tracker_sync.core.errors import LLMError
from tracker_sync.main import app, scheduled_insight_drain

API = "/api/v1"


@pytest.fixture
def client(database):
    return TestClient(app)


def _issue_event(project_key='PROJ', event='jira:issue_created'):
    return {
        'webhookEvent': event,
        'issue': {
            'id': '10001',
            'key': f'{project_key}-1',
            'fields': {
                'summary': 'Login fails',
                'status': {'name': 'To Do'},
                'project': {'id': '10000', 'key': project_key},
                'updated': '2024-03-01T10:00:00.000+0000',
            },
        },
    }


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()['database_status'] == 'healthy'
    assert response.headers['X-Content-Type-Options'] == 'nosniff'


class TestConfigurationRoutes:

    def test_crud_never_returns_the_token(self, client):
        created = client.post(f"{API}/configurations", json={
            'name': 'Acme Jira',
            'base_url': 'https://acme.atlassian.net/',
            'username': 'jane@acme.com',
            'api_token': 'super-secret',
            'project_keys': 'PROJ, OPS, PROJ',
        })

        assert created.status_code == 201
        body = created.json()
        assert body['has_token'] is True
        assert body['base_url'] == 'https://acme.atlassian.net'
        assert body['selected_project_keys'] == ['PROJ', 'OPS']
        assert 'super-secret' not in created.text
        assert 'secret_token' not in body

        config_id = body['id']
        updated = client.put(f"{API}/configurations/{config_id}", json={'sync_enabled': False, 'api_token': ''})
        assert updated.status_code == 200
        assert updated.json()['sync_enabled'] is False
        assert updated.json()['has_token'] is True

        listed = client.get(f"{API}/configurations", params={'provider': 'jira'})
        assert [c['id'] for c in listed.json()] == [config_id]
        assert client.get(f"{API}/configurations", params={'provider': 'azure_devops'}).json() == []

        assert client.delete(f"{API}/configurations/{config_id}").status_code == 204
        assert client.get(f"{API}/configurations/{config_id}").status_code == 404

    def test_invalid_url_is_rejected(self, client):
        response = client.post(f"{API}/configurations", json={
            'name': 'Acme Jira',
            'base_url': 'acme.atlassian.net',
            'username': 'jane@acme.com',
            'api_token': 'tok',
        })

        assert response.status_code == 400
        assert response.json()['error'] == 'validation_error'
        assert response.json()['message'].startswith('Invalid URL')

    def test_unknown_configuration(self, client):
        response = client.get(f"{API}/configurations/999")

        assert response.status_code == 404
        assert response.json() == {'error': 'not_found', 'message': 'Configuration 999 not found'}


class TestSyncRoutes:

    def test_connection_test_uses_stored_token(self, client, make_config):
        config = make_config(project_keys=['PROJ'], token='stored-token')
        outcome = {
            'success': False,
            'message': 'Invalid credentials. Check your email and API token.',
            'user': None,
            'accessible_projects': [],
            'inaccessible_projects': [],
        }

        with patch('tracker_sync.jobs.orchestrator.test_connection', return_value=outcome) as mock_test_connection:
            response = client.post(f"{API}/sync/test-connection", json={'config_id': config.id})

        assert response.status_code == 200
        assert response.json()['success'] is False
        mock_test_connection.assert_called_once_with(
            'jira', 'https://acme.atlassian.net', 'jane@acme.com', 'stored-token', ['PROJ']
        )

    def test_sync_one_configuration(self, client, make_config):
        config = make_config()
        result = {
            'config_id': config.id,
            'success': True,
            'projects': {'total_projects': 1, 'project_keys': ['PROJ']},
            'issues': [{'project_key': 'PROJ', 'total_issues': 2, 'pages': 1}],
            'iterations': [],
            'last_sync_at': None,
        }

        with patch('tracker_sync.jobs.orchestrator.sync_integration', return_value=result):
            response = client.post(f"{API}/sync/{config.id}")

        assert response.status_code == 200
        assert response.json()['issues'][0]['total_issues'] == 2

    def test_sync_errors_carry_their_type(self, client, make_config):
        config = make_config()

        with patch('tracker_sync.jobs.orchestrator.sync_integration', side_effect=LLMError("boom")):
            response = client.post(f"{API}/sync/{config.id}")

        assert response.status_code == 500
        assert response.json()['error'] == 'llm_error'


class TestWebhookRoute:

    def test_unmatched_project(self, client):
        response = client.post(f"{API}/webhooks/jira", json=_issue_event('NOPE'))

        assert response.status_code == 200
        body = response.json()
        assert body['message'] == 'No matching configuration'
        assert body['event'] == 'issue_created'
        assert 'config_id' not in body

    def test_matched_issue_is_mirrored(self, client, make_config):
        config = make_config(project_keys=['PROJ'])

        response = client.post(f"{API}/webhooks/jira", json=_issue_event('PROJ'))

        assert response.status_code == 200
        body = response.json()
        assert body['message'] == 'Webhook processed successfully'
        assert body['config_id'] == config.id
        assert len(body['enqueued_jobs']) == 1

    @pytest.mark.parametrize("payload", [{}, {'webhookEvent': 'jira:issue_created'}, [1, 2]])
    def test_malformed_payload(self, client, payload):
        response = client.post(f"{API}/webhooks/jira", json=payload)

        assert response.status_code == 400
        assert response.json()['error'] == 'validation_error'

    def test_body_that_is_not_json(self, client):
        response = client.post(f"{API}/webhooks/jira", content=b"not json",
                               headers={'Content-Type': 'application/json'})

        assert response.status_code == 400

    def test_signature_required_when_secret_configured(self, client, settings, monkeypatch):
        monkeypatch.setattr(settings, 'JIRA_WEBHOOK_SECRET', 'hook-secret')
        body = json.dumps(_issue_event('NOPE')).encode()
        signature = 'sha256=' + hmac.new(b'hook-secret', body, hashlib.sha256).hexdigest()
        headers = {'Content-Type': 'application/json'}

        rejected = client.post(f"{API}/webhooks/jira", content=body,
                               headers={**headers, 'X-Hub-Signature': 'sha256=deadbeef'})
        accepted = client.post(f"{API}/webhooks/jira", content=body,
                               headers={**headers, 'X-Hub-Signature': signature})

        assert rejected.status_code == 401
        assert accepted.status_code == 200


class TestInsightRoutes:

    def test_list_requires_known_configuration(self, client):
        assert client.get(f"{API}/insights", params={'config_id': 999}).status_code == 404

    def test_list_empty(self, client, make_config):
        config = make_config()

        response = client.get(f"{API}/insights", params={'config_id': config.id, 'insight_type': 'sla_risk'})

        assert response.status_code == 200
        assert response.json() == []

    def test_generate_failure_reports_llm_error(self, client, make_config):
        config = make_config()

        with patch('tracker_sync.api.insight_routes.InsightGenerator') as generator_class:
            generator_class.return_value.generate = AsyncMock(side_effect=LLMError("All LLM models failed"))
            response = client.post(f"{API}/insights/generate",
                                   json={'config_id': config.id, 'insight_type': 'sla_risk'})

        assert response.status_code == 500
        assert response.json() == {'error': 'llm_error', 'message': 'All LLM models failed'}

    def test_unknown_insight_type_is_rejected(self, client, make_config):
        config = make_config()

        response = client.post(f"{API}/insights/generate", json={'config_id': config.id, 'insight_type': 'velocity'})

        assert response.status_code == 422

    def test_process_jobs(self, client):
        with patch('tracker_sync.api.insight_routes.InsightJobDispatcher') as dispatcher_class:
            dispatcher_class.return_value.process_pending = AsyncMock(
                return_value={'claimed': 2, 'succeeded': 1, 'failed': 1}
            )
            response = client.post(f"{API}/insights/jobs/process", params={'limit': 5})

        assert response.json() == {'claimed': 2, 'succeeded': 1, 'failed': 1}
        dispatcher_class.return_value.process_pending.assert_awaited_once_with(5)


class TestBlockingWorkOffTheEventLoop:

    @pytest.mark.parametrize("endpoint", [
        insight_routes.list_insights,
        insight_routes.generate_insights,
        insight_routes.process_insight_jobs,
    ])
    def test_insight_endpoints_run_in_the_threadpool(self, endpoint):
        assert not inspect.iscoroutinefunction(endpoint)

    @pytest.mark.asyncio
    async def test_scheduled_drain_runs_in_a_worker_thread(self, database):
        seen = {}

        def fake_drain(db):
            seen['db'] = db
            seen['thread'] = threading.get_ident()
            return {'claimed': 0, 'succeeded': 0, 'failed': 0}

        with patch('tracker_sync.main.drain_insight_jobs', side_effect=fake_drain):
            await scheduled_insight_drain()

        assert seen['db'] is database
        assert seen['thread'] != threading.get_ident()
