"""
Shared fixtures: an in-memory SQLite database, tracker configurations and
Jira payload builders.
"""

import pytest
from cryptography.fernet import Fernet

from tracker_sync.core.config import AppConfig, get_settings
from tracker_sync.core.database import PostgreSQLDatabase, set_database
from tracker_sync.models.unified_models import TrackerConfiguration

TEST_ENCRYPTION_KEY = Fernet.generate_key().decode()


@pytest.fixture
def settings(monkeypatch):
    """The cached settings; attribute changes are undone after the test."""
    current = get_settings()
    monkeypatch.setattr(current, "QUEUE_PUBLISH_ENABLED", False)
    monkeypatch.setattr(current, "JIRA_WEBHOOK_SECRET", None)
    monkeypatch.setattr(current, "ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    return current


@pytest.fixture
def database(settings):
    db = PostgreSQLDatabase("sqlite://")
    db.create_tables()
    set_database(db)
    yield db
    set_database(None)
    db.close_connections()


@pytest.fixture
def session(database):
    session = database.get_session()
    yield session
    session.close()


@pytest.fixture
def make_config(session):
    """Factory for committed TrackerConfiguration rows."""

    def _make(name="Acme Jira", provider="jira", project_keys=None, token="atlassian-token",
              base_url="https://acme.atlassian.net", username="jane@acme.com",
              settings=None, sync_enabled=True):
        config = TrackerConfiguration(
            name=name,
            provider=provider,
            base_url=base_url,
            username=username,
            secret_token=AppConfig.encrypt_token(token, AppConfig.load_key()),
            selected_project_keys=list(project_keys or []),
            settings=dict(settings or {}),
            sync_enabled=sync_enabled,
        )
        session.add(config)
        session.commit()
        return config

    return _make


@pytest.fixture
def jira_issue():
    """Builder for Jira REST v3 issue payloads."""

    def _build(issue_id, key, status="To Do", story_points=None, project_key=None,
               updated="2024-03-01T10:00:00.000+0000", resolutiondate=None, **fields):
        project_key = project_key or key.split('-')[0]
        payload_fields = {
            'summary': f"Summary of {key}",
            'description': None,
            'issuetype': {'name': 'Story'},
            'status': {'name': status},
            'priority': {'name': 'Medium'},
            'assignee': {'displayName': 'Jane Doe'},
            'reporter': {'displayName': 'John Roe'},
            'project': {'id': '10000', 'key': project_key},
            'customfield_10016': story_points,
            'created': '2024-02-01T09:00:00.000+0000',
            'updated': updated,
            'resolutiondate': resolutiondate,
            'labels': [],
            'components': [],
            'fixVersions': [],
        }
        payload_fields.update(fields)
        return {'id': str(issue_id), 'key': key, 'fields': payload_fields}

    return _build


@pytest.fixture
def jira_project():
    def _build(project_id, key, name=None):
        return {
            'id': str(project_id),
            'key': key,
            'name': name or f"Project {key}",
            'projectTypeKey': 'software',
            'lead': {'displayName': 'Jane Doe'},
        }

    return _build
