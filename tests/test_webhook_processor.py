"""
Tests for the Jira webhook processor.
"""

import hashlib
import hmac
from datetime import datetime
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import event, select

from tracker_sync.core.errors import ValidationError
from tracker_sync.jobs.jira.jira_processor import JiraDataProcessor
from tracker_sync.jobs.mirror_repository import MirrorRepository
from tracker_sync.models.unified_models import Insight, InsightJob, MirroredIssue, MirroredSprint, WebhookLogEntry
from tracker_sync.webhooks.webhook_processor import (
    WebhookProcessor, NO_MATCH_MESSAGE, extract_project_key_from_goal, normalize_event_name, verify_signature
)


def _issue_event(event_name, issue, changelog=None):
    payload = {'webhookEvent': event_name, 'timestamp': 1709287200000, 'issue': issue}
    if changelog is not None:
        payload['changelog'] = changelog
    return payload


def _jobs(session):
    return session.execute(select(InsightJob).order_by(InsightJob.id)).scalars().all()


def _log(session, log_id):
    session.expire_all()
    return session.get(WebhookLogEntry, log_id)


class TestHelpers:

    def test_normalize_event_name(self):
        assert normalize_event_name('jira:issue_created') == 'issue_created'
        assert normalize_event_name('sprint_started') == 'sprint_started'

    def test_project_key_from_sprint_goal(self):
        assert extract_project_key_from_goal('Finish PROJ-12 and PROJ-14') == 'PROJ'
        assert extract_project_key_from_goal('No keys here') is None
        assert extract_project_key_from_goal(None) is None

    def test_signature(self):
        body = b'{"webhookEvent": "jira:issue_updated"}'
        digest = hmac.new(b'shh', body, hashlib.sha256).hexdigest()

        assert verify_signature(body, f'sha256={digest}', 'shh')
        assert not verify_signature(body, f'sha256={digest}', 'other')
        assert not verify_signature(body, None, 'shh')


class TestValidation:

    @pytest.mark.parametrize("payload", [
        None,
        {},
        {'webhookEvent': ''},
        {'webhookEvent': 'jira:issue_created'},
        {'webhookEvent': 'jira:issue_updated', 'issue': {'id': '1', 'key': 'PROJ-1', 'fields': {}}},
        {'webhookEvent': 'sprint_started'},
        {'webhookEvent': 'jira:worklog_updated'},
        {'webhookEvent': 'comment_created', 'issue': 'PROJ-1'},
    ])
    def test_malformed_payload_is_rejected_before_logging(self, session, payload):
        with pytest.raises(ValidationError):
            WebhookProcessor(session).process_webhook(payload)

        assert session.execute(select(WebhookLogEntry)).scalars().all() == []


class TestIssueEvents:

    def test_issue_updated_maps_updated_date_and_enqueues_sla_risk(self, session, make_config, jira_issue):
        config = make_config(project_keys=['PROJ'])
        issue = jira_issue(10001, 'PROJ-1', status='In Progress', updated='2024-03-04T15:20:30.000+0000')

        result = WebhookProcessor(session).process_webhook(_issue_event('jira:issue_updated', issue))

        row = MirrorRepository(session).get_issue(config.id, '10001')
        assert row.updated_date == datetime(2024, 3, 4, 15, 20, 30)
        assert row.status == 'In Progress'
        assert result['config_id'] == config.id
        assert result['event'] == 'issue_updated'

        jobs = _jobs(session)
        assert [(job.insight_type, job.issue_ids, job.status) for job in jobs] == [('sla_risk', ['10001'], 'pending')]
        assert result['enqueued_jobs'] == [jobs[0].id]

        log = _log(session, result['log_id'])
        assert log.status == 'processed'
        assert log.processed is True
        assert log.processed_at is not None
        assert log.config_id == config.id
        assert log.issue_key == 'PROJ-1'

    def test_issue_updated_overwrites_existing_row(self, session, make_config, jira_issue):
        config = make_config(project_keys=['PROJ'])
        processor = WebhookProcessor(session)
        processor.process_webhook(_issue_event('jira:issue_created', jira_issue(1, 'PROJ-1', summary='Old')))

        processor.process_webhook(_issue_event('jira:issue_updated', jira_issue(1, 'PROJ-1', summary='New')))
        session.expire_all()

        rows = session.execute(select(MirroredIssue)).scalars().all()
        assert [(row.external_id, row.summary, row.config_id) for row in rows] == [('1', 'New', config.id)]

    def test_duplicate_create_is_treated_as_success(self, session, make_config, jira_issue):
        make_config(project_keys=['PROJ'])
        payload = _issue_event('jira:issue_created', jira_issue(1, 'PROJ-1'))
        processor = WebhookProcessor(session)

        processor.process_webhook(payload)
        result = processor.process_webhook(payload)

        assert result['result']['message'] == 'Issue PROJ-1 already synced'
        assert len(session.execute(select(MirroredIssue)).scalars().all()) == 1
        assert _log(session, result['log_id']).status == 'processed'

    def test_delete_removes_insights_before_issue(self, database, session, make_config, jira_issue):
        config = make_config(project_keys=['PROJ'])
        issue = jira_issue(1, 'PROJ-1')
        MirrorRepository(session).upsert_issues([JiraDataProcessor(config.id).process_issue_data(issue)])
        session.add(Insight(config_id=config.id, subject_type='issue', subject_id='1', project_key='PROJ',
                            insight_type='sla_risk', confidence_score=0.4, payload={'risk_score': 0.4}))
        session.commit()

        statements = []

        @event.listens_for(database.engine, 'before_cursor_execute')
        def capture(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith('DELETE'):
                statements.append(statement)

        result = WebhookProcessor(session).process_webhook(_issue_event('jira:issue_deleted', issue))
        event.remove(database.engine, 'before_cursor_execute', capture)

        assert len(statements) == 2
        assert 'insights' in statements[0]
        assert 'mirrored_issues' in statements[1]
        assert session.execute(select(Insight)).scalars().all() == []
        assert session.execute(select(MirroredIssue)).scalars().all() == []
        assert result['enqueued_jobs'] == []

    def test_transition_to_done_enqueues_sprint_prediction(self, session, make_config, jira_issue):
        make_config(project_keys=['PROJ'])
        changelog = {'items': [{'field': 'status', 'fromString': 'In Progress', 'toString': 'Done'}]}

        WebhookProcessor(session).process_webhook(
            _issue_event('jira:issue_updated', jira_issue(1, 'PROJ-1', status='Done'), changelog)
        )

        jobs = _jobs(session)
        assert [(job.insight_type, job.project_keys) for job in jobs] == [
            ('sla_risk', ['PROJ']),
            ('sprint_prediction', ['PROJ']),
        ]

    def test_non_done_transition_does_not_enqueue_sprint_prediction(self, session, make_config, jira_issue):
        make_config(project_keys=['PROJ'])
        changelog = {'items': [{'field': 'assignee', 'toString': 'Done'}, {'field': 'status', 'toString': 'In Review'}]}

        WebhookProcessor(session).process_webhook(_issue_event('jira:issue_updated', jira_issue(1, 'PROJ-1'), changelog))

        assert [job.insight_type for job in _jobs(session)] == ['sla_risk']

    def test_unhandled_event_is_processed_as_no_op(self, session, make_config, jira_issue):
        make_config(project_keys=['PROJ'])

        result = WebhookProcessor(session).process_webhook(_issue_event('jira:worklog_updated', jira_issue(1, 'PROJ-1')))

        assert result['result']['message'] == 'Unhandled event type: jira:worklog_updated'
        assert _log(session, result['log_id']).status == 'processed'
        assert session.execute(select(MirroredIssue)).scalars().all() == []


class TestMatching:

    def test_unmatched_project_is_logged(self, session, make_config, jira_issue):
        make_config(project_keys=['OPS'])

        result = WebhookProcessor(session).process_webhook(_issue_event('jira:issue_created', jira_issue(1, 'PROJ-1')))

        assert result['message'] == NO_MATCH_MESSAGE
        log = _log(session, result['log_id'])
        assert log.status == 'unmatched'
        assert log.config_id is None
        assert log.processed is False
        assert session.execute(select(MirroredIssue)).scalars().all() == []

    def test_disabled_configuration_does_not_match(self, session, make_config, jira_issue):
        make_config(project_keys=['PROJ'], sync_enabled=False)

        result = WebhookProcessor(session).process_webhook(_issue_event('jira:issue_created', jira_issue(1, 'PROJ-1')))

        assert result['message'] == NO_MATCH_MESSAGE

    def test_empty_selection_matches_only_mirrored_projects(self, session, make_config, jira_issue, jira_project):
        config = make_config(project_keys=[])
        MirrorRepository(session).upsert_projects([JiraDataProcessor(config.id).process_project_data(jira_project(1, 'PROJ'))])
        session.commit()
        processor = WebhookProcessor(session)

        matched = processor.process_webhook(_issue_event('jira:issue_created', jira_issue(1, 'PROJ-1')))
        unmatched = processor.process_webhook(_issue_event('jira:issue_created', jira_issue(2, 'OPS-1')))

        assert matched['config_id'] == config.id
        assert unmatched['message'] == NO_MATCH_MESSAGE

    def test_explicit_selection_wins(self, session, make_config, jira_issue, jira_project):
        catch_all = make_config(name='All', project_keys=[])
        MirrorRepository(session).upsert_projects([JiraDataProcessor(catch_all.id).process_project_data(jira_project(1, 'PROJ'))])
        session.commit()
        explicit = make_config(name='Explicit', project_keys=['PROJ'])

        result = WebhookProcessor(session).process_webhook(_issue_event('jira:issue_created', jira_issue(1, 'PROJ-1')))

        assert result['config_id'] == explicit.id


class TestSprintEvents:

    def test_sprint_started_matches_by_goal_and_enqueues_prediction(self, session, make_config):
        config = make_config(project_keys=['PROJ'])
        payload = {
            'webhookEvent': 'sprint_started',
            'sprint': {
                'id': 42, 'name': 'Sprint 7', 'state': 'active', 'originBoardId': 9,
                'startDate': '2024-03-01T09:00:00.000Z', 'endDate': '2024-03-15T09:00:00.000Z',
                'goal': 'Deliver PROJ-12',
            },
        }

        result = WebhookProcessor(session).process_webhook(payload)

        sprint = session.execute(select(MirroredSprint)).scalar_one()
        assert (sprint.external_id, sprint.state, sprint.board_id, sprint.project_key, sprint.config_id) == (
            '42', 'active', '9', 'PROJ', config.id
        )
        assert [(job.insight_type, job.project_keys) for job in _jobs(session)] == [('sprint_prediction', ['PROJ'])]
        assert result['config_id'] == config.id

    def test_sprint_closed_matches_existing_mirrored_sprint(self, session, make_config):
        config = make_config(project_keys=['PROJ'])
        MirrorRepository(session).upsert_sprints([
            JiraDataProcessor(config.id).process_sprint_data({'id': 42, 'name': 'Sprint 7', 'state': 'active'}, 'PROJ', 9)
        ])
        session.commit()

        WebhookProcessor(session).process_webhook({
            'webhookEvent': 'sprint_closed',
            'sprint': {'id': 42, 'name': 'Sprint 7', 'state': 'closed', 'originBoardId': 9,
                       'completeDate': '2024-03-15T10:00:00.000Z'},
        })
        session.expire_all()

        sprint = session.execute(select(MirroredSprint)).scalar_one()
        assert sprint.state == 'closed'
        assert sprint.project_key == 'PROJ'
        assert sprint.complete_date == datetime(2024, 3, 15, 10, 0)


class TestFailures:

    def test_dispatch_failure_marks_log_failed_and_propagates(self, session, make_config, jira_issue):
        make_config(project_keys=['PROJ'])
        processor = WebhookProcessor(session)

        with patch.object(processor.repository, 'upsert_issues', side_effect=RuntimeError("database is locked")):
            with pytest.raises(RuntimeError):
                processor.process_webhook(_issue_event('jira:issue_updated', jira_issue(1, 'PROJ-1')))

        log = session.execute(select(WebhookLogEntry)).scalar_one()
        assert log.status == 'failed'
        assert log.processed is False
        assert 'database is locked' in log.error_message
        assert _jobs(session) == []

    def test_enqueue_failure_does_not_fail_the_webhook(self, session, make_config, jira_issue):
        config = make_config(project_keys=['PROJ'])
        dispatcher = Mock()
        dispatcher.enqueue.side_effect = RuntimeError("queue down")

        result = WebhookProcessor(session, dispatcher=dispatcher).process_webhook(
            _issue_event('jira:issue_created', jira_issue(1, 'PROJ-1'))
        )

        assert result['enqueued_jobs'] == []
        assert _log(session, result['log_id']).status == 'processed'
        assert MirrorRepository(session).get_issue(config.id, '1') is not None
