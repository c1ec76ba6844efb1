"""
Jira Webhook Processor

Applies one pushed tracker event to the mirror tables. Per event:

    received -> logged -> matched | unmatched -> processed | failed

The log row is committed before anything is mutated. Insight regeneration is
enqueued as InsightJob rows after the event is marked processed; enqueue
failures are logged and never fail the webhook response.
"""

import hashlib
import hmac
import re
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from tracker_sync.core.config import get_settings
from tracker_sync.core.errors import ValidationError, ConflictError
from tracker_sync.core.logging_config import get_logger
from tracker_sync.core.utils import DateTimeHelper
from tracker_sync.jobs.jira.jira_processor import JiraDataProcessor
from tracker_sync.jobs.mirror_repository import MirrorRepository
from tracker_sync.models.unified_models import TrackerConfiguration, WebhookLogEntry
from tracker_sync.workers.insight_worker import InsightJobDispatcher

logger = get_logger(__name__)

SPRINT_EVENTS = {'sprint_started', 'sprint_closed'}
ISSUE_KEY_PATTERN = re.compile(r'([A-Z][A-Z0-9]*)-\d+')

NO_MATCH_MESSAGE = "No matching configuration"


def normalize_event_name(webhook_event: str) -> str:
    """'jira:issue_created' -> 'issue_created'."""
    return webhook_event.split(':', 1)[1] if webhook_event.startswith('jira:') else webhook_event


def extract_project_key_from_goal(goal: Optional[str]) -> Optional[str]:
    """Project key of the first issue key mentioned in a sprint goal."""
    if not goal:
        return None
    match = ISSUE_KEY_PATTERN.search(goal)
    return match.group(1) if match else None


def verify_signature(raw_body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """Checks an 'X-Hub-Signature: sha256=<hex>' header against the raw body."""
    if not signature_header or not signature_header.startswith('sha256='):
        return False
    expected = hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header.split('=', 1)[1])


def validate_payload(payload: Any) -> str:
    """
    Validates the webhook payload shape and returns the normalized event name.

    Raises:
        ValidationError: If required fields are missing
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid webhook payload: expected a JSON object")

    webhook_event = payload.get('webhookEvent')
    if not webhook_event or not isinstance(webhook_event, str):
        raise ValidationError("Invalid webhook payload: 'webhookEvent' is required")

    event = normalize_event_name(webhook_event)
    if event in SPRINT_EVENTS:
        sprint = payload.get('sprint')
        if not isinstance(sprint, dict) or sprint.get('id') is None:
            raise ValidationError("Invalid webhook payload: 'sprint' with 'id' is required")
    else:
        # Every other event, handled or not, is matched to a configuration through its issue
        issue = payload.get('issue')
        if not isinstance(issue, dict) or not issue.get('id') or not issue.get('key'):
            raise ValidationError("Invalid webhook payload: 'issue' with 'id' and 'key' is required")
        if not ((issue.get('fields') or {}).get('project') or {}).get('key'):
            raise ValidationError("Invalid webhook payload: 'issue.fields.project.key' is required")

    return event


class WebhookProcessor:
    """Processes Jira webhook payloads against the mirror tables."""

    def __init__(self, session: Session, dispatcher: Optional[InsightJobDispatcher] = None):
        self.session = session
        self.repository = MirrorRepository(session)
        self.dispatcher = dispatcher or InsightJobDispatcher(session)
        self.done_statuses = get_settings().done_status_names

    def process_webhook(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        event = validate_payload(payload)
        issue = payload.get('issue') or {}

        # logged
        log_entry = WebhookLogEntry(
            event_name=payload['webhookEvent'],
            issue_key=issue.get('key'),
            raw_payload=payload,
            status='received',
            processed=False,
        )
        self.session.add(log_entry)
        self.session.commit()
        logger.info(f"Webhook {log_entry.id} received: {payload['webhookEvent']} {issue.get('key') or ''}".rstrip())

        # matched | unmatched
        config, project_key = self._match(event, payload)
        if config is None:
            log_entry.status = 'unmatched'
            self.session.commit()
            logger.info(f"Webhook {log_entry.id}: no matching configuration for project {project_key}")
            return {'message': NO_MATCH_MESSAGE, 'event': event, 'log_id': log_entry.id}

        log_entry.config_id = config.id
        self.session.commit()

        # processed | failed
        try:
            result, jobs = self._dispatch(event, payload, config, project_key)
        except Exception as e:
            self.session.rollback()
            log_entry.status = 'failed'
            log_entry.error_message = f"{type(e).__name__}: {e}"
            self.session.commit()
            logger.error(f"Webhook {log_entry.id} ({event}) failed for configuration {config.id}: {e}")
            raise

        log_entry.status = 'processed'
        log_entry.processed = True
        log_entry.processed_at = DateTimeHelper.now_utc()
        self.session.commit()

        enqueued = [job_id for job_id in (self._enqueue(config, *job) for job in jobs) if job_id is not None]

        return {
            'message': 'Webhook processed successfully',
            'event': event,
            'log_id': log_entry.id,
            'config_id': config.id,
            'enqueued_jobs': enqueued,
            'result': result,
        }

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _jira_configurations(self) -> List[TrackerConfiguration]:
        return [config for config in self.repository.get_enabled_configurations() if config.provider == 'jira']

    def _match_project(self, project_key: Optional[str]) -> Optional[TrackerConfiguration]:
        """Explicit selection wins; then 'all projects' configurations already mirroring the project."""
        if not project_key:
            return None
        configs = self._jira_configurations()
        for config in configs:
            if project_key in (config.selected_project_keys or []):
                return config
        for config in configs:
            if not config.selected_project_keys and self.repository.has_project(config.id, project_key):
                return config
        return None

    def _match(self, event: str, payload: Dict[str, Any]) -> Tuple[Optional[TrackerConfiguration], Optional[str]]:
        if event in SPRINT_EVENTS:
            sprint = payload['sprint']
            enabled = {config.id: config for config in self._jira_configurations()}
            for existing in self.repository.find_sprints(str(sprint['id'])):
                if existing.config_id in enabled:
                    return enabled[existing.config_id], existing.project_key
            project_key = extract_project_key_from_goal(sprint.get('goal'))
            return self._match_project(project_key), project_key

        project_key = (((payload.get('issue') or {}).get('fields') or {}).get('project') or {}).get('key')
        return self._match_project(project_key), project_key

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, event: str, payload: Dict[str, Any], config: TrackerConfiguration,
                  project_key: Optional[str]) -> Tuple[Dict[str, Any], List[tuple]]:
        """Apply the event. Returns (result, jobs) where jobs are (insight_type, issue_ids, project_keys, reason)."""
        processor = JiraDataProcessor(config.id)
        issue = payload.get('issue') or {}
        jobs = []

        if event == 'issue_created':
            row = processor.process_issue_data(issue)
            try:
                self.repository.insert_issue(row)
                self.session.commit()
                message = f"Issue {issue['key']} created successfully"
            except ConflictError:
                message = f"Issue {issue['key']} already synced"
                logger.info(f"Duplicate create for {issue['key']} on configuration {config.id}, treated as synced")
            jobs.append(('sla_risk', [row['external_id']], [row['project_key']], f"{event} {issue['key']}"))

        elif event == 'issue_updated':
            row = processor.process_issue_data(issue)
            self.repository.upsert_issues([row])
            self.session.commit()
            message = f"Issue {issue['key']} updated successfully"
            jobs.append(('sla_risk', [row['external_id']], [row['project_key']], f"{event} {issue['key']}"))
            if self._transitioned_to_done(payload.get('changelog')):
                jobs.append(('sprint_prediction', [], [row['project_key']], f"{issue['key']} moved to done"))

        elif event == 'issue_deleted':
            insights_deleted, issues_deleted = self.repository.delete_issue_with_insights(config.id, str(issue['id']))
            self.session.commit()
            message = f"Issue {issue['key']} deleted successfully ({insights_deleted} insights removed)"
            if not issues_deleted:
                logger.info(f"Delete for unknown issue {issue['key']} on configuration {config.id}")

        elif event in SPRINT_EVENTS:
            sprint = payload['sprint']
            row = processor.process_sprint_data(sprint, project_key)
            self.repository.upsert_sprints([row])
            self.session.commit()
            message = f"Sprint {row['name']} event processed successfully"
            project_keys = [project_key] if project_key else (
                list(config.selected_project_keys or []) or self.repository.get_project_keys(config.id)
            )
            if project_keys:
                jobs.append(('sprint_prediction', [], project_keys, f"{event} {row['name']}"))

        else:
            message = f"Unhandled event type: {payload['webhookEvent']}"
            logger.info(f"Configuration {config.id}: {message}")

        return {'message': message}, jobs

    def _transitioned_to_done(self, changelog: Optional[Dict[str, Any]]) -> bool:
        for item in (changelog or {}).get('items') or []:
            if item.get('field') == 'status' and (item.get('toString') or '').lower() in self.done_statuses:
                return True
        return False

    def _enqueue(self, config: TrackerConfiguration, insight_type: str, issue_ids: List[str],
                 project_keys: List[str], reason: str) -> Optional[int]:
        """Enqueue an insight job; failures are logged and swallowed so the tracker gets its 2xx."""
        try:
            job = self.dispatcher.enqueue(config.id, insight_type, issue_ids, project_keys, reason)
            return job.id
        except Exception as e:
            self.session.rollback()
            logger.error(f"Failed to enqueue {insight_type} job for configuration {config.id}: {e}")
            return None
