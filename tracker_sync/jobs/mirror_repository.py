"""
Mirror Repository

Persistence for mirrored tracker rows. Sync jobs and the webhook processor
talk to the database only through this class, so they can be unit tested
against an in-memory database or a mock.
"""

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tracker_sync.core.errors import ConflictError
from tracker_sync.core.logging_config import get_logger
from tracker_sync.core.utils import DateTimeHelper
from tracker_sync.models.unified_models import (
    MirroredProject, MirroredIssue, MirroredSprint, Insight, TrackerConfiguration
)

logger = get_logger(__name__)

CONFLICT_COLUMNS = ['external_id', 'config_id']


def _dialect_insert(session: Session):
    """Returns the INSERT construct of the session's dialect (needed for ON CONFLICT)."""
    dialect = session.get_bind().dialect.name
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")
    return insert


class MirrorRepository:
    """Upserts, inserts and deletes for the mirror tables of one database session."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------------

    def _upsert(self, model_class, rows: List[Dict[str, Any]]) -> int:
        """Insert-or-update rows keyed by (external_id, config_id)."""
        if not rows:
            return 0

        now = DateTimeHelper.now_utc()
        values = [dict(row, synced_at=now) for row in rows]

        insert = _dialect_insert(self.session)
        stmt = insert(model_class.__table__).values(values)
        update_columns = {
            column: stmt.excluded[column]
            for column in values[0].keys()
            if column not in CONFLICT_COLUMNS
        }
        stmt = stmt.on_conflict_do_update(index_elements=CONFLICT_COLUMNS, set_=update_columns)

        self.session.execute(stmt)
        return len(values)

    def upsert_projects(self, rows: List[Dict[str, Any]]) -> int:
        return self._upsert(MirroredProject, rows)

    def upsert_issues(self, rows: List[Dict[str, Any]]) -> int:
        return self._upsert(MirroredIssue, rows)

    def upsert_sprints(self, rows: List[Dict[str, Any]]) -> int:
        return self._upsert(MirroredSprint, rows)

    # ------------------------------------------------------------------
    # Single-row writes (webhooks)
    # ------------------------------------------------------------------

    def insert_issue(self, row: Dict[str, Any]) -> MirroredIssue:
        """
        Insert one issue row.

        Raises:
            ConflictError: If (external_id, config_id) already exists
        """
        message = f"Issue {row.get('key')} already exists for configuration {row.get('config_id')}"
        if self.get_issue(row['config_id'], row['external_id']) is not None:
            raise ConflictError(message)

        issue = MirroredIssue(**dict(row, synced_at=DateTimeHelper.now_utc()))
        self.session.add(issue)
        try:
            self.session.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent writer; callers commit their own work first
            self.session.rollback()
            raise ConflictError(message) from e
        return issue

    def delete_issue_with_insights(self, config_id: int, external_id: str) -> Tuple[int, int]:
        """
        Delete an issue and its insights, insights first.

        Returns:
            (insights_deleted, issues_deleted)
        """
        insights_result = self.session.execute(
            delete(Insight).where(
                Insight.config_id == config_id,
                Insight.subject_type == 'issue',
                Insight.subject_id == str(external_id)
            )
        )
        issues_result = self.session.execute(
            delete(MirroredIssue).where(
                MirroredIssue.config_id == config_id,
                MirroredIssue.external_id == str(external_id)
            )
        )
        return insights_result.rowcount or 0, issues_result.rowcount or 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_issue(self, config_id: int, external_id: str) -> Optional[MirroredIssue]:
        return self.session.execute(
            select(MirroredIssue).where(
                MirroredIssue.config_id == config_id,
                MirroredIssue.external_id == str(external_id)
            )
        ).scalar_one_or_none()

    def get_project_keys(self, config_id: int) -> List[str]:
        """Keys of every project already mirrored for the configuration."""
        return list(self.session.execute(
            select(MirroredProject.key)
            .where(MirroredProject.config_id == config_id)
            .order_by(MirroredProject.key)
        ).scalars())

    def has_project(self, config_id: int, project_key: str) -> bool:
        return self.session.execute(
            select(MirroredProject.id).where(
                MirroredProject.config_id == config_id,
                MirroredProject.key == project_key
            ).limit(1)
        ).first() is not None

    def find_sprints(self, external_id: str) -> List[MirroredSprint]:
        """Every mirrored copy of a sprint, across configurations."""
        return list(self.session.execute(
            select(MirroredSprint).where(MirroredSprint.external_id == str(external_id))
        ).scalars())

    def get_enabled_configurations(self) -> List[TrackerConfiguration]:
        return list(self.session.execute(
            select(TrackerConfiguration)
            .where(TrackerConfiguration.sync_enabled.is_(True))
            .order_by(TrackerConfiguration.id)
        ).scalars())

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()
