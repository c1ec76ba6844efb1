"""
Data models for the Tracker Sync Service.

Every mirrored row is tenant-scoped by ``config_id`` and unique on
``(external_id, config_id)`` so that re-syncs are upserts.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Float, Text, func, Boolean, Index, UniqueConstraint, CheckConstraint, JSON
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


class TrackerConfiguration(Base):
    """Per-tenant tracker credentials and project selection."""
    __tablename__ = 'tracker_configurations'
    __table_args__ = {'quote': False}

    id = Column(Integer, primary_key=True, autoincrement=True, quote=False, name="id")
    name = Column(String(255), nullable=False, quote=False, name="name")
    provider = Column(String(50), nullable=False, default='jira', quote=False, name="provider")  # 'jira', 'azure_devops'
    base_url = Column(Text, nullable=False, quote=False, name="base_url")
    username = Column(String, nullable=True, quote=False, name="username")
    secret_token = Column(Text, nullable=False, quote=False, name="secret_token")  # Fernet ciphertext
    selected_project_keys = Column(JSON, default=list, quote=False, name="selected_project_keys")  # Empty = all projects
    settings = Column(JSON, default=dict, quote=False, name="settings")  # Provider-specific options, e.g. Azure area paths
    sync_enabled = Column(Boolean, nullable=False, default=True, quote=False, name="sync_enabled")
    last_sync_at = Column(DateTime, nullable=True, quote=False, name="last_sync_at")
    created_at = Column(DateTime, quote=False, name="created_at", default=func.now())
    last_updated_at = Column(DateTime, quote=False, name="last_updated_at", default=func.now(), onupdate=func.now())

    # Relationships
    projects = relationship("MirroredProject", back_populates="configuration", cascade="all, delete-orphan")
    issues = relationship("MirroredIssue", back_populates="configuration", cascade="all, delete-orphan")
    sprints = relationship("MirroredSprint", back_populates="configuration", cascade="all, delete-orphan")
    insights = relationship("Insight", back_populates="configuration", cascade="all, delete-orphan")
    webhook_logs = relationship("WebhookLogEntry", back_populates="configuration", cascade="all, delete-orphan")
    insight_jobs = relationship("InsightJob", back_populates="configuration", cascade="all, delete-orphan")

    @property
    def has_token(self) -> bool:
        return bool(self.secret_token)


class MirrorEntity:
    """Audit fields shared by mirrored tracker entities."""
    raw_payload = Column(JSON, nullable=True, quote=False, name="raw_payload")
    synced_at = Column(DateTime, quote=False, name="synced_at", default=func.now())


class MirroredProject(Base, MirrorEntity):
    """Tracker project mirror. Never deleted by the pipeline."""
    __tablename__ = 'mirrored_projects'
    __table_args__ = (
        UniqueConstraint('external_id', 'config_id', name='uq_mirrored_projects_external_config'),
        {'quote': False}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, quote=False, name="id")
    external_id = Column(String, nullable=False, quote=False, name="external_id")
    key = Column(String, nullable=False, quote=False, name="key")
    name = Column(String, nullable=False, quote=False, name="name")
    description = Column(Text, nullable=True, quote=False, name="description")
    lead_name = Column(String, nullable=True, quote=False, name="lead_name")
    project_type = Column(String, nullable=True, quote=False, name="project_type")
    config_id = Column(Integer, ForeignKey('tracker_configurations.id', ondelete='CASCADE'), nullable=False, quote=False, name="config_id")

    configuration = relationship("TrackerConfiguration", back_populates="projects")


class MirroredIssue(Base, MirrorEntity):
    """Tracker issue / work item mirror."""
    __tablename__ = 'mirrored_issues'
    __table_args__ = (
        UniqueConstraint('external_id', 'config_id', name='uq_mirrored_issues_external_config'),
        Index('idx_mirrored_issues_config_project', 'config_id', 'project_key'),
        {'quote': False}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, quote=False, name="id")
    external_id = Column(String, nullable=False, quote=False, name="external_id")
    key = Column(String, nullable=False, quote=False, name="key")
    summary = Column(Text, nullable=True, quote=False, name="summary")
    description = Column(Text, nullable=True, quote=False, name="description")
    issue_type = Column(String, nullable=True, quote=False, name="issue_type")
    status = Column(String, nullable=True, quote=False, name="status")
    priority = Column(String, nullable=True, quote=False, name="priority")
    assignee_name = Column(String, nullable=True, quote=False, name="assignee_name")
    reporter_name = Column(String, nullable=True, quote=False, name="reporter_name")
    project_key = Column(String, nullable=True, quote=False, name="project_key")
    config_id = Column(Integer, ForeignKey('tracker_configurations.id', ondelete='CASCADE'), nullable=False, quote=False, name="config_id")

    # Estimates are stored in seconds
    story_points = Column(Float, nullable=True, quote=False, name="story_points")
    original_estimate = Column(Integer, nullable=True, quote=False, name="original_estimate")
    remaining_estimate = Column(Integer, nullable=True, quote=False, name="remaining_estimate")
    time_spent = Column(Integer, nullable=True, quote=False, name="time_spent")

    created_date = Column(DateTime, nullable=True, quote=False, name="created_date")
    updated_date = Column(DateTime, nullable=True, quote=False, name="updated_date")
    resolved_date = Column(DateTime, nullable=True, quote=False, name="resolved_date")

    labels = Column(JSON, default=list, quote=False, name="labels")
    components = Column(JSON, default=list, quote=False, name="components")
    fix_versions = Column(JSON, default=list, quote=False, name="fix_versions")

    configuration = relationship("TrackerConfiguration", back_populates="issues")


class MirroredSprint(Base, MirrorEntity):
    """Sprint / iteration mirror."""
    __tablename__ = 'mirrored_sprints'
    __table_args__ = (
        UniqueConstraint('external_id', 'config_id', name='uq_mirrored_sprints_external_config'),
        {'quote': False}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, quote=False, name="id")
    external_id = Column(String, nullable=False, quote=False, name="external_id")
    name = Column(String, nullable=False, quote=False, name="name")
    state = Column(String, nullable=True, quote=False, name="state")  # 'active', 'closed', 'future'
    start_date = Column(DateTime, nullable=True, quote=False, name="start_date")
    end_date = Column(DateTime, nullable=True, quote=False, name="end_date")
    complete_date = Column(DateTime, nullable=True, quote=False, name="complete_date")
    goal = Column(Text, nullable=True, quote=False, name="goal")
    board_id = Column(String, nullable=True, quote=False, name="board_id")
    project_key = Column(String, nullable=True, quote=False, name="project_key")
    config_id = Column(Integer, ForeignKey('tracker_configurations.id', ondelete='CASCADE'), nullable=False, quote=False, name="config_id")

    configuration = relationship("TrackerConfiguration", back_populates="sprints")


class Insight(Base):
    """
    LLM-derived analytical artifact.

    Never updated: newer rows supersede older ones and expired rows are not listed.
    """
    __tablename__ = 'insights'
    __table_args__ = (
        CheckConstraint('confidence_score >= 0 AND confidence_score <= 1', name='ck_insights_confidence_range'),
        Index('idx_insights_subject', 'config_id', 'subject_type', 'subject_id'),
        {'quote': False}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, quote=False, name="id")
    config_id = Column(Integer, ForeignKey('tracker_configurations.id', ondelete='CASCADE'), nullable=False, quote=False, name="config_id")
    subject_type = Column(String(20), nullable=False, quote=False, name="subject_type")  # 'issue', 'sprint', 'project'
    subject_id = Column(String, nullable=False, quote=False, name="subject_id")  # External id of the issue/sprint, or project key
    project_key = Column(String, nullable=True, quote=False, name="project_key")
    insight_type = Column(String(50), nullable=False, quote=False, name="insight_type")
    confidence_score = Column(Float, nullable=False, quote=False, name="confidence_score")
    payload = Column(JSON, nullable=False, quote=False, name="payload")
    model = Column(String(100), nullable=True, quote=False, name="model")
    generated_at = Column(DateTime, quote=False, name="generated_at", default=func.now())
    expires_at = Column(DateTime, nullable=True, quote=False, name="expires_at")

    configuration = relationship("TrackerConfiguration", back_populates="insights")


class WebhookLogEntry(Base):
    """Append-only audit trail of received tracker webhooks."""
    __tablename__ = 'webhook_logs'
    __table_args__ = {'quote': False}

    id = Column(Integer, primary_key=True, autoincrement=True, quote=False, name="id")
    config_id = Column(Integer, ForeignKey('tracker_configurations.id', ondelete='CASCADE'), nullable=True, quote=False, name="config_id")  # Null until matched
    event_name = Column(String, nullable=False, quote=False, name="event_name")
    issue_key = Column(String, nullable=True, quote=False, name="issue_key")
    raw_payload = Column(JSON, nullable=True, quote=False, name="raw_payload")
    status = Column(String(20), nullable=False, default='received', quote=False, name="status")  # 'received', 'unmatched', 'processed', 'failed'
    error_message = Column(Text, nullable=True, quote=False, name="error_message")
    processed = Column(Boolean, nullable=False, default=False, quote=False, name="processed")
    processed_at = Column(DateTime, nullable=True, quote=False, name="processed_at")
    created_at = Column(DateTime, quote=False, name="created_at", default=func.now())

    configuration = relationship("TrackerConfiguration", back_populates="webhook_logs")


class InsightJob(Base):
    """
    Outbox row for deferred insight generation.

    Webhooks enqueue jobs instead of calling the generator inline; the
    worker claims pending rows, runs them and records the outcome so that
    failures stay visible and retryable.
    """
    __tablename__ = 'insight_jobs'
    __table_args__ = (
        Index('idx_insight_jobs_status', 'status'),
        {'quote': False}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, quote=False, name="id")
    config_id = Column(Integer, ForeignKey('tracker_configurations.id', ondelete='CASCADE'), nullable=False, quote=False, name="config_id")
    insight_type = Column(String(50), nullable=False, quote=False, name="insight_type")
    issue_ids = Column(JSON, default=list, quote=False, name="issue_ids")  # External issue ids
    project_keys = Column(JSON, default=list, quote=False, name="project_keys")
    reason = Column(String, nullable=True, quote=False, name="reason")
    status = Column(String(20), nullable=False, default='pending', quote=False, name="status")  # 'pending', 'running', 'done', 'failed'
    attempts = Column(Integer, nullable=False, default=0, quote=False, name="attempts")
    last_error = Column(Text, nullable=True, quote=False, name="last_error")
    created_at = Column(DateTime, quote=False, name="created_at", default=func.now())
    processed_at = Column(DateTime, nullable=True, quote=False, name="processed_at")

    configuration = relationship("TrackerConfiguration", back_populates="insight_jobs")

    def set_done(self, processed_at):
        self.status = 'done'
        self.processed_at = processed_at

    def set_failed(self, error_message: str, processed_at):
        self.status = 'failed'
        self.last_error = error_message
        self.processed_at = processed_at
