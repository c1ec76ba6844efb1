"""
Pydantic schemas for API requests and responses.
Defines data models for REST API input and output.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional, List, Dict, Union
from datetime import datetime
from enum import Enum


class TrackerProvider(str, Enum):
    """Supported issue trackers."""
    JIRA = "jira"
    AZURE_DEVOPS = "azure_devops"


class InsightType(str, Enum):
    """Insight kinds produced by the generator."""
    SLA_RISK = "sla_risk"
    SPRINT_PREDICTION = "sprint_prediction"
    TEAM_PERFORMANCE = "team_performance"
    SENTIMENT = "sentiment"
    COST_ANALYSIS = "cost_analysis"
    PRIORITY_REBALANCING = "priority_rebalancing"
    PRODUCTIVITY_ECONOMICS = "productivity_economics"
    BUDGET_ALERTS = "budget_alerts"


class HealthResponse(BaseModel):
    """Response for health check."""
    status: str = "healthy"
    message: str = "Tracker Sync Service is running"
    database_status: str
    version: str


# ---------------------------------------------------------------------------
# Tracker configurations
# ---------------------------------------------------------------------------

class ConfigurationCreate(BaseModel):
    """Settings form submission. Project keys may be a comma-separated string."""
    name: str = Field(description="Display name of the configuration", examples=["Acme Jira"])
    provider: TrackerProvider = TrackerProvider.JIRA
    base_url: str = Field(examples=["https://acme.atlassian.net"])
    username: Optional[str] = Field(default=None, examples=["jane@acme.com"])
    api_token: Optional[str] = Field(default=None, description="Write-only API token or PAT")
    project_keys: Optional[Union[str, List[str]]] = Field(default=None, examples=["PROJ, OPS"])
    settings: Dict[str, Any] = Field(default_factory=dict)
    sync_enabled: bool = True


class ConfigurationUpdate(BaseModel):
    """Partial update. A blank api_token keeps the stored token."""
    name: Optional[str] = None
    base_url: Optional[str] = None
    username: Optional[str] = None
    api_token: Optional[str] = None
    project_keys: Optional[Union[str, List[str]]] = None
    settings: Optional[Dict[str, Any]] = None
    sync_enabled: Optional[bool] = None


class ConfigurationResponse(BaseModel):
    """Public view of a configuration. The token is never returned."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    provider: str
    base_url: str
    username: Optional[str] = None
    selected_project_keys: List[str] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    sync_enabled: bool
    has_token: bool
    last_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------

class ConnectionTestRequest(BaseModel):
    """Either a stored configuration id or explicit credentials."""
    config_id: Optional[int] = None
    provider: TrackerProvider = TrackerProvider.JIRA
    base_url: Optional[str] = None
    username: Optional[str] = None
    api_token: Optional[str] = None
    project_keys: Optional[Union[str, List[str]]] = None


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    user: Optional[Dict[str, Any]] = None
    accessible_projects: List[str] = Field(default_factory=list)
    inaccessible_projects: List[str] = Field(default_factory=list)


class SyncResponse(BaseModel):
    config_id: int
    success: bool = True
    projects: Dict[str, Any]
    issues: List[Dict[str, Any]] = Field(default_factory=list)
    iterations: List[Dict[str, Any]] = Field(default_factory=list)
    last_sync_at: Optional[datetime] = None


class SyncAllResult(BaseModel):
    config_id: int
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    total_issues: int = 0


class SyncAllResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[SyncAllResult]


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

class WebhookResponse(BaseModel):
    message: str
    event: Optional[str] = None
    log_id: Optional[int] = None
    config_id: Optional[int] = None
    enqueued_jobs: List[int] = Field(default_factory=list)
    result: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------

class InsightGenerateRequest(BaseModel):
    config_id: int
    insight_type: InsightType
    issue_ids: Optional[List[str]] = None
    project_keys: Optional[List[str]] = None


class InsightResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: int
    config_id: int
    subject_type: str
    subject_id: str
    project_key: Optional[str] = None
    insight_type: str
    confidence_score: float
    payload: Dict[str, Any]
    model: Optional[str] = None
    generated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class InsightGenerateResponse(BaseModel):
    insight_type: InsightType
    generated: int
    insights: List[InsightResponse]


class InsightJobProcessResponse(BaseModel):
    claimed: int
    succeeded: int
    failed: int
