"""
Insight Generator

Reads mirrored rows, renders a prompt, calls the LLM and stores the validated
result as an Insight. Each operation is all-or-nothing: when any LLM call or
response parse fails, no insight of that call is persisted.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, or_
from sqlalchemy.orm import Session

from tracker_sync.core.config import get_settings
from tracker_sync.core.errors import ValidationError
from tracker_sync.core.logging_config import LoggerMixin
from tracker_sync.core.utils import DateTimeHelper
from tracker_sync.insights import prompts
from tracker_sync.insights.llm_client import LLMClient
from tracker_sync.insights.response_parser import parse_insight
from tracker_sync.models.unified_models import Insight, MirroredIssue, MirroredSprint, TrackerConfiguration

SLA_RISK_TTL = timedelta(hours=24)
BUDGET_ALERT_TTL = timedelta(hours=24)
DEFAULT_TTL = timedelta(days=7)
MAX_ISSUES_PER_RUN = 50
TOP_COST_ISSUES = 5


def list_active_insights(session: Session, config_id: int, insight_type: Optional[str] = None,
                         subject_id: Optional[str] = None) -> List[Insight]:
    """Non-expired insights of a configuration, newest first."""
    now = DateTimeHelper.now_utc()
    query = select(Insight).where(
        Insight.config_id == config_id,
        or_(Insight.expires_at.is_(None), Insight.expires_at > now)
    )
    if insight_type:
        query = query.where(Insight.insight_type == insight_type)
    if subject_id:
        query = query.where(Insight.subject_id == str(subject_id))
    query = query.order_by(Insight.generated_at.desc(), Insight.id.desc())
    return list(session.execute(query).scalars())


class InsightGenerator(LoggerMixin):
    """LLM-backed insight operations for one database session."""

    def __init__(self, session: Session, llm_client: Optional[LLMClient] = None):
        self.session = session
        self.llm_client = llm_client or LLMClient()
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_done(self, status: Optional[str]) -> bool:
        return bool(status) and status.lower() in self.settings.done_status_names

    async def _analyze(self, insight_type: str, system_prompt: str, user_prompt: str):
        content, model = await self.llm_client.complete(system_prompt, user_prompt)
        payload, confidence = parse_insight(insight_type, content)
        return payload, confidence, model

    def _build_insight(self, config: TrackerConfiguration, insight_type: str, subject_type: str,
                       subject_id: str, project_key: Optional[str], payload: Dict[str, Any],
                       confidence: float, model: str, expires_at: datetime) -> Insight:
        return Insight(
            config_id=config.id,
            subject_type=subject_type,
            subject_id=str(subject_id),
            project_key=project_key,
            insight_type=insight_type,
            confidence_score=confidence,
            payload=payload,
            model=model,
            generated_at=DateTimeHelper.now_utc(),
            expires_at=expires_at,
        )

    def _issue_cost(self, issue: MirroredIssue) -> float:
        """Story points x hours per point x hourly rate."""
        return (issue.story_points or 0) * self.settings.HOURS_PER_STORY_POINT * self.settings.DEFAULT_HOURLY_RATE

    def _persist(self, insights: List[Insight]) -> List[Insight]:
        self.session.add_all(insights)
        self.session.flush()
        return insights

    def _project_issues(self, config: TrackerConfiguration, project_keys: List[str]) -> List[MirroredIssue]:
        return list(self.session.execute(
            select(MirroredIssue).where(
                MirroredIssue.config_id == config.id,
                MirroredIssue.project_key.in_(project_keys)
            ).order_by(MirroredIssue.id)
        ).scalars())

    def _require_project_keys(self, project_keys: Optional[List[str]]) -> List[str]:
        if not project_keys:
            raise ValidationError("project_keys is required for this insight type")
        return list(project_keys)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def generate_sla_risk(self, config: TrackerConfiguration, issue_ids: Optional[List[str]] = None) -> List[Insight]:
        """One sla_risk insight per open issue (or per given issue), valid for 24 hours."""
        query = select(MirroredIssue).where(MirroredIssue.config_id == config.id)
        if issue_ids:
            query = query.where(MirroredIssue.external_id.in_([str(i) for i in issue_ids]))
        else:
            query = query.where(MirroredIssue.status.in_(self.settings.open_status_names))
        issues = list(self.session.execute(
            query.order_by(MirroredIssue.updated_date.desc()).limit(MAX_ISSUES_PER_RUN)
        ).scalars())

        insights = []
        for issue in issues:
            payload, confidence, model = await self._analyze('sla_risk', *prompts.sla_risk_prompt(issue))
            insights.append(self._build_insight(
                config, 'sla_risk', 'issue', issue.external_id, issue.project_key,
                payload, confidence, model, DateTimeHelper.now_utc() + SLA_RISK_TTL
            ))

        self.logger.info(f"Config {config.id}: generated {len(insights)} sla_risk insights")
        return self._persist(insights)

    async def predict_sprint_completion(self, config: TrackerConfiguration, project_keys: List[str]) -> List[Insight]:
        """One sprint_prediction insight per active sprint, valid until the sprint ends."""
        project_keys = self._require_project_keys(project_keys)
        sprints = list(self.session.execute(
            select(MirroredSprint).where(
                MirroredSprint.config_id == config.id,
                MirroredSprint.state == 'active',
                MirroredSprint.project_key.in_(project_keys)
            ).order_by(MirroredSprint.id)
        ).scalars())

        now = DateTimeHelper.now_utc()
        insights = []
        for sprint in sprints:
            issues = self._project_issues(config, [sprint.project_key])
            total_points = sum(issue.story_points or 0 for issue in issues)
            completed_points = sum(issue.story_points or 0 for issue in issues if self._is_done(issue.status))

            payload, confidence, model = await self._analyze(
                'sprint_prediction', *prompts.sprint_prediction_prompt(sprint, total_points, completed_points)
            )
            payload.setdefault('story_points', {'total': total_points, 'completed': completed_points})

            expires_at = sprint.end_date if sprint.end_date and sprint.end_date > now else now + DEFAULT_TTL
            insights.append(self._build_insight(
                config, 'sprint_prediction', 'sprint', sprint.external_id, sprint.project_key,
                payload, confidence, model, expires_at
            ))

        self.logger.info(f"Config {config.id}: generated {len(insights)} sprint_prediction insights")
        return self._persist(insights)

    async def analyze_team_performance(self, config: TrackerConfiguration, project_keys: List[str]) -> List[Insight]:
        """One project-level team_performance insight built from per-assignee stats."""
        project_keys = self._require_project_keys(project_keys)
        stats: Dict[str, Dict[str, Any]] = {}
        for issue in self._project_issues(config, project_keys):
            if not issue.assignee_name:
                continue
            member = stats.setdefault(issue.assignee_name, {'total_issues': 0, 'completed_issues': 0, 'story_points': 0.0})
            member['total_issues'] += 1
            member['story_points'] += issue.story_points or 0
            if self._is_done(issue.status):
                member['completed_issues'] += 1

        if not stats:
            self.logger.info(f"Config {config.id}: no assigned issues in {project_keys}, skipping team_performance")
            return []

        payload, confidence, model = await self._analyze(
            'team_performance', *prompts.team_performance_prompt(project_keys, stats)
        )
        insight = self._build_insight(
            config, 'team_performance', 'project', ','.join(sorted(project_keys)), project_keys[0],
            payload, confidence, model, DateTimeHelper.now_utc() + DEFAULT_TTL
        )
        return self._persist([insight])

    async def analyze_sentiment(self, config: TrackerConfiguration, issue_ids: Optional[List[str]] = None) -> List[Insight]:
        """One sentiment insight per issue that has a description."""
        query = select(MirroredIssue).where(
            MirroredIssue.config_id == config.id,
            MirroredIssue.description.isnot(None),
            MirroredIssue.description != ''
        )
        if issue_ids:
            query = query.where(MirroredIssue.external_id.in_([str(i) for i in issue_ids]))
        issues = list(self.session.execute(
            query.order_by(MirroredIssue.updated_date.desc()).limit(MAX_ISSUES_PER_RUN)
        ).scalars())

        insights = []
        for issue in issues:
            payload, confidence, model = await self._analyze('sentiment', *prompts.sentiment_prompt(issue))
            insights.append(self._build_insight(
                config, 'sentiment', 'issue', issue.external_id, issue.project_key,
                payload, confidence, model, DateTimeHelper.now_utc() + DEFAULT_TTL
            ))

        self.logger.info(f"Config {config.id}: generated {len(insights)} sentiment insights")
        return self._persist(insights)

    async def analyze_costs(self, config: TrackerConfiguration, project_keys: List[str]) -> List[Insight]:
        """One project-level cost_analysis insight (story points x hours per point x hourly rate)."""
        project_keys = self._require_project_keys(project_keys)
        issues = self._project_issues(config, project_keys)
        if not issues:
            self.logger.info(f"Config {config.id}: no issues in {project_keys}, skipping cost_analysis")
            return []

        hours_per_point = self.settings.HOURS_PER_STORY_POINT
        hourly_rate = self.settings.DEFAULT_HOURLY_RATE
        costs = [
            {
                'key': issue.key,
                'story_points': issue.story_points or 0,
                'cost': self._issue_cost(issue),
                'done': self._is_done(issue.status),
            }
            for issue in issues
        ]
        summary = {
            'total_issues': len(costs),
            'completed_issues': sum(1 for item in costs if item['done']),
            'hours_per_point': hours_per_point,
            'hourly_rate': hourly_rate,
            'total_cost': sum(item['cost'] for item in costs),
            'completed_cost': sum(item['cost'] for item in costs if item['done']),
            'top_issues': sorted(costs, key=lambda item: item['cost'], reverse=True)[:TOP_COST_ISSUES],
        }

        payload, confidence, model = await self._analyze(
            'cost_analysis', *prompts.cost_analysis_prompt(project_keys, summary)
        )
        payload.setdefault('total_cost', summary['total_cost'])
        payload.setdefault('completed_cost', summary['completed_cost'])

        insight = self._build_insight(
            config, 'cost_analysis', 'project', ','.join(sorted(project_keys)), project_keys[0],
            payload, confidence, model, DateTimeHelper.now_utc() + DEFAULT_TTL
        )
        return self._persist([insight])

    async def suggest_priority_rebalancing(self, config: TrackerConfiguration, project_keys: List[str]) -> List[Insight]:
        """One project-level priority_rebalancing insight over the open issues."""
        project_keys = self._require_project_keys(project_keys)
        issues = [issue for issue in self._project_issues(config, project_keys) if not self._is_done(issue.status)]
        if not issues:
            self.logger.info(f"Config {config.id}: no open issues in {project_keys}, skipping priority_rebalancing")
            return []

        payload, confidence, model = await self._analyze(
            'priority_rebalancing', *prompts.priority_rebalancing_prompt(issues[:MAX_ISSUES_PER_RUN])
        )
        insight = self._build_insight(
            config, 'priority_rebalancing', 'project', ','.join(sorted(project_keys)), project_keys[0],
            payload, confidence, model, DateTimeHelper.now_utc() + DEFAULT_TTL
        )
        return self._persist([insight])

    async def analyze_productivity_economics(self, config: TrackerConfiguration,
                                             project_keys: List[str]) -> List[Insight]:
        """One project-level productivity_economics insight from per-assignee output and cost."""
        project_keys = self._require_project_keys(project_keys)
        stats: Dict[str, Dict[str, Any]] = {}
        for issue in self._project_issues(config, project_keys):
            if not issue.assignee_name:
                continue
            member = stats.setdefault(issue.assignee_name, {
                'total_issues': 0, 'completed_issues': 0, 'story_points': 0.0, 'estimated_cost': 0.0
            })
            member['total_issues'] += 1
            member['story_points'] += issue.story_points or 0
            member['estimated_cost'] += self._issue_cost(issue)
            if self._is_done(issue.status):
                member['completed_issues'] += 1

        if not stats:
            self.logger.info(f"Config {config.id}: no assigned issues in {project_keys}, skipping productivity_economics")
            return []

        payload, confidence, model = await self._analyze(
            'productivity_economics', *prompts.productivity_economics_prompt(project_keys, stats)
        )
        payload.setdefault('productivity_data', stats)
        insight = self._build_insight(
            config, 'productivity_economics', 'project', ','.join(sorted(project_keys)), project_keys[0],
            payload, confidence, model, DateTimeHelper.now_utc() + DEFAULT_TTL
        )
        return self._persist([insight])

    async def generate_budget_alerts(self, config: TrackerConfiguration, project_keys: List[str]) -> List[Insight]:
        """One project-level budget_alerts insight comparing spend with completed work, valid for 24 hours."""
        project_keys = self._require_project_keys(project_keys)
        issues = self._project_issues(config, project_keys)
        if not issues:
            self.logger.info(f"Config {config.id}: no issues in {project_keys}, skipping budget_alerts")
            return []

        projected_total_cost = sum(self._issue_cost(issue) for issue in issues)
        current_spend = sum(self._issue_cost(issue) for issue in issues if self._is_done(issue.status))
        completed = sum(1 for issue in issues if self._is_done(issue.status))
        budget = {
            'projected_total_cost': projected_total_cost,
            'current_spend': current_spend,
            'spend_rate': current_spend / projected_total_cost if projected_total_cost > 0 else 0.0,
            'completion_rate': completed / len(issues),
        }

        payload, confidence, model = await self._analyze(
            'budget_alerts', *prompts.budget_alerts_prompt(project_keys, budget)
        )
        for name, value in budget.items():
            payload.setdefault(name, value)
        insight = self._build_insight(
            config, 'budget_alerts', 'project', ','.join(sorted(project_keys)), project_keys[0],
            payload, confidence, model, DateTimeHelper.now_utc() + BUDGET_ALERT_TTL
        )
        return self._persist([insight])

    async def generate(self, config: TrackerConfiguration, insight_type: str,
                       issue_ids: Optional[List[str]] = None,
                       project_keys: Optional[List[str]] = None) -> List[Insight]:
        """Dispatch to the operation for insight_type."""
        if insight_type == 'sla_risk':
            return await self.generate_sla_risk(config, issue_ids)
        if insight_type == 'sprint_prediction':
            return await self.predict_sprint_completion(config, project_keys)
        if insight_type == 'team_performance':
            return await self.analyze_team_performance(config, project_keys)
        if insight_type == 'sentiment':
            return await self.analyze_sentiment(config, issue_ids)
        if insight_type == 'cost_analysis':
            return await self.analyze_costs(config, project_keys)
        if insight_type == 'priority_rebalancing':
            return await self.suggest_priority_rebalancing(config, project_keys)
        if insight_type == 'productivity_economics':
            return await self.analyze_productivity_economics(config, project_keys)
        if insight_type == 'budget_alerts':
            return await self.generate_budget_alerts(config, project_keys)
        raise ValidationError(f"Unknown insight type '{insight_type}'")
