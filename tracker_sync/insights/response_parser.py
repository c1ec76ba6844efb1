"""
Strict parsing of LLM insight responses.

Each insight type has its own pydantic model; anything that does not validate
(missing fields, scores out of range, non-JSON text) is a
MalformedResponseError and is never persisted.
"""

import json
import re
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from tracker_sync.core.errors import MalformedResponseError

# Scanned left to right so opening and closing fences pair up; group 1 is the language tag
FENCED_BLOCK_PATTERN = re.compile(r"```([\w+-]*)[ \t]*\n?(.*?)```", re.DOTALL)


class InsightPayload(BaseModel):
    model_config = ConfigDict(extra='allow')

    def confidence_score(self) -> float:
        raise NotImplementedError


class SLARiskPayload(InsightPayload):
    risk_score: float = Field(ge=0, le=1)
    risk_factors: List[str] = Field(default_factory=list)
    recommendations: List[Any] = Field(default_factory=list)
    estimated_completion_days: Optional[float] = Field(default=None, ge=0)

    def confidence_score(self) -> float:
        return self.risk_score


class SprintPredictionPayload(InsightPayload):
    completion_probability: float = Field(ge=0, le=1)
    risk_factors: List[str] = Field(default_factory=list)
    recommendations: List[Any] = Field(default_factory=list)
    velocity_insights: Any = None

    def confidence_score(self) -> float:
        return self.completion_probability


class TeamPerformancePayload(InsightPayload):
    team_health_score: float = Field(ge=0, le=1)
    top_performers: List[Any] = Field(default_factory=list)
    needs_support: List[Any] = Field(default_factory=list)
    workload_recommendations: List[Any] = Field(default_factory=list)

    def confidence_score(self) -> float:
        return self.team_health_score


class SentimentPayload(InsightPayload):
    sentiment_score: float = Field(ge=-1, le=1)
    themes: List[str] = Field(default_factory=list)
    urgency_level: Optional[str] = None
    emotional_tone: Optional[str] = None

    def confidence_score(self) -> float:
        return abs(self.sentiment_score)


class CostAnalysisPayload(InsightPayload):
    cost_efficiency_score: float = Field(ge=0, le=1)
    budget_recommendations: List[Any] = Field(default_factory=list)
    cost_effective_issues: List[Any] = Field(default_factory=list)
    optimization_areas: List[Any] = Field(default_factory=list)
    roi_insights: Any = None

    def confidence_score(self) -> float:
        return self.cost_efficiency_score


class PriorityRebalancingPayload(InsightPayload):
    priority_health_score: float = Field(ge=0, le=1)
    increase_priority: List[Any] = Field(default_factory=list)
    decrease_priority: List[Any] = Field(default_factory=list)
    reasoning: Any = None

    def confidence_score(self) -> float:
        return self.priority_health_score


class ProductivityEconomicsPayload(InsightPayload):
    team_productivity_score: float = Field(ge=0, le=1)
    cost_effective_members: List[Any] = Field(default_factory=list)
    productivity_recommendations: List[Any] = Field(default_factory=list)
    resource_allocation: Any = None
    value_insights: Any = None

    def confidence_score(self) -> float:
        return self.team_productivity_score


class BudgetAlertsPayload(InsightPayload):
    financial_risk_score: float = Field(ge=0, le=1)
    critical_warnings: List[Any] = Field(default_factory=list)
    spending_trends: Any = None
    optimization_suggestions: List[Any] = Field(default_factory=list)
    reallocation_recommendations: List[Any] = Field(default_factory=list)

    def confidence_score(self) -> float:
        return self.financial_risk_score


PAYLOAD_MODELS: Dict[str, Type[InsightPayload]] = {
    'sla_risk': SLARiskPayload,
    'sprint_prediction': SprintPredictionPayload,
    'team_performance': TeamPerformancePayload,
    'sentiment': SentimentPayload,
    'cost_analysis': CostAnalysisPayload,
    'priority_rebalancing': PriorityRebalancingPayload,
    'productivity_economics': ProductivityEconomicsPayload,
    'budget_alerts': BudgetAlertsPayload,
}


def _select_candidate(text: str) -> str:
    """First ```json block, else first unlabelled block, else the whole text."""
    blocks = [(lang.lower(), body) for lang, body in FENCED_BLOCK_PATTERN.findall(text)]
    for wanted in ('json', ''):
        for lang, body in blocks:
            if lang == wanted:
                return body.strip()
    return text.strip()


def extract_json_block(text: str) -> Dict[str, Any]:
    """
    Return the object of the first fenced ```json block. Falls back to the
    first unlabelled fence, then to the whole text when the model answered
    with bare JSON. Fences in other languages are ignored.

    Raises:
        MalformedResponseError: If no JSON object can be decoded
    """
    if not text or not text.strip():
        raise MalformedResponseError("LLM response is empty")

    candidate = _select_candidate(text)

    try:
        data = json.loads(candidate)
    except ValueError as e:
        raise MalformedResponseError(f"LLM response does not contain a valid JSON block: {e}") from e

    if not isinstance(data, dict):
        raise MalformedResponseError("LLM JSON block is not an object")
    return data


def parse_insight(insight_type: str, text: str) -> Tuple[Dict[str, Any], float]:
    """
    Validate an LLM response for the insight type.

    Returns:
        (payload, confidence_score) with confidence_score in [0, 1]
    """
    model_class = PAYLOAD_MODELS.get(insight_type)
    if model_class is None:
        raise MalformedResponseError(f"Unknown insight type '{insight_type}'")

    data = extract_json_block(text)
    try:
        payload = model_class.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedResponseError(f"Invalid {insight_type} response: {e.errors()[0].get('msg')} at {e.errors()[0].get('loc')}") from e

    return payload.model_dump(mode='json'), float(payload.confidence_score())
