"""
Insight endpoints: on-demand generation, listing and draining the job outbox.

Handlers are plain ``def`` so session work runs in the threadpool; the LLM
coroutines get their own event loop there.
"""

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tracker_sync.core.database import get_db_session
from tracker_sync.insights.insight_generator import InsightGenerator, list_active_insights
from tracker_sync.schemas.api_schemas import (
    InsightGenerateRequest, InsightGenerateResponse, InsightResponse, InsightType, InsightJobProcessResponse
)
from tracker_sync.services.configuration_service import ConfigurationService
from tracker_sync.workers.insight_worker import InsightJobDispatcher

router = APIRouter(prefix="/insights")


@router.post(
    "/generate",
    response_model=InsightGenerateResponse,
    summary="Generate insights",
    description="Runs one insight operation synchronously. Nothing is stored when any LLM call fails."
)
def generate_insights(request: InsightGenerateRequest, db: Session = Depends(get_db_session)):
    config = ConfigurationService(db).get_configuration(request.config_id)
    insights = asyncio.run(InsightGenerator(db).generate(
        config, request.insight_type.value,
        issue_ids=request.issue_ids,
        project_keys=request.project_keys
    ))
    db.commit()
    return InsightGenerateResponse(
        insight_type=request.insight_type,
        generated=len(insights),
        insights=[InsightResponse.model_validate(insight) for insight in insights]
    )


@router.get("", response_model=List[InsightResponse], summary="List non-expired insights")
def list_insights(
    config_id: int,
    insight_type: Optional[InsightType] = Query(default=None),
    subject_id: Optional[str] = Query(default=None),
    db: Session = Depends(get_db_session)
):
    ConfigurationService(db).get_configuration(config_id)
    insights = list_active_insights(db, config_id, insight_type.value if insight_type else None, subject_id)
    return [InsightResponse.model_validate(insight) for insight in insights]


@router.post("/jobs/process", response_model=InsightJobProcessResponse, summary="Drain pending insight jobs")
def process_insight_jobs(
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    db: Session = Depends(get_db_session)
):
    return asyncio.run(InsightJobDispatcher(db).process_pending(limit))
