"""
Jira webhook receiver.
"""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from tracker_sync.core.config import get_settings
from tracker_sync.core.database import get_db_session
from tracker_sync.core.errors import ValidationError
from tracker_sync.core.logging_config import get_logger
from tracker_sync.schemas.api_schemas import WebhookResponse
from tracker_sync.webhooks.webhook_processor import WebhookProcessor, verify_signature

router = APIRouter(prefix="/webhooks")
logger = get_logger(__name__)


@router.post(
    "/jira",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
    summary="Receive a Jira webhook",
    description="Applies issue and sprint events to the mirror and enqueues insight regeneration"
)
async def receive_jira_webhook(request: Request, db: Session = Depends(get_db_session)):
    raw_body = await request.body()

    secret = get_settings().JIRA_WEBHOOK_SECRET
    if secret and not verify_signature(raw_body, request.headers.get("X-Hub-Signature"), secret):
        logger.warning("Rejected Jira webhook with missing or invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = json.loads(raw_body or b"null")
    except ValueError:
        raise ValidationError("Invalid webhook payload: body is not valid JSON")

    return await run_in_threadpool(WebhookProcessor(db).process_webhook, payload)
