"""
Sync endpoints: connection test, on-demand sync of one configuration and of
every enabled configuration.

Handlers are plain ``def`` so the blocking tracker calls run in the threadpool.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tracker_sync.core.database import get_db_session, get_database
from tracker_sync.core.logging_config import get_logger
from tracker_sync.jobs import orchestrator
from tracker_sync.schemas.api_schemas import (
    ConnectionTestRequest, ConnectionTestResponse, SyncResponse, SyncAllResponse
)
from tracker_sync.services.configuration_service import ConfigurationService

router = APIRouter(prefix="/sync")
logger = get_logger(__name__)


@router.post(
    "/test-connection",
    response_model=ConnectionTestResponse,
    summary="Test tracker credentials",
    description="Check the tracker with explicit credentials or with a stored configuration's token"
)
def test_connection(request: ConnectionTestRequest, db: Session = Depends(get_db_session)):
    provider = request.provider.value
    base_url = request.base_url
    username = request.username
    token = request.api_token
    project_keys = request.project_keys

    if request.config_id is not None:
        config = ConfigurationService(db).get_configuration(request.config_id)
        provider = config.provider
        base_url = base_url or config.base_url
        username = username or config.username
        token = token or ConfigurationService.decrypt_token(config)
        if project_keys is None:
            project_keys = config.selected_project_keys

    return orchestrator.test_connection(provider, base_url, username, token, project_keys)


@router.post("/all", response_model=SyncAllResponse, summary="Sync every enabled configuration")
def sync_all_configurations():
    return orchestrator.sync_all(get_database())


@router.post("/{config_id}", response_model=SyncResponse, summary="Sync one configuration")
def sync_configuration(config_id: int, db: Session = Depends(get_db_session)):
    return orchestrator.sync_integration(db, config_id)
