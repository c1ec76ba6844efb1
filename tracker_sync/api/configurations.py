"""
Tracker configuration endpoints (the settings form backend).

Tokens are write-only: responses expose ``has_token`` instead.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from tracker_sync.core.database import get_db_session
from tracker_sync.schemas.api_schemas import (
    ConfigurationCreate, ConfigurationUpdate, ConfigurationResponse, TrackerProvider
)
from tracker_sync.services.configuration_service import ConfigurationService, to_public_dict

router = APIRouter(prefix="/configurations")


@router.get("", response_model=List[ConfigurationResponse], summary="List tracker configurations")
def list_configurations(
    provider: Optional[TrackerProvider] = Query(default=None),
    db: Session = Depends(get_db_session)
):
    service = ConfigurationService(db)
    configs = service.list_configurations(provider.value if provider else None)
    return [ConfigurationResponse(**to_public_dict(config)) for config in configs]


@router.post(
    "",
    response_model=ConfigurationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tracker configuration"
)
def create_configuration(data: ConfigurationCreate, db: Session = Depends(get_db_session)):
    config = ConfigurationService(db).create_configuration(data)
    db.commit()
    return ConfigurationResponse(**to_public_dict(config))


@router.get("/{config_id}", response_model=ConfigurationResponse, summary="Get a tracker configuration")
def get_configuration(config_id: int, db: Session = Depends(get_db_session)):
    config = ConfigurationService(db).get_configuration(config_id)
    return ConfigurationResponse(**to_public_dict(config))


@router.put("/{config_id}", response_model=ConfigurationResponse, summary="Update a tracker configuration")
def update_configuration(config_id: int, data: ConfigurationUpdate, db: Session = Depends(get_db_session)):
    config = ConfigurationService(db).update_configuration(config_id, data)
    db.commit()
    return ConfigurationResponse(**to_public_dict(config))


@router.delete(
    "/{config_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a tracker configuration and its mirrored data"
)
def delete_configuration(config_id: int, db: Session = Depends(get_db_session)):
    ConfigurationService(db).delete_configuration(config_id)
    db.commit()
