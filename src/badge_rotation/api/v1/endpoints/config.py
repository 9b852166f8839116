"""Per-scope rotation configuration endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from badge_rotation.api.v1.dependencies import (
    CurrentUserDep,
    OperatorDep,
    ServicesDep,
    SessionDep,
)
from badge_rotation.schemas import ApiResponse, ModerationConfigResponse, ModerationConfigUpdate
from badge_rotation.services.scope import parse_scope

router = APIRouter(prefix="/moderation/config", tags=["moderation-config"])


@router.get("/{scope_type}/{scope_id}", response_model=ApiResponse[ModerationConfigResponse])
async def get_config(
    scope_type: str,
    scope_id: str,
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[ModerationConfigResponse]:
    """Return the scope's tunables, creating the defaults on first read."""
    row = services.config_store.get_or_create(db, parse_scope(scope_type, scope_id))
    return ApiResponse(data=ModerationConfigResponse.model_validate(row))


@router.put("/{scope_type}/{scope_id}", response_model=ApiResponse[ModerationConfigResponse])
async def update_config(
    scope_type: str,
    scope_id: str,
    payload: ModerationConfigUpdate,
    db: SessionDep,
    operator: OperatorDep,
    services: ServicesDep,
) -> ApiResponse[ModerationConfigResponse]:
    scope = parse_scope(scope_type, scope_id)
    row = services.config_store.update(db, scope, payload.model_dump(exclude_none=True))
    return ApiResponse(data=ModerationConfigResponse.model_validate(row))
