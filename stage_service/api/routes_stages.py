"""
Stage Service — /v1/envs/{env_name}/{stage_name} routes.
Thin translation between HTTP and the StageLifecycleManager.
"""

import json
from typing import Annotated, Any, Dict, List

from fastapi import APIRouter, Body, Depends, Path, Query, Request, Response
from pydantic import BaseModel, Field

from stage_service.auth.authorizer import Caller
from stage_service.errors import InvalidArgumentError
from stage_service.stages.lifecycle_manager import StageLifecycleManager
from stage_service.stages.models import NAME_PATTERN, Stage, StageMutationResult

router = APIRouter(prefix="/v1/envs/{env_name}/{stage_name}", tags=["Environments"])


# ── Dependencies ──────────────────────────────────────────────────

def get_lifecycle_manager(request: Request) -> StageLifecycleManager:
    return request.app.state.lifecycle_manager


def get_caller(request: Request) -> Caller:
    # Set by CallerMiddleware; routes are unreachable without one
    return request.state.caller


EnvName = Annotated[str, Path(pattern=NAME_PATTERN, description="Environment name")]
StageName = Annotated[str, Path(pattern=NAME_PATTERN, description="Stage name")]


class StageMutationResponse(BaseModel):
    stage: Stage
    audit_complete: bool = True
    audit_errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: StageMutationResult) -> "StageMutationResponse":
        return cls(stage=result.stage, audit_complete=result.audit_complete,
                   audit_errors=result.audit_errors)


async def _read_text_body(request: Request) -> str:
    """Read a raw text body; a JSON string literal is unquoted."""
    try:
        raw = (await request.body()).decode("utf-8").strip()
    except UnicodeDecodeError:
        raise InvalidArgumentError("Request body must be UTF-8 text")
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise InvalidArgumentError(f"Malformed JSON string body - {raw}")
    return raw


# ── Routes ────────────────────────────────────────────────────────

@router.get("", response_model=Stage, summary="Get an environment")
async def get_stage(env_name: EnvName, stage_name: StageName,
                    manager: StageLifecycleManager = Depends(get_lifecycle_manager)):
    """Returns an environment object given environment and stage names."""
    return await manager.get(env_name, stage_name)


@router.put("", response_model=StageMutationResponse, summary="Update an environment")
async def update_stage(env_name: EnvName, stage_name: StageName,
                       desired: Dict[str, Any] = Body(..., description="Desired environment object with updates"),
                       caller: Caller = Depends(get_caller),
                       manager: StageLifecycleManager = Depends(get_lifecycle_manager)):
    """Update an environment given environment and stage names with an environment object."""
    result = await manager.update(env_name, stage_name, desired, caller)
    return StageMutationResponse.from_result(result)


@router.delete("", status_code=204, summary="Delete an environment")
async def delete_stage(env_name: EnvName, stage_name: StageName,
                       caller: Caller = Depends(get_caller),
                       manager: StageLifecycleManager = Depends(get_lifecycle_manager)):
    """Deletes an environment given environment and stage names."""
    await manager.delete(env_name, stage_name, caller)
    return Response(status_code=204)


@router.post("/external_id", response_model=StageMutationResponse,
             summary="Sets the external_id on a stage")
async def set_external_id(request: Request,
                          env_name: EnvName, stage_name: StageName,
                          caller: Caller = Depends(get_caller),
                          manager: StageLifecycleManager = Depends(get_lifecycle_manager)):
    """Body is the external id in UUID format, as plain text."""
    external_id = await _read_text_body(request)
    result = await manager.set_external_id(env_name, stage_name, external_id, caller)
    return StageMutationResponse.from_result(result)


@router.patch("/stage_is_sox", response_model=StageMutationResponse,
              summary="Sets stage_is_sox on a stage")
async def set_stage_is_sox(request: Request,
                           env_name: EnvName, stage_name: StageName,
                           caller: Caller = Depends(get_caller),
                           manager: StageLifecycleManager = Depends(get_lifecycle_manager)):
    """Body is 'true' or 'false' (any case), as plain text."""
    raw_value = await _read_text_body(request)
    result = await manager.set_compliance_flag(env_name, stage_name, raw_value, caller)
    return StageMutationResponse.from_result(result)


@router.post("/actions", response_model=StageMutationResponse, summary="Enable or disable a stage")
async def perform_action(env_name: EnvName, stage_name: StageName,
                         action_type: str = Query(..., alias="actionType", min_length=1),
                         description: str = Query(..., min_length=1),
                         caller: Caller = Depends(get_caller),
                         manager: StageLifecycleManager = Depends(get_lifecycle_manager)):
    result = await manager.perform_action(env_name, stage_name, action_type, description, caller)
    return StageMutationResponse.from_result(result)
