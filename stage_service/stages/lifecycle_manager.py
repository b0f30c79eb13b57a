"""
Stage Lifecycle Manager — the stage mutation-and-audit pipeline.
Every mutating operation runs resolve → authorize → validate → mutate → audit:
- nothing is written before the caller is authorized and the input validated
- a failed store write aborts the operation before any audit emission
- a failed audit or tag append is logged and reported, but never undoes the write
"""

import logging
import re
from typing import TYPE_CHECKING, Any, Dict, List, Tuple, Union

from stage_service.audit.config_history import (
    CONFIG_TYPE_ENV, TYPE_ENV_ACTION, TYPE_ENV_EXTERNAL_ID, TYPE_ENV_GENERAL,
    TYPE_ENV_SOX, ConfigHistoryHandler,
)
from stage_service.auth.authorizer import Authorizer, Caller, Resource, ResourceType, Role
from stage_service.errors import AuditEmissionError, InvalidArgumentError, NotFoundError
from stage_service.stages.models import (
    PROTECTED_FIELDS, ActionType, EnvState, Stage, StageMutationResult, StageType,
)
from stage_service.tags.tag_handler import EnvTagHandler, Tag, TagTargetType, TagValue

if TYPE_CHECKING:
    from stage_service.db.stage_store import StageStore

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def parse_action_type(raw: Union[ActionType, str]) -> ActionType:
    if isinstance(raw, ActionType):
        return raw
    try:
        return ActionType(raw)
    except ValueError:
        raise InvalidArgumentError(f"No action found for action type '{raw}'.")


def action_outcome(action: ActionType) -> Tuple[EnvState, TagValue]:
    """Target lifecycle state and tag value for an action."""
    if action is ActionType.ENABLE:
        return EnvState.ENABLED, TagValue.ENABLE_ENV
    if action is ActionType.DISABLE:
        return EnvState.DISABLED, TagValue.DISABLE_ENV
    raise InvalidArgumentError(f"No action found for action type '{action}'.")


def parse_compliance_flag(raw_value: Any) -> bool:
    """Accept exactly 'true' or 'false', case-insensitive."""
    token = raw_value.lower() if isinstance(raw_value, str) else None
    if token == "true":
        return True
    if token == "false":
        return False
    logger.info(f"Invalid Boolean supplied for env/stage stage_is_sox - {raw_value}.")
    raise InvalidArgumentError(
        f"Client supplied an invalid Boolean value - {raw_value}. Please retry with 'true' or 'false'"
    )


def normalize_external_id(external_id: Any) -> str:
    """Validate UUID syntax (8-4-4-4-12 hex) and return its lower-case form."""
    if not isinstance(external_id, str) or not UUID_PATTERN.fullmatch(external_id):
        logger.info(f"Invalid UUID supplied - {external_id}.")
        raise InvalidArgumentError(
            f"Client supplied an invalid externalId - {external_id}. "
            "Please retry with an externalId in the UUID format"
        )
    return external_id.lower()


class StageLifecycleManager:
    """
    Orchestrates reads and mutations of existing stages.
    One long-lived instance per process, holding its collaborators.
    """

    def __init__(self, store: "StageStore", authorizer: Authorizer,
                 config_history: ConfigHistoryHandler, tag_handler: EnvTagHandler):
        self._store = store
        self._authorizer = authorizer
        self._config_history = config_history
        self._tag_handler = tag_handler

    # ── Helpers ───────────────────────────────────────────────────

    async def _resolve(self, env_name: str, stage_name: str) -> Stage:
        stage = await self._store.get_by_stage(env_name, stage_name)
        if stage is None:
            raise NotFoundError.for_stage(env_name, stage_name)
        return stage

    def _authorize(self, caller: Caller, stage: Stage, role: Role = Role.OPERATOR) -> None:
        self._authorizer.authorize(caller, Resource(name=stage.env_name, type=ResourceType.ENV), role)

    def _report_audit_failure(self, error: AuditEmissionError, errors: List[str]) -> None:
        logger.error(f"Audit anomaly: {error.message}")
        errors.append(error.message)

    async def _record_config_change(self, stage: Stage, category: str,
                                    caller: Caller, errors: List[str]) -> None:
        """Append one config history entry and one change feed entry, each attempted once."""
        try:
            await self._config_history.update_config_history(
                stage.env_id, category, stage, caller.name)
        except AuditEmissionError as e:
            self._report_audit_failure(e, errors)
        try:
            await self._config_history.update_change_feed(
                CONFIG_TYPE_ENV, stage.env_id, category, caller.name)
        except AuditEmissionError as e:
            self._report_audit_failure(e, errors)

    async def _read_back(self, stage: Stage) -> Stage:
        return await self._resolve(stage.env_name, stage.stage_name)

    # ── Operations ────────────────────────────────────────────────

    async def get(self, env_name: str, stage_name: str) -> Stage:
        """Return a stage by key. Reads need no authorization."""
        return await self._resolve(env_name, stage_name)

    async def update(self, env_name: str, stage_name: str,
                     desired: Union[Stage, Dict[str, Any]], caller: Caller) -> StageMutationResult:
        """Apply a general configuration update.

        Fields present in ``desired`` replace the current values; absent fields are
        kept. Identity, lifecycle state, external id and the SOX flag are always
        carried over from the current record.
        """
        current = await self._resolve(env_name, stage_name)
        self._authorize(caller, current)

        payload = desired.model_dump(exclude_unset=True) if isinstance(desired, Stage) else dict(desired)
        merged = current.model_dump()
        merged.update({k: v for k, v in payload.items() if k not in PROTECTED_FIELDS})
        candidate = Stage.from_payload(merged)

        if current.stage_type != StageType.DEFAULT and candidate.stage_type != current.stage_type:
            raise InvalidArgumentError("Modification of stage type is not allowed!")

        saved = await self._store.save(candidate, expected_version=current.version, operator=caller.name)

        audit_errors: List[str] = []
        await self._record_config_change(saved, TYPE_ENV_GENERAL, caller, audit_errors)
        logger.info(f"Successfully updated env {env_name}/{stage_name} by {caller.name}.")
        return StageMutationResult(stage=saved, audit_errors=audit_errors)

    async def delete(self, env_name: str, stage_name: str, caller: Caller) -> None:
        """Delete a stage. History and tags of the stage are kept and no audit entry is written."""
        current = await self._resolve(env_name, stage_name)
        self._authorize(caller, current)
        if not await self._store.delete(env_name, stage_name):
            raise NotFoundError.for_stage(env_name, stage_name)
        logger.info(f"Successfully deleted env {env_name}/{stage_name} by {caller.name}.")

    async def set_external_id(self, env_name: str, stage_name: str,
                              external_id: str, caller: Caller) -> StageMutationResult:
        normalized = normalize_external_id(external_id)
        current = await self._resolve(env_name, stage_name)
        self._authorize(caller, current)

        await self._store.set_external_id(current, normalized, operator=caller.name)
        updated = await self._read_back(current)

        audit_errors: List[str] = []
        await self._record_config_change(updated, TYPE_ENV_EXTERNAL_ID, caller, audit_errors)
        logger.info(f"Successfully updated Env/stage - {env_name}/{stage_name} "
                    f"with externalid = {updated.external_id}")
        return StageMutationResult(stage=updated, audit_errors=audit_errors)

    async def set_compliance_flag(self, env_name: str, stage_name: str,
                                  raw_value: str, caller: Caller) -> StageMutationResult:
        is_sox = parse_compliance_flag(raw_value)
        current = await self._resolve(env_name, stage_name)
        self._authorize(caller, current)

        await self._store.set_stage_is_sox(current, is_sox, operator=caller.name)
        updated = await self._read_back(current)

        audit_errors: List[str] = []
        await self._record_config_change(updated, TYPE_ENV_SOX, caller, audit_errors)
        logger.info(f"Successfully updated Env/stage - {env_name}/{stage_name} "
                    f"with stage_is_sox = {updated.is_sox}")
        return StageMutationResult(stage=updated, audit_errors=audit_errors)

    # ── Lifecycle Actions ─────────────────────────────────────────

    async def enable(self, stage: Stage, operator: str) -> None:
        await self._store.set_env_state(stage, EnvState.ENABLED, operator=operator)

    async def disable(self, stage: Stage, operator: str) -> None:
        await self._store.set_env_state(stage, EnvState.DISABLED, operator=operator)

    async def perform_action(self, env_name: str, stage_name: str,
                             action_type: Union[ActionType, str], description: str,
                             caller: Caller) -> StageMutationResult:
        """Enable or disable a stage and tag the action. Repeating an action is accepted."""
        current = await self._resolve(env_name, stage_name)
        self._authorize(caller, current)

        action = parse_action_type(action_type)
        target_state, tag_value = action_outcome(action)
        if target_state is EnvState.ENABLED:
            await self.enable(current, caller.name)
        else:
            await self.disable(current, caller.name)
        updated = await self._read_back(current)

        audit_errors: List[str] = []
        await self._record_config_change(updated, TYPE_ENV_ACTION, caller, audit_errors)
        tag = Tag(
            value=tag_value, target_type=TagTargetType.ENVIRONMENT,
            target_id=str(updated.env_id), comments=description,
        )
        try:
            await self._tag_handler.create_tag(tag, caller.name, stage=updated)
        except AuditEmissionError as e:
            self._report_audit_failure(e, audit_errors)

        logger.info(f"Successfully updated action {action.value} for {env_name}/{stage_name} "
                    f"by {caller.name}")
        return StageMutationResult(stage=updated, audit_errors=audit_errors)
