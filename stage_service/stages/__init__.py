"""Stage lifecycle — get, update, delete, external id, SOX flag, enable/disable."""
from .lifecycle_manager import StageLifecycleManager
from .models import ActionType, EnvState, Stage, StageMutationResult, StageType

__all__ = ["StageLifecycleManager", "ActionType", "EnvState", "Stage", "StageMutationResult", "StageType"]
