"""
Stage domain models — the stage record, its enumerations, and mutation results.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from stage_service.errors import InvalidArgumentError

# Environment and stage names are URL path segments
NAME_PATTERN = r"^[a-zA-Z0-9\-_]+$"


class StageType(str, Enum):
    DEFAULT = "DEFAULT"
    PRODUCTION = "PRODUCTION"
    CONTROL = "CONTROL"
    CANARY = "CANARY"
    LATEST = "LATEST"
    DEV = "DEV"
    STAGING = "STAGING"


class EnvState(str, Enum):
    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


class ActionType(str, Enum):
    ENABLE = "ENABLE"
    DISABLE = "DISABLE"


class DeployPriority(str, Enum):
    HIGHER = "HIGHER"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"
    LOWER = "LOWER"


class AcceptanceType(str, Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class OverridePolicy(str, Enum):
    OVERRIDE = "OVERRIDE"
    WARN = "WARN"


# Fields the general update operation may never write. Identity is forced to the
# current values, the rest have dedicated operations.
PROTECTED_FIELDS = frozenset({
    "env_id", "env_name", "stage_name", "env_state", "external_id", "is_sox",
    "last_operator", "last_update", "version",
})


class Stage(BaseModel):
    """A named deployment target under an environment."""
    env_id: Optional[int] = None
    env_name: str = Field(pattern=NAME_PATTERN, max_length=64)
    stage_name: str = Field(pattern=NAME_PATTERN, max_length=64)
    stage_type: StageType = StageType.DEFAULT
    env_state: EnvState = EnvState.ENABLED
    external_id: Optional[str] = None
    is_sox: bool = False

    # General configuration
    description: str = Field(default="", max_length=1024)
    build_name: str = Field(default="", max_length=64)
    branch: str = Field(default="", max_length=64)
    chatroom: str = Field(default="", max_length=64)
    max_parallel: int = Field(default=1, ge=1)
    max_parallel_pct: int = Field(default=0, ge=0, le=100)
    priority: DeployPriority = DeployPriority.NORMAL
    stuck_th: int = Field(default=600, ge=1)  # seconds
    success_th: int = Field(default=10000, ge=0, le=10000)  # basis points
    accept_type: AcceptanceType = AcceptanceType.AUTO
    notify_authors: bool = False
    watch_recipients: str = Field(default="", max_length=1024)
    max_deploy_num: int = Field(default=5000, ge=1)
    max_deploy_day: int = Field(default=365, ge=1)
    is_docker: bool = False
    cluster_name: Optional[str] = Field(default=None, max_length=128)
    override_policy: OverridePolicy = OverridePolicy.OVERRIDE
    allow_private_build: bool = False
    ensure_trusted_build: bool = False
    terminating_limit: Optional[int] = Field(default=None, ge=0)

    # Bookkeeping
    last_operator: str = ""
    last_update: Optional[datetime] = None
    version: int = 0

    @property
    def key(self) -> str:
        return f"{self.env_name}/{self.stage_name}"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Stage":
        """Build and validate a stage, turning validation errors into InvalidArgumentError."""
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'stage'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidArgumentError(f"Invalid stage configuration - {problems}") from e

    def config_snapshot(self) -> Dict[str, Any]:
        """JSON-safe snapshot written to the audit trail."""
        return self.model_dump(mode="json", exclude={"version"})


class StageMutationResult(BaseModel):
    """Outcome of an accepted mutation.

    The stage change is durable whenever a result is returned. ``audit_errors``
    lists the audit or tag appends that failed afterwards.
    """
    stage: Stage
    audit_errors: List[str] = Field(default_factory=list)

    @property
    def audit_complete(self) -> bool:
        return not self.audit_errors
