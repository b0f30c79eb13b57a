"""
Authorizer — role-based access control for stage mutations.
Callers hold roles on resources (an environment, a group, or the whole system);
a mutation requires a minimum role on the stage's owning environment.
"""

import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Protocol, Tuple

from pydantic import BaseModel, Field

from stage_service.errors import ForbiddenError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Roles in ascending order of privilege."""
    READER = "READER"
    PINGER = "PINGER"
    PUBLISHER = "PUBLISHER"
    OPERATOR = "OPERATOR"
    ADMIN = "ADMIN"

    @property
    def rank(self) -> int:
        return list(Role).index(self)

    def covers(self, required: "Role") -> bool:
        return self.rank >= required.rank


class ResourceType(str, Enum):
    ENV = "ENV"
    GROUP = "GROUP"
    SYSTEM = "SYSTEM"


SYSTEM_RESOURCE_NAME = "*"
AUDIT_LOG_MAX_ENTRIES = 10000


class Resource(BaseModel):
    name: str
    type: ResourceType

    @classmethod
    def system(cls) -> "Resource":
        return cls(name=SYSTEM_RESOURCE_NAME, type=ResourceType.SYSTEM)

    def __str__(self) -> str:
        return f"{self.type.value}:{self.name}"


class Caller(BaseModel):
    """An already-authenticated caller."""
    name: str = Field(min_length=1)


class Authorizer(Protocol):
    def authorize(self, caller: Caller, resource: Resource, required_role: Role) -> None:
        """Return if ``caller`` holds ``required_role`` on ``resource``, else raise ForbiddenError."""
        ...


class OpenAuthorizer:
    """Permits every caller. For local development only."""

    def authorize(self, caller: Caller, resource: Resource, required_role: Role) -> None:
        logger.debug(f"Open authorizer allowed {caller.name} {required_role.value} on {resource}")


class RoleBasedAuthorizer:
    """
    In-memory role bindings per (user, resource).
    A binding satisfies a requirement when its role ranks at least as high;
    a SYSTEM ADMIN binding satisfies every requirement.
    """

    def __init__(self, admin_operators: Optional[List[str]] = None,
                 audit_log_size: int = AUDIT_LOG_MAX_ENTRIES):
        # (user, resource) -> role
        self._bindings: Dict[Tuple[str, str], Role] = {}
        # Oldest grant/revoke records are dropped once full
        self._audit_log: Deque[Dict[str, Any]] = deque(maxlen=audit_log_size)
        for user in admin_operators or []:
            self.grant(user, Resource.system(), Role.ADMIN, granted_by="bootstrap")

    # ── Role Bindings ─────────────────────────────────────────────

    def grant(self, user: str, resource: Resource, role: Role, granted_by: str = "admin") -> None:
        self._bindings[(user, str(resource))] = role
        self._log_audit(granted_by, "role_granted", {
            "user": user, "resource": str(resource), "role": role.value,
        })

    def revoke(self, user: str, resource: Resource, revoked_by: str = "admin") -> bool:
        removed = self._bindings.pop((user, str(resource)), None)
        if removed:
            self._log_audit(revoked_by, "role_revoked", {
                "user": user, "resource": str(resource), "role": removed.value,
            })
        return removed is not None

    def get_role(self, user: str, resource: Resource) -> Optional[Role]:
        return self._bindings.get((user, str(resource)))

    # ── Permission Checking ───────────────────────────────────────

    def check(self, caller: Caller, resource: Resource, required_role: Role) -> bool:
        system_role = self.get_role(caller.name, Resource.system())
        if system_role == Role.ADMIN:
            return True
        role = self.get_role(caller.name, resource)
        return role is not None and role.covers(required_role)

    def authorize(self, caller: Caller, resource: Resource, required_role: Role) -> None:
        """Raise if caller lacks the role."""
        if not self.check(caller, resource, required_role):
            logger.info(f"Denied {caller.name}: {required_role.value} required on {resource}")
            raise ForbiddenError(
                f"{caller.name} is not authorized to perform {required_role.value} actions on {resource}"
            )

    # ── Audit Log ─────────────────────────────────────────────────

    def _log_audit(self, user_id: str, action: str, details: Dict[str, Any] = None):
        self._audit_log.append({
            "timestamp": datetime.utcnow().isoformat(),
            "user_id": user_id,
            "action": action,
            "details": details or {},
        })

    def get_audit_log(self, limit: int = 50) -> List[Dict[str, Any]]:
        return list(self._audit_log)[-limit:]
