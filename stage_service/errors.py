"""
Error taxonomy for the stage mutation pipeline.
Each error also derives from the builtin exception callers already catch
(ValueError for bad input, PermissionError for authorization, ...).
"""


class StageServiceError(Exception):
    """Base class for all stage service errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(StageServiceError, LookupError):
    """The referenced (environment, stage) pair does not exist."""

    @classmethod
    def for_stage(cls, env_name: str, stage_name: str) -> "NotFoundError":
        return cls(f"Environment {env_name}/{stage_name} does not exist.")


class ForbiddenError(StageServiceError, PermissionError):
    """The caller lacks the required role on the owning resource."""


class InvalidArgumentError(StageServiceError, ValueError):
    """Payload failed structural or business-rule validation."""


class StoreConflictError(StageServiceError, RuntimeError):
    """The persistence layer rejected or failed the write.

    ``conflict`` is True when the record changed between read and write
    (optimistic concurrency), False for any other store failure.
    """

    def __init__(self, message: str, conflict: bool = False):
        super().__init__(message)
        self.conflict = conflict


class AuditEmissionError(StageServiceError, RuntimeError):
    """The primary mutation is durable but its audit/tag record is not."""
