"""
Tag Log — append-only record of discrete named actions (enable, disable,
build verdicts) applied to a target entity.
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from stage_service.db.models import TagModel
from stage_service.errors import AuditEmissionError, InvalidArgumentError

logger = logging.getLogger(__name__)


class TagValue(str, Enum):
    BAD_BUILD = "BAD_BUILD"
    GOOD_BUILD = "GOOD_BUILD"
    CERTIFIED_BUILD = "CERTIFIED_BUILD"
    ENABLE_ENV = "ENABLE_ENV"
    DISABLE_ENV = "DISABLE_ENV"


class TagTargetType(str, Enum):
    BUILD = "BUILD"
    ENVIRONMENT = "ENVIRONMENT"
    TELETRAAN = "TELETRAAN"


RECOGNIZED_TAG_VALUES: Dict[TagTargetType, FrozenSet[TagValue]] = {
    TagTargetType.ENVIRONMENT: frozenset({TagValue.ENABLE_ENV, TagValue.DISABLE_ENV}),
    TagTargetType.TELETRAAN: frozenset({TagValue.ENABLE_ENV, TagValue.DISABLE_ENV}),
    TagTargetType.BUILD: frozenset({TagValue.BAD_BUILD, TagValue.GOOD_BUILD, TagValue.CERTIFIED_BUILD}),
}


class Tag(BaseModel):
    """A named action recorded against a target."""
    id: Optional[str] = None
    value: TagValue
    target_type: TagTargetType
    target_id: str
    comments: str = ""
    operator: str = ""
    meta_info: Optional[Dict[str, Any]] = None
    created_date: Optional[datetime] = None


class TagHandler:
    """Validates and appends tags. Tags are never updated or deleted."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    def validate(self, tag: Tag) -> None:
        allowed = RECOGNIZED_TAG_VALUES.get(tag.target_type, frozenset())
        if tag.value not in allowed:
            raise InvalidArgumentError(
                f"Tag value {tag.value.value} is not a recognized action for {tag.target_type.value}"
            )

    async def create_tag(self, tag: Tag, operator: str) -> Tag:
        """Validate and append a tag, returning it with its generated id and timestamp."""
        self.validate(tag)
        created = tag.model_copy(update={
            "id": uuid.uuid4().hex,
            "operator": operator,
            "created_date": datetime.utcnow(),
        })
        try:
            async with self._session_factory() as session:
                session.add(TagModel(
                    id=created.id, value=created.value.value,
                    target_type=created.target_type.value, target_id=created.target_id,
                    operator=created.operator, comments=created.comments,
                    meta_info=created.meta_info, created_date=created.created_date,
                ))
                await session.commit()
        except SQLAlchemyError as e:
            raise AuditEmissionError(
                f"Failed to record tag {tag.value.value} for {tag.target_type.value} {tag.target_id}: {e}"
            ) from e
        logger.info(f"Created tag {created.id} {created.value.value} on "
                    f"{created.target_type.value}:{created.target_id} by {operator}")
        return created

    async def list_tags(self, target_id: Any,
                        target_type: TagTargetType = TagTargetType.ENVIRONMENT,
                        limit: int = 50) -> List[Tag]:
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(TagModel)
                .where(TagModel.target_type == target_type.value,
                       TagModel.target_id == str(target_id))
                .order_by(TagModel.created_date.desc())
                .limit(limit)
            )).scalars().all()
            return [
                Tag(
                    id=r.id, value=TagValue(r.value), target_type=TagTargetType(r.target_type),
                    target_id=r.target_id, comments=r.comments or "", operator=r.operator,
                    meta_info=r.meta_info, created_date=r.created_date,
                )
                for r in rows
            ]


class EnvTagHandler(TagHandler):
    """Tag handler for stages: targets are always ENVIRONMENT and carry a stage snapshot."""

    async def create_tag(self, tag: Tag, operator: str, stage: Optional[Any] = None) -> Tag:
        update: Dict[str, Any] = {"target_type": TagTargetType.ENVIRONMENT}
        if stage is not None:
            update["meta_info"] = stage.config_snapshot()
        return await super().create_tag(tag.model_copy(update=update), operator)
