"""
StageStore — async keyed storage for stage records.
Bridges between the Pydantic Stage and the SQLAlchemy StageModel.
Every call runs in its own session and commits, so each write is atomic per record.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stage_service.db.models import StageModel
from stage_service.errors import NotFoundError, StoreConflictError
from stage_service.stages.models import EnvState, Stage

logger = logging.getLogger(__name__)


def _stage_to_row(stage: Stage) -> Dict[str, Any]:
    """Convert a Pydantic Stage to a dict of column values."""
    data = stage.model_dump()
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}


def _row_to_stage(row: StageModel) -> Stage:
    """Convert a SQLAlchemy StageModel row back to a Pydantic Stage."""
    return Stage.model_validate({name: getattr(row, name) for name in Stage.model_fields})


class StageStore:
    """Async CRUD for stages with optimistic concurrency on the version column."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
            except IntegrityError as e:
                await session.rollback()
                raise StoreConflictError(f"Stage write rejected by the store: {e.orig}", conflict=True) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreConflictError(f"Stage store failure: {e}") from e

    # ── Reads ─────────────────────────────────────────────────────

    async def get_by_stage(self, env_name: str, stage_name: str) -> Optional[Stage]:
        """Fetch a stage by its (environment, stage) key."""
        async with self._session() as session:
            row = (await session.execute(
                select(StageModel).where(
                    StageModel.env_name == env_name,
                    StageModel.stage_name == stage_name,
                )
            )).scalar_one_or_none()
            return _row_to_stage(row) if row else None

    async def get_by_id(self, env_id: int) -> Optional[Stage]:
        async with self._session() as session:
            row = await session.get(StageModel, env_id)
            return _row_to_stage(row) if row else None

    # ── Writes ────────────────────────────────────────────────────

    async def insert(self, stage: Stage, operator: str = "") -> Stage:
        """Insert a new stage. The store assigns env_id; duplicate keys conflict."""
        data = _stage_to_row(stage)
        data.pop("env_id", None)
        data.update(version=0, last_operator=operator, last_update=datetime.utcnow())
        async with self._session() as session:
            row = StageModel(**data)
            session.add(row)
            await session.flush()
            inserted = _row_to_stage(row)
            await session.commit()
        logger.info(f"Inserted stage {stage.key} as env_id={inserted.env_id}")
        return inserted

    async def save(self, stage: Stage, expected_version: int, operator: str = "") -> Stage:
        """Overwrite a stage's columns if its version is still ``expected_version``."""
        data = _stage_to_row(stage)
        for key in ("env_id", "env_name", "stage_name"):
            data.pop(key)
        data.update(version=expected_version + 1, last_operator=operator, last_update=datetime.utcnow())
        async with self._session() as session:
            result = await session.execute(
                update(StageModel)
                .where(StageModel.env_id == stage.env_id, StageModel.version == expected_version)
                .values(**data)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                if await session.get(StageModel, stage.env_id) is None:
                    raise NotFoundError.for_stage(stage.env_name, stage.stage_name)
                logger.warning(f"Stale write to {stage.key}: expected version {expected_version}")
                raise StoreConflictError(
                    f"Environment {stage.key} was modified concurrently, please retry.",
                    conflict=True,
                )
            await session.commit()
        return stage.model_copy(update={
            "version": expected_version + 1,
            "last_operator": operator,
            "last_update": data["last_update"],
        })

    async def _update_fields(self, stage: Stage, operator: str, **fields: Any) -> None:
        fields.update(
            version=StageModel.version + 1,
            last_operator=operator,
            last_update=datetime.utcnow(),
        )
        async with self._session() as session:
            result = await session.execute(
                update(StageModel)
                .where(StageModel.env_id == stage.env_id)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise NotFoundError.for_stage(stage.env_name, stage.stage_name)
            await session.commit()

    async def set_external_id(self, stage: Stage, external_id: str, operator: str = "") -> None:
        await self._update_fields(stage, operator, external_id=external_id)

    async def set_stage_is_sox(self, stage: Stage, is_sox: bool, operator: str = "") -> None:
        await self._update_fields(stage, operator, is_sox=is_sox)

    async def set_env_state(self, stage: Stage, env_state: EnvState, operator: str = "") -> None:
        await self._update_fields(stage, operator, env_state=env_state.value)

    async def delete(self, env_name: str, stage_name: str) -> bool:
        """Delete a stage by key. History and tags referencing it are kept."""
        async with self._session() as session:
            result = await session.execute(
                delete(StageModel).where(
                    StageModel.env_name == env_name,
                    StageModel.stage_name == stage_name,
                )
            )
            await session.commit()
            deleted = result.rowcount > 0
            if deleted:
                logger.info(f"Deleted stage {env_name}/{stage_name}")
            return deleted
