"""
Config History — append-only audit trail of stage configuration changes.
Records a JSON snapshot of every accepted change plus a coarser change-feed
pointer, and optionally forwards change-feed entries to an external HTTP
endpoint. Entries are never updated or deleted.
"""

import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from stage_service.db.models import ChangeFeedModel, ConfigHistoryModel
from stage_service.errors import AuditEmissionError

logger = logging.getLogger(__name__)

# Entity categories
CONFIG_TYPE_ENV = "Environment"

# Change categories
TYPE_ENV_GENERAL = "Env General Config"
TYPE_ENV_EXTERNAL_ID = "Env External Id"
TYPE_ENV_SOX = "Env SOX Flag"
TYPE_ENV_ACTION = "Env Action"


class ConfigHistoryEntry(BaseModel):
    change_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    config_id: str
    type: str
    config_change: Dict[str, Any] = Field(default_factory=dict)
    operator: str = ""
    creation_time: datetime = Field(default_factory=datetime.utcnow)


class ChangeFeedEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    config_type: str
    config_id: str
    change_type: str
    operator: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)


def _snapshot(new_state: Any) -> Dict[str, Any]:
    """Serialize the new state of a config object to a JSON-safe dict."""
    if hasattr(new_state, "config_snapshot"):
        return new_state.config_snapshot()
    if isinstance(new_state, BaseModel):
        return new_state.model_dump(mode="json")
    return json.loads(json.dumps(new_state, default=str))


class ConfigHistoryHandler:
    """
    Appends config history and change feed entries.
    Failures surface as AuditEmissionError and are never retried here.
    """

    def __init__(self, session_factory: async_sessionmaker,
                 change_feed_url: Optional[str] = None,
                 change_feed_secret: str = "",
                 change_feed_timeout: float = 10.0,
                 http_transport: Optional[httpx.AsyncBaseTransport] = None):
        self._session_factory = session_factory
        self._change_feed_url = change_feed_url
        self._change_feed_secret = change_feed_secret
        self._change_feed_timeout = change_feed_timeout
        self._http_transport = http_transport

    # ── Appends ───────────────────────────────────────────────────

    async def update_config_history(self, config_id: Any, category: str,
                                    new_state: Any, operator: str) -> ConfigHistoryEntry:
        """Append a snapshot of ``new_state`` for the given config id."""
        entry = ConfigHistoryEntry(
            config_id=str(config_id), type=category,
            config_change=_snapshot(new_state), operator=operator,
        )
        try:
            async with self._session_factory() as session:
                session.add(ConfigHistoryModel(**entry.model_dump()))
                await session.commit()
        except SQLAlchemyError as e:
            raise AuditEmissionError(
                f"Failed to record config history '{category}' for {config_id}: {e}"
            ) from e
        return entry

    async def update_change_feed(self, config_type: str, config_id: Any,
                                 change_type: str, operator: str) -> ChangeFeedEntry:
        """Append a change feed entry and forward it when a feed URL is configured."""
        entry = ChangeFeedEntry(
            config_type=config_type, config_id=str(config_id),
            change_type=change_type, operator=operator,
        )
        try:
            async with self._session_factory() as session:
                session.add(ChangeFeedModel(**entry.model_dump()))
                await session.commit()
        except SQLAlchemyError as e:
            raise AuditEmissionError(
                f"Failed to record change feed '{change_type}' for {config_type} {config_id}: {e}"
            ) from e

        if self._change_feed_url:
            await self._publish(entry)
        return entry

    async def _publish(self, entry: ChangeFeedEntry) -> None:
        body = entry.model_dump_json().encode()
        headers = {"Content-Type": "application/json"}
        if self._change_feed_secret:
            sig = hmac.new(self._change_feed_secret.encode(), body, hashlib.sha256).hexdigest()
            headers["X-Change-Feed-Signature"] = f"sha256={sig}"

        try:
            async with httpx.AsyncClient(timeout=self._change_feed_timeout,
                                         transport=self._http_transport) as client:
                response = await client.post(self._change_feed_url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise AuditEmissionError(
                f"Change feed entry {entry.id} recorded but not delivered: {e}"
            ) from e
        if not 200 <= response.status_code < 300:
            raise AuditEmissionError(
                f"Change feed entry {entry.id} recorded but delivery returned HTTP {response.status_code}"
            )

    # ── Read-back ─────────────────────────────────────────────────

    async def list_config_history(self, config_id: Any, limit: int = 50) -> List[ConfigHistoryEntry]:
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(ConfigHistoryModel)
                .where(ConfigHistoryModel.config_id == str(config_id))
                .order_by(ConfigHistoryModel.creation_time.desc())
                .limit(limit)
            )).scalars().all()
            return [
                ConfigHistoryEntry(
                    change_id=r.change_id, config_id=r.config_id, type=r.type,
                    config_change=r.config_change or {}, operator=r.operator,
                    creation_time=r.creation_time,
                )
                for r in rows
            ]

    async def list_change_feed(self, config_id: Any, config_type: str = CONFIG_TYPE_ENV,
                               limit: int = 50) -> List[ChangeFeedEntry]:
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(ChangeFeedModel)
                .where(ChangeFeedModel.config_type == config_type,
                       ChangeFeedModel.config_id == str(config_id))
                .order_by(ChangeFeedModel.created_at.desc())
                .limit(limit)
            )).scalars().all()
            return [
                ChangeFeedEntry(
                    id=r.id, config_type=r.config_type, config_id=r.config_id,
                    change_type=r.change_type, operator=r.operator, created_at=r.created_at,
                )
                for r in rows
            ]
