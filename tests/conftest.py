"""
Shared fixtures for the stage service test suite.
"""
import os
import sys
import tempfile

import pytest
import pytest_asyncio

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Set env vars before any imports that read them
os.environ["ENVIRONMENT"] = "dev"
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{tempfile.gettempdir()}/stage_service_test_{os.getpid()}.db",
)
os.environ.setdefault("AUTO_CREATE_SCHEMA", "true")
os.environ.setdefault("STAGE_SERVICE_AUTHORIZER", "role_based")
os.environ.setdefault("STAGE_SERVICE_ADMIN_OPERATORS", "admin")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from stage_service.audit.config_history import ConfigHistoryHandler  # noqa: E402
from stage_service.auth.authorizer import Caller, Resource, ResourceType, Role, RoleBasedAuthorizer  # noqa: E402
from stage_service.db.base import Base  # noqa: E402
from stage_service.db import models  # noqa: E402,F401
from stage_service.db.stage_store import StageStore  # noqa: E402
from stage_service.stages.lifecycle_manager import StageLifecycleManager  # noqa: E402
from stage_service.stages.models import Stage  # noqa: E402
from stage_service.tags.tag_handler import EnvTagHandler  # noqa: E402


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh file-backed SQLite database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/stages.db", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def stage_store(session_factory):
    return StageStore(session_factory)


@pytest.fixture
def config_history(session_factory):
    return ConfigHistoryHandler(session_factory)


@pytest.fixture
def tag_handler(session_factory):
    return EnvTagHandler(session_factory)


@pytest.fixture
def operator():
    """Caller holding OPERATOR on the 'app' environment."""
    return Caller(name="alice")


@pytest.fixture
def outsider():
    """Caller with no role anywhere."""
    return Caller(name="mallory")


@pytest.fixture
def authorizer():
    authz = RoleBasedAuthorizer(admin_operators=["admin"])
    authz.grant("alice", Resource(name="app", type=ResourceType.ENV), Role.OPERATOR)
    authz.grant("rita", Resource(name="app", type=ResourceType.ENV), Role.READER)
    return authz


@pytest.fixture
def lifecycle_manager(stage_store, authorizer, config_history, tag_handler):
    return StageLifecycleManager(
        store=stage_store, authorizer=authorizer,
        config_history=config_history, tag_handler=tag_handler,
    )


@pytest.fixture
def make_stage(stage_store):
    """Insert a stage through the store (stage creation is not a lifecycle operation)."""
    async def _make(env_name: str = "app", stage_name: str = "prod", **fields) -> Stage:
        return await stage_store.insert(
            Stage(env_name=env_name, stage_name=stage_name, **fields), operator="seed",
        )
    return _make
