import json
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.settings import settings


def _json_serializer(value) -> str:
    # Keep non-ASCII text searchable inside serialized details.
    return json.dumps(value, ensure_ascii=False)


def _get_engine_kwargs(url: str) -> dict:
    kwargs: dict = {"future": True, "echo": False, "json_serializer": _json_serializer}
    if url.startswith("sqlite"):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    return kwargs


def build_engine(url: str):
    return create_async_engine(url, **_get_engine_kwargs(url))


engine = build_engine(settings.database_url)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
