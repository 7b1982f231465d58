from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker
from .config import settings
from . import models  # noqa: F401  registers payment_orders / products on the metadata
from .store import OrderStore

engine: AsyncEngine = create_async_engine(settings.database_url, echo=False, future=True)

async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    # no migrations: create missing tables on startup
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db():
    await engine.dispose()


async def get_order_store():
    """FastAPI dependency: one session, wrapped in an OrderStore, per request."""
    async with async_session() as session:
        yield OrderStore(session)
