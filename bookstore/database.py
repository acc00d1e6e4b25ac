from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from bookstore.config import settings

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)
