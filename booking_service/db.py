from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from .config import DATABASE_URL, DB_ECHO

if not DATABASE_URL:
    raise RuntimeError("BOOKING_DB environment variable is not set")


def get_engine(database_url: str, echo: bool = False):
    return create_async_engine(database_url, echo=echo, future=True)


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
    )


engine = get_engine(DATABASE_URL, echo=DB_ECHO)
SessionLocal = get_session(engine)

Base = declarative_base()


async def get_db():
    async with SessionLocal() as session:
        yield session
