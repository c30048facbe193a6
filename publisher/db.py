from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase

from publisher.settings import settings


class Base(DeclarativeBase):
    pass


def get_engine(url: str | None = None, **kwargs):
    return create_engine(url or settings.DATABASE_URL, pool_pre_ping=True, **kwargs)
