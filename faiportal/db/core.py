from sqlmodel import Session, SQLModel, create_engine

from faiportal.core.config import settings


def _engine_kwargs(database_url: str) -> dict:
    # SQLite connections are shared between the request thread and background analysis
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))


def get_session():
    with Session(engine) as session:
        yield session


def init_db(bind=None):
    # Registers the table models on SQLModel.metadata
    from faiportal.db import schema  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
