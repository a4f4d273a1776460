from functools import partial
from pathlib import Path
from typing import Callable

from fastapi import Request
from sqlalchemy import Column, DateTime
from sqlalchemy.engine import Engine, make_url
from sqlmodel import SQLModel, create_engine, Session

SessionFactory = Callable[[], Session]


def create_db_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        # check_same_thread=False is needed only for SQLite
        connect_args = {"check_same_thread": False}
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args)


def utc_timestamp_column(nullable: bool = False, index: bool = False) -> Column:
    # Naive UTC datetimes from core.clock, stored and returned as is
    return Column(DateTime(timezone=False), nullable=nullable, index=index)


def create_db_and_tables(engine: Engine) -> None:
    # Import models to register them with SQLModel
    from ..models import Audit, ClinicalRecord, Patient, RefreshToken, User  # noqa: F401

    SQLModel.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> SessionFactory:
    return partial(Session, engine)


def get_session(request: Request):
    with Session(request.app.state.engine) as session:
        yield session
