# chatgate/storage/database.py
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from chatgate.core.settings import get_settings
from chatgate.storage.models import Base


def _make_engine(db_url: str):
    if db_url.startswith("sqlite"):
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every session sees an empty database
            return create_engine(
                db_url, echo=False, future=True,
                connect_args={"check_same_thread": False}, poolclass=StaticPool,
            )
        db_path = db_url.split("///", 1)[-1]
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(db_url, echo=False, future=True, connect_args={"check_same_thread": False})
    return create_engine(db_url, echo=False, future=True, pool_pre_ping=True)


settings = get_settings()
engine = _make_engine(settings.db_url)
Base.metadata.create_all(engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    with Session(engine, future=True, expire_on_commit=False) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
