import json

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def _json_dumps(value) -> str:
    # Keep non-ASCII text readable in JSON columns so tag lookups can match it.
    return json.dumps(value, ensure_ascii=False)


def build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}, "json_serializer": _json_dumps}
        # An in-memory database only lives as long as its single connection.
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True, json_serializer=_json_dumps)


def build_session_factory(engine: Engine) -> sessionmaker:
    # A temporary connection to work with the database.
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
