from __future__ import annotations

import threading
from typing import Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker


_ENGINES: Dict[str, Engine] = {}
_SESSIONMAKERS: Dict[str, sessionmaker] = {}
_LOCK = threading.Lock()


def get_engine(database_url: str) -> Engine:
    with _LOCK:
        engine = _ENGINES.get(database_url)
        if engine is not None:
            return engine

        # For SQLite, allow cross-thread use because timers and fan-outs
        # run on background threads.
        connect_args = {}
        if database_url.startswith("sqlite:"):
            connect_args = {"check_same_thread": False, "timeout": 30}

        engine = create_engine(
            database_url,
            future=True,
            echo=False,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        _ENGINES[database_url] = engine
        _SESSIONMAKERS[database_url] = sessionmaker(
            bind=engine, autoflush=False, expire_on_commit=False, future=True
        )
        return engine


def get_sessionmaker(database_url: str) -> sessionmaker:
    if database_url not in _SESSIONMAKERS:
        get_engine(database_url)
    return _SESSIONMAKERS[database_url]


def dispose_engine(database_url: str) -> None:
    with _LOCK:
        engine = _ENGINES.pop(database_url, None)
        _SESSIONMAKERS.pop(database_url, None)
    if engine is not None:
        engine.dispose()
