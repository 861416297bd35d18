"""
classquest.database.engine — Engine Factory & Thread Bridge
============================================================

Reward flows open their own ``Session(engine, expire_on_commit=False)``;
this module only builds the engine they share and lets async callers run
those synchronous flows off the event loop::

    engine = create_db_engine()                  # DATABASE_URL from .env
    outcome = await run_db(reward_service.award_bits, engine, user_id=1, ...)

Production schemas come from ``alembic upgrade head``; :func:`init_db` is for
local setups and tests.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from dotenv import load_dotenv
from sqlalchemy import Engine, create_engine

from classquest.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def create_db_engine(url: str | None = None) -> Engine:
    """Pooled engine for *url*, falling back to ``DATABASE_URL``.

    Raises ``RuntimeError`` when neither is set.
    """
    if url is None:
        load_dotenv()
        url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set (see .env.example)")

    engine = create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def init_db(engine: Engine) -> None:
    """Create any missing progression tables."""
    Base.metadata.create_all(engine)
    logger.info("Progression tables ready")


async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a synchronous flow on the default thread pool."""
    return await asyncio.to_thread(func, *args, **kwargs)
