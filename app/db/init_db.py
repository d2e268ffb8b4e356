"""
One-time schema bootstrap, called from app startup (and tests) before serving requests.
Nothing else creates tables or indexes at runtime.
"""
import logging
from sqlalchemy.engine import Engine
from app.db.base import Base
import app.models  # noqa: F401 - register all models with Base

logger = logging.getLogger(__name__)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables and indexes ensured: %s", ", ".join(sorted(Base.metadata.tables)))
